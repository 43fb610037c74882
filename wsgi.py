from deepstory import create_app

app = create_app()
