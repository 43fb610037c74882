import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from deepstory import create_app
from deepstory.config import TestConfig
from deepstory.extensions import db
from deepstory.models import StoredProject
from deepstory.projects import routes
from deepstory.services.errors import ServerFailure
from deepstory.services.invocation import InvocationClient
from deepstory.services.project_io import export_snapshot
from deepstory.services.archive import StateArchive, StateArchiveEntry
from deepstory.services.state import Chapter, NarrativeState, StoryInputs
from deepstory.system_prompts import PROMPTS

PROVIDER = {
    "provider": "openai",
    "baseUrl": "https://api.openai.com",
    "apiKey": "sk-test",
    "textModel": "gpt-4o",
}


class DummyClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def generate(self, config, system_prompt, user_prompt, *, word_count=None, temperature=None):
        self.calls.append({"config": config, "system": system_prompt, "user": user_prompt})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def test_connection(self, config):
        self.calls.append({"config": config})
        return True, f"Connected. Model replied: OK ({config.model_name})"


class ExplodingSession:
    def post(self, *args, **kwargs):
        raise AssertionError("no request should be sent")


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def _use_client(app, dummy):
    app.extensions["deepstory_client"] = dummy
    return dummy


def _snapshot():
    state = NarrativeState(
        core_dna="DNA",
        global_summary="实时摘要",
        chapters=[Chapter(title="开端", content="第一章正文"), None, Chapter(title="转折", content="")],
        state_history=StateArchive(
            [
                StateArchiveEntry(chapter_num=0, global_summary="初始摘要", timestamp=1),
                StateArchiveEntry(chapter_num=1, global_summary="第一章后", character_state="受伤", timestamp=2),
            ]
        ),
    )
    return export_snapshot(StoryInputs(topic="神器", genre="修仙", novel_title="星海"), state)


def test_new_project_returns_empty_snapshot(client):
    response = client.get("/projects/demo")

    assert response.status_code == 200
    data = response.get_json()
    assert data["inputs"]["numberOfChapters"] == 12
    assert data["generatedData"]["chapters"] == []
    assert data["judgeResult"] is None
    assert data["promptOverrides"] == {}


def test_updating_inputs_persists_snapshot(client):
    response = client.put(
        "/projects/demo",
        json={"inputs": {"topic": "拾荒少年", "wordCount": 3000}, "steps": {"world": "手写世界观"}},
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["inputs"]["topic"] == "拾荒少年"
    assert data["inputs"]["wordCount"] == 3000
    assert data["generatedData"]["world"] == "手写世界观"

    record = db.session.get(StoredProject, "demo")
    assert record is not None
    assert "拾荒少年" in record.payload


def test_prompt_overrides_and_unknown_plot_structure(client):
    response = client.put("/projects/demo", json={"prompts": {"TITLE": "自定义命名"}})
    assert response.get_json()["promptOverrides"] == {"TITLE": "自定义命名"}

    preview = client.get("/projects/demo/prompts/TITLE").get_json()
    assert preview["system_prompt"] == "自定义命名"

    client.put("/projects/demo", json={"prompts": {"TITLE": ""}})
    preview = client.get("/projects/demo/prompts/TITLE").get_json()
    assert preview["system_prompt"] == PROMPTS["TITLE"]

    response = client.put("/projects/demo", json={"plotStructure": "不存在的结构"})
    assert response.status_code == 400
    assert response.get_json()["kind"] == "validation"


def test_dna_step_returns_content_and_settings(app_instance, client):
    dummy = _use_client(
        app_instance,
        DummyClient("## 基础设定 (BASIC_SETTINGS)\n- 小说名称：星海\n## 核心DNA (STORY_DNA)\n代价"),
    )

    response = client.post("/projects/demo/steps/dna", json={"provider": PROVIDER, "customInstruction": "更黑暗"})

    assert response.status_code == 200
    data = response.get_json()
    assert data["step"] == "dna"
    assert data["content"].endswith("## 核心DNA (STORY_DNA)\n代价")
    assert data["settings"] == {"novel_title": "星海"}
    assert dummy.calls[0]["config"].model_name == "gpt-4o"
    assert "更黑暗" in dummy.calls[0]["system"]

    detail = client.get("/projects/demo").get_json()
    assert detail["stepCustomInstructions"] == {"dna": "更黑暗"}


def test_missing_provider_is_reported_before_any_request(app_instance, client):
    _use_client(app_instance, InvocationClient(session=ExplodingSession()))

    response = client.post("/projects/demo/steps/world", json={})

    assert response.status_code == 400
    assert response.get_json()["kind"] == "configuration"


def test_transient_failures_map_to_service_unavailable(app_instance, client):
    _use_client(app_instance, DummyClient(ServerFailure("The service is busy.", attempts=3)))

    response = client.post("/projects/demo/steps/world", json={"provider": PROVIDER})

    assert response.status_code == 503
    assert response.get_json() == {"error": "The service is busy.", "kind": "transient"}
    assert client.get("/projects/demo").get_json()["generatedData"]["world"] == ""


def test_unknown_step_is_a_validation_error(client):
    response = client.post("/projects/demo/steps/epilogue", json={"provider": PROVIDER})

    assert response.status_code == 400
    assert response.get_json()["kind"] == "validation"


def test_import_rejects_invalid_files_and_keeps_state(client):
    client.put("/projects/demo", json={"inputs": {"topic": "原来的"}})

    response = client.post("/projects/demo/import", data="{not json", content_type="text/plain")

    assert response.status_code == 400
    assert "Invalid project file" in response.get_json()["error"]
    assert client.get("/projects/demo").get_json()["inputs"]["topic"] == "原来的"


def test_import_then_export_text_and_context(client):
    response = client.post("/projects/demo/import", json=_snapshot())
    assert response.status_code == 200
    assert response.get_json()["inputs"]["novelTitle"] == "星海"

    text = client.get("/projects/demo/chapters/export.txt")
    assert text.status_code == 200
    body = text.get_data(as_text=True)
    assert body.startswith("星海\n")
    assert "第一章正文" in body
    assert "第2章" not in body

    context = client.get("/projects/demo/archive/3/context").get_json()
    assert context == {
        "globalSummary": "第一章后",
        "characterState": "受伤",
        "chapterSummary": "暂无章节摘要",
        "sourceChapter": 1,
    }
    first = client.get("/projects/demo/archive/1/context").get_json()
    assert first["globalSummary"] == "实时摘要"
    assert first["sourceChapter"] is None

    exported = client.get("/projects/demo/export")
    assert exported.headers["Content-Disposition"] == 'attachment; filename="demo.json"'
    assert exported.get_json()["generatedData"]["chapters"][1] is None


def test_sync_of_empty_chapter_is_rejected(app_instance, client):
    dummy = _use_client(app_instance, DummyClient())
    client.post("/projects/demo/import", json=_snapshot())

    response = client.post("/projects/demo/chapters/3/sync", json={"provider": PROVIDER})

    assert response.status_code == 400
    assert response.get_json()["kind"] == "validation"
    assert dummy.calls == []


def test_sync_returns_updated_sections(app_instance, client):
    _use_client(app_instance, DummyClient("## 角色状态档案 (CHARACTER_STATE_UPDATED)\n主角：痊愈"))
    client.post("/projects/demo/import", json=_snapshot())

    response = client.post("/projects/demo/chapters/1/sync", json={"provider": PROVIDER})

    assert response.status_code == 200
    data = response.get_json()
    assert data["updatedSections"] == ["character_state"]
    assert data["entry"]["characterState"] == "主角：痊愈"
    assert data["entry"]["globalSummary"] == "第一章后"


def test_chapter_edit_and_rewrite_modes(app_instance, client):
    _use_client(app_instance, DummyClient("## 第1章 开端\n改写版本"))
    client.post("/projects/demo/import", json=_snapshot())

    edited = client.patch("/projects/demo/chapters/1", json={"title": "新开端"}).get_json()
    assert edited["title"] == "新开端"
    assert edited["content"] == "第一章正文"

    rewritten = client.post(
        "/projects/demo/chapters/1/rewrite",
        json={"mode": "feedback", "feedback": "节奏再快一些", "provider": PROVIDER},
    ).get_json()
    assert rewritten["content"] == "改写版本"
    assert rewritten["number"] == 1

    response = client.post("/projects/demo/chapters/1/rewrite", json={"mode": "translate"})
    assert response.status_code == 400


def test_provider_connection_check(app_instance, client):
    dummy = _use_client(app_instance, DummyClient())

    response = client.post("/projects/providers/test", json={"provider": PROVIDER})

    assert response.get_json() == {"success": True, "message": "Connected. Model replied: OK (gpt-4o)"}
    assert dummy.calls[0]["config"].base_url == "https://api.openai.com"


def test_provider_falls_back_to_app_configuration(app_instance, client, monkeypatch):
    dummy = _use_client(app_instance, DummyClient("世界观"))
    monkeypatch.setitem(app_instance.config, "DEEPSTORY_PROVIDER", "deepseek")
    monkeypatch.setitem(app_instance.config, "DEEPSTORY_BASE_URL", "https://api.deepseek.com")
    monkeypatch.setitem(app_instance.config, "DEEPSTORY_API_KEY", "sk-env")
    monkeypatch.setitem(app_instance.config, "DEEPSTORY_MODEL", "deepseek-chat")

    response = client.post("/projects/demo/steps/world", json={"provider": {"textModel": "deepseek-reasoner"}})

    assert response.status_code == 200
    config = dummy.calls[0]["config"]
    assert config.provider_kind == "deepseek"
    assert config.api_key == "sk-env"
    assert config.model_name == "deepseek-reasoner"


def test_prompt_listing_reports_overrides_and_placeholders(client):
    client.put("/projects/demo", json={"prompts": {"TITLE": "为{genre}小说命名"}})

    prompts = {item["key"]: item for item in client.get("/projects/demo/prompts").get_json()["prompts"]}

    assert set(prompts) == set(PROMPTS)
    assert prompts["TITLE"] == {
        "key": "TITLE",
        "template": "为{genre}小说命名",
        "overridden": True,
        "placeholders": ["genre"],
    }
    assert prompts["DNA"]["overridden"] is False
    assert "novel_title" in prompts["DNA"]["placeholders"]


def test_delete_resets_project_and_stored_snapshot(client):
    client.post("/projects/demo/import", json=_snapshot())

    response = client.delete("/projects/demo")

    assert response.status_code == 200
    data = response.get_json()
    assert data["inputs"]["topic"] == ""
    assert data["generatedData"]["chapters"] == []
    assert data["generatedData"]["stateHistory"] == []

    record = db.session.get(StoredProject, "demo")
    assert "神器" not in record.payload


def test_first_requests_share_one_orchestrator(app_instance, monkeypatch):
    def slow_load(key):
        time.sleep(0.05)
        return None

    monkeypatch.setattr(routes, "load_project", slow_load)
    found = []

    def worker():
        with app_instance.app_context():
            found.append(routes._get_orchestrator("demo"))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(found) == 4
    assert all(item is found[0] for item in found)
    assert app_instance.extensions["deepstory_orchestrators"]["demo"] is found[0]
