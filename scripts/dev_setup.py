"""Write a local .env with provider defaults and create the snapshot database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from deepstory import create_app
from deepstory.db_utils import ensure_database_schema

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"

# argparse destination -> environment variable
PROVIDER_OPTIONS = {
    "provider": "DEEPSTORY_PROVIDER",
    "base_url": "DEEPSTORY_BASE_URL",
    "api_key": "DEEPSTORY_API_KEY",
    "model": "DEEPSTORY_MODEL",
    "fallback_model": "DEEPSTORY_FALLBACK_MODEL",
    "max_attempts": "DEEPSTORY_MAX_ATTEMPTS",
}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the default model provider used by the API "
            "and create the project snapshot database."
        )
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="Entry point used by Flask (default: wsgi.py)")
    parser.add_argument("--secret-key", help="Secret key for Flask. Keeps the current value when omitted.")
    parser.add_argument("--database-url", help="Override DATABASE_URL (optional).")
    parser.add_argument(
        "--provider",
        help="Provider id: gemini, claude, deepseek, openai, qwen or custom (optional).",
    )
    parser.add_argument("--base-url", help="Provider base URL, e.g. https://api.deepseek.com (optional).")
    parser.add_argument("--api-key", help="Provider API key (optional).")
    parser.add_argument("--model", help="Model name, or 'custom' together with --fallback-model (optional).")
    parser.add_argument("--fallback-model", help="Model name used when --model is 'custom' (optional).")
    parser.add_argument("--max-attempts", type=int, help="Attempts per request before giving up (optional).")
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_data["FLASK_APP"] = args.flask_app
    if args.secret_key:
        env_data["SECRET_KEY"] = args.secret_key
    if args.database_url:
        env_data["DATABASE_URL"] = args.database_url
    for option, env_name in PROVIDER_OPTIONS.items():
        value = getattr(args, option)
        if value is not None and str(value).strip():
            env_data[env_name] = str(value).strip()

    write_env(args.env_path, env_data)
    return env_data


def initialize_database() -> None:
    app = create_app()
    with app.app_context():
        ensure_database_schema()
    print("Snapshot database ready (instance/deepstory.db unless DATABASE_URL is set).")


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialization skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        if key == "DEEPSTORY_API_KEY" and value:
            value = value[:4] + "…"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
