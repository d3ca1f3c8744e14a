"""Write the local .env for bookgen and create the books table."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from bookgen import create_app
from bookgen.db_utils import ensure_database_schema

# argparse destination -> .env key
ENV_OPTIONS = {
    "secret_key": "SECRET_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "llm_model": "LLM_MODEL",
    "database_url": "DATABASE_URL",
    "max_active_runs": "MAX_ACTIVE_RUNS",
}
SECRET_KEYS = {"SECRET_KEY", "OPENAI_API_KEY"}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Configure bookgen for local development.")
    parser.add_argument("--secret-key", help="Flask secret key.")
    parser.add_argument("--openai-api-key", help="Key used for outline, chapter and revision requests.")
    parser.add_argument("--llm-model", help="Default chat model (e.g. gpt-4o-mini).")
    parser.add_argument("--database-url", help="SQLAlchemy URL for the books table.")
    parser.add_argument("--max-active-runs", type=int, help="Generation runs kept in memory by the API.")
    parser.add_argument("--env-path", type=Path, default=REPO_ROOT / ".env", help="The .env file to update.")
    parser.add_argument("--skip-db", action="store_true", help="Only update the .env file.")
    return parser.parse_args(argv)


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    """Merge the given options into the .env file, keeping keys that were not passed."""

    env_data = read_env(args.env_path)
    env_data.setdefault("FLASK_APP", "wsgi.py")
    for option, key in ENV_OPTIONS.items():
        value = getattr(args, option)
        if value is not None and value != "":
            env_data[key] = str(value)

    args.env_path.write_text("".join(f"{key}={value}\n" for key, value in env_data.items()))
    return env_data


def mask(key: str, value: str) -> str:
    if key in SECRET_KEYS and len(value) > 8:
        return value[:4] + "..." + value[-4:]
    return value


def initialize_database() -> str:
    app = create_app()
    with app.app_context():
        ensure_database_schema()
        return app.config["SQLALCHEMY_DATABASE_URI"]


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    env_values = update_env_file(args)
    print(f"Wrote {args.env_path}:")
    for key in sorted(env_values):
        print(f"  {key}={mask(key, env_values[key])}")

    if args.skip_db:
        print("Database initialization skipped.")
    else:
        print(f"Database ready ({initialize_database()}).")


if __name__ == "__main__":
    main()
