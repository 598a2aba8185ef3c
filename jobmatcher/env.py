import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DB_PATH = "data/jobmatcher.db"


def load_env(env_path: Optional[Path] = None) -> None:
    """Load .env from project root if present. Existing variables win."""
    env_path = env_path or Path.cwd() / ".env"
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)


def database_path() -> Path:
    return Path(os.getenv("JOBMATCHER_DB", DEFAULT_DB_PATH))


def provider_settings() -> dict:
    """Connection settings for the HTTP structured-output provider."""
    return {
        "base_url": os.getenv("JOBMATCHER_PROVIDER_URL", "https://api.openai.com/v1"),
        "api_key": os.getenv("JOBMATCHER_API_KEY"),
        "provider": os.getenv("JOBMATCHER_PROVIDER", "openai"),
    }
