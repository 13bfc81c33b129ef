"""Persistencia local de credenciales (`<user config dir>/auth.json`).

Acquiring the session token is out of scope; this module only stores a
token the user already has and hands it to the dispatcher.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from core.config import AppSettings, get_user_config_dir
from core.domain.models import utcnow


class StoredCredentials(BaseModel):
    token: str = Field(..., min_length=1, repr=False)
    email: str | None = None
    api_host: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


def get_auth_file() -> Path:
    return get_user_config_dir() / "auth.json"


def save_credentials(credentials: StoredCredentials, path: Path | None = None) -> Path:
    path = path or get_auth_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(credentials.model_dump_json(indent=2) + "\n", encoding="utf-8")
    try:
        path.chmod(0o600)
    except OSError:
        pass
    return path


def load_credentials(path: Path | None = None) -> StoredCredentials | None:
    """None when the file is missing or unreadable."""

    path = path or get_auth_file()
    if not path.exists():
        return None
    try:
        return StoredCredentials.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError):
        return None


def clear_credentials(path: Path | None = None) -> bool:
    path = path or get_auth_file()
    if not path.exists():
        return False
    path.unlink()
    return True


def resolve_session_token(settings: AppSettings, path: Path | None = None) -> str | None:
    """Env/.env token first, then the stored one."""

    if settings.session_token:
        return settings.session_token
    stored = load_credentials(path)
    return stored.token if stored else None
