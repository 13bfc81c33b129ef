"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Transporte, dispatcher y CLI leen la misma config.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.language import Language


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (cross-platform, sin dependencias)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "fintoc"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "fintoc"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "fintoc"
    return Path.home() / ".config" / "fintoc"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


class AppSettings(BaseSettings):
    """Configuración central de la aplicación.

    Un único contrato de configuración para CLI, dispatcher y transporte.
    """

    model_config = SettingsConfigDict(
        env_prefix="FINTOC_",
        extra="ignore",
        case_sensitive=False,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    api_host: str = Field(
        default="http://api.localhost:3000",
        min_length=1,
        description="Base URL of the dashboard API that commands are routed to.",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout por request (segundos).",
    )
    user_agent: str = Field(
        default="fintoc-cli/0.1",
        min_length=1,
        description="User-Agent sent on every API call.",
    )
    program_name: str = Field(
        default="fintoc",
        min_length=1,
        description="Leading token dropped by the command parser and shown in help.",
    )
    session_token: str | None = Field(
        default=None,
        description="Session token; overrides the one stored by `fintoc token`.",
    )
    current_organization_flag: str = Field(
        default="current_organization_id",
        min_length=1,
        description="Flag always sent as a query parameter, whatever the route placement.",
    )
    conversation_ttl_seconds: float = Field(
        default=3600.0,
        ge=0,
        description="Idle lifetime of a conversation before eviction (0 disables).",
    )
    default_language: Language = Field(
        default=Language.ENGLISH,
        description="Idioma por defecto para mensajes de MFA (en/es).",
    )
    log_level: str = Field(
        default="WARNING",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR).",
    )
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output.",
    )

    @field_validator("default_language", mode="before")
    @classmethod
    def _parse_language(cls, value: object) -> object:
        if value is None or isinstance(value, Language):
            return value
        return Language.parse(str(value))
