"""Modelos del dominio (Pydantic v2).

Describen *qué* es un comando, una ruta y un resultado; no *cómo* se
transporta la llamada HTTP.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict

from core.domain.errors import ErrorKind

PLACEHOLDER_RE = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class ParsedCommand(BaseModel):
    """Comando estructurado producido por el parser."""

    resource: str = Field(default="", description="First token after the program name.")
    action: str = Field(default="", description="Second token after the program name.")
    id: str | None = Field(
        default=None,
        description="First positional argument, substituted into the path placeholder.",
    )
    flags: dict[str, Any] = Field(
        default_factory=dict,
        description="Flag values keyed by name; dotted names are already nested.",
    )

    @property
    def key(self) -> str:
        return f"{self.resource}.{self.action}"


class RouteDescriptor(BaseModel):
    """How one `resource.action` maps onto the remote HTTP API.

    Flag placement is resolved in this order: `flags_in` sends every flag to
    one side, `query_flags` lists the flags that go to the query string (the
    rest go to the body), and otherwise the HTTP method decides.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    method: HttpMethod
    path: str = Field(..., min_length=1, description="Path template, at most one `:name` placeholder.")
    flags_in: Literal["query", "body"] | None = None
    query_flags: tuple[str, ...] = ()
    response_binary: bool = Field(
        default=False,
        description="Endpoint returns raw file content instead of JSON.",
    )
    mfa_kind: str | None = Field(
        default=None,
        description="Sensitive operation kind; the route is staged behind an OTP.",
    )
    description: str = ""

    @field_validator("path")
    @classmethod
    def _single_placeholder(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"path must start with '/': {value!r}")
        if len(PLACEHOLDER_RE.findall(value)) > 1:
            raise ValueError(f"path may contain at most one placeholder: {value!r}")
        return value

    @property
    def key(self) -> str:
        return f"{self.resource}.{self.action}"

    @property
    def placeholder(self) -> str | None:
        match = PLACEHOLDER_RE.search(self.path)
        return match.group(0) if match else None


class RouteTableFile(BaseModel):
    """Formato del JSON declarativo de rutas: {"routes": [...]}."""

    routes: list[RouteDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_keys(self) -> "RouteTableFile":
        seen: set[str] = set()
        for route in self.routes:
            if route.key in seen:
                raise ValueError(f"duplicate route: {route.key}")
            seen.add(route.key)
        return self


class GroupedAction(BaseModel):
    action: str
    command: str
    method: str
    description: str = ""


class DispatchResult(BaseModel):
    """Resultado tipado de cualquier operación del motor.

    `status` is the HTTP status when a remote call happened. Failures always
    carry a human-readable `error` plus a machine-checkable `error_kind`.
    """

    success: bool
    status: int | None = None
    data: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, *, status: int | None = None, headers: dict[str, str] | None = None) -> "DispatchResult":
        return cls(success=True, status=status, data=data, headers=headers or {})

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        status: int | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> "DispatchResult":
        return cls(
            success=False,
            status=status,
            data=data,
            error=message,
            error_kind=kind,
            headers=headers or {},
        )


class TransportRequest(BaseModel):
    method: HttpMethod
    path: str
    credential: str = Field(..., repr=False)
    query: dict[str, Any] | None = None
    body: dict[str, Any] | None = None
    response_binary: bool = False


class TransportResponse(BaseModel):
    status: int
    body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)


class Message(BaseModel):
    """Mensaje intercambiado dentro de una conversación."""

    role: str = Field(..., min_length=1, description="user, assistant, tool or system.")
    content: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
