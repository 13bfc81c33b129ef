from __future__ import annotations

from typing import Any, Callable

import pytest
import structlog

from adapters.conversation_store import InMemoryConversationStore
from core.domain.language import Language
from core.domain.models import TransportRequest, TransportResponse
from core.services.command_session import CommandSession
from core.services.dispatcher import Dispatcher
from core.services.mfa_gate import MfaGate
from core.services.route_registry import default_route_registry

TOKEN = "tok_test"

Responder = Callable[[TransportRequest], TransportResponse]


class FakeTransport:
    """In-memory Transport: records requests, answers from a (method, path) table."""

    def __init__(self) -> None:
        self.requests: list[TransportRequest] = []
        self.routes: dict[tuple[str, str], TransportResponse | Responder | Exception] = {}
        self.default = TransportResponse(status=200, body={"ok": True})

    def respond(self, method: str, path: str, status: int = 200, body: Any = None) -> None:
        self.routes[(method, path)] = TransportResponse(status=status, body=body)

    def respond_with(self, method: str, path: str, responder: Responder | Exception) -> None:
        self.routes[(method, path)] = responder

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        answer = self.routes.get((request.method.value, request.path), self.default)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(request)
        return answer

    def paths(self) -> list[str]:
        return [f"{r.method.value} {r.path}" for r in self.requests]


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture
def registry():
    return default_route_registry()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dispatcher(registry, transport) -> Dispatcher:
    return Dispatcher(registry, transport)


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def gate(store, dispatcher) -> MfaGate:
    return MfaGate(store, dispatcher, language=Language.ENGLISH)


@pytest.fixture
def session(dispatcher, gate, store) -> CommandSession:
    return CommandSession(dispatcher, gate, store, TOKEN)


@pytest.fixture
def conversation_id(store) -> str:
    return store.get_or_create().id
