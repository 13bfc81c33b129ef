"""Contrato del almacén de conversaciones.

The pending-action slot is versioned: every `set_pending` bumps the version
and `clear_pending` can be made conditional on it (compare-and-swap). The
per-conversation `lock` serializes the propose/confirm protocol.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from core.domain.conversation import Conversation, PendingSlot
from core.domain.models import Message
from core.domain.pending import PendingAction


@runtime_checkable
class ConversationStore(Protocol):
    def get_or_create(self, conversation_id: str | None = None) -> Conversation:
        ...

    def get(self, conversation_id: str) -> Conversation | None:
        ...

    def append_message(self, conversation_id: str, message: Message) -> None:
        ...

    def get_pending(self, conversation_id: str) -> PendingSlot | None:
        ...

    def set_pending(self, conversation_id: str, action: PendingAction | None) -> int:
        ...

    def clear_pending(self, conversation_id: str, *, expected_version: int | None = None) -> bool:
        ...

    def discard(self, conversation_id: str) -> None:
        ...

    def lock(self, conversation_id: str) -> asyncio.Lock:
        ...
