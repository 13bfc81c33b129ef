"""Almacén de conversaciones en memoria.

Implementa `core.interfaces.conversation_store.ConversationStore` para la
vida del proceso. Idle conversations are evicted lazily once they outlive
`ttl_seconds` (0 or None disables eviction).
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Callable

import structlog

from core.domain.conversation import Conversation, PendingSlot
from core.domain.models import Message
from core.domain.pending import PendingAction

logger = structlog.get_logger("adapters.conversation_store")


class InMemoryConversationStore:
    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds or None
        self._clock = clock
        self._conversations: dict[str, Conversation] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._conversations

    def purge_expired(self) -> int:
        # Locks handed out for ids that were never (or are no longer) stored.
        for cid in [cid for cid, lock in self._locks.items() if cid not in self._conversations and not lock.locked()]:
            del self._locks[cid]

        if self._ttl is None:
            return 0
        now = self._clock()
        expired = [
            cid
            for cid, conv in self._conversations.items()
            if now - conv.last_seen_at > self._ttl and not self._is_locked(cid)
        ]
        for cid in expired:
            self.discard(cid)
        if expired:
            logger.info("conversations_evicted", count=len(expired))
        return len(expired)

    def _is_locked(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()

    def _touch(self, conversation: Conversation) -> Conversation:
        conversation.last_seen_at = self._clock()
        return conversation

    def get_or_create(self, conversation_id: str | None = None) -> Conversation:
        """Return the conversation, or a fresh one with a generated id."""

        self.purge_expired()
        if conversation_id and conversation_id in self._conversations:
            return self._touch(self._conversations[conversation_id])

        conversation = Conversation(id=uuid.uuid4().hex)
        self._conversations[conversation.id] = conversation
        logger.debug("conversation_created", conversation_id=conversation.id, requested=conversation_id)
        return self._touch(conversation)

    def get(self, conversation_id: str) -> Conversation | None:
        self.purge_expired()
        conversation = self._conversations.get(conversation_id)
        return self._touch(conversation) if conversation else None

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self.get(conversation_id)
        if conversation is None:
            raise KeyError(f"unknown conversation: {conversation_id}")
        return conversation

    def append_message(self, conversation_id: str, message: Message) -> None:
        self._require(conversation_id).history.append(message)

    def get_pending(self, conversation_id: str) -> PendingSlot | None:
        conversation = self.get(conversation_id)
        return conversation.pending if conversation else None

    def set_pending(self, conversation_id: str, action: PendingAction | None) -> int:
        """Overwrite the slot (or empty it) and return the new slot version."""

        conversation = self._require(conversation_id)
        conversation.version += 1
        conversation.pending = PendingSlot(action, conversation.version) if action is not None else None
        return conversation.version

    def clear_pending(self, conversation_id: str, *, expected_version: int | None = None) -> bool:
        """Empty the slot; with `expected_version`, only if it still holds that version."""

        conversation = self.get(conversation_id)
        if conversation is None or conversation.pending is None:
            return False
        if expected_version is not None and conversation.pending.version != expected_version:
            return False
        conversation.version += 1
        conversation.pending = None
        return True

    def discard(self, conversation_id: str) -> None:
        self._conversations.pop(conversation_id, None)
        self._locks.pop(conversation_id, None)

    def lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock
