"""Estado de una conversación: historial + a lo sumo una acción pendiente."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from core.domain.models import Message, utcnow
from core.domain.pending import PendingAction


@dataclass(frozen=True)
class PendingSlot:
    """A staged action plus the slot version it was stored under."""

    action: PendingAction
    version: int


@dataclass
class Conversation:
    id: str
    history: list[Message] = field(default_factory=list)
    pending: PendingSlot | None = None
    # Incremented on every write to the pending slot.
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_seen_at: float = 0.0
