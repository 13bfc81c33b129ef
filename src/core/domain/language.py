"""Language utilities for fintoc-cli.

MFA challenge and confirmation messages are rendered in one of these
languages. Keeping the enum in the domain layer lets settings, the MFA gate
and the CLI share it without circular imports.
"""

from __future__ import annotations

from enum import Enum


class Language(str, Enum):
    """Supported natural-language choices for user-facing output."""

    ENGLISH = "en"
    SPANISH = "es"

    @classmethod
    def default(cls) -> "Language":
        return cls.ENGLISH

    @classmethod
    def parse(cls, value: str | None) -> "Language":
        """Lenient conversion from a user supplied code ("es", "ES", "spanish")."""

        if not value:
            return cls.default()
        text = value.strip().lower()
        if text in ("es", "spanish", "espanol", "español"):
            return cls.SPANISH
        return cls.ENGLISH

    def label(self) -> str:
        return "Spanish" if self is Language.SPANISH else "English"
