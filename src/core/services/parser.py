"""Parser de comandos en texto plano.

Turns strings such as::

    fintoc transfers show txn_42 --mode live
    fintoc transfer-intents create --counterparty.holder_name "Ana Pérez" --amount 1000

into a `ParsedCommand`. `parse_command` is total: any string yields a result.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable

import structlog

from core.domain.models import ParsedCommand

logger = structlog.get_logger("core.parser")

_DIGITS_RE = re.compile(r"[0-9]+")
_QUOTES = ("'", '"')


def tokenize(text: str) -> list[str]:
    """Split on whitespace; a quoted span is part of one token, quotes stripped.

    No escape sequences. An unterminated quote runs to the end of the input.
    """

    tokens: list[str] = []
    current: list[str] = []
    in_quote: str | None = None

    for char in text:
        if in_quote:
            if char == in_quote:
                in_quote = None
            else:
                current.append(char)
        elif char in _QUOTES:
            in_quote = char
        elif char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens


def coerce_value(value: Any) -> Any:
    """Digits-only → int; leading `[`/`{` → JSON when it parses; else unchanged."""

    if not isinstance(value, str):
        return value
    if value.startswith(("[", "{")):
        try:
            return json.loads(value)
        except (ValueError, RecursionError):
            return value
    if _DIGITS_RE.fullmatch(value):
        try:
            return int(value)
        except ValueError:
            # longer than sys.get_int_max_str_digits()
            return value
    return value


def expand_dotted(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Expand `a.b.c` keys into nested maps.

    Pairs are applied in order, so repeated flags and path collisions are
    last-write-wins: a scalar sitting on a path prefix is replaced by a map,
    and a scalar assigned to a key holding a map replaces the map.
    """

    result: dict[str, Any] = {}
    for key, raw in pairs:
        parts = key.split(".")
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if part in node:
                    logger.debug("flag_path_collision", flag=key, replaced=part)
                child = {}
                node[part] = child
            node = child

        leaf = parts[-1]
        if isinstance(node.get(leaf), dict):
            logger.debug("flag_path_collision", flag=key, replaced=leaf)
        node[leaf] = coerce_value(raw)
    return result


def join_tokens(tokens: Iterable[str]) -> str:
    """Inverse of `tokenize` for argv-style input (already split by the shell)."""

    parts: list[str] = []
    for token in tokens:
        if token and not any(c.isspace() or c in _QUOTES for c in token):
            parts.append(token)
        elif '"' in token:
            parts.append(f"'{token}'")
        else:
            parts.append(f'"{token}"')
    return " ".join(parts)


def parse_command(text: str, *, program_name: str = "fintoc") -> ParsedCommand:
    return parse_tokens(tokenize(text.strip()), program_name=program_name)


def parse_tokens(tokens: list[str], *, program_name: str = "fintoc") -> ParsedCommand:
    start = 0
    if tokens and tokens[0].lower() == program_name.lower():
        start = 1

    resource = tokens[start] if len(tokens) > start else ""
    action = tokens[start + 1] if len(tokens) > start + 1 else ""

    command_id: str | None = None
    pairs: list[tuple[str, Any]] = []

    i = start + 2
    while i < len(tokens):
        token = tokens[i]
        if token.startswith("--"):
            name = token[2:]
            if i + 1 < len(tokens) and not tokens[i + 1].startswith("--"):
                pairs.append((name, tokens[i + 1]))
                i += 2
            else:
                pairs.append((name, True))
                i += 1
            continue

        if command_id is None:
            command_id = token
        i += 1

    return ParsedCommand(
        resource=resource,
        action=action,
        id=command_id,
        flags=expand_dotted(pairs),
    )
