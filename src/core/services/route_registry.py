"""Registro de rutas (data-driven).

The route table lives in `core/data/routes.json` (`{"routes": [...]}`) and is
the single source of truth translating `resource.action` into HTTP method,
path template and flag placement. It is loaded and validated once; the
registry built from it is read-only.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator

import structlog

from core.domain.models import GroupedAction, HttpMethod, RouteDescriptor, RouteTableFile
from core.domain.pending import PENDING_ACTION_TYPES

logger = structlog.get_logger("core.routes")

_QUERY_METHODS = (HttpMethod.GET, HttpMethod.DELETE)

HELP_EXAMPLES = (
    "transfers list --mode live --limit 10",
    "transfers show tra_123 --mode live",
    'recipients create --holder_name "John" --account_number 123456',
    "webhook-endpoints list --mode test",
)


def default_routes_path() -> Path:
    # core/services/route_registry.py -> core/data/routes.json
    return Path(__file__).resolve().parents[1] / "data" / "routes.json"


def split_flags(route: RouteDescriptor, flags: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Partition flags into (query, body); first matching rule wins."""

    if route.flags_in == "query":
        return dict(flags), {}
    if route.flags_in == "body":
        return {}, dict(flags)

    if route.query_flags:
        query: dict[str, Any] = {}
        body: dict[str, Any] = {}
        for key, value in flags.items():
            if key in route.query_flags:
                query[key] = value
            else:
                body[key] = value
        return query, body

    if route.method in _QUERY_METHODS:
        return dict(flags), {}
    return {}, dict(flags)


class RouteRegistry:
    """Read-only lookup table over route descriptors, in registration order."""

    def __init__(self, routes: Iterable[RouteDescriptor], *, program_name: str = "fintoc") -> None:
        index: dict[str, RouteDescriptor] = {}
        for route in routes:
            if route.key in index:
                raise ValueError(f"duplicate route: {route.key}")
            index[route.key] = route
        self._routes = tuple(index.values())
        self._index = MappingProxyType(index)
        self.program_name = program_name

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[RouteDescriptor]:
        return iter(self._routes)

    def lookup(self, resource: str, action: str) -> RouteDescriptor | None:
        return self._index.get(f"{resource}.{action}")

    def resources(self) -> list[str]:
        return list(dict.fromkeys(route.resource for route in self._routes))

    def list_commands(self) -> list[str]:
        """Full catalog, one line per command."""

        lines: list[str] = []
        for route in self._routes:
            line = f"{self.program_name} {route.resource} {route.action}"
            if route.description:
                line += f" - {route.description}"
            lines.append(line)
        return lines

    def grouped_by_resource(self) -> dict[str, list[GroupedAction]]:
        grouped: dict[str, list[GroupedAction]] = {}
        for route in self._routes:
            grouped.setdefault(route.resource, []).append(
                GroupedAction(
                    action=route.action,
                    command=f"{self.program_name} {route.resource} {route.action}",
                    method=route.method.value,
                    description=route.description,
                )
            )
        return grouped

    def render_help_text(self, *, width: int = 64) -> str:
        resources = self.resources()

        # Wrap the resource list into indented lines of about `width` chars.
        resource_lines: list[str] = []
        current = "    "
        for i, name in enumerate(resources):
            sep = "" if i == 0 else ", "
            candidate = current + sep + name
            if len(candidate) > width and current.strip():
                resource_lines.append(current + ",")
                current = "    " + name
            else:
                current = candidate
        if current.strip():
            resource_lines.append(current)

        prog = self.program_name
        lines = [
            "Fintoc CLI",
            "",
            f"  Usage:  {prog} <resource> <action> [<id>] [--flag value ...]",
            "",
            "  Resources:",
            *resource_lines,
            "",
            "  Examples:",
            *(f"    {prog} {example}" for example in HELP_EXAMPLES),
            "",
            f'  Run "{prog} <resource> help" to see all actions for a resource.',
            "",
        ]
        return "\n".join(lines)

    def render_resource_help_text(self, resource: str) -> str | None:
        actions = self.grouped_by_resource().get(resource)
        if not actions:
            return None

        col_width = max(len(a.command) for a in actions) + 6
        lines = [f"Fintoc CLI - {resource}", ""]
        for a in actions:
            lines.append(f"  {a.command}".ljust(col_width) + f"[{a.method}]  {a.description}")
        lines.append("")
        return "\n".join(lines)


def load_route_registry(path: Path | None = None, *, program_name: str = "fintoc") -> RouteRegistry:
    """Load and validate a JSON route table."""

    path = path or default_routes_path()
    table = RouteTableFile.model_validate(json.loads(path.read_text(encoding="utf-8")))

    for route in table.routes:
        if route.mfa_kind is not None and route.mfa_kind not in PENDING_ACTION_TYPES:
            raise ValueError(f"{route.key}: unknown mfa_kind {route.mfa_kind!r}")

    logger.debug("routes_loaded", path=str(path), count=len(table.routes))
    return RouteRegistry(table.routes, program_name=program_name)


@lru_cache(maxsize=None)
def default_route_registry(program_name: str = "fintoc") -> RouteRegistry:
    return load_route_registry(program_name=program_name)
