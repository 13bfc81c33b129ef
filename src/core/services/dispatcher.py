"""Dispatcher: resuelve un comando parseado contra el registro y ejecuta la llamada.

Nothing raised inside `dispatch` escapes it: unknown commands, missing ids,
non-2xx responses and transport exceptions all come back as a failed
`DispatchResult` with an `ErrorKind`.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

import structlog

from core.domain.errors import CommandError, ErrorKind, MissingPositionalArgument, UnknownCommand
from core.domain.models import DispatchResult, ParsedCommand, RouteDescriptor, TransportRequest
from core.interfaces.transport import Transport
from core.services.route_registry import RouteRegistry, split_flags

logger = structlog.get_logger("core.dispatcher")

HELP_TOKEN = "help"
_TRAILING_PUNCTUATION_RE = re.compile(r"[!?]+$")


def resolve_path(route: RouteDescriptor, command_id: str | None, *, program_name: str = "fintoc") -> str:
    placeholder = route.placeholder
    if placeholder is None:
        return route.path
    if not command_id:
        raise MissingPositionalArgument(route.key, program_name)
    return route.path.replace(placeholder, quote(command_id, safe=""), 1)


class Dispatcher:
    def __init__(
        self,
        registry: RouteRegistry,
        transport: Transport,
        *,
        current_organization_flag: str = "current_organization_id",
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.current_organization_flag = current_organization_flag

    @property
    def program_name(self) -> str:
        return self.registry.program_name

    def is_help(self, command: ParsedCommand) -> bool:
        resource = _TRAILING_PUNCTUATION_RE.sub("", command.resource)
        return resource in ("", HELP_TOKEN) or command.action == HELP_TOKEN

    def help(self, command: ParsedCommand) -> DispatchResult:
        """Answer help locally from the registry, without any network call."""

        resource = _TRAILING_PUNCTUATION_RE.sub("", command.resource)
        target: str | None = None
        if resource not in ("", HELP_TOKEN) and command.action == HELP_TOKEN:
            target = resource
        elif resource == HELP_TOKEN and command.action not in ("", HELP_TOKEN):
            target = command.action

        if target is None:
            return DispatchResult.ok(
                {
                    "text": self.registry.render_help_text(),
                    "resources": self.registry.resources(),
                }
            )

        text = self.registry.render_resource_help_text(target)
        if text is None:
            return DispatchResult.failure(
                ErrorKind.UNKNOWN_RESOURCE,
                f'Unknown resource: "{target}". Run "{self.program_name} help" for all available commands.',
                data={"available_resources": self.registry.resources()},
            )
        return DispatchResult.ok(
            {
                "text": text,
                "resource": target,
                "actions": [a.model_dump() for a in self.registry.grouped_by_resource()[target]],
            }
        )

    def resolve(self, command: ParsedCommand) -> RouteDescriptor:
        route = self.registry.lookup(command.resource, command.action)
        if route is None:
            raise UnknownCommand(
                f'Unknown command: "{command.resource} {command.action}". '
                f'Run "{self.program_name} help" for available commands.',
                {"available_commands": self.registry.list_commands()},
            )
        return route

    def build_request(self, command: ParsedCommand, route: RouteDescriptor, credential: str) -> TransportRequest:
        path = resolve_path(route, command.id, program_name=self.program_name)
        query, body = split_flags(route, command.flags)

        # Session-scoped organization context always travels in the query string.
        org_flag = self.current_organization_flag
        if org_flag in command.flags:
            query[org_flag] = command.flags[org_flag]
            body.pop(org_flag, None)

        return TransportRequest(
            method=route.method,
            path=path,
            credential=credential,
            query=query or None,
            body=body or None,
            response_binary=route.response_binary,
        )

    async def dispatch(self, command: ParsedCommand, credential: str) -> DispatchResult:
        if self.is_help(command):
            return self.help(command)

        try:
            route = self.resolve(command)
            request = self.build_request(command, route, credential)
        except CommandError as exc:
            logger.info("dispatch_rejected", command=command.key, error_kind=exc.kind.value)
            return DispatchResult.failure(exc.kind, exc.message, data=exc.details or None)

        log = logger.bind(command=route.key, method=request.method.value, path=request.path)
        try:
            response = await self.transport.send(request)
        except Exception as exc:
            log.warning("transport_failed", error=str(exc))
            return DispatchResult.failure(ErrorKind.TRANSPORT_FAILURE, str(exc) or exc.__class__.__name__)

        log.info("dispatched", status=response.status)
        if 200 <= response.status < 300:
            return DispatchResult.ok(response.body, status=response.status, headers=response.headers)
        return DispatchResult.failure(
            ErrorKind.REMOTE_EXECUTION_FAILURE,
            _remote_error_message(response.status, response.body),
            status=response.status,
            data=response.body,
            headers=response.headers,
        )


def _remote_error_message(status: int, body: Any) -> str:
    detail = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or error.get("code")
        elif isinstance(error, str):
            detail = error
    if detail:
        return f"Request failed with status {status}: {detail}"
    return f"Request failed with status {status}"
