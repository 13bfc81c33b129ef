"""Fachada de sesión: texto → resultado, con MFA y historial.

Por qué existe:
- La CLI interactiva y las herramientas del agente hablan el mismo idioma
  (`fintoc <resource> <action> ...`) sin conocer Dispatcher ni MfaGate.
- Routes tagged with an `mfa_kind` never reach the network directly; they are
  staged in the conversation and run only after `mfa confirm <code>`.

Pseudo-resource `mfa`::

    mfa request                      send the OTP for the staged action
    mfa confirm <code> [--version n] validate the OTP and run the action
    mfa cancel                       drop the staged action
    mfa status                       show what is staged
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from core.domain.errors import ErrorKind
from core.domain.models import DispatchResult, Message, ParsedCommand
from core.interfaces.conversation_store import ConversationStore
from core.services.dispatcher import HELP_TOKEN, Dispatcher
from core.services.mfa_gate import MfaGate
from core.services.parser import parse_command

logger = structlog.get_logger("core.command_session")

MFA_RESOURCE = "mfa"
MFA_ACTIONS: dict[str, str] = {
    "request": "Send a one-time code for the staged action",
    "confirm": "Validate the 6-digit code and run the staged action (<code> [--version n])",
    "cancel": "Discard the staged action",
    "status": "Show the staged action, if any",
}

_HISTORY_LIMIT = 2000


def summarize_result(result: DispatchResult) -> str:
    """Texto corto que queda en el historial de la conversación."""

    if not result.success:
        return f"error [{result.error_kind.value if result.error_kind else 'unknown'}]: {result.error}"
    try:
        text = json.dumps(result.data, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = str(result.data)
    if len(text) > _HISTORY_LIMIT:
        text = text[:_HISTORY_LIMIT] + "…"
    return text


class CommandSession:
    def __init__(
        self,
        dispatcher: Dispatcher,
        gate: MfaGate,
        store: ConversationStore,
        credential: str,
    ) -> None:
        self.dispatcher = dispatcher
        self.gate = gate
        self.store = store
        self.credential = credential

    @property
    def program_name(self) -> str:
        return self.dispatcher.program_name

    def start(self, conversation_id: str | None = None) -> str:
        """Return an existing conversation id or open a new one."""

        return self.store.get_or_create(conversation_id).id

    async def execute(self, text: str, conversation_id: str | None = None) -> tuple[str, DispatchResult]:
        conversation_id = self.start(conversation_id)
        command = parse_command(text, program_name=self.program_name)

        self.store.append_message(conversation_id, Message(role="user", content=text))
        result = await self.run_command(conversation_id, command)
        self.record(conversation_id, command, result)
        return conversation_id, result

    def record(self, conversation_id: str, command: ParsedCommand, result: DispatchResult) -> None:
        if self.store.get(conversation_id) is None:
            return
        self.store.append_message(
            conversation_id,
            Message(
                role="tool",
                content=summarize_result(result),
                metadata={
                    "command": command.key,
                    "success": result.success,
                    "status": result.status,
                    "error_kind": result.error_kind.value if result.error_kind else None,
                },
            ),
        )

    async def run_command(self, conversation_id: str, command: ParsedCommand) -> DispatchResult:
        if command.resource.lower() == MFA_RESOURCE:
            return await self._run_mfa(conversation_id, command)

        if self.dispatcher.is_help(command):
            return self.dispatcher.help(command)

        route = self.dispatcher.registry.lookup(command.resource, command.action)
        if route is not None and route.mfa_kind:
            logger.debug("command_staged", command=route.key, kind=route.mfa_kind)
            return await self.gate.propose_command(conversation_id, command, route.mfa_kind)

        return await self.dispatcher.dispatch(command, self.credential)

    async def _run_mfa(self, conversation_id: str, command: ParsedCommand) -> DispatchResult:
        action = command.action.lower()

        if action == "request":
            return await self.gate.request_verification(conversation_id, self.credential)
        if action == "confirm":
            code = command.id if command.id is not None else command.flags.get("code")
            version = command.flags.get("version")
            if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
                return DispatchResult.failure(ErrorKind.INVALID_ARGUMENTS, "--version must be an integer.")
            return await self.gate.confirm(conversation_id, code, self.credential, expected_version=version)
        if action == "cancel":
            return await self.gate.cancel(conversation_id)
        if action == "status":
            return self.gate.status(conversation_id)
        if action in ("", HELP_TOKEN):
            return DispatchResult.ok({"text": render_mfa_help(self.program_name), "actions": list(MFA_ACTIONS)})

        return DispatchResult.failure(
            ErrorKind.UNKNOWN_COMMAND,
            f'Unknown command: "{MFA_RESOURCE} {command.action}". '
            f'Run "{self.program_name} {MFA_RESOURCE} help" for available commands.',
            data={"available_commands": [f"{self.program_name} {MFA_RESOURCE} {a}" for a in MFA_ACTIONS]},
        )


def render_mfa_help(program_name: str) -> str:
    commands = [f"{program_name} {MFA_RESOURCE} {action}" for action in MFA_ACTIONS]
    width = max(len(c) for c in commands) + 6
    lines = [f"Fintoc CLI - {MFA_RESOURCE}", ""]
    for command, description in zip(commands, MFA_ACTIONS.values()):
        lines.append(f"  {command}".ljust(width) + description)
    lines.append("")
    return "\n".join(lines)


def result_as_json(result: DispatchResult, **extra: Any) -> str:
    """Serialize a result for tool callers (JSON text)."""

    payload = result.model_dump(mode="json", exclude={"headers"}, exclude_none=True)
    payload.update(extra)
    return json.dumps(payload, ensure_ascii=False)
