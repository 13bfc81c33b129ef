"""MFA gate: propose → request verification → confirm (or cancel).

State per conversation::

    IDLE --propose--> STAGED --confirm(valid code)--> IDLE (slot cleared, action ran once)
                      STAGED --cancel--> IDLE
                      STAGED --propose--> STAGED (previous action overwritten)

Propose, confirm and cancel hold the conversation lock, so a proposal can
never interleave with the execution of a confirmed action. Each staged action
carries a slot version; a caller that passes `expected_version` to `confirm`
gets `stale_pending_action` instead of executing something it never saw.

A lexically invalid code keeps the stage so the user can retry. Once the code
passes the lexical check the stage is cleared whatever the remote outcome:
at most one execution attempt per proposal.
"""

from __future__ import annotations

import re
from typing import Any

import structlog
from pydantic import ValidationError

from core.domain.errors import ErrorKind
from core.domain.language import Language
from core.domain.models import DispatchResult, ParsedCommand
from core.domain.pending import PENDING_ACTION_TYPES, PendingAction, RunCommand
from core.interfaces.conversation_store import ConversationStore
from core.services.dispatcher import Dispatcher

logger = structlog.get_logger("core.mfa_gate")

OTP_CODE_RE = re.compile(r"[0-9]{6}")

_MESSAGES: dict[str, dict[Language, str]] = {
    "challenge_hint": {
        Language.ENGLISH: "Request a one-time code to continue.",
        Language.SPANISH: "Solicita un código de verificación para continuar.",
    },
    "no_pending": {
        Language.ENGLISH: "There is no pending action that requires MFA.",
        Language.SPANISH: "No hay ninguna acción pendiente que requiera MFA.",
    },
    "invalid_code": {
        Language.ENGLISH: "The OTP code must be exactly 6 numeric digits.",
        Language.SPANISH: "El código OTP debe ser exactamente 6 dígitos numéricos.",
    },
    "stale": {
        Language.ENGLISH: "The pending action changed since it was proposed; review it before confirming.",
        Language.SPANISH: "La acción pendiente cambió desde que fue propuesta; revísala antes de confirmar.",
    },
    "otp_sent": {
        Language.ENGLISH: "A one-time code was sent to the user's registered device. Ask for the 6-digit code.",
        Language.SPANISH: (
            "Se ha enviado un código OTP al dispositivo del usuario. "
            "Pídele al usuario que ingrese el código de 6 dígitos para confirmar la acción."
        ),
    },
    "otp_rejected": {
        Language.ENGLISH: "The OTP code was rejected; the pending action was discarded.",
        Language.SPANISH: "El código OTP fue rechazado; la acción pendiente fue descartada.",
    },
    "cancelled": {
        Language.ENGLISH: "The pending action was cancelled.",
        Language.SPANISH: "La acción pendiente fue cancelada.",
    },
}


def is_valid_code(code: Any) -> bool:
    return isinstance(code, str) and OTP_CODE_RE.fullmatch(code) is not None


class MfaGate:
    def __init__(
        self,
        store: ConversationStore,
        dispatcher: Dispatcher,
        *,
        language: Language = Language.ENGLISH,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.language = language

    def _msg(self, key: str) -> str:
        return _MESSAGES[key][self.language]

    def _no_pending(self) -> DispatchResult:
        return DispatchResult.failure(ErrorKind.NO_PENDING_ACTION, self._msg("no_pending"))

    def _runner(self, credential: str, organization_id: str | None) -> RunCommand:
        org_flag = self.dispatcher.current_organization_flag

        async def run(command: ParsedCommand) -> DispatchResult:
            if organization_id is not None and org_flag not in command.flags:
                command = command.model_copy(update={"flags": {**command.flags, org_flag: organization_id}})
            return await self.dispatcher.dispatch(command, credential)

        return run

    def build_action(self, kind: str, command: ParsedCommand) -> PendingAction:
        """Build a typed pending action; raises KeyError or ValidationError."""

        action_type = PENDING_ACTION_TYPES[kind]
        organization_id = command.flags.get(self.dispatcher.current_organization_flag)
        return action_type.from_command(command, organization_id=organization_id)  # type: ignore[return-value]

    async def propose(self, conversation_id: str, action: PendingAction) -> DispatchResult:
        if self.store.get(conversation_id) is None:
            return DispatchResult.failure(
                ErrorKind.UNKNOWN_CONVERSATION, f"Unknown conversation: {conversation_id}"
            )

        async with self.store.lock(conversation_id):
            replaced = self.store.get_pending(conversation_id)
            version = self.store.set_pending(conversation_id, action)

        logger.info(
            "mfa_proposed",
            conversation_id=conversation_id,
            kind=action.kind,
            version=version,
            replaced=replaced.action.kind if replaced else None,
        )
        return DispatchResult.ok(
            {
                "status": "mfa_required",
                "kind": action.kind,
                "version": version,
                "conversation_id": conversation_id,
                "message": f"{action.describe(self.language)} {self._msg('challenge_hint')}",
                "payload": action.payload.model_dump(exclude_none=True),
            }
        )

    async def propose_command(self, conversation_id: str, command: ParsedCommand, kind: str) -> DispatchResult:
        try:
            action = self.build_action(kind, command)
        except KeyError:
            return DispatchResult.failure(ErrorKind.INVALID_ARGUMENTS, f"Unknown sensitive operation: {kind}")
        except ValidationError as exc:
            return DispatchResult.failure(
                ErrorKind.INVALID_ARGUMENTS,
                f"Invalid arguments for {command.resource} {command.action}",
                data={"errors": exc.errors(include_url=False, include_context=False)},
            )
        return await self.propose(conversation_id, action)

    async def request_verification(self, conversation_id: str, credential: str) -> DispatchResult:
        """Trigger OTP delivery for the staged action; safe to call repeatedly."""

        slot = self.store.get_pending(conversation_id)
        if slot is None:
            return self._no_pending()

        run = self._runner(credential, slot.action.organization_id)
        result = await run(ParsedCommand(resource="otps", action="create"))
        logger.info("mfa_otp_requested", conversation_id=conversation_id, success=result.success)
        if not result.success:
            return result
        return DispatchResult.ok(
            {"status": "otp_sent", "message": self._msg("otp_sent"), "api_result": result.data},
            status=result.status,
            headers=result.headers,
        )

    async def confirm(
        self,
        conversation_id: str,
        code: Any,
        credential: str,
        *,
        expected_version: int | None = None,
    ) -> DispatchResult:
        if self.store.get(conversation_id) is None:
            return self._no_pending()

        async with self.store.lock(conversation_id):
            slot = self.store.get_pending(conversation_id)
            if slot is None:
                return self._no_pending()
            if not is_valid_code(code):
                return DispatchResult.failure(ErrorKind.INVALID_CODE_FORMAT, self._msg("invalid_code"))
            if expected_version is not None and expected_version != slot.version:
                return DispatchResult.failure(
                    ErrorKind.STALE_PENDING_ACTION,
                    self._msg("stale"),
                    data={"expected_version": expected_version, "current_version": slot.version},
                )

            run = self._runner(credential, slot.action.organization_id)
            try:
                validation = await run(ParsedCommand(resource="otps", action="validate", flags={"code": code}))
                if validation.success:
                    result = await slot.action.execute(run, code)
                else:
                    result = validation.model_copy(update={"error": f"{self._msg('otp_rejected')} {validation.error}"})
            finally:
                self.store.clear_pending(conversation_id, expected_version=slot.version)

        logger.info(
            "mfa_confirmed",
            conversation_id=conversation_id,
            kind=slot.action.kind,
            version=slot.version,
            success=result.success,
            status=result.status,
        )
        return result

    async def cancel(self, conversation_id: str) -> DispatchResult:
        if self.store.get(conversation_id) is None:
            return self._no_pending()

        async with self.store.lock(conversation_id):
            slot = self.store.get_pending(conversation_id)
            if slot is None:
                return self._no_pending()
            self.store.clear_pending(conversation_id, expected_version=slot.version)

        logger.info("mfa_cancelled", conversation_id=conversation_id, kind=slot.action.kind)
        return DispatchResult.ok({"status": "cancelled", "kind": slot.action.kind, "message": self._msg("cancelled")})

    def status(self, conversation_id: str) -> DispatchResult:
        slot = self.store.get_pending(conversation_id)
        if slot is None:
            return DispatchResult.ok({"status": "idle"})
        return DispatchResult.ok(
            {
                "status": "staged",
                "kind": slot.action.kind,
                "version": slot.version,
                "created_at": slot.action.created_at.isoformat(),
                "message": slot.action.describe(self.language),
            }
        )
