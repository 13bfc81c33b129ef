"""Acciones sensibles pendientes de confirmación MFA.

Each sensitive operation is one variant of a closed tagged union
(`PendingAction`, discriminated by `kind`) with its own typed payload. A
variant knows three things:

- how to build itself from a parsed command (`from_command`);
- how to describe itself in the challenge shown to the user (`describe`);
- how to replay itself through the dispatcher once the OTP is accepted
  (`execute`).

`execute` receives a `run` callable instead of the dispatcher itself so the
domain layer stays free of services and transport.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Annotated, Any, Awaitable, Callable, ClassVar, Literal, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from core.domain.language import Language
from core.domain.models import DispatchResult, ParsedCommand, utcnow

RunCommand = Callable[[ParsedCommand], Awaitable[DispatchResult]]


def _format_amount(amount: int, language: Language) -> str:
    value = f"{amount / 100:,.2f}"
    if language is Language.SPANISH:
        value = value.replace(",", "_").replace(".", ",").replace("_", ".")
    return value


class _Payload(BaseModel):
    # Parsed flags turn digit-only values into ints; identifiers stay strings.
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore", frozen=True)


class Counterparty(_Payload):
    holder_name: str = Field(..., min_length=1)
    holder_id: str = Field(..., min_length=1, description="RUT or RFC.")
    institution_id: str = Field(..., min_length=1)
    account_type: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)


class TransferPayload(_Payload):
    account_id: str = Field(..., min_length=1)
    amount: int = Field(..., description="Amount in cents.")
    currency: str = Field(..., min_length=1)
    counterparty: Counterparty
    comment: str | None = None
    mode: str = "live"


class WebhookDeletionPayload(_Payload):
    webhook_id: str = Field(..., min_length=1)
    mode: str = "live"


class RefundPayload(_Payload):
    resource_type: str = Field(..., min_length=1)
    resource_id: str = Field(..., min_length=1)
    amount: int | None = None
    mode: str | None = None


class LinkDeletionPayload(_Payload):
    link_id: str = Field(..., min_length=1)
    mode: str = "live"


class InvitationPayload(_Payload):
    name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    organization_role: str = Field(..., min_length=1)
    dashboard_role_name: str | None = None


class MemberDisablePayload(_Payload):
    member_id: str = Field(..., min_length=1)


class PendingActionBase(BaseModel, ABC):
    model_config = ConfigDict(frozen=True)

    kind: str
    created_at: datetime = Field(default_factory=utcnow)
    organization_id: str | None = Field(
        default=None,
        description="Session-scoped organization captured at proposal time.",
    )

    # Flag names read from the positional id when it is present.
    id_field: ClassVar[str | None] = None

    @classmethod
    def payload_from_command(cls, command: ParsedCommand) -> dict[str, Any]:
        data = dict(command.flags)
        if cls.id_field and command.id:
            data[cls.id_field] = command.id
        return data

    @classmethod
    def from_command(cls, command: ParsedCommand, *, organization_id: Any = None) -> "PendingActionBase":
        """Build the action; raises `pydantic.ValidationError` on malformed input."""

        return cls.model_validate(
            {
                "payload": cls.payload_from_command(command),
                "organization_id": None if organization_id is None else str(organization_id),
            }
        )

    @abstractmethod
    def describe(self, language: Language) -> str: ...

    @abstractmethod
    async def execute(self, run: RunCommand, code: str) -> DispatchResult: ...


class CreateTransferAction(PendingActionBase):
    kind: Literal["create_transfer"] = "create_transfer"
    payload: TransferPayload

    def describe(self, language: Language) -> str:
        p = self.payload
        amount = _format_amount(p.amount, language)
        if language is Language.SPANISH:
            return (
                f"Para confirmar la transferencia de ${amount} {p.currency} a "
                f"{p.counterparty.holder_name}, se requiere verificación MFA."
            )
        return (
            f"Confirming the transfer of ${amount} {p.currency} to "
            f"{p.counterparty.holder_name} requires MFA verification."
        )

    async def execute(self, run: RunCommand, code: str) -> DispatchResult:
        body = self.payload.model_dump(exclude={"mode"}, exclude_none=True)
        created = await run(ParsedCommand(resource="transfer-intents", action="create", flags=body))
        if not created.success:
            return created

        intent_id = None
        if isinstance(created.data, dict):
            intent_id = created.data.get("id")
            nested = created.data.get("data")
            if intent_id is None and isinstance(nested, dict):
                intent_id = nested.get("id")
        if not intent_id:
            return created

        return await run(
            ParsedCommand(
                resource="transfer-intents",
                action="batch-review",
                flags={
                    "mode": self.payload.mode,
                    "transfer_intent_ids": [intent_id],
                    "decision": "approve",
                    "otp_code": code,
                },
            )
        )


class DeleteWebhookAction(PendingActionBase):
    kind: Literal["delete_webhook"] = "delete_webhook"
    payload: WebhookDeletionPayload

    id_field: ClassVar[str | None] = "webhook_id"

    def describe(self, language: Language) -> str:
        if language is Language.SPANISH:
            return f"Para eliminar el webhook {self.payload.webhook_id}, se requiere verificación MFA."
        return f"Deleting webhook {self.payload.webhook_id} requires MFA verification."

    async def execute(self, run: RunCommand, code: str) -> DispatchResult:
        return await run(
            ParsedCommand(
                resource="webhook-endpoints",
                action="delete",
                id=self.payload.webhook_id,
                flags={"mode": self.payload.mode},
            )
        )


class CreateRefundAction(PendingActionBase):
    kind: Literal["create_refund"] = "create_refund"
    payload: RefundPayload

    def describe(self, language: Language) -> str:
        if language is Language.SPANISH:
            return f"Para crear el reembolso del recurso {self.payload.resource_id}, se requiere verificación MFA."
        return f"Refunding {self.payload.resource_id} requires MFA verification."

    async def execute(self, run: RunCommand, code: str) -> DispatchResult:
        flags = self.payload.model_dump(exclude_none=True)
        return await run(ParsedCommand(resource="refunds", action="create", flags=flags))


class DeleteBankingLinkAction(PendingActionBase):
    kind: Literal["delete_banking_link"] = "delete_banking_link"
    payload: LinkDeletionPayload

    id_field: ClassVar[str | None] = "link_id"

    def describe(self, language: Language) -> str:
        if language is Language.SPANISH:
            return f"Para eliminar el link bancario {self.payload.link_id}, se requiere verificación MFA."
        return f"Deleting banking link {self.payload.link_id} requires MFA verification."

    async def execute(self, run: RunCommand, code: str) -> DispatchResult:
        return await run(
            ParsedCommand(
                resource="links",
                action="delete",
                id=self.payload.link_id,
                flags={"mode": self.payload.mode},
            )
        )


class InviteTeamMemberAction(PendingActionBase):
    kind: Literal["invite_team_member"] = "invite_team_member"
    payload: InvitationPayload

    def describe(self, language: Language) -> str:
        p = self.payload
        if language is Language.SPANISH:
            return (
                f"Para invitar a {p.name} {p.last_name} ({p.email}) como "
                f"{p.organization_role}, se requiere verificación MFA."
            )
        return (
            f"Inviting {p.name} {p.last_name} ({p.email}) as "
            f"{p.organization_role} requires MFA verification."
        )

    async def execute(self, run: RunCommand, code: str) -> DispatchResult:
        flags = self.payload.model_dump(exclude_none=True)
        return await run(ParsedCommand(resource="organization-users", action="create", flags=flags))


class DisableTeamMemberAction(PendingActionBase):
    kind: Literal["disable_team_member"] = "disable_team_member"
    payload: MemberDisablePayload

    id_field: ClassVar[str | None] = "member_id"

    def describe(self, language: Language) -> str:
        if language is Language.SPANISH:
            return f"Para deshabilitar al miembro {self.payload.member_id}, se requiere verificación MFA."
        return f"Disabling team member {self.payload.member_id} requires MFA verification."

    async def execute(self, run: RunCommand, code: str) -> DispatchResult:
        return await run(
            ParsedCommand(resource="organization-users", action="delete", id=self.payload.member_id)
        )


PendingAction = Annotated[
    Union[
        CreateTransferAction,
        DeleteWebhookAction,
        CreateRefundAction,
        DeleteBankingLinkAction,
        InviteTeamMemberAction,
        DisableTeamMemberAction,
    ],
    Field(discriminator="kind"),
]

PENDING_ACTION_TYPES: dict[str, type[PendingActionBase]] = {
    cls.model_fields["kind"].default: cls
    for cls in (
        CreateTransferAction,
        DeleteWebhookAction,
        CreateRefundAction,
        DeleteBankingLinkAction,
        InviteTeamMemberAction,
        DisableTeamMemberAction,
    )
}
