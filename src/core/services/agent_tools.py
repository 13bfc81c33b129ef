"""Herramientas para un agente conversacional (function calling).

Cada herramienta expone nombre, descripción y un JSON schema derivado de un
modelo Pydantic; el handler devuelve texto JSON listo para devolver al modelo.
The language-model loop itself lives outside this package: it only needs
`ToolSpec.as_function()` to advertise the tools and `call_tool` to run one.

All tools of one `build_tools` call share a single conversation, which is
what ties a proposal to the `confirm_mfa` that later executes it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Sequence

import structlog
from pydantic import BaseModel, Field, ValidationError

from core.domain.errors import ErrorKind
from core.domain.models import DispatchResult, ParsedCommand
from core.services.command_session import CommandSession, result_as_json

logger = structlog.get_logger("core.agent_tools")

Mode = Literal["live", "test"]


class RunCommandArgs(BaseModel):
    command: str = Field(
        ...,
        min_length=1,
        description='CLI command, e.g. "transfers list --mode live --limit 10". Run "help" to list commands.',
    )


class RequestMfaArgs(BaseModel):
    action_summary: str | None = Field(
        default=None,
        description="Brief description of the pending action that requires MFA verification",
    )


class ConfirmMfaArgs(BaseModel):
    otp_code: str = Field(..., description="The 6-digit OTP code provided by the user")
    version: int | None = Field(
        default=None,
        description="Version returned by the mfa_required challenge; rejects the code if the action changed.",
    )


class CancelMfaArgs(BaseModel):
    pass


class CreateTransferArgs(BaseModel):
    account_id: str = Field(..., description="Account ID to send from")
    amount: int = Field(..., description="Amount in cents")
    currency: Literal["CLP", "MXN"] = Field(..., description="Currency")
    counterparty_holder_name: str = Field(..., description="Recipient's full name")
    counterparty_holder_id: str = Field(..., description="Recipient's RUT or RFC")
    counterparty_institution_id: str = Field(..., description="Recipient's bank institution ID")
    counterparty_account_type: str = Field(..., description="Recipient's account type")
    counterparty_account_number: str = Field(..., description="Recipient's account number")
    comment: str | None = Field(default=None, description="Optional comment")
    mode: Mode | None = Field(default=None, description="Environment mode")

    def to_flags(self) -> dict[str, Any]:
        flags: dict[str, Any] = {
            "account_id": self.account_id,
            "amount": self.amount,
            "currency": self.currency,
            "counterparty": {
                "holder_name": self.counterparty_holder_name,
                "holder_id": self.counterparty_holder_id,
                "institution_id": self.counterparty_institution_id,
                "account_type": self.counterparty_account_type,
                "account_number": self.counterparty_account_number,
            },
            "mode": self.mode or "live",
        }
        if self.comment:
            flags["comment"] = self.comment
        return flags


class DeleteWebhookArgs(BaseModel):
    webhook_id: str = Field(..., description="The webhook endpoint ID to delete")
    mode: Mode | None = Field(default=None, description="Environment mode")


class CreateRefundArgs(BaseModel):
    resource_type: str = Field(..., description="Resource type to refund (e.g. payment_intent)")
    resource_id: str = Field(..., description="The resource ID to refund")
    amount: int | None = Field(default=None, description="Amount to refund (partial refund)")
    mode: Mode | None = Field(default=None, description="Environment mode")


class DeleteBankingLinkArgs(BaseModel):
    link_id: str = Field(..., description="The banking link ID to delete")
    mode: Mode | None = Field(default=None, description="Environment mode")


class InviteTeamMemberArgs(BaseModel):
    name: str = Field(..., description="Name of the person to invite")
    last_name: str = Field(..., description="Last name of the person to invite")
    email: str = Field(..., description="Email of the person to invite")
    organization_role: str = Field(..., description="Organization role to assign")
    dashboard_role_name: str | None = Field(default=None, description="Dashboard role name")


class DisableTeamMemberArgs(BaseModel):
    member_id: str = Field(..., description="The organization user ID to delete/disable")


ToolHandler = Callable[[Any], Awaitable[str]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: ToolHandler

    @property
    def parameters(self) -> dict[str, Any]:
        return self.args_model.model_json_schema()

    def as_function(self) -> dict[str, Any]:
        """Shape expected by OpenAI-compatible chat completion APIs."""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# (tool name, "<resource> <action>" of the staged route, args model, description)
_SENSITIVE_TOOLS: tuple[tuple[str, str, type[BaseModel], str], ...] = (
    (
        "create_transfer",
        "transfer-intents create",
        CreateTransferArgs,
        "Create a new outbound transfer intent. Requires MFA verification before approval.",
    ),
    (
        "delete_webhook",
        "webhook-endpoints delete",
        DeleteWebhookArgs,
        "Delete a webhook endpoint by ID. Requires MFA verification.",
    ),
    (
        "create_refund",
        "refunds create",
        CreateRefundArgs,
        "Create a refund for a payment. Requires MFA verification.",
    ),
    (
        "delete_banking_link",
        "links delete",
        DeleteBankingLinkArgs,
        "Delete a banking link by ID. Requires MFA verification.",
    ),
    (
        "invite_team_member",
        "organization-users create",
        InviteTeamMemberArgs,
        "Invite a new member to the organization. Requires MFA verification.",
    ),
    (
        "disable_team_member",
        "organization-users delete",
        DisableTeamMemberArgs,
        "Disable (remove) a member of the organization. Requires MFA verification.",
    ),
)


def _flags_for(args: BaseModel) -> dict[str, Any]:
    if isinstance(args, CreateTransferArgs):
        return args.to_flags()
    return args.model_dump(exclude_none=True)


def build_tools(session: CommandSession, conversation_id: str | None = None) -> list[ToolSpec]:
    """Tools bound to one conversation (created when missing or unknown)."""

    conversation_id = session.start(conversation_id)

    def as_json(result: DispatchResult) -> str:
        return result_as_json(result, conversation_id=conversation_id)

    async def run_command(args: RunCommandArgs) -> str:
        _, result = await session.execute(args.command, conversation_id)
        return as_json(result)

    async def request_mfa(args: RequestMfaArgs) -> str:
        _, result = await session.execute("mfa request", conversation_id)
        return as_json(result)

    async def confirm_mfa(args: ConfirmMfaArgs) -> str:
        command = ParsedCommand(resource="mfa", action="confirm")
        result = await session.gate.confirm(
            conversation_id,
            args.otp_code,
            session.credential,
            expected_version=args.version,
        )
        session.record(conversation_id, command, result)
        return as_json(result)

    async def cancel_mfa(args: CancelMfaArgs) -> str:
        _, result = await session.execute("mfa cancel", conversation_id)
        return as_json(result)

    def sensitive_handler(route_command: str) -> ToolHandler:
        resource, action = route_command.split(" ", 1)

        async def handler(args: BaseModel) -> str:
            route = session.dispatcher.registry.lookup(resource, action)
            if route is None or route.mfa_kind is None:
                raise LookupError(f"{route_command} is not a sensitive route")
            command = ParsedCommand(resource=resource, action=action, flags=_flags_for(args))
            result = await session.gate.propose_command(conversation_id, command, route.mfa_kind)
            session.record(conversation_id, command, result)
            return as_json(result)

        return handler

    tools = [
        ToolSpec(
            name="run_command",
            description=(
                "Run any Fintoc CLI command against the dashboard API. "
                "Sensitive commands are staged and return mfa_required."
            ),
            args_model=RunCommandArgs,
            handler=run_command,
        ),
        ToolSpec(
            name="request_mfa",
            description=(
                "Initiates MFA verification for a pending action. Sends an OTP code to the user's "
                "registered device. Call this after a tool returns mfa_required status."
            ),
            args_model=RequestMfaArgs,
            handler=request_mfa,
        ),
        ToolSpec(
            name="confirm_mfa",
            description=(
                "Confirms MFA verification with the 6-digit OTP code. On success, executes the pending action."
            ),
            args_model=ConfirmMfaArgs,
            handler=confirm_mfa,
        ),
        ToolSpec(
            name="cancel_mfa",
            description="Discards the pending action without executing it.",
            args_model=CancelMfaArgs,
            handler=cancel_mfa,
        ),
    ]
    for name, route_command, args_model, description in _SENSITIVE_TOOLS:
        tools.append(
            ToolSpec(
                name=name,
                description=description,
                args_model=args_model,
                handler=sensitive_handler(route_command),
            )
        )
    return tools


async def call_tool(tools: Sequence[ToolSpec], name: str, arguments_json: str | None) -> str:
    """Validate the JSON arguments and run the named tool; errors come back as JSON text."""

    tool = next((t for t in tools if t.name == name), None)
    if tool is None:
        return json.dumps(
            {
                "success": False,
                "error_kind": ErrorKind.UNKNOWN_COMMAND.value,
                "error": f"Unknown tool: {name}",
                "available_tools": [t.name for t in tools],
            }
        )

    try:
        args = tool.args_model.model_validate_json(arguments_json or "{}")
    except ValidationError as exc:
        logger.info("tool_arguments_rejected", tool=name, errors=exc.error_count())
        return json.dumps(
            {
                "success": False,
                "error_kind": ErrorKind.INVALID_ARGUMENTS.value,
                "error": f"Invalid arguments for {name}",
                "errors": exc.errors(include_url=False, include_context=False, include_input=False),
            },
            ensure_ascii=False,
        )

    logger.debug("tool_called", tool=name)
    return await tool.handler(args)
