from __future__ import annotations

import asyncio

import pytest

from conftest import TOKEN
from core.domain.errors import ErrorKind
from core.domain.language import Language
from core.domain.models import ParsedCommand, TransportRequest, TransportResponse
from core.domain.pending import CreateTransferAction, DeleteWebhookAction, PendingActionBase
from core.services.dispatcher import Dispatcher
from core.services.mfa_gate import MfaGate, is_valid_code
from core.services.parser import parse_command

OTP = "/internal/v1/dashboard/mfa/otp"
OTP_VALIDATE = "/internal/v1/dashboard/mfa/otp/validate"
WEBHOOK = "/internal/v1/dashboard/webhook_endpoints/we_1"


def _delete_webhook(webhook_id: str = "we_1", **flags) -> DeleteWebhookAction:
    return DeleteWebhookAction.from_command(
        ParsedCommand(resource="webhook-endpoints", action="delete", id=webhook_id, flags=flags)
    )


@pytest.mark.parametrize(
    "code,valid",
    [("123456", True), ("000000", True), ("12345", False), ("1234567", False), ("12a456", False), (123456, False), (None, False)],
)
def test_code_format(code, valid):
    assert is_valid_code(code) is valid


@pytest.mark.asyncio
async def test_propose_stages_without_network(gate, store, transport, conversation_id):
    result = await gate.propose(conversation_id, _delete_webhook())

    assert result.success
    assert result.data["status"] == "mfa_required"
    assert result.data["kind"] == "delete_webhook"
    assert result.data["version"] == store.get_pending(conversation_id).version
    assert "we_1" in result.data["message"]
    assert transport.requests == []


@pytest.mark.asyncio
async def test_propose_overwrites_previous(gate, store, conversation_id):
    first = await gate.propose(conversation_id, _delete_webhook("we_1"))
    second = await gate.propose(conversation_id, _delete_webhook("we_2"))

    slot = store.get_pending(conversation_id)
    assert slot.action.payload.webhook_id == "we_2"
    assert second.data["version"] > first.data["version"]


@pytest.mark.asyncio
async def test_propose_unknown_conversation(gate):
    result = await gate.propose("nope", _delete_webhook())
    assert result.error_kind is ErrorKind.UNKNOWN_CONVERSATION


@pytest.mark.asyncio
async def test_propose_command_rejects_malformed_arguments(gate, store, conversation_id):
    command = parse_command("transfer-intents create --amount 1000 --currency CLP")
    result = await gate.propose_command(conversation_id, command, "create_transfer")

    assert not result.success
    assert result.error_kind is ErrorKind.INVALID_ARGUMENTS
    locations = {tuple(e["loc"]) for e in result.data["errors"]}
    assert ("payload", "account_id") in locations
    assert store.get_pending(conversation_id) is None


@pytest.mark.asyncio
async def test_request_verification_requires_pending(gate, transport, conversation_id):
    result = await gate.request_verification(conversation_id, TOKEN)
    assert result.error_kind is ErrorKind.NO_PENDING_ACTION
    assert transport.requests == []


@pytest.mark.asyncio
async def test_request_verification_is_idempotent(gate, store, transport, conversation_id):
    await gate.propose(conversation_id, _delete_webhook())
    transport.respond("POST", OTP, body={"sent": True})

    first = await gate.request_verification(conversation_id, TOKEN)
    second = await gate.request_verification(conversation_id, TOKEN)

    assert first.success and second.success
    assert first.data["status"] == "otp_sent"
    assert first.data["api_result"] == {"sent": True}
    assert transport.paths() == [f"POST {OTP}", f"POST {OTP}"]
    assert store.get_pending(conversation_id) is not None


@pytest.mark.asyncio
async def test_confirm_requires_pending(gate, transport, conversation_id):
    result = await gate.confirm(conversation_id, "123456", TOKEN)
    assert result.error_kind is ErrorKind.NO_PENDING_ACTION
    assert transport.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["12345", "abcdef", "1234567", ""])
async def test_confirm_invalid_format_keeps_stage(gate, store, transport, conversation_id, code):
    await gate.propose(conversation_id, _delete_webhook())

    result = await gate.confirm(conversation_id, code, TOKEN)

    assert result.error_kind is ErrorKind.INVALID_CODE_FORMAT
    assert store.get_pending(conversation_id) is not None
    assert transport.requests == []


@pytest.mark.asyncio
async def test_confirm_runs_action_once_and_clears(gate, store, transport, conversation_id):
    await gate.propose(conversation_id, _delete_webhook(mode="test"))
    transport.respond("DELETE", WEBHOOK, body={"deleted": True})

    result = await gate.confirm(conversation_id, "123456", TOKEN)

    assert result.success
    assert result.data == {"deleted": True}
    assert transport.paths() == [f"POST {OTP_VALIDATE}", f"DELETE {WEBHOOK}"]
    assert transport.requests[0].body == {"code": "123456"}
    assert transport.requests[1].query == {"mode": "test"}
    assert store.get_pending(conversation_id) is None

    again = await gate.confirm(conversation_id, "123456", TOKEN)
    assert again.error_kind is ErrorKind.NO_PENDING_ACTION
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_confirm_stale_version_keeps_stage(gate, store, transport, conversation_id):
    challenge = await gate.propose(conversation_id, _delete_webhook("we_1"))
    await gate.propose(conversation_id, _delete_webhook("we_2"))

    result = await gate.confirm(conversation_id, "123456", TOKEN, expected_version=challenge.data["version"])

    assert result.error_kind is ErrorKind.STALE_PENDING_ACTION
    assert store.get_pending(conversation_id).action.payload.webhook_id == "we_2"
    assert transport.requests == []


@pytest.mark.asyncio
async def test_rejected_otp_skips_action_and_clears(gate, store, transport, conversation_id):
    await gate.propose(conversation_id, _delete_webhook())
    transport.respond("POST", OTP_VALIDATE, status=422, body={"error": {"message": "invalid code"}})

    result = await gate.confirm(conversation_id, "123456", TOKEN)

    assert not result.success
    assert result.error_kind is ErrorKind.REMOTE_EXECUTION_FAILURE
    assert "invalid code" in result.error
    assert transport.paths() == [f"POST {OTP_VALIDATE}"]
    assert store.get_pending(conversation_id) is None


@pytest.mark.asyncio
async def test_failed_execution_still_clears(gate, store, transport, conversation_id):
    await gate.propose(conversation_id, _delete_webhook())
    transport.respond("DELETE", WEBHOOK, status=500, body={"error": "boom"})

    result = await gate.confirm(conversation_id, "123456", TOKEN)

    assert result.error_kind is ErrorKind.REMOTE_EXECUTION_FAILURE
    assert result.status == 500
    assert store.get_pending(conversation_id) is None


@pytest.mark.asyncio
async def test_transfer_creates_then_approves_with_code(gate, transport, conversation_id):
    command = parse_command(
        "transfer-intents create --account_id acc_1 --amount 150000 --currency CLP "
        "--counterparty.holder_name 'Ana Pérez' --counterparty.holder_id 11111111-1 "
        "--counterparty.institution_id cl_banco_estado --counterparty.account_type checking_account "
        "--counterparty.account_number 123456789 --comment rent --mode test"
    )
    challenge = await gate.propose_command(conversation_id, command, "create_transfer")
    assert challenge.success
    assert "1,500.00 CLP" in challenge.data["message"]
    assert "Ana Pérez" in challenge.data["message"]

    transport.respond("POST", "/internal/v2/dashboard/transfer_intents", status=201, body={"id": "ti_1"})
    result = await gate.confirm(conversation_id, "654321", TOKEN, expected_version=challenge.data["version"])

    assert result.success
    assert transport.paths() == [
        f"POST {OTP_VALIDATE}",
        "POST /internal/v2/dashboard/transfer_intents",
        "POST /internal/v2/dashboard/transfer_intents/batch_review",
    ]
    create, review = transport.requests[1], transport.requests[2]
    assert create.body["counterparty"]["account_number"] == "123456789"
    assert create.body["amount"] == 150000
    assert "mode" not in create.body
    assert review.body == {
        "mode": "test",
        "transfer_intent_ids": ["ti_1"],
        "decision": "approve",
        "otp_code": "654321",
    }


@pytest.mark.asyncio
async def test_transfer_stops_when_create_fails(gate, transport, conversation_id):
    action = CreateTransferAction.model_validate(
        {
            "payload": {
                "account_id": "acc_1",
                "amount": 100,
                "currency": "MXN",
                "counterparty": {
                    "holder_name": "Luis",
                    "holder_id": "RFC1",
                    "institution_id": "mx_1",
                    "account_type": "clabe",
                    "account_number": "0123",
                },
            }
        }
    )
    await gate.propose(conversation_id, action)
    transport.respond("POST", "/internal/v2/dashboard/transfer_intents", status=400, body={"error": "nope"})

    result = await gate.confirm(conversation_id, "111111", TOKEN)

    assert result.error_kind is ErrorKind.REMOTE_EXECUTION_FAILURE
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_organization_is_replayed_on_every_call(gate, transport, conversation_id):
    command = parse_command("webhook-endpoints delete we_1 --current_organization_id org_7")
    await gate.propose_command(conversation_id, command, "delete_webhook")

    await gate.request_verification(conversation_id, TOKEN)
    await gate.confirm(conversation_id, "123456", TOKEN)

    assert [r.query.get("current_organization_id") for r in transport.requests] == ["org_7"] * 3


@pytest.mark.asyncio
async def test_cancel(gate, store, conversation_id):
    assert (await gate.cancel(conversation_id)).error_kind is ErrorKind.NO_PENDING_ACTION

    await gate.propose(conversation_id, _delete_webhook())
    result = await gate.cancel(conversation_id)

    assert result.success
    assert result.data["status"] == "cancelled"
    assert store.get_pending(conversation_id) is None


@pytest.mark.asyncio
async def test_status(gate, conversation_id):
    assert gate.status(conversation_id).data == {"status": "idle"}
    await gate.propose(conversation_id, _delete_webhook())
    data = gate.status(conversation_id).data
    assert data["status"] == "staged"
    assert data["kind"] == "delete_webhook"


@pytest.mark.asyncio
async def test_spanish_messages(store, dispatcher, conversation_id):
    gate = MfaGate(store, dispatcher, language=Language.SPANISH)
    result = await gate.confirm(conversation_id, "123456", TOKEN)
    assert result.error == "No hay ninguna acción pendiente que requiera MFA."


class GatedTransport:
    """Blocks OTP validation until released, so a proposal can race a confirmation."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.entered = asyncio.Event()
        self.requests: list[TransportRequest] = []

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        if request.path == OTP_VALIDATE:
            self.entered.set()
            await self.release.wait()
        return TransportResponse(status=200, body={})


@pytest.mark.asyncio
async def test_proposal_waits_for_inflight_confirmation(registry, store, conversation_id):
    transport = GatedTransport()
    gate = MfaGate(store, Dispatcher(registry, transport))
    await gate.propose(conversation_id, _delete_webhook("we_1"))

    confirming = asyncio.create_task(gate.confirm(conversation_id, "123456", TOKEN))
    await transport.entered.wait()
    proposing = asyncio.create_task(gate.propose(conversation_id, _delete_webhook("we_2")))
    await asyncio.sleep(0)
    assert not proposing.done()

    transport.release.set()
    confirmed = await confirming
    await proposing

    assert confirmed.success
    deleted = [r.path for r in transport.requests if r.method.value == "DELETE"]
    assert deleted == [WEBHOOK]
    assert store.get_pending(conversation_id).action.payload.webhook_id == "we_2"


def test_pending_action_base_is_abstract():
    with pytest.raises(TypeError):
        PendingActionBase(kind="noop")


@pytest.mark.asyncio
async def test_unknown_conversation_leaves_no_locks_behind(gate, store, transport):
    for i in range(100):
        confirmed = await gate.confirm(f"nope{i}", "123456", TOKEN)
        cancelled = await gate.cancel(f"nope{i}")
        assert confirmed.error_kind is ErrorKind.NO_PENDING_ACTION
        assert cancelled.error_kind is ErrorKind.NO_PENDING_ACTION

    assert store._locks == {}
    assert transport.requests == []
