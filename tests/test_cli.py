from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from adapters.credentials_store import get_auth_file, load_credentials
from cli import doctor
from cli import main as cli_main
from conftest import FakeTransport

runner = CliRunner()


@pytest.fixture
def fake(monkeypatch, tmp_path) -> FakeTransport:
    transport = FakeTransport()
    monkeypatch.setattr(cli_main, "HttpxTransport", lambda settings: transport)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    monkeypatch.delenv("FINTOC_SESSION_TOKEN", raising=False)
    monkeypatch.setenv("FINTOC_CONVERSATION_TTL_SECONDS", "0")
    return transport


@pytest.fixture
def with_token(fake, monkeypatch) -> FakeTransport:
    monkeypatch.setenv("FINTOC_SESSION_TOKEN", "tok_env")
    return fake


def test_help_without_token(fake):
    result = runner.invoke(cli_main.app, ["help"])
    assert result.exit_code == 0
    assert "Fintoc CLI" in result.output
    assert "transfers" in result.output
    assert fake.requests == []


def test_resource_help(fake):
    result = runner.invoke(cli_main.app, ["help", "webhook-endpoints"])
    assert result.exit_code == 0
    assert "webhook-endpoints delete" in result.output


def test_unknown_resource_help_fails(fake):
    result = runner.invoke(cli_main.app, ["help", "spaceships"])
    assert result.exit_code == 1
    assert "unknown_resource" in result.output


def test_call_requires_token(fake):
    result = runner.invoke(cli_main.app, ["call", "transfers", "list"])
    assert result.exit_code == 1
    assert "No session token" in result.output
    assert fake.requests == []


def test_call_dispatches_with_flags(with_token):
    with_token.respond("GET", "/internal/v2/dashboard/transfers/txn_1", body={"id": "txn_1"})

    result = runner.invoke(cli_main.app, ["call", "transfers", "show", "txn_1", "--mode", "live", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["data"] == {"id": "txn_1"}
    [request] = with_token.requests
    assert request.query == {"mode": "live"}
    assert request.credential == "tok_env"


def test_call_keeps_quoted_values(with_token):
    result = runner.invoke(cli_main.app, ["call", "user", "update", "--name", "Ana María"])
    assert result.exit_code == 0, result.output
    assert with_token.requests[0].body == {"name": "Ana María"}


def test_call_remote_failure_exits_1(with_token):
    with_token.respond("GET", "/internal/v2/dashboard/transfers", status=401, body={"error": "unauthorized"})
    result = runner.invoke(cli_main.app, ["call", "transfers", "list"])
    assert result.exit_code == 1
    assert "remote_execution_failure" in result.output


def test_call_sensitive_command_is_only_staged(with_token):
    result = runner.invoke(cli_main.app, ["call", "webhook-endpoints", "delete", "we_1"])
    assert result.exit_code == 0, result.output
    assert "MFA required" in result.output
    assert with_token.requests == []


def test_shell_confirms_staged_action(with_token):
    script = "\n".join(
        [
            "links delete lnk_1 --mode live",
            "mfa request",
            "mfa confirm 123456",
            "mfa status",
            "exit",
        ]
    )
    result = runner.invoke(cli_main.app, ["shell"], input=script + "\n")

    assert result.exit_code == 0, result.output
    assert with_token.paths() == [
        "POST /internal/v1/dashboard/mfa/otp",
        "POST /internal/v1/dashboard/mfa/otp/validate",
        "DELETE /internal/v1/dashboard/links/lnk_1",
    ]
    assert "idle" in result.output


def test_token_whoami_logout(fake):
    saved = runner.invoke(cli_main.app, ["token", "tok_saved", "--email", "ana@example.com"])
    assert saved.exit_code == 0, saved.output
    assert load_credentials().token == "tok_saved"

    whoami = runner.invoke(cli_main.app, ["whoami"])
    assert whoami.exit_code == 0, whoami.output
    assert "ana@example.com" in whoami.output
    assert "active" in whoami.output
    assert fake.requests[-1].credential == "tok_saved"

    logout = runner.invoke(cli_main.app, ["logout"])
    assert logout.exit_code == 0
    assert fake.paths()[-1] == "POST /internal/v1/dashboard/sessions/expire"
    assert not get_auth_file().exists()


def test_whoami_not_logged_in(fake):
    result = runner.invoke(cli_main.app, ["whoami"])
    assert result.exit_code == 1
    assert "Not logged in" in result.output


def test_doctor_offline(fake, monkeypatch):
    async def offline(url, settings):
        return False, "connection refused"

    monkeypatch.setattr(doctor, "_check_http", offline)
    result = runner.invoke(cli_main.app, ["doctor", "run"])
    assert result.exit_code == 0, result.output
    assert "Route table" in result.output
    assert "MISSING" in result.output


def test_run_forwards_resource_commands(fake, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli_main.run(["transfers", "help"])
    assert excinfo.value.code == 0
    assert "fintoc transfers list" in capsys.readouterr().out


def test_run_without_arguments_shows_help(fake, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli_main.run([])
    assert excinfo.value.code == 0
    assert "Fintoc CLI" in capsys.readouterr().out
