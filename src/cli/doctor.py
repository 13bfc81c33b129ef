"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.credentials_store import get_auth_file, load_credentials, resolve_session_token
from adapters.http_client import HttpxTransport, build_async_client
from core.config import AppSettings, get_user_env_file
from core.domain.models import ParsedCommand
from core.services.dispatcher import Dispatcher
from core.services.route_registry import default_route_registry

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_http(url: str, settings: AppSettings) -> tuple[bool, str]:
    try:
        async with build_async_client(settings) as client:
            response = await client.get(url)
        return True, f"HTTP {response.status_code}"
    except Exception as exc:
        return False, str(exc) or exc.__class__.__name__


async def _check_session(settings: AppSettings, token: str) -> tuple[bool, str]:
    registry = default_route_registry(settings.program_name)
    dispatcher = Dispatcher(
        registry,
        HttpxTransport(settings),
        current_organization_flag=settings.current_organization_flag,
    )
    result = await dispatcher.dispatch(ParsedCommand(resource="user", action="show"), token)
    if result.success:
        return True, f"HTTP {result.status}"
    return False, result.error or "unknown error"


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="Fintoc CLI Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Config
    table.add_row("API host", "OK", settings.api_host)
    env_file = get_user_env_file()
    table.add_row("User .env", "OK" if env_file.exists() else "OPTIONAL", str(env_file))
    table.add_row("MFA language", "OK", settings.default_language.label())

    try:
        registry = default_route_registry(settings.program_name)
        sensitive = sum(1 for route in registry if route.mfa_kind)
        table.add_row("Route table", "OK", f"{len(registry)} commands, {sensitive} behind MFA")
    except Exception as exc:
        table.add_row("Route table", "FAIL", str(exc))

    # Credentials
    stored = load_credentials()
    token = resolve_session_token(settings)
    if settings.session_token:
        table.add_row("Session token", "OK", "FINTOC_SESSION_TOKEN")
    elif stored:
        table.add_row("Session token", "OK", f"{get_auth_file()} ({stored.email or 'no email'})")
    else:
        table.add_row("Session token", "MISSING", 'Run "fintoc token <value>"')

    # Connectivity (best-effort)
    ok_http, detail_http = asyncio.run(_check_http(settings.api_host, settings))
    table.add_row("HTTP connectivity", "OK" if ok_http else "FAIL", detail_http)

    ok_session = False
    if token and ok_http:
        ok_session, detail_session = asyncio.run(_check_session(settings, token))
        table.add_row("Session", "OK" if ok_session else "FAIL", detail_session)

    _console.print(table)

    if not ok_http:
        _console.print(
            "\n[yellow]Note:[/yellow] Set FINTOC_API_HOST (env or user .env) to the dashboard API base URL."
        )
    elif token and not ok_session:
        _console.print("\n[yellow]Note:[/yellow] The session token was rejected; store a fresh one with `fintoc token`.")
