"""CLI principal (Typer + Rich).

Uso:
    fintoc <resource> <action> [<id>] [--flag value ...]
    fintoc help [<resource>]
    fintoc shell
    fintoc token <value> [--email you@example.com]
    fintoc whoami | logout
    fintoc doctor run

Anything that is not a subcommand is forwarded to `call`, so the route table
(and not Typer) decides which `<resource> <action>` pairs exist.
"""

from __future__ import annotations

import asyncio
import sys

import structlog
import typer
from rich.console import Console

from adapters.conversation_store import InMemoryConversationStore
from adapters.credentials_store import (
    StoredCredentials,
    clear_credentials,
    load_credentials,
    resolve_session_token,
    save_credentials,
)
from adapters.http_client import HttpxTransport
from cli import doctor
from cli.ui_components import print_banner, render_result
from core.config import AppSettings
from core.domain.models import DispatchResult, ParsedCommand
from core.interfaces.transport import Transport
from core.logging import configure_logging
from core.services.command_session import CommandSession
from core.services.dispatcher import Dispatcher
from core.services.mfa_gate import MfaGate
from core.services.parser import join_tokens, parse_command
from core.services.route_registry import default_route_registry

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    help="Fintoc dashboard API from the command line.",
)
app.add_typer(doctor.app, name="doctor")

console = Console()
err_console = Console(stderr=True)
logger = structlog.get_logger("cli")

_EXIT_WORDS = {"exit", "quit", ":q"}
_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


def build_session(
    settings: AppSettings,
    credential: str,
    *,
    transport: Transport | None = None,
) -> CommandSession:
    """Ensambla registro, transporte, dispatcher, store y gate en una sesión."""

    registry = default_route_registry(settings.program_name)
    dispatcher = Dispatcher(
        registry,
        transport or HttpxTransport(settings),
        current_organization_flag=settings.current_organization_flag,
    )
    store = InMemoryConversationStore(ttl_seconds=settings.conversation_ttl_seconds)
    gate = MfaGate(store, dispatcher, language=settings.default_language)
    return CommandSession(dispatcher, gate, store, credential)


def _require_token(settings: AppSettings) -> str:
    token = resolve_session_token(settings)
    if not token:
        err_console.print(
            '[red]No session token.[/red] Run "fintoc token <value>" or set FINTOC_SESSION_TOKEN.'
        )
        raise typer.Exit(code=1)
    return token


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logs on stderr."),
) -> None:
    settings = AppSettings()
    configure_logging("DEBUG" if verbose else settings.log_level, json_logs=settings.json_logs)


@app.command(context_settings=_PASSTHROUGH)
def call(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON."),
) -> None:
    """Run `<resource> <action> [<id>] [--flags]` against the API."""

    settings = AppSettings()
    text = join_tokens(ctx.args)
    command = parse_command(text, program_name=settings.program_name)

    session = build_session(settings, "")
    if not session.dispatcher.is_help(command):
        session.credential = _require_token(settings)

    _, result = asyncio.run(session.execute(text))
    render_result(console, result, program_name=settings.program_name, as_json=as_json)
    if not result.success:
        raise typer.Exit(code=1)


@app.command(name="help")
def help_command(resource: str = typer.Argument(None, help="Resource to describe.")) -> None:
    """Show all resources, or the actions of one resource."""

    settings = AppSettings()
    session = build_session(settings, "")
    text = join_tokens([resource, "help"]) if resource else "help"
    _, result = asyncio.run(session.execute(text))
    render_result(console, result, program_name=settings.program_name)
    if not result.success:
        raise typer.Exit(code=1)


async def _shell_loop(session: CommandSession, settings: AppSettings) -> None:
    conversation_id = session.start()
    prompt = f"[bold cyan]{settings.program_name}>[/bold cyan] "
    while True:
        try:
            line = console.input(prompt).strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if not line:
            continue
        if line.lower() in _EXIT_WORDS:
            break

        conversation_id, result = await session.execute(line, conversation_id)
        render_result(console, result, program_name=settings.program_name, interactive=True)


@app.command()
def shell() -> None:
    """Interactive session; staged actions can be confirmed with `mfa confirm <code>`."""

    settings = AppSettings()
    session = build_session(settings, _require_token(settings))
    print_banner(console, api_host=settings.api_host)
    asyncio.run(_shell_loop(session, settings))


@app.command()
def token(
    value: str = typer.Argument(..., help="Session token (X-Session-Token)."),
    email: str = typer.Option(None, "--email", help="Account email, for display only."),
) -> None:
    """Store a session token in the user config dir."""

    settings = AppSettings()
    path = save_credentials(StoredCredentials(token=value, email=email, api_host=settings.api_host))
    logger.info("credentials_saved", path=str(path))
    console.print(f"[green]Saved credentials to:[/green] {path}")


@app.command()
def whoami() -> None:
    """Show the stored credentials and whether the session is active."""

    settings = AppSettings()
    stored = load_credentials()
    token_value = resolve_session_token(settings)
    if not token_value:
        console.print('Not logged in. Run "fintoc token <value>".')
        raise typer.Exit(code=1)

    session = build_session(settings, token_value)
    result: DispatchResult = asyncio.run(
        session.dispatcher.dispatch(ParsedCommand(resource="user", action="show"), token_value)
    )
    console.print(f"Email:   {stored.email if stored and stored.email else '-'}")
    console.print(f"API:     {stored.api_host if stored and stored.api_host else settings.api_host}")
    console.print(f"Session: {'active' if result.success else 'expired'}")
    if stored:
        console.print(f"Since:   {stored.created_at.isoformat()}")


@app.command()
def logout() -> None:
    """Expire the session (best-effort) and remove stored credentials."""

    settings = AppSettings()
    stored = load_credentials()
    if stored is None:
        console.print("Not logged in.")
        return

    session = build_session(settings, stored.token)
    result = asyncio.run(
        session.dispatcher.dispatch(ParsedCommand(resource="sessions", action="expire"), stored.token)
    )
    if not result.success:
        console.print("[yellow]Could not expire session[/yellow] (it may have already expired).")
    clear_credentials()
    console.print("Logged out. Credentials removed.")


def _known_commands() -> set[str]:
    names = {"doctor"}
    for info in app.registered_commands:
        names.add(info.name or info.callback.__name__)  # type: ignore[union-attr]
    return names


def run(argv: list[str] | None = None) -> None:
    """Entry point: `fintoc transfers list` is shorthand for `fintoc call transfers list`."""

    args = list(sys.argv[1:] if argv is None else argv)
    start = 0
    while start < len(args) and args[start] in ("-v", "--verbose"):
        start += 1
    if start == len(args):
        args.append("help")
    if start < len(args) and not args[start].startswith("-") and args[start] not in _known_commands():
        args.insert(start, "call")
    app(args=args, prog_name="fintoc")
