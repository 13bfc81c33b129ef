"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- `call` y `shell` renderizan resultados exactamente igual.
"""

from __future__ import annotations

from typing import Any

from rich.align import Align
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.models import DispatchResult

_MAX_LISTED = 12


def print_banner(console: Console, *, api_host: str) -> None:
    """Imprime el banner del modo interactivo."""

    title = Text("Fintoc CLI", style="bold cyan")
    subtitle = Text(f"{api_host} • exit/quit para salir", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_error_panel(result: DispatchResult) -> Panel:
    body = Text()
    body.append((result.error or "Unknown error").strip() + "\n")

    data = result.data if isinstance(result.data, dict) else {}
    for key in ("available_commands", "available_resources"):
        items = data.get(key)
        if not items:
            continue
        body.append(f"\n{key.replace('_', ' ').capitalize()}:\n", style="bold")
        for item in items[:_MAX_LISTED]:
            body.append(f"  {item}\n")
        if len(items) > _MAX_LISTED:
            body.append(f"  … {len(items) - _MAX_LISTED} more\n", style="dim")

    errors = data.get("errors")
    if errors:
        body.append("\nErrors:\n", style="bold")
        for err in errors:
            loc = ".".join(str(p) for p in err.get("loc", ()))
            body.append(f"  {loc}: {err.get('msg', '')}\n")

    title_parts = [result.error_kind.value if result.error_kind else "error"]
    if result.status is not None:
        title_parts.append(f"HTTP {result.status}")
    return Panel(body, title=Text(" • ".join(title_parts), style="bold red"), border_style="red")


def build_challenge_panel(data: dict[str, Any], *, program_name: str, interactive: bool) -> Panel:
    """Panel para una acción sensible en espera de MFA."""

    body = Text()
    body.append(str(data.get("message", "")).strip() + "\n\n")

    payload = data.get("payload") or {}
    if payload:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value", style="white")
        for key, value in payload.items():
            table.add_row(key, str(value))

    if interactive:
        body.append(f"Next: mfa request, then mfa confirm <code> --version {data.get('version')}", style="dim")
    else:
        body.append(
            f'Staged actions live in the session; run "{program_name} shell" to confirm it with MFA.',
            style="dim",
        )

    title = Text(f"MFA required • {data.get('kind')}", style="bold yellow")
    if payload:
        return Panel(Group(table, Text(""), body), title=title, border_style="yellow")
    return Panel(body, title=title, border_style="yellow")


def render_result(
    console: Console,
    result: DispatchResult,
    *,
    program_name: str = "fintoc",
    interactive: bool = False,
    as_json: bool = False,
) -> None:
    if as_json:
        console.print_json(result.model_dump_json(exclude={"headers"}, exclude_none=True))
        return

    if not result.success:
        console.print(build_error_panel(result))
        return

    data = result.data
    if isinstance(data, dict):
        if data.get("status") == "mfa_required":
            console.print(build_challenge_panel(data, program_name=program_name, interactive=interactive))
            return
        if isinstance(data.get("text"), str) and set(data) <= {"text", "resources", "resource", "actions"}:
            console.print(data["text"], markup=False, highlight=False)
            return
        if isinstance(data.get("message"), str) and "status" in data:
            console.print(f"[green]{escape(str(data['status']))}[/green] {escape(data['message'])}")
            return

    if data is None:
        console.print(f"[green]OK[/green] (HTTP {result.status})" if result.status else "[green]OK[/green]")
    elif isinstance(data, str):
        console.print(data, markup=False, highlight=False)
    else:
        console.print_json(data=data)
