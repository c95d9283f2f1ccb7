"""CLI commands for the worksheets system.

Authoring:
- new, show, add-page, add-tool: create and inspect exercises
- lock / unlock: confirmed lifecycle transitions

Respondents:
- assign, responses: hand out and list responses
- answer, submit: fill in and submit a response

Server:
- init-db, serve
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from worksheets.config.app_config import load_app_config
from worksheets.core.alerts import AlertLog, Severity
from worksheets.core.authoring import AuthoringSession
from worksheets.core.exercise import Exercise
from worksheets.core.locking import TransitionRequest
from worksheets.core.tools import ToolType, contract_for
from worksheets.core.worksheet import WorksheetSession
from worksheets.db.database import init_db
from worksheets.services.base import ServiceError
from worksheets.services.local import LocalExerciseService

app = typer.Typer(
    name="worksheets",
    help="Author, lock and fill in multi-page exercise worksheets.",
    no_args_is_help=True,
)

console = Console()

DB_PATH_ENV = "WORKSHEETS_DB_PATH"

SEVERITY_STYLES = {
    Severity.SUCCESS: "green",
    Severity.INFO: "blue",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}
SEVERITY_ICONS = {
    Severity.SUCCESS: "✓",
    Severity.INFO: "ℹ",
    Severity.WARNING: "⚠",
    Severity.ERROR: "✗",
}


def _db_path() -> Path:
    return Path(os.environ.get(DB_PATH_ENV) or load_app_config().storage.db_path)


def _service() -> LocalExerciseService:
    init_db(_db_path())
    return LocalExerciseService()


def _print_alerts(alerts: AlertLog) -> None:
    for alert in alerts.alerts:
        style = SEVERITY_STYLES[alert.severity]
        console.print(f"[{style}]{SEVERITY_ICONS[alert.severity]} {alert.message}[/{style}]")


def _has_errors(alerts: AlertLog) -> bool:
    return any(a.severity in (Severity.WARNING, Severity.ERROR) for a in alerts.alerts)


async def _load_session(exercise_id: str, alerts: AlertLog) -> AuthoringSession:
    session = await AuthoringSession.load(_service(), exercise_id, alerts=alerts)
    if session is None:
        _print_alerts(alerts)
        raise typer.Exit(code=1)
    return session


def _render_exercise(exercise: Exercise) -> None:
    state = "[red]LOCKED[/red]" if exercise.is_locked else "[green]DRAFT[/green]"
    console.print(f"[bold]Exercise {exercise.id}[/bold]  {state}")
    if exercise.activity_id:
        console.print(f"  [dim]activity:[/dim] {exercise.activity_id}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Page", justify="right")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Details")

    for page in exercise.pages:
        if not page.tools:
            table.add_row(str(page.index + 1), "", "[dim](no tools)[/dim]", "", "")
        for tool in page.tools:
            contract = contract_for(tool.tool_type)
            details = ""
            if tool.options:
                details = ", ".join(tool.options)
            elif tool.kind == ToolType.CHAT_BOT:
                limit = tool.max_chat_count if tool.max_chat_count is not None else "∞"
                details = f"limit {limit}: {tool.chat_bot_instructions[:60]}"
            table.add_row(
                str(page.index + 1),
                str(tool.index),
                contract.label,
                tool.unique_name,
                details,
            )
    console.print(table)


# =============================================================================
# SERVER
# =============================================================================


@app.command(name="init-db")
def init_database(
    db: Path | None = typer.Option(None, "--db", help="Database file (default from config)"),
) -> None:
    """Create the SQLite database and its tables."""
    path = db or _db_path()
    init_db(path)
    console.print(f"[green]✓ Database ready at {path}[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Web API with uvicorn."""
    import uvicorn

    console.print(f"[blue]Serving Worksheets API on http://{host}:{port}[/blue]")
    uvicorn.run("worksheets.web.api:app", host=host, port=port, reload=reload)


# =============================================================================
# AUTHORING
# =============================================================================


@app.command()
def new(
    activity_id: str = typer.Argument(..., help="Activity the exercise belongs to"),
) -> None:
    """Create a one-page draft exercise."""
    alerts = AlertLog()
    session = asyncio.run(AuthoringSession.create(_service(), activity_id, alerts=alerts))
    if session is None:
        _print_alerts(alerts)
        raise typer.Exit(code=1)
    console.print("[green]✓ Exercise created[/green]")
    console.print(f"  [dim]exercise_id:[/dim] {session.exercise.id}")


@app.command()
def show(exercise_id: str = typer.Argument(..., help="Exercise ID")) -> None:
    """Show the pages and tools of an exercise."""
    alerts = AlertLog()
    session = asyncio.run(_load_session(exercise_id, alerts))
    _render_exercise(session.exercise)


@app.command(name="add-page")
def add_page(exercise_id: str = typer.Argument(..., help="Exercise ID")) -> None:
    """Append an empty page."""

    async def run() -> AlertLog:
        alerts = AlertLog()
        session = await _load_session(exercise_id, alerts)
        if session.add_page() is not None:
            await session.save()
        return alerts

    alerts = asyncio.run(run())
    _print_alerts(alerts)
    if _has_errors(alerts):
        raise typer.Exit(code=1)


@app.command(name="add-tool")
def add_tool(
    exercise_id: str = typer.Argument(..., help="Exercise ID"),
    tool_type: str = typer.Argument(..., help="TEXT, JOURNAL, RATING, MCQ_SINGLE, ..."),
    page: int = typer.Option(1, "--page", "-p", help="Page number (1-based)"),
    instructions: str | None = typer.Option(None, "--instructions", help="Chat instructions"),
    max_chat_count: int | None = typer.Option(None, "--max-chat-count", help="Chat turn limit"),
) -> None:
    """Add a tool to a page."""

    async def run() -> AlertLog:
        alerts = AlertLog()
        session = await _load_session(exercise_id, alerts)
        page_index = page - 1
        tool = session.add_tool(page_index, tool_type.upper())
        if tool is None:
            return alerts
        if instructions is not None:
            session.update_tool(page_index, tool.index, "chat_bot_instructions", instructions)
        if max_chat_count is not None:
            session.update_tool(page_index, tool.index, "max_chat_count", max_chat_count)
        if await session.save():
            console.print(f"  [dim]unique_name:[/dim] {tool.unique_name}")
        return alerts

    alerts = asyncio.run(run())
    _print_alerts(alerts)
    if _has_errors(alerts):
        raise typer.Exit(code=1)


def _confirm_transition(request: TransitionRequest, yes: bool) -> bool:
    style = "red" if request.irreversible else "yellow"
    console.print(f"[bold {style}]{request.title}[/bold {style}]")
    console.print(f"[{style}]{request.warning}[/{style}]")
    if yes:
        return True
    return typer.confirm("\nContinue?", default=False)


@app.command()
def lock(
    exercise_id: str = typer.Argument(..., help="Exercise ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Lock an exercise so responses can be assigned."""

    async def run() -> tuple[AlertLog, bool]:
        alerts = AlertLog()
        session = await _load_session(exercise_id, alerts)
        request = session.request_lock()
        if request is None:
            return alerts, False
        if not _confirm_transition(request, yes):
            session.cancel_transition()
            console.print("[dim]Cancelled[/dim]")
            return alerts, True
        return alerts, await session.confirm(request)

    alerts, ok = asyncio.run(run())
    _print_alerts(alerts)
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def unlock(
    exercise_id: str = typer.Argument(..., help="Exercise ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Unlock an exercise. Deletes every response of the exercise."""

    async def run() -> tuple[AlertLog, bool]:
        alerts = AlertLog()
        session = await _load_session(exercise_id, alerts)
        request = session.request_unlock()
        if request is None:
            return alerts, False
        if not _confirm_transition(request, yes):
            session.cancel_transition()
            console.print("[dim]Cancelled[/dim]")
            return alerts, True
        return alerts, await session.confirm(request)

    alerts, ok = asyncio.run(run())
    _print_alerts(alerts)
    if not ok:
        raise typer.Exit(code=1)


# =============================================================================
# RESPONSES
# =============================================================================


@app.command()
def assign(
    exercise_id: str = typer.Argument(..., help="Exercise ID"),
    milestone: str | None = typer.Option(None, "--milestone", "-m", help="Milestone tracker ID"),
) -> None:
    """Create a response for a locked exercise."""
    try:
        response = asyncio.run(_service().assign_response(exercise_id, milestone))
    except ServiceError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]✓ Response assigned[/green]")
    console.print(f"  [dim]response_id:[/dim] {response.id}")


@app.command()
def responses(exercise_id: str = typer.Argument(..., help="Exercise ID")) -> None:
    """List responses of an exercise."""
    from worksheets.db import exercise_repository

    _service()
    rows = exercise_repository.list_responses(exercise_id)
    if not rows:
        console.print("[dim]No responses[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Response")
    table.add_column("Milestone")
    table.add_column("Status")
    table.add_column("Updated")
    for row in rows:
        style = "green" if row.status == "COMPLETED" else "yellow"
        table.add_row(
            row.response_id,
            row.milestone_tracker_id or "",
            f"[{style}]{row.status}[/{style}]",
            row.updated_at,
        )
    console.print(table)


@app.command()
def answer(
    response_id: str = typer.Argument(..., help="Response ID"),
    unique_name: str = typer.Argument(..., help="Tool unique name"),
    value: str = typer.Argument(..., help="Answer (JSON array for multi-select)"),
    page: int = typer.Option(1, "--page", "-p", help="Page number (1-based)"),
) -> None:
    """Store one answer and save the response."""

    async def run() -> AlertLog:
        alerts = AlertLog()
        session = WorksheetSession(_service(), response_id, alerts=alerts, autosave_enabled=False)
        if await session.open():
            if session.answer(page - 1, unique_name, value):
                await session.save()
            await session.close()
        return alerts

    alerts = asyncio.run(run())
    _print_alerts(alerts)
    if _has_errors(alerts):
        raise typer.Exit(code=1)


@app.command()
def submit(
    response_id: str = typer.Argument(..., help="Response ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Submit a response. Submitted responses cannot be changed."""

    async def run() -> AlertLog:
        alerts = AlertLog()
        session = WorksheetSession(_service(), response_id, alerts=alerts, autosave_enabled=False)
        if not await session.open():
            return alerts
        progress = session.progress()
        console.print(f"Answered {progress['answered']}/{progress['total']} tools")
        if yes or typer.confirm("Submit now?", default=True):
            await session.submit()
        await session.close()
        return alerts

    alerts = asyncio.run(run())
    _print_alerts(alerts)
    if _has_errors(alerts):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
