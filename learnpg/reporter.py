from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from learnpg.domain.models import ExerciseDefinition
from learnpg.validation.abstract import ValidationResult

MAX_PREVIEW_ROWS = 20


def _rows_table(title: str, columns: Sequence[str], rows: List[Dict[str, Any]]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows[:MAX_PREVIEW_ROWS]:
        table.add_row(*("NULL" if row.get(c) is None else str(row.get(c)) for c in columns))
    if len(rows) > MAX_PREVIEW_ROWS:
        table.caption = f"{len(rows) - MAX_PREVIEW_ROWS} more row(s) not shown"
    return table


def print_validation(result: ValidationResult, console: Optional[Console] = None) -> None:
    """
    Render a judgement: verdict and score, then itemized feedback, errors
    and suggestions, then a preview of the returned rows when present.
    """
    console = console or Console()
    verdict = "[bold green]PASS[/bold green]" if result.is_valid else "[bold red]FAIL[/bold red]"
    timing = (
        f" in {result.execution_time_ms:,.1f} ms" if result.execution_time_ms is not None else ""
    )
    console.print(f"{verdict}  score {result.score}/100{timing}")

    table = Table(box=box.ROUNDED, show_header=True)
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("Message")
    for message in result.feedback:
        table.add_row("[green]ok[/green]", message)
    for message in result.errors:
        table.add_row("[red]error[/red]", message)
    for message in result.suggestions:
        table.add_row("[yellow]hint[/yellow]", message)
    if table.row_count:
        console.print(table)

    query_results = result.query_results or {}
    rows = query_results.get("rows") or []
    if rows:
        columns = [c["name"] for c in query_results.get("columns", [])]
        console.print(_rows_table(f"{query_results.get('rowCount', len(rows))} row(s)", columns, rows))


def print_session_step(outcome: Any, console: Optional[Console] = None) -> None:
    """Render one session-pair step (a SessionStepOutcome)."""
    console = console or Console()
    label = "[blue]A[/blue]" if outcome.session == "A" else "[yellow]B[/yellow]"
    if outcome.error:
        console.print(f"Session {label}: [red]{outcome.error}[/red]")
        for hint in outcome.suggestions:
            console.print(f"  [dim]hint:[/dim] {hint}")
        return
    console.print(
        f"Session {label}: {outcome.status or 'OK'} "
        f"({outcome.row_count} row(s), {outcome.execution_time_ms:,.1f} ms)"
    )
    if outcome.rows:
        console.print(_rows_table("", outcome.columns, outcome.rows))
    if outcome.validation is not None:
        print_validation(outcome.validation, console)


def print_exercises(exercises: Sequence[ExerciseDefinition], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not exercises:
        console.print("[yellow]No exercises loaded.[/yellow]")
        return
    table = Table(title="Exercises", box=box.ROUNDED)
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Namespace", style="green")
    table.add_column("Strategy", style="blue")
    table.add_column("Title")
    for exercise in exercises:
        table.add_row(
            exercise.id,
            exercise.type,
            exercise.namespace,
            exercise.validation.strategy,
            exercise.title,
        )
    console.print(table)
