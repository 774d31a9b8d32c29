"""
Mastery CLI - standards mastery from the terminal.

Usage:
    mastery show --class Lily --grade 3            # Recompute + reconcile, print table
    mastery show --class Lily --grade 3 --semester S1
    mastery cycle RL.3.1 --class Lily --grade 3    # Advance manual status
    mastery intervention RL.3.1 reteaching --class Lily --grade 3
    mastery quick-check RL.3.1 s-01 got_it --class Lily --grade 3
    mastery thresholds show
    mastery thresholds set Lily --above 90 --on 75 --approaching 60
    mastery init-db
    mastery init-db --standards standards.json    # Also seed the standards table
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from src.curriculum.standards import StandardsCatalog
from src.db.database import async_session_scope, init_db
from src.db.stores import build_sql_stores
from src.logging_setup import configure_logging
from src.mastery import (
    InterventionStatus,
    MasteryEngine,
    MasteryError,
    MasteryStores,
    QuickCheckMark,
    StandardMasteryView,
    summarize_by_domain,
)

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="mastery",
    help="Standards mastery: classify, reconcile and track interventions per class",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

thresholds_app = typer.Typer(help="View or change per-class thresholds")
app.add_typer(thresholds_app, name="thresholds")

console = Console()

DEFAULT_ACTOR = "teacher:cli"

ClassOption = Annotated[str, typer.Option("--class", "-c", help="Class name (e.g. Lily)")]
GradeOption = Annotated[int, typer.Option("--grade", "-g", help="Grade level")]
ActorOption = Annotated[str, typer.Option("--actor", help="Recorded as updated_by")]


@asynccontextmanager
async def _open_stores() -> AsyncIterator[MasteryStores]:
    """SQL stores on one session for the duration of a command."""
    async with async_session_scope() as session:
        yield build_sql_stores(session)


def _run(coro):
    """Run a command coroutine, turning engine errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except MasteryError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1) from e


def _status_cell(view: StandardMasteryView) -> str:
    status = view.effective_status
    return f"[{status.color}]{status.emoji} {status.display_name}[/]"


def _print_views(title: str, views: list[StandardMasteryView]) -> None:
    table = Table(title=title)
    table.add_column("Standard", style="cyan")
    table.add_column("Domain", style="dim")
    table.add_column("%", justify="right")
    table.add_column("Suggested", style="white")
    table.add_column("Status")
    table.add_column("Intervention", style="magenta")
    table.add_column("Manual", justify="center")

    for view in views:
        pct = view.computed_percentage
        intervention = view.intervention_status
        table.add_row(
            view.standard_code,
            view.domain or "-",
            f"{pct:.1f}" if pct is not None else "-",
            view.suggested_status.display_name,
            _status_cell(view),
            intervention.display_name if intervention is not InterventionStatus.NONE else "-",
            "✎" if view.has_manual_override else "",
        )

    console.print(table)


# =============================================================================
# Mastery Commands
# =============================================================================


@app.command()
def show(
    class_name: ClassOption,
    grade: GradeOption,
    semester: Annotated[
        str | None, typer.Option("--semester", "-s", help="Restrict evidence to one semester")
    ] = None,
    summary: Annotated[
        bool, typer.Option("--summary", help="Also print a per-domain rollup")
    ] = False,
) -> None:
    """
    Recompute and reconcile mastery for a class, then print every standard.

    Stored teacher 'above' statuses are kept even when evidence suggests lower.
    """

    async def _show() -> None:
        async with _open_stores() as stores:
            engine = MasteryEngine(stores)
            engine.select(class_name, grade, semester)
            views = await engine.refresh() or []
            label = f"{class_name} · Grade {grade}" + (f" · {semester}" if semester else "")
            if not views:
                console.print(f"[yellow]No standards or evidence for {label}.[/]")
                return

            _print_views(f"Standards Mastery: {label}", views)
            cfg = engine.thresholds
            console.print(
                f"[dim]Thresholds: above ≥ {cfg.above:g} · on ≥ {cfg.on:g} · "
                f"approaching ≥ {cfg.approaching:g}[/]"
            )
            if summary:
                _print_summary(views)

    _run(_show())


def _print_summary(views: list[StandardMasteryView]) -> None:
    table = Table(title="By Domain")
    table.add_column("Domain", style="cyan")
    table.add_column("Standards", justify="right")
    table.add_column("On/Above", style="green", justify="right")
    table.add_column("Below", style="red", justify="right")
    table.add_column("Interventions", style="magenta", justify="right")

    for domain in summarize_by_domain(views):
        data = domain.to_dict()
        table.add_row(
            domain.domain,
            str(domain.total),
            str(domain.on_or_above),
            str(data["counts"]["below"]),
            str(domain.active_interventions),
        )
    console.print(table)


@app.command()
def cycle(
    standard_code: Annotated[str, typer.Argument(help="Standard code (e.g. RL.3.1)")],
    class_name: ClassOption,
    grade: GradeOption,
    actor: ActorOption = DEFAULT_ACTOR,
) -> None:
    """Advance a standard: not started → below → approaching → on → above → not started."""

    async def _cycle() -> None:
        async with _open_stores() as stores:
            engine = MasteryEngine(stores)
            engine.select(class_name, grade)
            await engine.recompute()
            view = await engine.cycle(standard_code, actor)
            if view is None:
                console.print("[yellow]Selection changed; nothing written.[/]")
                return
            console.print(f"{standard_code}: {_status_cell(view)}")

    _run(_cycle())


@app.command()
def intervention(
    standard_code: Annotated[str, typer.Argument(help="Standard code (e.g. RL.3.1)")],
    status: Annotated[InterventionStatus, typer.Argument(help="Intervention status")],
    class_name: ClassOption,
    grade: GradeOption,
    actor: ActorOption = DEFAULT_ACTOR,
) -> None:
    """Set the intervention status of a below/approaching standard."""

    async def _intervention() -> None:
        async with _open_stores() as stores:
            engine = MasteryEngine(stores)
            engine.select(class_name, grade)
            await engine.recompute()
            view = await engine.set_intervention(standard_code, status, actor)
            if view is None:
                console.print("[yellow]Selection changed; nothing written.[/]")
                return
            console.print(
                f"{standard_code}: {_status_cell(view)} · "
                f"[magenta]{view.intervention_status.display_name}[/]"
            )

    _run(_intervention())


@app.command("quick-check")
def quick_check(
    standard_code: Annotated[str, typer.Argument(help="Standard code (e.g. RL.3.1)")],
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    mark: Annotated[QuickCheckMark, typer.Argument(help="got_it, almost or not_yet")],
    class_name: ClassOption,
    grade: GradeOption,
) -> None:
    """Record one quick-check mark."""

    async def _quick_check() -> None:
        async with _open_stores() as stores:
            engine = MasteryEngine(stores)
            engine.select(class_name, grade)
            await engine.record_quick_check(student_id, standard_code, mark)
            console.print(f"[green]Recorded {mark.value} for {student_id} on {standard_code}[/]")

    _run(_quick_check())


# =============================================================================
# Threshold Commands
# =============================================================================


@thresholds_app.command("show")
def thresholds_show() -> None:
    """Show stored per-class thresholds and the default."""

    async def _show() -> None:
        async with _open_stores() as stores:
            engine = MasteryEngine(stores)
            configs = await engine.get_all_thresholds()

            table = Table(title="Mastery Thresholds")
            table.add_column("Class", style="cyan")
            table.add_column("Above", style="green", justify="right")
            table.add_column("On", style="blue", justify="right")
            table.add_column("Approaching", style="yellow", justify="right")

            default = engine.default_thresholds
            table.add_row(
                "[dim](default)[/]", f"{default.above:g}", f"{default.on:g}", f"{default.approaching:g}"
            )
            for name, cfg in configs.items():
                table.add_row(name, f"{cfg.above:g}", f"{cfg.on:g}", f"{cfg.approaching:g}")
            console.print(table)

    _run(_show())


@thresholds_app.command("set")
def thresholds_set(
    class_name: Annotated[str, typer.Argument(help="Class name")],
    above: Annotated[float, typer.Option("--above", help="'above' cutoff (percent)")],
    on: Annotated[float, typer.Option("--on", help="'on' cutoff (percent)")],
    approaching: Annotated[float, typer.Option("--approaching", help="'approaching' cutoff")],
) -> None:
    """Replace one class's thresholds (must satisfy above > on > approaching ≥ 0)."""

    async def _set() -> None:
        async with _open_stores() as stores:
            engine = MasteryEngine(stores)
            cfg = await engine.update_thresholds(
                class_name, {"above": above, "on": on, "approaching": approaching}
            )
            console.print(
                f"[green]Saved thresholds for {class_name}: "
                f"{cfg.above:g} / {cfg.on:g} / {cfg.approaching:g}[/]"
            )

    _run(_set())


# =============================================================================
# Database Commands
# =============================================================================


@app.command("init-db")
def init_db_command(
    standards: Annotated[
        Path | None,
        typer.Option(
            "--standards",
            help="JSON list of {code, domain, grade, cluster, text, dok} to seed",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
) -> None:
    """Create database tables, optionally seeding the standards reference."""
    init_db()
    console.print("[green]Database tables initialized.[/]")
    if standards is None:
        return

    try:
        catalog = StandardsCatalog.from_json(standards)
    except (KeyError, ValueError) as e:
        console.print(f"[red]Error: cannot read {standards.name}: {e}[/]")
        raise typer.Exit(1) from e

    async def _seed() -> None:
        async with _open_stores() as stores:
            await stores.standards.upsert_standards(catalog.standards())

    _run(_seed())
    domains = catalog.domains()
    console.print(
        f"[green]Seeded {len(catalog)} standards across {len(domains)} domains:[/] "
        + ", ".join(domains)
    )


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
) -> None:
    """
    Standards mastery for a class: evidence → suggested band → effective status.
    """
    configure_logging(console_level="DEBUG" if verbose else "WARNING")
    logger.debug("Verbose logging enabled")


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
