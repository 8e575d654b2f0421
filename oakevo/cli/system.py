"""Workspace commands — oakevo init, oakevo status."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from oakevo.cli.context import workspace_path
from oakevo.ecosystem import (
    INITIAL_POPULATION,
    INITIALIZATION_REPORT,
    META_CONFIG,
    EcosystemInitializer,
)

console = Console()


def init(path: Path | None = None, force: bool = False) -> None:
    """Scaffold the workspace configuration files."""
    root = workspace_path(path)
    report = EcosystemInitializer(root).initialize(overwrite=force)

    written = "\n".join(f"  [green]+[/green] {name}" for name in report.files) or "  [dim](all files already present)[/dim]"
    console.print(
        Panel(
            f"[green]oakevo workspace initialized at {root}[/green]\n\n"
            f"{written}\n\n"
            "Next:\n"
            f"  [bold]oakevo evolve --path {root}[/bold]",
            title="oakevo",
            border_style="cyan",
        )
    )


def status(path: Path | None = None) -> None:
    """Summarize the workspace and its last initialization report."""
    root = workspace_path(path)
    report_path = root / INITIALIZATION_REPORT
    if not report_path.exists():
        console.print(f"[red]No workspace at {root}.[/red] Run [bold]oakevo init[/bold] first.")
        raise typer.Exit(code=1)

    report = json.loads(report_path.read_text())
    has_meta = (root / META_CONFIG).exists()
    has_population = (root / INITIAL_POPULATION).exists()

    def _flag(ok: bool) -> str:
        return "[green]present[/green]" if ok else "[red]missing[/red]"

    console.print(Panel(
        f"[bold]oakevo v{report.get('version', '?')}[/bold]\n\n"
        f"Workspace:   {root}\n"
        f"Status:      {report.get('status', 'unknown')}\n"
        f"Initialized: {report.get('timestamp', '?')}\n"
        f"Meta config: {_flag(has_meta)}\n"
        f"Population:  {_flag(has_population)}",
        title="Workspace Status",
        border_style="cyan",
    ))
