"""oakevo CLI — scaffold a workspace and evolve its population."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from oakevo.cli import evolve as evolve_cmd
from oakevo.cli import system
from oakevo.config import settings
from oakevo.logging import configure_logging

console = Console()

app = typer.Typer(
    name="oakevo",
    help="oakevo -- Oak Architecture evolution loop over meta-agents.",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override OAKEVO_LOG_LEVEL"),
):
    configure_logging(log_level or settings.log_level)


@app.command("init")
def init(
    path: Path = typer.Option(None, "--path", "-p", help="Workspace directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite existing files"),
):
    """Initialize a workspace with default configuration files."""
    system.init(path, force=force)


@app.command("status")
def status(
    path: Path = typer.Option(None, "--path", "-p", help="Workspace directory"),
):
    """Show workspace status."""
    system.status(path)


@app.command("evolve")
def evolve(
    path: Path = typer.Option(None, "--path", "-p", help="Workspace directory"),
    generations: int = typer.Option(None, "--generations", "-g", help="Override the generation limit"),
    population_size: int = typer.Option(None, "--population-size", "-n", help="Override the population size"),
    seed: int = typer.Option(None, "--seed", help="Seed for reproducible runs"),
):
    """Run the evolution loop over the workspace population."""
    evolve_cmd.evolve(path, generations=generations, population_size=population_size, seed=seed)


@app.command("version")
def version_cmd():
    """Show oakevo version."""
    from oakevo import __version__
    console.print(f"oakevo v{__version__}")
