"""oakevo evolve — run the evolution loop over a workspace's population."""

from __future__ import annotations

import asyncio
import random
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from oakevo.cli.context import run_async, workspace_path
from oakevo.config import settings
from oakevo.ecosystem import (
    INITIAL_POPULATION,
    META_CONFIG,
    build_population,
    default_population_spec,
    load_evolution_config,
    load_population_spec,
)
from oakevo.events import bus as topics
from oakevo.events.bus import Event, EventBus
from oakevo.evolution.config import EvolutionConfig
from oakevo.evolution.loop import OakEvolutionLoop
from oakevo.evolution.metrics import EvolutionMetrics
from oakevo.exceptions import OakevoError

console = Console()


def evolve(
    path: Path | None = None,
    generations: int | None = None,
    population_size: int | None = None,
    seed: int | None = None,
) -> None:
    """Load config and population from the workspace and evolve it."""
    root = workspace_path(path)
    overrides = {}
    if generations is not None:
        overrides["generation_limit"] = generations
    if population_size is not None:
        overrides["population_size"] = population_size

    try:
        meta = root / META_CONFIG
        if meta.exists():
            config = load_evolution_config(meta, **overrides)
        else:
            config = EvolutionConfig.build(None, **overrides)

        pop_file = root / INITIAL_POPULATION
        spec = load_population_spec(pop_file) if pop_file.exists() else default_population_spec()

        seed = seed if seed is not None else settings.seed
        rng = random.Random(seed)
        best, loop = run_async(_run(config, spec, rng))
    except OakevoError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    _print_metrics(loop.metrics)
    console.print(
        f"\n[bold]Outcome:[/bold] {loop.outcome.value if loop.outcome else 'unknown'}  "
        f"[bold]Best agent:[/bold] [cyan]{best.id}[/cyan]  "
        f"[bold]Fitness:[/bold] {loop.best_fitness:.4f}"
    )


async def _run(config: EvolutionConfig, spec, rng: random.Random):
    entries = build_population(spec, config.population_size, rng)
    for agent, agent_config in entries:
        await agent.initialize(agent_config)
    population = [agent for agent, _ in entries]

    bus = EventBus(history_limit=settings.event_history_limit)
    loop = OakEvolutionLoop(config, event_bus=bus, rng=rng)

    async def on_generation(event: Event) -> None:
        m: EvolutionMetrics = event.data["metrics"]
        console.print(
            f"[dim]gen {m.generation:>4}[/dim]  best {m.best_fitness:+.4f}  "
            f"avg {m.average_fitness:+.4f}  div {m.diversity:.4f}"
        )

    async def on_new_best(event: Event) -> None:
        console.print(
            f"[green]new best[/green] {event.data['agent'].id} "
            f"fitness {event.data['fitness']:.4f} (gen {event.data['generation']})"
        )

    bus.subscribe(topics.GENERATION_COMPLETE, on_generation)
    bus.subscribe(topics.NEW_BEST_AGENT, on_new_best)

    # Ctrl-C finishes the current generation instead of aborting
    event_loop = asyncio.get_running_loop()
    try:
        event_loop.add_signal_handler(signal.SIGINT, loop.stop)
    except (NotImplementedError, RuntimeError):
        pass

    try:
        best = await loop.run(population)
    finally:
        try:
            event_loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        for agent in population:
            await agent.shutdown()

    return best, loop


def _print_metrics(metrics: list[EvolutionMetrics]) -> None:
    if not metrics:
        console.print("[dim]No generations completed.[/dim]")
        return

    table = Table(title="Evolution")
    table.add_column("Gen", justify="right", style="dim")
    table.add_column("Best", justify="right", style="green")
    table.add_column("Average", justify="right")
    table.add_column("Diversity", justify="right", style="blue")
    table.add_column("Convergence", justify="right", style="yellow")
    table.add_column("Runtime", justify="right", style="dim")

    for m in metrics:
        table.add_row(
            str(m.generation),
            f"{m.best_fitness:.4f}",
            f"{m.average_fitness:.4f}",
            f"{m.diversity:.4f}",
            f"{m.convergence_rate:.4f}",
            f"{m.runtime_ms:.0f}ms",
        )

    console.print(table)
