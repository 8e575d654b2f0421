"""Per-generation metrics and the convergence signal derived from them."""

from __future__ import annotations

import math
from typing import Sequence

from pydantic import BaseModel, Field

from oakevo.types import RunState

CONVERGENCE_WINDOW = 5


class EvolutionMetrics(BaseModel):
    """One record per completed generation. The run keeps them append-only."""

    generation: int
    best_fitness: float
    average_fitness: float
    diversity: float  # population std-dev of fitness
    convergence_rate: float  # |best(g) - best(g-1)|
    runtime_ms: float


class EvolutionStats(BaseModel):
    """Polling snapshot of a loop."""

    state: RunState
    generation: int
    best_fitness: float
    is_running: bool
    metrics: list[EvolutionMetrics] = Field(default_factory=list)


def fitness_diversity(scores: Sequence[float]) -> float:
    if not scores:
        return 0.0
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    return math.sqrt(variance)


def convergence_rate(best_fitness: float, previous_best: float | None) -> float:
    if previous_best is None:
        return 0.0
    return abs(best_fitness - previous_best)


def has_converged(
    metrics: Sequence[EvolutionMetrics],
    threshold: float,
    window: int = CONVERGENCE_WINDOW,
) -> bool:
    """True once ``window`` generations exist and their mean convergence rate is below threshold."""
    if len(metrics) < window:
        return False
    recent = metrics[-window:]
    avg = sum(m.convergence_rate for m in recent) / window
    return avg < threshold


def summarize(
    generation: int,
    scores: Sequence[float],
    previous: EvolutionMetrics | None,
    runtime_ms: float,
) -> EvolutionMetrics:
    best = max(scores)
    return EvolutionMetrics(
        generation=generation,
        best_fitness=best,
        average_fitness=sum(scores) / len(scores),
        diversity=fitness_diversity(scores),
        convergence_rate=convergence_rate(best, previous.best_fitness if previous else None),
        runtime_ms=runtime_ms,
    )
