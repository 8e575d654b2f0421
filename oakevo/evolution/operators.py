"""Evolutionary operators — mutation, crossover and next-generation selection.

Agents are opaque, so mutation and crossover are expressed as synthetic
experiences fed through ``MetaAgent.learn``. Selection is elitism followed
by tournament fill.
"""

from __future__ import annotations

import random
from typing import Sequence

import structlog

from oakevo.agents.base import MetaAgent
from oakevo.evolution.config import EvolutionConfig
from oakevo.types import Action, Experience, Reward, State

logger = structlog.get_logger()


# ── Synthetic experiences ─────────────────────────────────────────


def mutation_experiences(rng: random.Random) -> list[Experience]:
    """1-5 small random perturbations with rewards in [-0.05, 0.05]."""
    experiences = []
    for i in range(rng.randint(1, 5)):
        state = State(
            id=f"mutation_state_{i}",
            features={
                "exploration": rng.random(),
                "adaptation": rng.random(),
                "novelty": rng.random(),
            },
            context={"source": "mutation", "iteration": i},
        )
        next_state = State(
            id=f"mutation_next_state_{i}",
            features={
                "exploration": rng.random(),
                "adaptation": rng.random(),
                "novelty": rng.random(),
            },
            context=state.context,
        )
        experiences.append(Experience(
            state=state,
            action=Action(
                type="mutate",
                parameters={
                    "intensity": rng.random() * 0.2,
                    "direction": "increase" if rng.random() > 0.5 else "decrease",
                },
            ),
            reward=Reward(value=(rng.random() - 0.5) * 0.1, source="mutation"),
            next_state=next_state,
            done=False,
        ))
    return experiences


def crossover_experiences(rng: random.Random) -> list[Experience]:
    """2-4 knowledge-transfer experiences with positive rewards in [0, 0.3]."""
    experiences = []
    for i in range(rng.randint(2, 4)):
        state = State(
            id=f"crossover_state_{i}",
            features={
                "knowledge_transfer": rng.random(),
                "policy_blend": rng.random(),
                "hybrid_capability": rng.random(),
            },
            context={"source": "crossover", "iteration": i},
        )
        next_state = State(
            id=f"crossover_next_state_{i}",
            features={
                "knowledge_transfer": rng.random() * 0.5 + 0.5,
                "policy_blend": rng.random(),
                "hybrid_capability": rng.random() * 0.3 + 0.7,
            },
            context=state.context,
        )
        experiences.append(Experience(
            state=state,
            action=Action(
                type="integrate_knowledge",
                parameters={
                    "transfer_rate": rng.random() * 0.5 + 0.25,
                    "integration_mode": "additive" if rng.random() > 0.5 else "selective",
                },
            ),
            reward=Reward(value=rng.random() * 0.3, source="crossover"),
            next_state=next_state,
            done=False,
        ))
    return experiences


# ── Mutation / crossover ──────────────────────────────────────────


async def mutate(agent: MetaAgent, rng: random.Random, log=None) -> MetaAgent:
    """Feed mutation experiences to ``agent``; on failure the agent is returned as-is."""
    log = log or logger
    try:
        for experience in mutation_experiences(rng):
            await agent.learn(experience)
    except Exception as e:
        log.warning("mutation_failed", agent_id=agent.id, error=str(e))
    return agent


async def crossover(
    parent: MetaAgent,
    other: MetaAgent,
    rng: random.Random,
    log=None,
) -> MetaAgent:
    """Transfer synthetic knowledge into one of the two parents and return it.

    The recipient is chosen uniformly. If learning fails, ``parent`` is
    returned so the slot keeps its original occupant.
    """
    log = log or logger
    recipient = parent if rng.random() > 0.5 else other
    try:
        for experience in crossover_experiences(rng):
            await recipient.learn(experience)
    except Exception as e:
        log.warning("crossover_failed", agent_id=recipient.id, error=str(e))
        return parent
    return recipient


def pick_other(
    population: Sequence[MetaAgent],
    agent: MetaAgent,
    rng: random.Random,
) -> MetaAgent | None:
    """Uniformly pick a population member that is not ``agent`` (by identity)."""
    candidates = [a for a in population if a is not agent]
    if not candidates:
        return None
    return rng.choice(candidates)


# ── Selection ─────────────────────────────────────────────────────


def rank_indices(scores: Sequence[float]) -> list[int]:
    """Indices by descending fitness; ties keep their original order."""
    return sorted(range(len(scores)), key=lambda i: -scores[i])


def select_elites(
    population: Sequence[MetaAgent],
    scores: Sequence[float],
    count: int,
) -> list[MetaAgent]:
    ranked = rank_indices(scores)
    return [population[i] for i in ranked[:min(count, len(population))]]


def tournament_select(
    population: Sequence[MetaAgent],
    scores: Sequence[float],
    size: int,
    rng: random.Random,
) -> MetaAgent:
    """Sample ``size`` members with replacement and return the fittest."""
    entrants = [rng.randrange(len(population)) for _ in range(size)]
    winner = max(entrants, key=lambda i: scores[i])
    return population[winner]


def select_next_generation(
    population: Sequence[MetaAgent],
    scores: Sequence[float],
    config: EvolutionConfig,
    rng: random.Random,
) -> list[MetaAgent]:
    """Elites verbatim, then tournament winners up to ``population_size``."""
    if len(population) != len(scores):
        raise ValueError("Population and fitness lengths must match.")

    next_generation = select_elites(population, scores, config.elite_size)
    while len(next_generation) < config.population_size:
        next_generation.append(
            tournament_select(population, scores, config.tournament_size, rng)
        )
    return next_generation[:config.population_size]
