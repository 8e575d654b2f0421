"""Tests for the OakEvolutionLoop driver."""

import asyncio
import random

import pytest

from oakevo.agents.base import OAK_STEPS
from oakevo.events import bus as topics
from oakevo.events.bus import Event, EventBus
from oakevo.evolution.config import EvolutionConfig
from oakevo.evolution.fitness import FAILED_FITNESS, FitnessEvaluator
from oakevo.evolution.loop import OakEvolutionLoop
from oakevo.exceptions import ConfigError, EvolutionError, RunStateError
from oakevo.types import RunState


def _config(**kwargs) -> EvolutionConfig:
    base = {
        "population_size": 4,
        "elite_size": 1,
        "generation_limit": 1,
        "mutation_rate": 0.0,
        "crossover_rate": 0.0,
        "convergence_threshold": 0.0,
    }
    base.update(kwargs)
    return EvolutionConfig(**base)


class RandomEvaluator(FitnessEvaluator):
    def __init__(self, seed: int):
        self._rng = random.Random(seed)
        self.seen: list[tuple[object, float]] = []

    async def evaluate(self, agent):
        score = self._rng.uniform(-1, 1)
        self.seen.append((agent, score))
        return score


@pytest.mark.asyncio
async def test_best_agent_is_running_maximum(make_agents):
    evaluator = RandomEvaluator(seed=7)
    loop = OakEvolutionLoop(
        _config(population_size=6, elite_size=2, generation_limit=6, mutation_rate=0.5, crossover_rate=0.5),
        evaluator=evaluator,
        rng=random.Random(1),
    )

    best = await loop.run(make_agents(6))

    all_scores = [score for _, score in evaluator.seen]
    assert loop.best_fitness == max(all_scores)
    assert all(loop.best_fitness >= s for s in all_scores)
    best_entries = [agent for agent, score in evaluator.seen if score == loop.best_fitness]
    assert best in best_entries


@pytest.mark.asyncio
async def test_elite_and_tournament_fill(make_agents, table_evaluator):
    agents = make_agents(4)
    evaluator = table_evaluator({"agent-0": 0.1, "agent-1": 0.9, "agent-2": 0.5, "agent-3": 0.3})
    loop = OakEvolutionLoop(_config(), evaluator=evaluator, rng=random.Random(3))

    best = await loop.run(agents)

    assert best is agents[1]
    next_generation = loop.population
    assert len(next_generation) == 4
    assert next_generation[0] is agents[1]  # the single elite
    assert all(any(a is original for original in agents) for a in next_generation)
    assert loop.outcome == RunState.GENERATION_LIMIT_REACHED


@pytest.mark.asyncio
async def test_population_size_after_first_generation(make_agents, table_evaluator):
    bus = EventBus()
    loop = OakEvolutionLoop(
        _config(population_size=6, elite_size=2, generation_limit=3),
        event_bus=bus,
        evaluator=table_evaluator(default=0.2),
        rng=random.Random(5),
    )
    sizes = []

    async def on_generation(event: Event):
        sizes.append(len(loop.population))

    bus.subscribe(topics.GENERATION_COMPLETE, on_generation)
    await loop.run(make_agents(3))

    assert sizes == [3, 6, 6]
    assert len(loop.population) == 6


@pytest.mark.asyncio
async def test_broken_agent_passes_through_once(make_agents, scripted_agent_cls, table_evaluator):
    healthy = make_agents(3)
    broken = scripted_agent_cls(agent_id="broken", broken=True)
    evaluator = table_evaluator(default=0.0)
    loop = OakEvolutionLoop(
        _config(mutation_rate=1.0, crossover_rate=1.0),
        evaluator=evaluator,
        rng=random.Random(11),
    )

    await loop.run(healthy + [broken])

    assert sum(1 for a in evaluator.evaluated if a is broken) == 1
    assert broken.calls == []
    assert broken.experiences == []


@pytest.mark.asyncio
async def test_timed_out_agent_scores_penalty(scripted_agent_cls):
    slow = scripted_agent_cls(agent_id="slow", act_delay=1.0)
    loop = OakEvolutionLoop(
        _config(population_size=1, elite_size=1, evaluation_timeout=1),
        rng=random.Random(0),
    )

    best = await loop.run([slow])

    assert best is slow
    assert loop.best_fitness == FAILED_FITNESS
    assert loop.metrics[0].best_fitness == FAILED_FITNESS


@pytest.mark.asyncio
async def test_stop_during_generation_three(make_agents, counting_evaluator):
    bus = EventBus()
    loop = OakEvolutionLoop(
        _config(generation_limit=10),
        event_bus=bus,
        evaluator=counting_evaluator,
        rng=random.Random(2),
    )

    async def on_generation(event: Event):
        if event.data["metrics"].generation == 2:
            loop.stop()

    bus.subscribe(topics.GENERATION_COMPLETE, on_generation)
    await loop.run(make_agents(4))

    assert len(loop.metrics) == 3
    assert counting_evaluator.calls == 12
    assert loop.best_fitness == max(counting_evaluator.scores)
    assert loop.outcome == RunState.STOPPED
    assert bus.history(topic_filter=topics.EVOLUTION_STOPPED)


@pytest.mark.asyncio
async def test_stop_flag_is_reset_between_runs(make_agents, table_evaluator):
    loop = OakEvolutionLoop(_config(generation_limit=2), evaluator=table_evaluator())
    loop.stop()

    await loop.run(make_agents(4))

    assert len(loop.metrics) == 2
    assert loop.outcome == RunState.GENERATION_LIMIT_REACHED


@pytest.mark.asyncio
async def test_converges_on_flat_fitness(make_agents, table_evaluator):
    loop = OakEvolutionLoop(
        _config(generation_limit=50, convergence_threshold=0.001),
        evaluator=table_evaluator(default=0.5),
    )

    await loop.run(make_agents(4))

    assert len(loop.metrics) == 5
    assert loop.outcome == RunState.CONVERGED
    assert all(m.convergence_rate == 0.0 for m in loop.metrics)


@pytest.mark.asyncio
async def test_improving_fitness_runs_to_limit(make_agents, counting_evaluator):
    loop = OakEvolutionLoop(
        _config(generation_limit=8, convergence_threshold=0.001),
        evaluator=counting_evaluator,
    )

    await loop.run(make_agents(4))

    assert len(loop.metrics) == 8
    assert loop.outcome == RunState.GENERATION_LIMIT_REACHED
    assert loop.metrics[0].convergence_rate == 0.0
    assert loop.metrics[1].convergence_rate == pytest.approx(0.04)


@pytest.mark.asyncio
async def test_event_order(make_agents, counting_evaluator):
    bus = EventBus()
    seen = []

    async def record(event: Event):
        seen.append(event.topic)

    bus.subscribe("evolution.*", record)
    loop = OakEvolutionLoop(
        _config(population_size=2, generation_limit=2),
        event_bus=bus,
        evaluator=counting_evaluator,
    )

    await loop.run(make_agents(2))

    assert seen == [
        topics.EVOLUTION_STARTED,
        topics.NEW_BEST_AGENT,
        topics.GENERATION_COMPLETE,
        topics.NEW_BEST_AGENT,
        topics.GENERATION_COMPLETE,
        topics.EVOLUTION_COMPLETE,
    ]
    complete = bus.history(topic_filter=topics.EVOLUTION_COMPLETE)[0]
    assert complete.data["generations"] == 2
    assert complete.data["best_fitness"] == loop.best_fitness


@pytest.mark.asyncio
async def test_new_best_only_on_strict_improvement(make_agents, table_evaluator):
    bus = EventBus()
    loop = OakEvolutionLoop(
        _config(generation_limit=3),
        event_bus=bus,
        evaluator=table_evaluator(default=0.3),
    )

    await loop.run(make_agents(4))

    new_best = bus.history(topic_filter=topics.NEW_BEST_AGENT)
    assert len(new_best) == 1
    assert new_best[0].data["generation"] == 0


@pytest.mark.asyncio
async def test_empty_population_is_run_level_error():
    bus = EventBus()
    loop = OakEvolutionLoop(_config(), event_bus=bus)

    with pytest.raises(EvolutionError):
        await loop.run([])

    assert bus.history(topic_filter=topics.EVOLUTION_ERROR)
    assert loop.outcome == RunState.ERRORED
    assert loop.state == RunState.IDLE


@pytest.mark.asyncio
async def test_cannot_run_twice_concurrently(make_agents, table_evaluator):
    loop = OakEvolutionLoop(_config(generation_limit=2), evaluator=table_evaluator())
    agents = make_agents(4)

    task = asyncio.create_task(loop.run(agents))
    await asyncio.sleep(0)
    assert loop.is_running

    with pytest.raises(RunStateError):
        await loop.run(agents)

    await task
    assert loop.state == RunState.IDLE


@pytest.mark.asyncio
async def test_oak_cycle_batches_bound_concurrency(scripted_agent_cls, table_evaluator):
    counter = {"now": 0, "peak": 0}
    agents = [scripted_agent_cls(agent_id=f"a{i}", concurrency=counter) for i in range(25)]
    loop = OakEvolutionLoop(_config(population_size=25), evaluator=table_evaluator())

    await loop.run(agents)

    assert counter["peak"] == 10
    assert counter["now"] == 0


@pytest.mark.asyncio
async def test_custom_batch_size(scripted_agent_cls, table_evaluator):
    counter = {"now": 0, "peak": 0}
    agents = [scripted_agent_cls(agent_id=f"a{i}", concurrency=counter) for i in range(7)]
    loop = OakEvolutionLoop(_config(population_size=7), evaluator=table_evaluator(), batch_size=3)

    await loop.run(agents)

    assert counter["peak"] == 3


@pytest.mark.asyncio
async def test_oak_steps_run_in_order(make_agents, table_evaluator):
    agents = make_agents(2)
    loop = OakEvolutionLoop(_config(population_size=2), evaluator=table_evaluator())

    await loop.run(agents)

    for agent in agents:
        assert agent.calls[:8] == list(OAK_STEPS)


@pytest.mark.asyncio
async def test_mutation_feeds_experiences(make_agents, table_evaluator):
    agents = make_agents(3)
    loop = OakEvolutionLoop(
        _config(population_size=3, mutation_rate=1.0),
        evaluator=table_evaluator(),
        rng=random.Random(4),
    )

    await loop.run(agents)

    for agent in agents:
        assert 1 <= len(agent.experiences) <= 5
        assert all(e.reward.source == "mutation" for e in agent.experiences)


@pytest.mark.asyncio
async def test_crossover_feeds_experiences(make_agents, table_evaluator):
    agents = make_agents(3)
    loop = OakEvolutionLoop(
        _config(population_size=3, crossover_rate=1.0),
        evaluator=table_evaluator(),
        rng=random.Random(4),
    )

    await loop.run(agents)

    transferred = [e for a in agents for e in a.experiences]
    assert len(transferred) >= 2 * 3
    assert all(e.reward.source == "crossover" for e in transferred)


@pytest.mark.asyncio
async def test_single_agent_skips_crossover(make_agents, table_evaluator):
    agents = make_agents(1)
    loop = OakEvolutionLoop(
        _config(population_size=1, elite_size=1, crossover_rate=1.0),
        evaluator=table_evaluator(),
    )

    await loop.run(agents)

    assert agents[0].experiences == []


@pytest.mark.asyncio
async def test_trace_has_span_per_phase(make_agents, table_evaluator):
    loop = OakEvolutionLoop(_config(generation_limit=2), evaluator=table_evaluator())

    await loop.run(make_agents(4))

    trace = loop.trace
    assert len(trace.phase("oak_cycle")) == 2
    assert len(trace.phase("evaluation")) == 2
    assert len(trace.phase("selection")) == 2
    assert trace.error_count == 0


@pytest.mark.asyncio
async def test_stats_snapshot(make_agents, table_evaluator):
    loop = OakEvolutionLoop(_config(generation_limit=2), evaluator=table_evaluator(default=0.4))

    await loop.run(make_agents(4))
    stats = loop.stats()

    assert stats.state == RunState.IDLE
    assert stats.is_running is False
    assert stats.best_fitness == 0.4
    assert len(stats.metrics) == 2


def test_accepts_partial_config_dict():
    loop = OakEvolutionLoop({"populationSize": 4, "eliteSize": 1})
    assert loop.config.population_size == 4
    assert loop.config.generation_limit == 100


def test_rejects_invalid_config_dict():
    with pytest.raises(ConfigError):
        OakEvolutionLoop({"populationSize": 2, "eliteSize": 3})


class FlakyEvaluator(FitnessEvaluator):
    """Raises for the listed agent ids and scores everyone else 0.5."""

    def __init__(self, failing: set[str]):
        self.failing = failing

    async def evaluate(self, agent):
        if agent.id in self.failing:
            raise RuntimeError("evaluator bug")
        return 0.5


class BlockingEvaluator(FitnessEvaluator):
    """Waits on ``release`` before scoring, so a run can be held mid-generation."""

    def __init__(self):
        self.release = asyncio.Event()

    async def evaluate(self, agent):
        await self.release.wait()
        return 0.1


@pytest.mark.asyncio
async def test_evaluator_failure_is_scored(make_agents):
    agents = make_agents(3)
    loop = OakEvolutionLoop(_config(population_size=3), evaluator=FlakyEvaluator({"agent-0"}))

    best = await loop.run(agents)

    assert best is not agents[0]
    assert loop.metrics[0].best_fitness == 0.5
    assert loop.outcome == RunState.GENERATION_LIMIT_REACHED


@pytest.mark.asyncio
async def test_hanging_evaluator_is_bounded_by_timeout(make_agents):
    evaluator = BlockingEvaluator()
    loop = OakEvolutionLoop(
        _config(population_size=2, evaluation_timeout=10), evaluator=evaluator,
    )

    await asyncio.wait_for(loop.run(make_agents(2)), timeout=2)

    assert loop.best_fitness == FAILED_FITNESS
    assert loop.state == RunState.IDLE


@pytest.mark.asyncio
async def test_missing_population_returns_to_idle():
    bus = EventBus()
    loop = OakEvolutionLoop(_config(), event_bus=bus)

    with pytest.raises(EvolutionError):
        await loop.run(None)

    assert bus.history(topic_filter=topics.EVOLUTION_ERROR)
    assert loop.state == RunState.IDLE


@pytest.mark.asyncio
async def test_cancelled_run_returns_to_idle(make_agents):
    bus = EventBus()
    evaluator = BlockingEvaluator()
    loop = OakEvolutionLoop(_config(population_size=2), event_bus=bus, evaluator=evaluator)

    task = asyncio.create_task(loop.run(make_agents(2)))
    await asyncio.sleep(0.01)
    assert loop.is_running

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert loop.state == RunState.IDLE
    assert loop.outcome == RunState.ERRORED
    assert bus.history(topic_filter=topics.EVOLUTION_ERROR)

    evaluator.release.set()
    await loop.run(make_agents(2))
    assert loop.outcome == RunState.GENERATION_LIMIT_REACHED
