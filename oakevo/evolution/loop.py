"""OakEvolutionLoop — generational evolution over Oak Architecture agents.

Each generation:
  1. runs Sutton's eight Oak steps on every agent (batched, concurrent within a batch)
  2. applies mutation / crossover as independent Bernoulli trials
  3. evaluates every agent concurrently
  4. tracks the best agent seen across the whole run
  5. records metrics and checks for convergence
  6. selects the next generation by elitism + tournament

Agent failures degrade gracefully (pass-through or fitness -1); only
run-level failures escape ``run``.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Sequence

import structlog

from oakevo.agents.base import MetaAgent
from oakevo.config import settings
from oakevo.events import bus as topics
from oakevo.events.bus import EventBus
from oakevo.events.tracing import Trace, Tracer
from oakevo.evolution import operators
from oakevo.evolution.config import EvolutionConfig
from oakevo.evolution.fitness import FAILED_FITNESS, FitnessEvaluator, SyntheticEvaluator
from oakevo.evolution.metrics import (
    EvolutionMetrics,
    EvolutionStats,
    has_converged,
    summarize,
)
from oakevo.exceptions import EvolutionError
from oakevo.kernel.state_machine import RunStateMachine
from oakevo.types import RunState, new_id

_logger = structlog.get_logger()


class OakEvolutionLoop:
    """Drives a population through generations until a limit, convergence or stop()."""

    def __init__(
        self,
        config: EvolutionConfig | dict[str, Any] | None = None,
        *,
        event_bus: EventBus | None = None,
        evaluator: FitnessEvaluator | None = None,
        rng: random.Random | None = None,
        tracer: Tracer | None = None,
        logger: Any = None,
        batch_size: int | None = None,
    ) -> None:
        if config is None or isinstance(config, dict):
            config = EvolutionConfig.build(config)
        self.config = config
        self.run_id = new_id()
        self._rng = rng or random.Random(settings.seed)
        self._event_bus = event_bus
        self._tracer = tracer or Tracer(trace_limit=settings.trace_history_limit)
        self._log = (logger or _logger).bind(run_id=self.run_id)
        self._evaluator = evaluator or SyntheticEvaluator(
            config, rng=self._rng, steps=settings.evaluation_steps, log=self._log,
        )
        self._batch_size = batch_size or settings.oak_batch_size
        self._state_machine = RunStateMachine(self.run_id)

        self._population: list[MetaAgent] = []
        self._generation = 0
        self._best_agent: MetaAgent | None = None
        self._best_fitness = float("-inf")
        self._metrics: list[EvolutionMetrics] = []
        self._stop_requested = False
        self._outcome: RunState | None = None
        self._trace: Trace | None = None

    # ── Public API ──

    async def run(self, initial_population: Sequence[MetaAgent]) -> MetaAgent:
        """Evolve ``initial_population`` and return the best agent seen in any generation."""
        await self._state_machine.transition(RunState.RUNNING)
        outcome = RunState.GENERATION_LIMIT_REACHED

        try:
            self._reset(initial_population or [])
            self._log.info(
                "evolution_started",
                population=len(self._population),
                generation_limit=self.config.generation_limit,
            )
            await self._emit(topics.EVOLUTION_STARTED, {"config": self.config.model_dump()})

            if not self._population:
                raise EvolutionError("Initial population must contain at least one agent")

            while self._generation < self.config.generation_limit:
                if self._stop_requested:
                    outcome = RunState.STOPPED
                    break

                if await self._run_generation():
                    outcome = RunState.CONVERGED
                    break

            if outcome is RunState.STOPPED:
                self._log.info("evolution_stopped", generation=self._generation)
                await self._emit(topics.EVOLUTION_STOPPED, {"generation": self._generation})

            await self._emit(topics.EVOLUTION_COMPLETE, {
                "best_agent": self._best_agent,
                "best_fitness": self._best_fitness,
                "generations": len(self._metrics),
                "metrics": list(self._metrics),
            })
            self._log.info(
                "evolution_complete",
                outcome=outcome.value,
                generations=len(self._metrics),
                best_fitness=self._best_fitness,
            )
        except BaseException as e:
            # Cancellation included: the machine must always return to IDLE
            error = str(e) or type(e).__name__
            self._log.error("evolution_failed", error=error)
            await self._emit(topics.EVOLUTION_ERROR, {"error": error})
            await self._finish(RunState.ERRORED)
            raise

        await self._finish(outcome)
        return self._best_agent

    def stop(self) -> None:
        """Request a graceful stop at the next generation boundary."""
        self._stop_requested = True
        self._log.info("evolution_stop_requested", generation=self._generation)

    def stats(self) -> EvolutionStats:
        return EvolutionStats(
            state=self.state,
            generation=self._generation,
            best_fitness=self._best_fitness,
            is_running=self.is_running,
            metrics=list(self._metrics),
        )

    @property
    def state(self) -> RunState:
        return self._state_machine.state

    @property
    def is_running(self) -> bool:
        return self._state_machine.state is RunState.RUNNING

    @property
    def outcome(self) -> RunState | None:
        """Terminal state of the most recent run."""
        return self._outcome

    @property
    def best_agent(self) -> MetaAgent | None:
        return self._best_agent

    @property
    def best_fitness(self) -> float:
        return self._best_fitness

    @property
    def metrics(self) -> list[EvolutionMetrics]:
        return list(self._metrics)

    @property
    def population(self) -> list[MetaAgent]:
        return list(self._population)

    @property
    def trace(self) -> Trace | None:
        return self._trace

    @property
    def state_machine(self) -> RunStateMachine:
        return self._state_machine

    # ── Generation ──

    def _reset(self, initial_population: Sequence[MetaAgent]) -> None:
        self._population = list(initial_population)
        self._generation = 0
        self._best_agent = None
        self._best_fitness = float("-inf")
        self._metrics = []
        self._stop_requested = False
        self._outcome = None
        self._trace = self._tracer.start_trace(name=f"evolution-{self.run_id}")

    async def _run_generation(self) -> bool:
        """Run one generation. Returns True when the run has converged."""
        started = time.monotonic()
        generation = self._generation
        self._log.info(
            "generation_started",
            generation=generation,
            generation_limit=self.config.generation_limit,
        )

        offspring = await self._traced("oak_cycle", self._execute_oak_cycle())
        scores = await self._traced("evaluation", self._evaluate_population(offspring))
        await self._update_best_agent(offspring, scores)

        previous = self._metrics[-1] if self._metrics else None
        metrics = summarize(generation, scores, previous, (time.monotonic() - started) * 1000)
        self._metrics.append(metrics)
        self._log.info(
            "generation_complete",
            generation=generation,
            best_fitness=round(metrics.best_fitness, 4),
            average_fitness=round(metrics.average_fitness, 4),
            diversity=round(metrics.diversity, 4),
        )
        await self._emit(topics.GENERATION_COMPLETE, {"metrics": metrics})

        if has_converged(self._metrics, self.config.convergence_threshold):
            self._log.info("evolution_converged", generation=generation)
            return True

        self._population = await self._traced(
            "selection", self._select_next_generation(offspring, scores),
        )
        self._generation += 1
        return False

    async def _execute_oak_cycle(self) -> list[MetaAgent]:
        population = self._population
        batch_size = min(self._batch_size, len(population))
        offspring: list[MetaAgent] = []

        for start in range(0, len(population), batch_size):
            batch = population[start:start + batch_size]
            results = await asyncio.gather(*(self._agent_oak_cycle(a) for a in batch))
            offspring.extend(results)

        return offspring

    async def _agent_oak_cycle(self, agent: MetaAgent) -> MetaAgent:
        try:
            # Sutton's eight steps, each feeding the next
            await agent.learn_policies_and_values()
            features = await agent.generate_new_features()
            ranked = await agent.rank_features(features)
            subproblems = await agent.create_subproblems(ranked)
            options = await agent.learn_subproblem_solutions(subproblems)
            models = await agent.learn_transition_models(options)
            await agent.plan(models)
            await agent.maintain_metadata()
        except Exception as e:
            self._log.warning("oak_cycle_failed", agent_id=agent.id, error=str(e))
            return agent

        return await self._apply_operators(agent)

    async def _apply_operators(self, agent: MetaAgent) -> MetaAgent:
        evolved = agent

        if self._rng.random() < self.config.mutation_rate:
            evolved = await operators.mutate(evolved, self._rng, self._log)

        if self._rng.random() < self.config.crossover_rate and len(self._population) > 1:
            other = operators.pick_other(self._population, agent, self._rng)
            if other is not None:
                evolved = await operators.crossover(evolved, other, self._rng, self._log)

        return evolved

    async def _evaluate_population(self, population: list[MetaAgent]) -> list[float]:
        scores = list(await asyncio.gather(*(self._score(a) for a in population)))
        self._log.debug("fitness_range", low=min(scores), high=max(scores))
        return scores

    async def _score(self, agent: MetaAgent) -> float:
        """Evaluate one agent; a failure or timeout scores FAILED_FITNESS."""
        try:
            return await asyncio.wait_for(
                self._evaluator.evaluate(agent),
                timeout=self.config.evaluation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._log.warning(
                "evaluation_timeout",
                agent_id=agent.id,
                timeout_ms=self.config.evaluation_timeout,
            )
        except Exception as e:
            self._log.warning("evaluation_failed", agent_id=agent.id, error=str(e))
        return FAILED_FITNESS

    async def _update_best_agent(self, population: list[MetaAgent], scores: list[float]) -> None:
        best_index = max(range(len(scores)), key=lambda i: scores[i])
        if scores[best_index] <= self._best_fitness:
            return

        self._best_agent = population[best_index]
        self._best_fitness = scores[best_index]
        self._log.info(
            "new_best_agent",
            agent_id=self._best_agent.id,
            fitness=round(self._best_fitness, 4),
            generation=self._generation,
        )
        await self._emit(topics.NEW_BEST_AGENT, {
            "agent": self._best_agent,
            "fitness": self._best_fitness,
            "generation": self._generation,
        })

    async def _select_next_generation(
        self,
        population: list[MetaAgent],
        scores: list[float],
    ) -> list[MetaAgent]:
        return operators.select_next_generation(population, scores, self.config, self._rng)

    # ── Plumbing ──

    async def _traced(self, phase: str, coro):
        span = self._tracer.start_span(self._trace.id, phase, generation=self._generation)
        try:
            result = await coro
        except Exception as e:
            self._tracer.end_span(span.id, status="error", error=str(e))
            raise
        self._tracer.end_span(span.id)
        return result

    async def _finish(self, outcome: RunState) -> None:
        self._outcome = outcome
        await self._state_machine.transition(outcome)
        await self._state_machine.transition(RunState.IDLE)

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        """Emit an event on the bus."""
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="evolution_loop")
