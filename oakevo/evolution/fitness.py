"""Fitness evaluation — a synthetic rollout harness behind a pluggable interface.

``SyntheticEvaluator`` is a stand-in: rewards and both fitness bonuses are
random noise shaped by a crude action-quality heuristic. Real evaluators
implement ``FitnessEvaluator`` and are handed to the loop instead.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod

import structlog

from oakevo.agents.base import MetaAgent
from oakevo.evolution.config import EvolutionConfig
from oakevo.exceptions import EvaluationTimeoutError
from oakevo.types import Action, Experience, Reward, State, new_id

logger = structlog.get_logger()

FAILED_FITNESS = -1.0
DEFAULT_STEPS = 10

# feature -> (max |delta| per step, lower bound, upper bound or None)
FEATURE_DYNAMICS: dict[str, tuple[float, float, float | None]] = {
    "challenge_level": (0.1, 0.0, None),
    "complexity": (0.05, 0.0, None),
    "noise_level": (0.05, 0.0, 1.0),
    "resource_availability": (0.075, 0.0, 1.0),
    "time_pressure": (0.05, 0.0, 1.0),
}


class FitnessEvaluator(ABC):
    @abstractmethod
    async def evaluate(self, agent: MetaAgent) -> float:
        """Score one agent. Must not raise; failures score ``FAILED_FITNESS``."""


class SyntheticEnvironment:
    """Random-walk environment over five bounded features."""

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    def initial_state(self) -> State:
        rng = self._rng
        return State(
            id=f"eval_state_{new_id()}",
            features={
                "challenge_level": rng.random(),
                "complexity": rng.random(),
                "noise_level": rng.random() * 0.3,
                "resource_availability": rng.random(),
                "time_pressure": rng.random(),
            },
            context={"environment": "evaluation", "difficulty": rng.random()},
        )

    def step(self, state: State, action: Action) -> tuple[State, Reward]:
        base_reward = self._rng.random() * 2 - 1
        quality = action_quality(state, action)

        features = {}
        for name, (delta, low, high) in FEATURE_DYNAMICS.items():
            value = state.feature(name) + (self._rng.random() - 0.5) * 2 * delta
            value = max(low, value)
            if high is not None:
                value = min(high, value)
            features[name] = value

        next_state = State(
            id=f"next_{state.id}",
            features=features,
            context={**state.context, "previous_action": action.type},
        )
        reward = Reward(
            value=base_reward * quality,
            source="environment",
            metadata={"action_quality": quality, "base_reward": base_reward},
        )
        return next_state, reward


def action_quality(state: State, action: Action) -> float:
    """Heuristic in [0.1, 1.0]: complex actions suit complex states, adaptive types score higher."""
    quality = 0.5
    state_complexity = state.features.get("complexity", 0.5)
    action_complexity = len(action.parameters) * 0.1

    if state_complexity > 0.7 and action_complexity > 0.3:
        quality += 0.3
    if state_complexity < 0.3 and action_complexity > 0.5:
        quality -= 0.2
    if "adapt" in action.type or "learn" in action.type:
        quality += 0.2

    return max(0.1, min(1.0, quality))


class SyntheticEvaluator(FitnessEvaluator):
    """Scores an agent by a short rollout in ``SyntheticEnvironment``.

    Each ``act`` call is bounded by the configured evaluation timeout; a
    late call is cancelled and the whole evaluation scores -1.
    """

    def __init__(
        self,
        config: EvolutionConfig,
        rng: random.Random | None = None,
        steps: int = DEFAULT_STEPS,
        log=None,
    ) -> None:
        if steps < 1:
            raise ValueError("steps must be at least 1")
        self._config = config
        self._rng = rng or random.Random()
        self._steps = steps
        self._env = SyntheticEnvironment(self._rng)
        self._log = log or logger

    async def evaluate(self, agent: MetaAgent) -> float:
        try:
            return await self._rollout(agent)
        except EvaluationTimeoutError as e:
            self._log.warning("evaluation_timeout", agent_id=agent.id, error=str(e))
        except Exception as e:
            self._log.warning("evaluation_failed", agent_id=agent.id, error=str(e))
        return FAILED_FITNESS

    async def _rollout(self, agent: MetaAgent) -> float:
        total_reward = 0.0
        state = self._env.initial_state()

        for step in range(self._steps):
            action = await self._act(agent, state)
            next_state, reward = self._env.step(state, action)
            total_reward += reward.value
            await agent.learn(Experience(
                state=state,
                action=action,
                reward=reward,
                next_state=next_state,
                done=step == self._steps - 1,
            ))
            state = next_state

        return total_reward / self._steps + self._complexity_bonus() + self._diversity_bonus()

    async def _act(self, agent: MetaAgent, state: State) -> Action:
        timeout = self._config.evaluation_timeout_seconds
        try:
            return await asyncio.wait_for(agent.act(state), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise EvaluationTimeoutError(
                f"Agent {agent.id} did not act within {self._config.evaluation_timeout:g}ms"
            ) from e

    def _complexity_bonus(self) -> float:
        return self._rng.random() * 0.1

    def _diversity_bonus(self) -> float:
        return self._rng.random() * 0.05 * self._config.diversity_weight
