"""Shared test fixtures: scripted agents and deterministic evaluators."""

from __future__ import annotations

import asyncio
import logging

import pytest
import structlog

from oakevo.agents.base import MetaAgent
from oakevo.evolution.fitness import FitnessEvaluator
from oakevo.types import (
    Action,
    AgentOption,
    State,
    Subproblem,
    TransitionModel,
    new_id,
)


class ScriptedAgent(MetaAgent):
    """Agent that records every call. Every capability raises when ``broken``."""

    def __init__(
        self,
        agent_id: str | None = None,
        broken: bool = False,
        act_delay: float = 0.0,
        action_type: str = "scripted",
        concurrency: dict | None = None,
    ):
        self.id = agent_id or new_id()
        self.broken = broken
        self.act_delay = act_delay
        self.action_type = action_type
        self.calls: list[str] = []
        self.experiences = []
        self._concurrency = concurrency  # shared {"now": int, "peak": int}

    def __repr__(self) -> str:
        return f"ScriptedAgent({self.id!r})"

    def _record(self, name: str) -> None:
        if self.broken:
            raise RuntimeError(f"{name} is broken")
        self.calls.append(name)

    async def learn_policies_and_values(self):
        self._record("learn_policies_and_values")
        if self._concurrency is not None:
            self._concurrency["now"] += 1
            self._concurrency["peak"] = max(self._concurrency["peak"], self._concurrency["now"])
            await asyncio.sleep(0.005)
            self._concurrency["now"] -= 1

    async def generate_new_features(self):
        self._record("generate_new_features")
        return ["alpha", "beta"]

    async def rank_features(self, features):
        self._record("rank_features")
        return {f: 0.9 for f in features}

    async def create_subproblems(self, ranked_features):
        self._record("create_subproblems")
        return [Subproblem(id=f, target_feature=f, intensity=u) for f, u in ranked_features.items()]

    async def learn_subproblem_solutions(self, subproblems):
        self._record("learn_subproblem_solutions")
        return [
            AgentOption(name=sp.id, target_feature=sp.target_feature, intensity=sp.intensity)
            for sp in subproblems
        ]

    async def learn_transition_models(self, options):
        self._record("learn_transition_models")
        return [
            TransitionModel(option_name=o.name, target_feature=o.target_feature, enhancement=0.1)
            for o in options
        ]

    async def plan(self, models):
        self._record("plan")
        return [Action(type="planned")]

    async def maintain_metadata(self):
        self._record("maintain_metadata")

    async def perceive(self, observations):
        self._record("perceive")
        return State(features={"count": float(len(observations))})

    async def act(self, state):
        self._record("act")
        if self.act_delay:
            await asyncio.sleep(self.act_delay)
        return Action(type=self.action_type, parameters={"a": 1})

    async def learn(self, experience):
        self._record("learn")
        self.experiences.append(experience)

    async def initialize(self, config):
        self._record("initialize")

    async def shutdown(self):
        self._record("shutdown")


class TableEvaluator(FitnessEvaluator):
    """Scores agents from a fixed id -> fitness table and records what it saw."""

    def __init__(self, table: dict[str, float] | None = None, default: float = 0.0):
        self.table = table or {}
        self.default = default
        self.evaluated: list[MetaAgent] = []
        self.scores: list[float] = []

    async def evaluate(self, agent):
        self.evaluated.append(agent)
        score = self.table.get(agent.id, self.default)
        self.scores.append(score)
        return score


class CountingEvaluator(FitnessEvaluator):
    """Fitness rises by ``step`` with every call, so every generation beats the last."""

    def __init__(self, step: float = 0.01):
        self.step = step
        self.calls = 0
        self.scores: list[float] = []

    async def evaluate(self, agent):
        self.calls += 1
        score = self.calls * self.step
        self.scores.append(score)
        return score


@pytest.fixture(autouse=True)
def reset_logging():
    root = logging.getLogger()
    level = root.level
    yield
    structlog.reset_defaults()
    root.setLevel(level)


@pytest.fixture
def make_agents():
    def _factory(n: int, **kwargs) -> list[ScriptedAgent]:
        return [ScriptedAgent(agent_id=f"agent-{i}", **kwargs) for i in range(n)]
    return _factory


@pytest.fixture
def scripted_agent_cls():
    return ScriptedAgent


@pytest.fixture
def table_evaluator():
    def _factory(table=None, default=0.0) -> TableEvaluator:
        return TableEvaluator(table, default)
    return _factory


@pytest.fixture
def counting_evaluator():
    return CountingEvaluator()
