"""Abstract base for Oak Architecture meta-agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from oakevo.types import (
    Action,
    AgentConfig,
    AgentOption,
    Experience,
    State,
    Subproblem,
    TransitionModel,
)

# Sutton's eight steps, in the order the loop driver runs them
OAK_STEPS: tuple[str, ...] = (
    "learn_policies_and_values",
    "generate_new_features",
    "rank_features",
    "create_subproblems",
    "learn_subproblem_solutions",
    "learn_transition_models",
    "plan",
    "maintain_metadata",
)


class MetaAgent(ABC):
    """The unit of selection, mutation and crossover.

    The evolution loop only ever calls these methods; it never looks at an
    agent's internals. Agents compare by identity.
    """

    id: str = ""

    # ── Oak Architecture 8-step loop ──

    @abstractmethod
    async def learn_policies_and_values(self) -> None: ...

    @abstractmethod
    async def generate_new_features(self) -> list[str]: ...

    @abstractmethod
    async def rank_features(self, features: list[str]) -> dict[str, float]: ...

    @abstractmethod
    async def create_subproblems(self, ranked_features: dict[str, float]) -> list[Subproblem]: ...

    @abstractmethod
    async def learn_subproblem_solutions(self, subproblems: list[Subproblem]) -> list[AgentOption]: ...

    @abstractmethod
    async def learn_transition_models(self, options: list[AgentOption]) -> list[TransitionModel]: ...

    @abstractmethod
    async def plan(self, models: list[TransitionModel]) -> list[Action]: ...

    @abstractmethod
    async def maintain_metadata(self) -> None: ...

    # ── Core operations ──

    @abstractmethod
    async def perceive(self, observations: list[Any]) -> State: ...

    @abstractmethod
    async def act(self, state: State) -> Action: ...

    @abstractmethod
    async def learn(self, experience: Experience) -> None: ...

    # ── Lifecycle ──

    @abstractmethod
    async def initialize(self, config: AgentConfig) -> None: ...

    @abstractmethod
    async def shutdown(self) -> None: ...

