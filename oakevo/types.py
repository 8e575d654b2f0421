"""Core types shared across all oakevo subsystems."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field

# ── Value Types ───────────────────────────────────────────────────────────────

AgentId: TypeAlias = str
Scalar: TypeAlias = str | int | float | bool | None
ContextValue: TypeAlias = Scalar
ParamValue: TypeAlias = Scalar | list[Scalar] | dict[str, Scalar]


def new_id() -> str:
    return uuid.uuid4().hex[:12]


# ── Run States ────────────────────────────────────────────────────────────────


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONVERGED = "converged"
    GENERATION_LIMIT_REACHED = "generation_limit_reached"
    STOPPED = "stopped"
    ERRORED = "errored"


# ── Environment Interaction ───────────────────────────────────────────────────


class State(BaseModel):
    """An observation of the environment. Replaced, never edited."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    features: dict[str, float] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    context: dict[str, ContextValue] = Field(default_factory=dict)

    def feature(self, name: str, default: float = 0.0) -> float:
        return self.features.get(name, default)


class Action(BaseModel):
    type: str
    parameters: dict[str, ParamValue] = Field(default_factory=dict)
    expected_outcome: str | None = None


class Reward(BaseModel):
    value: float
    source: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: dict[str, float] = Field(default_factory=dict)


class Experience(BaseModel):
    """One transition, consumed immediately by ``MetaAgent.learn``."""

    state: State
    action: Action
    reward: Reward
    next_state: State
    done: bool = False


# ── Oak Cycle Artifacts ───────────────────────────────────────────────────────


class Subproblem(BaseModel):
    """Achieve a high value of one feature; intensity is Sutton's kappa."""

    id: str
    target_feature: str
    intensity: float


class AgentOption(BaseModel):
    """A temporally extended behaviour learned for one subproblem."""

    name: str
    target_feature: str
    intensity: float
    description: str = ""

    def is_terminal(self, state: State) -> bool:
        return state.feature(self.target_feature) >= self.intensity * 0.8


class TransitionModel(BaseModel):
    option_name: str
    target_feature: str
    enhancement: float = 0.0

    def predict(self, state: State, action: Action) -> State:
        features = dict(state.features)
        if action.parameters.get("target_feature") == self.target_feature:
            features[self.target_feature] = features.get(self.target_feature, 0.0) + self.enhancement
        return State(
            id=f"predicted_{state.id}",
            features=features,
            context={**state.context, "predicted": True},
        )


# ── Agent Definition ─────────────────────────────────────────────────────────


class AgentConfig(BaseModel):
    """Describes an agent instance to be initialized."""

    id: AgentId = Field(default_factory=new_id)
    type: str
    parameters: dict[str, ParamValue] = Field(default_factory=dict)
    capabilities: list[str] = Field(default_factory=list)
    constraints: dict[str, ParamValue] = Field(default_factory=dict)
