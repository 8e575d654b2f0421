"""HeuristicMetaAgent — a simulated meta-agent for driving the evolution loop.

Knowledge is a pair of weight tables (reasoning patterns and domain
expertise). Experiences nudge those weights; feature ranking and option
scoring mix the weights with random noise. None of this is real learning,
it gives the loop something stateful and cheap to select over.
"""

from __future__ import annotations

import json
import random
from collections import deque
from datetime import datetime
from typing import Any

import structlog

from oakevo.agents.base import MetaAgent
from oakevo.types import (
    Action,
    AgentConfig,
    AgentOption,
    Experience,
    State,
    Subproblem,
    TransitionModel,
    new_id,
)

logger = structlog.get_logger()

BASE_FEATURES = ["complexity", "novelty", "utility", "coherence"]
ENHANCED_FEATURES = [
    "semantic_depth",
    "logical_consistency",
    "cross_domain_relevance",
    "knowledge_integration_potential",
    "reasoning_pathway_clarity",
]
SUBPROBLEM_UTILITY_THRESHOLD = 0.7
PLANNING_HORIZON = 5
VALUE_LEARNING_RATE = 0.01
KNOWLEDGE_GAP_THRESHOLD = 0.6
REPLAY_LIMIT = 32


def _default_reasoning() -> dict[str, float]:
    return {"deductive": 0.8, "inductive": 0.7, "abductive": 0.6}


def _default_expertise() -> dict[str, float]:
    return {"science": 0.9, "technology": 0.85, "mathematics": 0.9, "linguistics": 0.8}


class HeuristicMetaAgent(MetaAgent):
    """Weight-table agent implementing every Oak step with simple heuristics."""

    def __init__(
        self,
        config: AgentConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or AgentConfig(type="HeuristicMetaAgent")
        self.id = self.config.id
        self._rng = rng or random.Random()
        self.reasoning: dict[str, float] = _default_reasoning()
        self.expertise: dict[str, float] = _default_expertise()
        self.performance: dict[str, float] = {}
        self.options: list[AgentOption] = []
        self.models: list[TransitionModel] = []
        self.metadata: dict[str, Any] = {}
        self.experience_count = 0
        self.initialized = False
        self._replay: deque[Experience] = deque(maxlen=REPLAY_LIMIT)

    def __repr__(self) -> str:
        return f"HeuristicMetaAgent(id={self.id!r})"

    # ── Lifecycle ──

    async def initialize(self, config: AgentConfig) -> None:
        self.config = config
        self.id = config.id
        self.reasoning = _default_reasoning()
        self.expertise = _default_expertise()
        self._replay.clear()
        self.performance = {
            "reasoning_accuracy": 0.92,
            "knowledge_coverage": 0.88,
            "response_coherence": 0.94,
        }
        self.metadata = {
            "capabilities": list(config.capabilities) or [
                "natural_language_understanding",
                "mathematical_reasoning",
                "code_generation",
                "scientific_analysis",
                "creative_synthesis",
            ],
            "init_timestamp": datetime.utcnow().isoformat(),
        }
        self.initialized = True
        logger.debug("agent_initialized", agent_id=self.id)

    async def shutdown(self) -> None:
        self.metadata["final_knowledge_state"] = {
            "domain_expertise": dict(self.expertise),
            "reasoning_patterns": dict(self.reasoning),
        }
        self.metadata["shutdown_timestamp"] = datetime.utcnow().isoformat()
        self.metadata["experiences"] = self.experience_count
        logger.debug("agent_shutdown", agent_id=self.id, experiences=self.experience_count)

    # ── Oak Architecture 8-step loop ──

    async def learn_policies_and_values(self) -> None:
        while self._replay:
            experience = self._replay.popleft()
            self.update_value(experience.state, experience.reward.value)
        self.metadata["knowledge_gaps"] = self.knowledge_gaps()
        self._bump_reasoning_accuracy()

    async def generate_new_features(self) -> list[str]:
        return BASE_FEATURES + ENHANCED_FEATURES

    async def rank_features(self, features: list[str]) -> dict[str, float]:
        rankings: dict[str, float] = {}
        for feature in features:
            score = self._rng.random() * 0.5 + 0.25
            if "semantic" in feature or "reasoning" in feature:
                score += 0.3
            if "knowledge" in feature or "logical" in feature:
                score += 0.25
            rankings[feature] = min(score, 1.0)
        return rankings

    async def create_subproblems(self, ranked_features: dict[str, float]) -> list[Subproblem]:
        return [
            Subproblem(id=f"subproblem_{feature}", target_feature=feature, intensity=utility)
            for feature, utility in ranked_features.items()
            if utility > SUBPROBLEM_UTILITY_THRESHOLD
        ]

    async def learn_subproblem_solutions(self, subproblems: list[Subproblem]) -> list[AgentOption]:
        self.options = [
            AgentOption(
                name=f"option_{sp.target_feature}",
                target_feature=sp.target_feature,
                intensity=sp.intensity,
                description=f"Policy for achieving {sp.target_feature}",
            )
            for sp in subproblems
        ]
        return self.options

    async def learn_transition_models(self, options: list[AgentOption]) -> list[TransitionModel]:
        confidence = self._reasoning_confidence(0)
        self.models = [
            TransitionModel(
                option_name=opt.name,
                target_feature=opt.target_feature,
                enhancement=min(0.3, opt.intensity * confidence),
            )
            for opt in options
        ]
        return self.models

    async def plan(self, models: list[TransitionModel]) -> list[Action]:
        base = self.performance.get("reasoning_accuracy", 0.9)
        return [
            Action(
                type="planned_action",
                parameters={
                    "step": step,
                    "confidence": max(0.5, base - step * 0.1),
                    "models": len(models),
                },
            )
            for step in range(PLANNING_HORIZON)
        ]

    async def maintain_metadata(self) -> None:
        self.metadata.update({
            "last_update": datetime.utcnow().isoformat(),
            "active_options": len(self.options),
            "transition_models": len(self.models),
            "experiences": self.experience_count,
        })

    # ── Core operations ──

    async def perceive(self, observations: list[Any]) -> State:
        text = json.dumps(observations, default=str).lower()
        relevance = sum(w for d, w in self.expertise.items() if d in text)
        return State(
            id=f"state_{new_id()}",
            features={
                "information_density": min(1.0, len(observations) * 0.1),
                "semantic_coherence": self._rng.random() * 0.3 + 0.7,
                "knowledge_relevance": min(1.0, relevance / len(self.expertise)),
            },
            context={"agent_type": self.config.type, "observations": len(observations)},
        )

    async def act(self, state: State) -> Action:
        option = self._best_option(state)
        if option is not None:
            return Action(
                type=f"enhance_{option.target_feature}",
                parameters={
                    "target_feature": option.target_feature,
                    "intensity": option.intensity,
                    "domain_relevance": self._domain_relevance(state),
                    "reasoning_confidence": self._reasoning_confidence(len(state.context)),
                },
            )
        return Action(
            type="default_action",
            parameters={
                "confidence": self._reasoning_confidence(len(state.context)),
                "knowledge_source": self._relevant_domains(state),
            },
        )

    async def learn(self, experience: Experience) -> None:
        self.experience_count += 1
        self._replay.append(experience)
        signal = experience.reward.value

        if abs(signal) > 0.1:
            adjustment = 0.01 if signal > 0 else -0.005
            for domain in self._relevant_domains(experience.state):
                self.expertise[domain] = max(0.1, min(1.0, self.expertise[domain] + adjustment))

        self._bump_reasoning_accuracy()

        if signal > 0.5:
            for pattern, strength in self.reasoning.items():
                self.reasoning[pattern] = min(1.0, strength + 0.01)

    # ── Value function ──

    def estimate_value(self, state: State) -> float:
        if not state.features:
            return 0.0
        base = sum(state.features.values()) / len(state.features)
        bonus = min(len(state.context) * 0.1 * self._domain_relevance(state), 0.5)
        return base * (1 + bonus)

    def update_value(self, state: State, target: float) -> float:
        """Move relevant expertise toward ``target``. Returns the prediction error."""
        error = target - self.estimate_value(state)
        for domain in self._relevant_domains(state):
            weight = self.expertise[domain] + VALUE_LEARNING_RATE * error
            self.expertise[domain] = max(0.1, min(1.0, weight))
        return error

    def knowledge_gaps(self) -> list[str]:
        return [d for d, w in self.expertise.items() if w < KNOWLEDGE_GAP_THRESHOLD]

    # ── Heuristics ──

    def _bump_reasoning_accuracy(self) -> None:
        current = self.performance.get("reasoning_accuracy", 0.9)
        self.performance["reasoning_accuracy"] = min(1.0, current + 0.001)

    def _relevant_domains(self, state: State) -> list[str]:
        text = json.dumps(state.context, default=str).lower()
        return [d for d in self.expertise if d in text]

    def _domain_relevance(self, state: State) -> float:
        return min(1.0, sum(self.expertise[d] for d in self._relevant_domains(state)))

    def _reasoning_confidence(self, context_size: int) -> float:
        avg = sum(self.reasoning.values()) / len(self.reasoning)
        return max(0.1, avg - context_size * 0.05)

    def _best_option(self, state: State) -> AgentOption | None:
        if not self.options:
            return None
        bonus = min(len(state.context) * 0.1 * self._domain_relevance(state), 0.5)
        return max(self.options, key=lambda opt: self._rng.random() + bonus)
