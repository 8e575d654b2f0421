"""Ecosystem initialization — scaffolds a workspace and loads it back.

``EcosystemInitializer`` writes the JSON files a run is configured from
(meta-config, initial population, monitoring, initialization report).
The loaders turn those files into an ``EvolutionConfig`` and a list of
ready-to-initialize agents.
"""

from __future__ import annotations

import json
import logging
import random
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from oakevo import __version__
from oakevo.agents.base import MetaAgent
from oakevo.agents.heuristic import HeuristicMetaAgent
from oakevo.evolution.config import EvolutionConfig
from oakevo.exceptions import ConfigError, PopulationSpecError
from oakevo.types import AgentConfig, ParamValue

logger = logging.getLogger(__name__)

META_CONFIG = "meta-config.json"
INITIAL_POPULATION = "initial-population.json"
MONITORING_CONFIG = "monitoring-config.json"
INITIALIZATION_REPORT = "initialization-report.json"

AgentFactory = Callable[[AgentConfig, random.Random], MetaAgent]

# Agent type name -> factory. "KimiK2Adapter" is the name older population files use.
AGENT_TYPES: dict[str, AgentFactory] = {
    "HeuristicMetaAgent": lambda cfg, rng: HeuristicMetaAgent(cfg, rng=rng),
    "KimiK2Adapter": lambda cfg, rng: HeuristicMetaAgent(cfg, rng=rng),
}

ECOSYSTEM_REPOSITORIES: dict[str, str] = {
    "meta": "controller",
    "agent-registry": "registry",
    "agent-army-core": "sdk",
    "sector-packs": "specialization",
    "lite-templates": "templates",
    "coordinators": "orchestration",
}


# ── Population spec ──────────────────────────────────────────────


class AgentSpec(BaseModel):
    id: str
    type: str
    config: dict[str, ParamValue] = Field(default_factory=dict)
    capabilities: list[str] = Field(default_factory=list)


class EnvironmentSpec(BaseModel):
    type: str = "multi-objective"
    objectives: list[str] = Field(
        default_factory=lambda: ["performance", "efficiency", "robustness", "novelty"]
    )
    constraints: dict[str, ParamValue] = Field(default_factory=lambda: {
        "maxResourceUsage": 0.8,
        "maxExecutionTime": 30000,
        "safetyBounds": True,
    })


class PopulationSpec(BaseModel):
    agents: list[AgentSpec] = Field(default_factory=list)
    environment: EnvironmentSpec = Field(default_factory=EnvironmentSpec)


class InitializationReport(BaseModel):
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    version: str = __version__
    status: str = "initialized"
    root: str = ""
    files: list[str] = Field(default_factory=list)
    initialization_ms: float = 0.0
    next_steps: list[str] = Field(default_factory=lambda: [
        "Run the evolutionary loop: oakevo evolve",
        "Inspect the workspace: oakevo status",
    ])


def default_population_spec() -> PopulationSpec:
    return PopulationSpec(agents=[
        AgentSpec(
            id="heuristic-base",
            type="HeuristicMetaAgent",
            config={
                "knowledgeBase": "scientific",
                "reasoningMode": "hybrid",
                "learningRate": 0.001,
            },
        )
    ])


# ── Initializer ──────────────────────────────────────────────────


class EcosystemInitializer:
    """Writes the workspace files a run is configured from."""

    def __init__(self, root: Path, config: EvolutionConfig | None = None) -> None:
        self.root = Path(root)
        self.config = config or EvolutionConfig(population_size=20, generation_limit=1000)

    def initialize(self, overwrite: bool = False) -> InitializationReport:
        started = time.monotonic()
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / "agents").mkdir(exist_ok=True)

        written = []
        for name, payload in (
            (META_CONFIG, self._meta_config()),
            (INITIAL_POPULATION, default_population_spec().model_dump()),
            (MONITORING_CONFIG, self._monitoring_config()),
        ):
            if self._write(name, payload, overwrite):
                written.append(name)

        report = InitializationReport(
            root=str(self.root),
            files=written,
            initialization_ms=(time.monotonic() - started) * 1000,
        )
        self._write(INITIALIZATION_REPORT, report.model_dump(), overwrite=True)
        logger.info("Initialized ecosystem at %s (%d files written)", self.root, len(written))
        return report

    def _write(self, name: str, payload: dict[str, Any], overwrite: bool) -> bool:
        path = self.root / name
        if path.exists() and not overwrite:
            logger.info("Keeping existing %s", path)
            return False
        path.write_text(json.dumps(payload, indent=2) + "\n")
        return True

    def _meta_config(self) -> dict[str, Any]:
        return {
            "ecosystem": {
                "repositories": [
                    {"name": name, "role": role}
                    for name, role in ECOSYSTEM_REPOSITORIES.items()
                ],
            },
            "evolution": {"enabled": True, **self.config.to_json_dict()},
            "monitoring": {
                "enabled": True,
                "metricsInterval": 1000,
                "alertThresholds": {
                    "performanceDrop": 0.2,
                    "resourceUsage": 0.9,
                    "errorRate": 0.05,
                },
            },
        }

    @staticmethod
    def _monitoring_config() -> dict[str, Any]:
        return {
            "metrics": {
                "evolution": ["fitness", "diversity", "convergence"],
                "agents": ["performance", "stability", "adaptability"],
            },
            "alerts": {
                "channels": ["console", "file"],
                "thresholds": {"critical": 0.95, "warning": 0.8, "info": 0.6},
            },
        }


# ── Loaders ──────────────────────────────────────────────────────


def _read_json(path: Path, error: type[Exception]) -> dict[str, Any]:
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise error(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise error(f"{path} must contain a JSON object")
    return data


def load_evolution_config(path: Path, **overrides: Any) -> EvolutionConfig:
    """Read the ``evolution`` section of a meta-config file."""
    data = _read_json(path, ConfigError)
    section = data.get("evolution", {})
    if not isinstance(section, dict):
        raise ConfigError(f"'evolution' in {path} must be an object")
    if section.get("enabled") is False:
        raise ConfigError(f"Evolution is disabled in {path}")
    return EvolutionConfig.build(section, **overrides)


def load_population_spec(path: Path) -> PopulationSpec:
    data = _read_json(path, PopulationSpecError)
    try:
        spec = PopulationSpec.model_validate(data)
    except ValidationError as e:
        raise PopulationSpecError(str(e)) from e
    if not spec.agents:
        raise PopulationSpecError(f"{path} lists no agents")
    return spec


def build_population(
    spec: PopulationSpec,
    size: int,
    rng: random.Random | None = None,
) -> list[tuple[MetaAgent, AgentConfig]]:
    """Instantiate ``size`` agents by cycling through the spec's agents.

    Returns each agent with the config it should be initialized with.
    """
    if not spec.agents:
        raise PopulationSpecError("Population spec lists no agents")
    rng = rng or random.Random()

    population = []
    for i in range(size):
        entry = spec.agents[i % len(spec.agents)]
        factory = AGENT_TYPES.get(entry.type)
        if factory is None:
            raise PopulationSpecError(
                f"Unknown agent type '{entry.type}'. Known: {', '.join(sorted(AGENT_TYPES))}"
            )
        config = AgentConfig(
            id=f"{entry.id}-{i}",
            type=entry.type,
            parameters=entry.config,
            capabilities=entry.capabilities,
        )
        agent_rng = random.Random(rng.random())
        population.append((factory(config, agent_rng), config))
    return population
