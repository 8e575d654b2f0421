"""EvolutionConfig — immutable parameters of one evolution run."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from oakevo.exceptions import ConfigError


class EvolutionConfig(BaseModel):
    """Run parameters. Accepts snake_case names or the camelCase JSON keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    population_size: int = Field(50, ge=1, alias="populationSize")
    generation_limit: int = Field(100, ge=1, alias="generationLimit")
    mutation_rate: float = Field(0.1, ge=0.0, le=1.0, alias="mutationRate")
    crossover_rate: float = Field(0.7, ge=0.0, le=1.0, alias="crossoverRate")
    elite_size: int = Field(5, ge=0, alias="eliteSize")
    evaluation_timeout: float = Field(30000, gt=0, alias="evaluationTimeout")  # ms
    convergence_threshold: float = Field(0.001, ge=0.0, alias="convergenceThreshold")
    diversity_weight: float = Field(0.3, ge=0.0, alias="diversityWeight")

    @model_validator(mode="after")
    def _elites_fit_population(self) -> EvolutionConfig:
        if self.elite_size > self.population_size:
            raise ValueError(
                f"elite_size ({self.elite_size}) exceeds "
                f"population_size ({self.population_size})"
            )
        return self

    @property
    def tournament_size(self) -> int:
        return max(2, math.floor(0.1 * self.population_size))

    @property
    def evaluation_timeout_seconds(self) -> float:
        return self.evaluation_timeout / 1000.0

    @classmethod
    def build(cls, data: dict[str, Any] | None = None, **overrides: Any) -> EvolutionConfig:
        """Validate a partial config, raising ConfigError instead of ValidationError."""
        merged = dict(data or {})
        for name, value in overrides.items():
            merged.pop(cls.model_fields[name].alias, None)
            merged[name] = value
        try:
            return cls.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(str(e)) from e

    def to_json_dict(self) -> dict[str, Any]:
        """camelCase form, as written to meta-config.json."""
        return self.model_dump(by_alias=True)
