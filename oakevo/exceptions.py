"""Custom exception hierarchy for oakevo."""


class OakevoError(Exception):
    """Base for all oakevo errors."""


class ConfigError(OakevoError):
    """Evolution configuration is malformed or violates an invariant."""


class EvolutionError(OakevoError):
    """A run-level failure aborted the evolution loop."""


class RunStateError(OakevoError):
    """Invalid run lifecycle transition."""


class EvaluationTimeoutError(OakevoError):
    """An agent did not act within the evaluation timeout."""


class PopulationSpecError(OakevoError):
    """Initial population description is malformed or names an unknown agent type."""
