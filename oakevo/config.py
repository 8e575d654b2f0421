"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class OakevoSettings(BaseSettings):
    workspace_dir: Path = Path(".oakevo")
    log_level: str = "INFO"
    seed: int | None = None  # seeds every run-scoped RNG when set
    event_history_limit: int = 500
    trace_history_limit: int = 50

    # Oak cycle / evaluation harness
    oak_batch_size: int = 10
    evaluation_steps: int = 10

    model_config = {"env_prefix": "OAKEVO_"}


settings = OakevoSettings()
