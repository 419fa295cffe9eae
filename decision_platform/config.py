"""Application configuration and feature flags."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_RULES_PATH = Path(__file__).parent / "rules" / "data" / "rules.yaml"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API
    app_name: str = "Decision Platform"
    engine_version: Literal["v1", "v2"] = "v1"

    # Rules
    rules_config_path: str = str(DEFAULT_RULES_PATH)
    max_condition_depth: int = Field(default=32, ge=1, le=256)

    # Arbitration (only consulted in v2)
    ai_enabled: bool = False
    ai_timeout_ms: int = Field(default=5000, gt=0)
    arbiter_factory: str | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def arbitration_enabled(self) -> bool:
        """Whether this deployment runs in a mode that allows secondary review."""
        return self.engine_version == "v2" and self.ai_enabled

    @property
    def ai_timeout_seconds(self) -> float:
        return self.ai_timeout_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
