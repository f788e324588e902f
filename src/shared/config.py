"""Process-level settings using pydantic-settings."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class EngineSettings(BaseSettings):
    """Environment-driven settings shared by the CLI and the engine."""
    log_level: str = Field(default="info", validation_alias="IOSM_LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="IOSM_LOG_FORMAT")
    state_dir: str = Field(default=".iosm", validation_alias="IOSM_STATE_DIR")
    config_path: str = Field(default="iosm.yaml", validation_alias="IOSM_CONFIG")

    model_config = {
        "extra": "ignore",
    }
