"""Configuration models."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EngineConfig(BaseModel):
    """Engine configuration."""
    task_poll_interval: float = Field(default=2.0, gt=0)
    task_timeout: Optional[float] = Field(default=600.0, gt=0)
    hot_nic_change: bool = Field(default=False, description="Platform can change the primary NIC of a running VM")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class StratusConfig(BaseModel):
    """Main configuration model."""
    engine: EngineConfig = Field(default_factory=EngineConfig)
    state_dir: str = Field(default="./state")

    model_config = ConfigDict(extra="ignore")
