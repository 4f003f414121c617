"""Runtime configuration read from ``HELIX_*`` environment variables."""
from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain import DEFAULT_DIFFICULTY, MAX_DIFFICULTY, MIN_DIFFICULTY
from .repositioning import HISTORY_LIMIT


class SchedulerConfig(BaseSettings):
    """Policy knobs of the scheduler; curriculum constants are not configurable."""

    model_config = SettingsConfigDict(
        env_prefix="HELIX_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    rounds_per_rotation: int = Field(
        default=1,
        ge=0,
        description="Rotate after this many completed rounds; 0 disables automatic rotation",
    )
    auto_compress: bool = Field(
        default=True,
        description="Compress a path when its front slot is empty instead of failing outright",
    )
    allow_demotion: bool = True
    initial_difficulty: int = Field(
        default=DEFAULT_DIFFICULTY, ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY
    )
    history_limit: int = Field(
        default=HISTORY_LIMIT,
        ge=1,
        description="Repositioning records kept per unit, newest first",
    )
    db_path: Optional[str] = None
    curriculum_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        return cls()


__all__ = ["SchedulerConfig"]
