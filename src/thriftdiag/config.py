"""Configuration for thriftdiag.

Settings are grouped by the component that consumes them:
- diagnostics: scheduling delays, throttling and concurrency for analysis runs
- include_cache: sizing and expiry of the include-type cache
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class DiagnosticsSettings(BaseModel):
    """Scheduling knobs for re-analysis of open documents."""

    analysis_delay_ms: int = Field(300, ge=0, description="Debounce delay for edits")
    min_analysis_interval_ms: int = Field(
        1000, ge=0, description="Minimum gap between two runs of the same document"
    )
    max_concurrent_analyses: int = Field(
        1, ge=1, description="Upper bound on concurrently running analyses"
    )
    dependent_analysis_delay_ms: int = Field(
        1000, ge=0, description="Delay before re-analysing files that include a changed file"
    )
    file_patterns: List[str] = Field(default_factory=lambda: ["*.thrift"])

    @property
    def analysis_delay(self) -> float:
        return self.analysis_delay_ms / 1000.0

    @property
    def min_analysis_interval(self) -> float:
        return self.min_analysis_interval_ms / 1000.0

    @property
    def dependent_analysis_delay(self) -> float:
        return self.dependent_analysis_delay_ms / 1000.0


class IncludeCacheSettings(BaseModel):
    """Sizing for the cache of type maps extracted from included files."""

    max_size: int = Field(200, ge=0)
    ttl_ms: int = Field(3 * 60 * 1000, ge=0)
    lru_k: int = 2
    eviction_threshold: float = 0.8

    @field_validator("lru_k", mode="before")
    def _at_least_one(cls, value: int) -> int:
        return max(1, int(value))

    @field_validator("eviction_threshold", mode="before")
    def _clamp_threshold(cls, value: float) -> float:
        return min(1.0, max(0.0, float(value)))

    @property
    def ttl(self) -> float:
        return self.ttl_ms / 1000.0


class Settings(BaseModel):
    """thriftdiag settings."""

    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)
    include_cache: IncludeCacheSettings = Field(default_factory=IncludeCacheSettings)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load configuration from YAML if provided, otherwise use defaults."""
    path = config_path or Path.cwd() / "thriftdiag.yaml"
    if path.exists():
        data = yaml.safe_load(path.read_text()) or {}
    else:
        data = {}
    return Settings(**data)
