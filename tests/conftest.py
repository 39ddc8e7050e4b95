"""Shared test fixtures for thriftdiag tests."""
from pathlib import Path
from typing import Callable, List

import pytest

from thriftdiag.config import DiagnosticsSettings, IncludeCacheSettings, Settings
from thriftdiag.models.records import Issue


class FakeClock:
    """Manually advanced clock for cache tests."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def codes(issues: List[Issue]) -> List[str]:
    return [issue.code for issue in issues]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with short delays so scheduling tests finish quickly."""
    return Settings(
        diagnostics=DiagnosticsSettings(
            analysis_delay_ms=10,
            min_analysis_interval_ms=0,
            max_concurrent_analyses=1,
            dependent_analysis_delay_ms=10,
        ),
        include_cache=IncludeCacheSettings(max_size=50, ttl_ms=60_000),
    )


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
