"""Conversions from the compose model to engine API values."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping

from composekit.model import HealthCheckConfig


@dataclass
class HealthConfig:
    """Health check settings as the engine expects them."""

    test: list[str] = field(default_factory=list)
    interval: timedelta = field(default_factory=timedelta)
    timeout: timedelta = field(default_factory=timedelta)
    start_period: timedelta = field(default_factory=timedelta)
    retries: int = 0


def to_moby_env(environment: Mapping[str, str | None]) -> list[str]:
    """``KEY=value`` entries, or bare ``KEY`` where the value is unset."""
    return [key if value is None else f"{key}={value}" for key, value in environment.items()]


def to_moby_health_check(check: HealthCheckConfig | None) -> HealthConfig | None:
    if check is None:
        return None
    return HealthConfig(
        test=["NONE"] if check.disable else list(check.test),
        interval=check.interval or timedelta(),
        timeout=check.timeout or timedelta(),
        start_period=check.start_period or timedelta(),
        retries=check.retries or 0,
    )


def to_seconds(duration: timedelta | None) -> int | None:
    """Whole seconds of ``duration``, truncated toward zero."""
    if duration is None:
        return None
    return int(duration.total_seconds())