"""Persisted operator thresholds.

A small YAML file keyed by topic prefix, so several monitors can share one
file:

    cadena-frio-temp-min: 2.0
    cadena-frio-temp-max: 8.0
"""

from __future__ import annotations

import asyncio
import math
from pathlib import Path
from typing import Any

import yaml

from coldchain_monitor.logging_abstraction import get_logger
from coldchain_monitor.models import Thresholds

logger = get_logger(__name__)


def _as_bound(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class ThresholdStore:
    """Load once at startup, save after every delivered threshold update."""

    lp: str = "thresholds:"

    def __init__(self, path: Path, prefix: str, *, default_min: float = 2.0, default_max: float = 8.0) -> None:
        self.path: Path = path.expanduser()
        self.prefix: str = prefix
        self.default_min: float = default_min
        self.default_max: float = default_max

    @property
    def min_key(self) -> str:
        return f"{self.prefix}-temp-min"

    @property
    def max_key(self) -> str:
        return f"{self.prefix}-temp-max"

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}

    def load(self) -> Thresholds | None:
        """Saved thresholds for this prefix, or None if nothing was ever saved.

        A bound that is missing or unreadable falls back to its default.
        """
        try:
            data = self._read()
        except (OSError, yaml.YAMLError) as e:
            logger.warning("%s failed to read %s: %s", self.lp, self.path, e)
            return None

        temp_min = _as_bound(data.get(self.min_key))
        temp_max = _as_bound(data.get(self.max_key))
        if temp_min is None and temp_max is None:
            return None
        logger.debug("%s loaded %s=%s %s=%s from %s", self.lp, self.min_key, temp_min, self.max_key, temp_max, self.path)
        return Thresholds(
            temp_min=self.default_min if temp_min is None else temp_min,
            temp_max=self.default_max if temp_max is None else temp_max,
        )

    async def save(self, thresholds: Thresholds) -> bool:
        """Write this prefix's thresholds, keeping any other keys in the file."""

        def _write_yaml() -> None:
            """Write YAML file synchronously (runs in thread pool)."""
            data = self._read()
            data[self.min_key] = thresholds.temp_min
            data[self.max_key] = thresholds.temp_max
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as f:
                _ = f.write(yaml.safe_dump(data, default_flow_style=False))

        try:
            await asyncio.to_thread(_write_yaml)
        except (OSError, yaml.YAMLError):
            logger.exception("%s failed to write thresholds to %s", self.lp, self.path)
            return False
        logger.debug("%s saved %s to %s", self.lp, thresholds, self.path)
        return True
