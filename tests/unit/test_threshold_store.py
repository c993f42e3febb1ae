"""Unit tests for ThresholdStore."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from coldchain_monitor.models import Thresholds
from coldchain_monitor.threshold_store import ThresholdStore


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "config" / "thresholds.yaml"


class TestLoad:
    """Tests for loading persisted thresholds."""

    def test_missing_file_returns_none(self, store_path: Path):
        """Test that nothing saved yields None so no load event is logged."""
        assert ThresholdStore(store_path, "cadena-frio").load() is None

    def test_loads_prefixed_keys(self, store_path: Path):
        """Test values are read under the prefix-specific keys."""
        store_path.parent.mkdir(parents=True)
        _ = store_path.write_text(
            yaml.dump({"cadena-frio-temp-min": 1.5, "cadena-frio-temp-max": "7", "otra-temp-min": -30}),
        )

        assert ThresholdStore(store_path, "cadena-frio").load() == Thresholds(temp_min=1.5, temp_max=7.0)

    def test_missing_bound_uses_default(self, store_path: Path):
        """Test a single saved bound is combined with the other default."""
        store_path.parent.mkdir(parents=True)
        _ = store_path.write_text(yaml.dump({"cadena-frio-temp-max": 6.0}))

        store = ThresholdStore(store_path, "cadena-frio", default_min=-1.0)

        assert store.load() == Thresholds(temp_min=-1.0, temp_max=6.0)

    def test_unreadable_values_are_ignored(self, store_path: Path):
        """Test non-numeric values count as not saved."""
        store_path.parent.mkdir(parents=True)
        _ = store_path.write_text(yaml.dump({"cadena-frio-temp-min": "cold", "cadena-frio-temp-max": True}))

        assert ThresholdStore(store_path, "cadena-frio").load() is None

    def test_corrupt_file_returns_none(self, store_path: Path):
        """Test invalid YAML is logged and treated as empty."""
        store_path.parent.mkdir(parents=True)
        _ = store_path.write_text("cadena-frio-temp-min: [unclosed\n")

        assert ThresholdStore(store_path, "cadena-frio").load() is None


class TestSave:
    """Tests for writing thresholds."""

    @pytest.mark.asyncio
    async def test_save_creates_file_and_keeps_other_prefixes(self, store_path: Path):
        """Test save writes this prefix's keys and preserves the rest."""
        store_path.parent.mkdir(parents=True)
        _ = store_path.write_text(yaml.dump({"otra-temp-min": -30.0}))
        store = ThresholdStore(store_path, "cadena-frio")

        assert await store.save(Thresholds(temp_min=3.5, temp_max=9.0)) is True

        data = yaml.safe_load(store_path.read_text())
        assert data == {"otra-temp-min": -30.0, "cadena-frio-temp-min": 3.5, "cadena-frio-temp-max": 9.0}
        assert store.load() == Thresholds(temp_min=3.5, temp_max=9.0)

    @pytest.mark.asyncio
    async def test_save_failure_returns_false(self, tmp_path: Path):
        """Test an unwritable location is reported, not raised."""
        blocker = tmp_path / "not-a-dir"
        _ = blocker.write_text("")
        store = ThresholdStore(blocker / "thresholds.yaml", "cadena-frio")

        assert await store.save(Thresholds(temp_min=1.0, temp_max=2.0)) is False
