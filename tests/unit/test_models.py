"""Unit tests for data models."""

from __future__ import annotations

from datetime import UTC, datetime

from coldchain_monitor.models import ConnectionStatus, DeviceState, Severity, StatisticsSnapshot


class TestDeviceState:
    def test_defaults(self):
        state = DeviceState()

        assert state.temp_min == 2.0
        assert state.temp_max == 8.0
        assert state.system_enabled is True
        assert state.alert_active is False
        assert state.uptime == 0


class TestEnums:
    def test_values_are_wire_friendly(self):
        assert ConnectionStatus.CONNECTING == "connecting"
        assert [s.value for s in Severity] == ["info", "warning", "error", "success"]


class TestStatisticsSnapshot:
    """Tests for building the statistics read model from a feed record."""

    def test_from_feed(self):
        """Test every feed field maps onto the snapshot."""
        snapshot = StatisticsSnapshot.from_feed(
            {
                "created_at": "2024-05-01T10:15:00Z",
                "entry_id": 1234,
                "field1": "4.25",
                "field2": "61.0",
                "field3": "2.1",
                "field4": "7.9",
                "field5": "0",
                "field6": "1",
            },
        )

        assert snapshot.temperature == 4.25
        assert snapshot.humidity == 61.0
        assert snapshot.temp_min_day == 2.1
        assert snapshot.temp_max_day == 7.9
        assert snapshot.alert_active is False
        assert snapshot.display_available is True
        assert snapshot.recorded_at == datetime(2024, 5, 1, 10, 15, tzinfo=UTC)
        assert snapshot.sequence_id == 1234

    def test_missing_and_garbage_fields(self):
        """Test absent or unparsable fields become None rather than zero."""
        snapshot = StatisticsSnapshot.from_feed({"field1": None, "field2": "n/a", "entry_id": "x"})

        assert snapshot.temperature is None
        assert snapshot.humidity is None
        assert snapshot.alert_active is None
        assert snapshot.recorded_at is None
        assert snapshot.sequence_id is None

    def test_string_entry_id(self):
        assert StatisticsSnapshot.from_feed({"entry_id": "77"}).sequence_id == 77
