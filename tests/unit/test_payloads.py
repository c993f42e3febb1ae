"""Unit tests for inbound payload parsing and field resolution."""

from __future__ import annotations

import pytest

from coldchain_monitor.mqtt.payloads import (
    FIELD_NAMES,
    FreeText,
    ScalarReading,
    StatusRecord,
    clean_text,
    parse_scalar,
    parse_status,
    resolve_fields,
)


class TestParseScalar:
    @pytest.mark.parametrize(("payload", "value"), [("4.5", 4.5), (" -18 ", -18.0), ("1e1", 10.0)])
    def test_valid(self, payload: str, value: float):
        assert parse_scalar(payload) == ScalarReading(value)

    @pytest.mark.parametrize("payload", ["", "abc", "4,5", "nan", "-inf", "12°C"])
    def test_invalid(self, payload: str):
        assert parse_scalar(payload) is None


class TestParseStatus:
    def test_json_object_is_a_record(self):
        assert parse_status('{"temperatura": 4.1}') == StatusRecord({"temperatura": 4.1})

    @pytest.mark.parametrize("payload", ["42", '"texto"', "[1, 2]", "null", "{broken"])
    def test_anything_else_is_text(self, payload: str):
        assert isinstance(parse_status(payload), FreeText)

    def test_text_is_cleaned(self):
        assert parse_status("\x00 Estado: ÓPTIMA \r\n") == FreeText("Estado: ÓPTIMA")

    def test_clean_text_keeps_latin1_and_beyond(self):
        assert clean_text("año\tñ€\x1b") == "añoñ€"


class TestResolveFields:
    def test_every_field_has_two_names(self):
        assert len(FIELD_NAMES) == 14
        for localized, internal, _ in FIELD_NAMES.values():
            assert localized
            assert internal

    def test_localized_precedence(self):
        record = StatusRecord({"temp_max_dia": 7.5, "tempMaxDay": 1.0, "envios_exitosos": 3, "sendingsSuccessful": 9})

        assert resolve_fields(record) == {"temp_max_day": 7.5, "sendings_successful": 3}

    def test_internal_used_when_localized_invalid(self):
        record = StatusRecord({"display_disponible": "si", "displayAvailable": True})

        assert resolve_fields(record) == {"display_available": True}

    def test_invalid_fields_dropped(self):
        record = StatusRecord(
            {
                "temperatura": "4",
                "humedad": 101,
                "alerta_activa": 1,
                "tiempo_activo": 1.5,
                "lecturas_exitosas": -3,
                "temp_min": float("nan"),
            },
        )

        assert resolve_fields(record) == {}

    def test_mixed_conventions_across_fields(self):
        # A record may mix both conventions across fields
        record = StatusRecord({"temp_min": 1, "tempMax": 9, "uptime": 42})

        assert resolve_fields(record) == {"temp_min": 1.0, "temp_max": 9.0, "uptime": 42}
