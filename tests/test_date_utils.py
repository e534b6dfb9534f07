"""Tests for date parsing and the wire date formats."""

from datetime import date, datetime

from order_engine.date_utils import format_wire_date, format_wire_datetime, parse_date


class TestParseDate:

    def test_iso_date(self):
        assert parse_date('2025-10-16') == datetime(2025, 10, 16)

    def test_iso_datetime_with_z(self):
        parsed = parse_date('2025-10-16T13:45:00Z')
        assert (parsed.year, parsed.month, parsed.day, parsed.hour, parsed.minute) == (2025, 10, 16, 13, 45)

    def test_local_formats(self):
        assert parse_date('16/10/2025') == datetime(2025, 10, 16)
        assert parse_date('16/10/2025 08:30') == datetime(2025, 10, 16, 8, 30)

    def test_browser_date_string(self):
        parsed = parse_date('Thu Oct 16 2025 00:00:00 GMT-0300 (Brasilia Standard Time)')
        assert (parsed.year, parsed.month, parsed.day) == (2025, 10, 16)

    def test_date_object(self):
        assert parse_date(date(2025, 1, 2)) == datetime(2025, 1, 2)

    def test_unparseable(self):
        assert parse_date('not a date') is None
        assert parse_date('') is None
        assert parse_date(None) is None
        assert parse_date(12) is None


class TestWireFormats:

    def test_wire_date(self):
        assert format_wire_date('2025-10-16T23:10:00') == '2025-10-16'
        assert format_wire_date('Thu Oct 16 2025 00:00:00 GMT-0300 (Brasilia Standard Time)') == '2025-10-16'

    def test_wire_datetime(self):
        assert format_wire_datetime(datetime(2025, 10, 16, 8, 5, 9)) == '2025-10-16 08:05:09'
        assert format_wire_datetime('2025-10-16 08:05') == '2025-10-16 08:05:00'

    def test_unparseable_passes_through(self):
        assert format_wire_date('amanhã') == 'amanhã'
        assert format_wire_datetime(None) is None
