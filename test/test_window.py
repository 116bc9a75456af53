"""
Tests for ReportingWindow parsing and the predicates it builds.
"""
from datetime import datetime, timedelta

import pytest

import models
from conftest import NOW
from exceptions import ValidationError
from services.window import ReportingWindow, parse_timestamp


class TestPresets:

    @pytest.mark.parametrize("period, delta", [
        ("24h", timedelta(days=1)),
        ("7d", timedelta(days=7)),
        ("30d", timedelta(days=30)),
    ])
    def test_preset_start(self, period, delta):
        window = ReportingWindow.for_period(period, NOW)
        assert window.start == NOW - delta
        assert window.end is None
        assert window.start_inclusive is False

    def test_all_has_no_bounds(self):
        window = ReportingWindow.for_period("all", NOW)
        assert window.start is None
        assert window.end is None
        assert window.filters(object()) == []

    def test_default_period(self):
        window = ReportingWindow.from_params(now=NOW)
        assert window.label == "24h"
        assert window.start == NOW - timedelta(days=1)

    @pytest.mark.parametrize("period", ["1y", "", "24H", "week"])
    def test_unknown_period(self, period):
        with pytest.raises(ValidationError, match="period must be one of"):
            ReportingWindow.for_period(period, NOW)


class TestExplicitRange:

    def test_range_is_inclusive(self):
        window = ReportingWindow.from_params(
            "7d", "2026-10-01T00:00:00Z", "2026-10-02T00:00:00Z", NOW
        )
        assert window.start == datetime(2026, 10, 1)
        assert window.end == datetime(2026, 10, 2)
        assert window.start_inclusive is True

    def test_range_overrides_period(self):
        window = ReportingWindow.from_params("bogus", "2026-10-01", "2026-10-02", NOW)
        assert window.label == "custom"

    def test_lone_bound_falls_back_to_period(self):
        window = ReportingWindow.from_params("7d", start_date="2026-10-01", now=NOW)
        assert window.label == "7d"
        assert window.end is None

    def test_offsets_converted_to_utc(self):
        window = ReportingWindow.from_params(
            None, "2026-10-01T02:00:00+02:00", "2026-10-01T12:00:00+00:00", NOW
        )
        assert window.start == datetime(2026, 10, 1, 0, 0)

    def test_start_after_end(self):
        with pytest.raises(ValidationError, match="startDate must not be after endDate"):
            ReportingWindow.from_params(None, "2026-10-05", "2026-10-01", NOW)

    @pytest.mark.parametrize("value", ["yesterday", "2026-13-01", "10/01/2026"])
    def test_bad_timestamp(self, value):
        with pytest.raises(ValidationError, match="startDate must be an ISO 8601 timestamp"):
            ReportingWindow.from_params(None, value, "2026-10-01", NOW)


class TestParseTimestamp:

    def test_zulu_suffix(self):
        assert parse_timestamp("2026-10-17T12:00:00Z", "endDate") == NOW

    def test_naive_is_utc(self):
        assert parse_timestamp(" 2026-10-17T12:00:00 ", "endDate") == NOW

    def test_non_string(self):
        with pytest.raises(ValidationError):
            parse_timestamp(None, "endDate")


class TestFilters:

    def test_boundary_rows(self, db):
        for i, started in enumerate([
            datetime(2026, 10, 1, 0, 0),
            datetime(2026, 10, 1, 12, 0),
            datetime(2026, 10, 2, 0, 0),
            datetime(2026, 10, 2, 0, 1),
        ]):
            db.add(models.VisitSession(session_id=f"s{i}", visitor_id="v1", started_at=started, page_views=1))
        db.commit()

        window = ReportingWindow.from_params(None, "2026-10-01T00:00:00", "2026-10-02T00:00:00", NOW)
        matched = db.query(models.VisitSession.session_id).filter(
            *window.filters(models.VisitSession.started_at)
        ).order_by(models.VisitSession.session_id).all()

        assert [m[0] for m in matched] == ["s0", "s1", "s2"]
