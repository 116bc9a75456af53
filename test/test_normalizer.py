"""
Tests for BeaconNormalizer and its referrer/UTM helpers.
"""
import json

import pytest

from conftest import CHROME_UA, IPHONE_UA
from exceptions import ValidationError
from services.normalizer import parse_referrer, parse_utm
from schemas import UtmInfo


def _beacon(**overrides):
    beacon = {
        "visitorId": "v1",
        "sessionId": "s1",
        "type": "pageview",
        "page": {"path": "/pricing", "title": "Pricing", "referrer": "https://www.google.com/search?q=x"},
        "browser": {"userAgent": CHROME_UA, "language": "en-US"},
        "screen": {"width": 1920, "height": 1080}
    }
    beacon.update(overrides)
    return beacon


# ==============================================================================
# Required fields
# ==============================================================================


class TestRequiredFields:

    @pytest.mark.parametrize("field", ["visitorId", "sessionId"])
    def test_missing_required_field(self, normalizer, field):
        beacon = _beacon()
        del beacon[field]
        with pytest.raises(ValidationError, match=f"{field} is required"):
            normalizer.normalize(beacon, "8.8.8.8")

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_blank_or_non_string_ids_rejected(self, normalizer, value):
        with pytest.raises(ValidationError):
            normalizer.normalize(_beacon(visitorId=value), "8.8.8.8")

    def test_non_object_payload_rejected(self, normalizer):
        with pytest.raises(ValidationError):
            normalizer.normalize(["not", "an", "object"], "8.8.8.8")

    def test_validation_happens_before_classification(self, normalizer, geo):
        with pytest.raises(ValidationError):
            normalizer.normalize({"visitorId": "v1"}, "8.8.8.8")
        assert geo.calls == []


# ==============================================================================
# Record shaping
# ==============================================================================


class TestNormalize:

    def test_pageview_beacon(self, normalizer):
        result = normalizer.normalize(_beacon(), "8.8.8.8")

        assert result.visitor.visitor_id == "v1"
        assert result.visitor.ip_address == "8.8.8.8"
        assert result.visitor.user_agent == CHROME_UA
        assert result.session.session_id == "s1"
        assert result.session.referrer_domain == "www.google.com"
        assert result.page_view.page_path == "/pricing"
        assert result.page_view.page_title == "Pricing"
        assert result.event is None
        assert result.session_end is None

    def test_pageview_defaults(self, normalizer):
        result = normalizer.normalize(_beacon(page=None), "8.8.8.8")
        assert result.page_view.page_path == "/"
        assert result.page_view.page_title == ""

    def test_non_pageview_records_no_page_view(self, normalizer):
        result = normalizer.normalize(_beacon(type="heartbeat"), "8.8.8.8")
        assert result.page_view is None

    def test_missing_type_records_nothing_extra(self, normalizer):
        beacon = _beacon()
        del beacon["type"]
        result = normalizer.normalize(beacon, "8.8.8.8")
        assert result.page_view is None
        assert result.event is None

    def test_session_end(self, normalizer):
        result = normalizer.normalize(_beacon(type="session_end"), "8.8.8.8")
        assert result.session_end.session_id == "s1"
        assert result.page_view is None

    def test_custom_event(self, normalizer):
        result = normalizer.normalize(
            _beacon(type="click", event={"name": "signup-button", "data": {"x": 10, "y": 20}}),
            "8.8.8.8"
        )
        assert result.event.event_type == "click"
        assert result.event.event_name == "signup-button"
        assert json.loads(result.event.event_data) == {"x": 10, "y": 20}
        assert result.event.page_path == "/pricing"

    def test_is_new_session_is_carried_as_advisory(self, normalizer):
        result = normalizer.normalize(_beacon(isNewSession=True), "8.8.8.8")
        assert result.session.is_new_session is True

    def test_malformed_optional_section_is_dropped(self, normalizer):
        result = normalizer.normalize(_beacon(screen={"width": "wide", "height": 10}), "8.8.8.8")
        assert result.detail.screen_width is None
        assert result.detail.screen_height is None
        assert result.detail.browser == "Chrome"

    @pytest.mark.parametrize("screen", [
        {"width": 10**20, "height": 1080},
        {"width": 1920, "height": -1},
    ])
    def test_out_of_range_screen_is_dropped(self, normalizer, screen):
        detail = normalizer.normalize(_beacon(screen=screen), "8.8.8.8").detail
        assert detail.screen_width is None
        assert detail.screen_height is None
        assert detail.browser == "Chrome"

    def test_non_object_section_is_dropped(self, normalizer):
        result = normalizer.normalize(_beacon(page="/pricing"), "8.8.8.8")
        assert result.page_view.page_path == "/"


class TestDetail:

    def test_detail_combines_ua_geo_and_screen(self, normalizer):
        detail = normalizer.normalize(_beacon(), "8.8.8.8").detail

        assert detail.country == "United States"
        assert detail.country_code == "US"
        assert detail.city == "Mountain View"
        assert detail.browser == "Chrome"
        assert detail.os == "Windows"
        assert detail.device_type == "desktop"
        assert detail.screen_width == 1920
        assert detail.language == "en-US"

    def test_private_ip_has_no_geo(self, normalizer, geo):
        detail = normalizer.normalize(_beacon(), "192.168.1.20").detail
        assert detail.country is None
        assert detail.browser == "Chrome"
        assert geo.calls == []

    def test_mobile_user_agent(self, normalizer):
        detail = normalizer.normalize(_beacon(browser={"userAgent": IPHONE_UA}), "10.0.0.1").detail
        assert detail.device_type == "mobile"
        assert detail.os == "iOS"

    def test_no_detail_without_browser_screen_or_geo(self, normalizer):
        result = normalizer.normalize({"visitorId": "v1", "sessionId": "s1"}, "127.0.0.1")
        assert result.detail is None


# ==============================================================================
# Referrer and UTM helpers
# ==============================================================================


class TestParseReferrer:

    def test_valid_url(self):
        assert parse_referrer("https://news.ycombinator.com/item?id=1") == (
            "https://news.ycombinator.com/item?id=1", "news.ycombinator.com"
        )

    def test_invalid_url_keeps_raw_value(self):
        assert parse_referrer("not a url") == ("not a url", None)

    def test_broken_ipv6_url_keeps_raw_value(self):
        assert parse_referrer("http://[::1") == ("http://[::1", None)

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_referrer(self, value):
        assert parse_referrer(value) == (None, None)


class TestParseUtm:

    def test_explicit_utm_object_wins(self):
        utm = parse_utm(UtmInfo(source="newsletter"), "https://x.io/?utm_source=twitter")
        assert utm == {"utm_source": "newsletter", "utm_medium": None, "utm_campaign": None}

    def test_falls_back_to_page_url(self):
        utm = parse_utm(None, "https://x.io/p?utm_source=twitter&utm_medium=social&utm_campaign=launch")
        assert utm == {"utm_source": "twitter", "utm_medium": "social", "utm_campaign": "launch"}

    def test_no_utm(self):
        assert parse_utm(None, None) == {"utm_source": None, "utm_medium": None, "utm_campaign": None}
