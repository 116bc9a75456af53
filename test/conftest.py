"""
Pytest fixtures shared across the test modules.

Provides:
- an in-memory SQLite Database (fresh per test) and a session on it
- a controllable clock and a fake geo classifier
- a FastAPI TestClient wired to those collaborators
"""
import os
import sys
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from database import Database
from main import create_app
from schemas import GeoLocation
from services.classifiers import GeoClassifier, UserAgentClassifier
from services.normalizer import BeaconNormalizer

NOW = datetime(2026, 10, 17, 12, 0, 0)

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)

BASIC_KEYS = {
    "totalVisitors", "totalSessions", "totalPageViews", "uniqueToday",
    "topPages", "topCountries", "topBrowsers", "deviceTypes"
}
ENHANCED_KEYS = BASIC_KEYS | {
    "bounceRate", "avgSessionDuration", "avgPagesPerSession", "returnVisitors", "newVisitors",
    "hourlyTrends", "dailyTrends", "entryPages", "exitPages", "referrers", "utmSources",
    "utmMediums", "topCities", "deviceBrands", "deviceModels", "osVersions", "browserVersions",
    "screenResolutions", "languages", "activeSessions", "peakHours"
}


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGeoClassifier(GeoClassifier):
    """Geo lookups served from a dict; unknown IPs have no location"""

    def __init__(self, locations=None):
        self.locations = locations or {}
        self.calls = []

    def _lookup(self, ip_address):
        self.calls.append(ip_address)
        return self.locations.get(ip_address)


@pytest.fixture()
def database():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture()
def db(database):
    with database.session() as session:
        yield session


@pytest.fixture()
def clock():
    return FakeClock(NOW)


@pytest.fixture()
def geo():
    return FakeGeoClassifier({
        "8.8.8.8": GeoLocation(
            country="United States",
            country_code="US",
            city="Mountain View",
            region="California",
            latitude=37.386,
            longitude=-122.0838,
            timezone="America/Los_Angeles"
        )
    })


@pytest.fixture()
def normalizer(geo):
    return BeaconNormalizer(UserAgentClassifier(), geo)


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite://",
        cors_origins=["http://localhost:3000"],
        environment="development",
        log_level="WARNING",
        geoip_provider="none"
    )


@pytest.fixture()
def client(settings, database, geo, clock):
    app = create_app(settings=settings, database=database, geo_classifier=geo, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
