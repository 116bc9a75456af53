"""
Classifier services: user-agent -> device/browser/OS and IP -> geo location.

Both are stateless from the caller's point of view. Parser and lookup errors,
including a provider's own ClassificationFailure, are logged here and
downgraded to defaults; they never reach the ingestion path.
"""
import logging
import os
from typing import Optional

import geoip2.database
import requests
from user_agents import parse

from config import Settings
from exceptions import ClassificationFailure
from schemas import GeoLocation, UserAgentInfo

logger = logging.getLogger("app.classifiers")

# Substring of referrer_domain -> reported source name, matched in order
REFERRER_SOURCES = [
    (("google",), "Google"),
    (("bing",), "Bing"),
    (("yahoo",), "Yahoo"),
    (("facebook",), "Facebook"),
    (("twitter", "x.com"), "Twitter/X"),
    (("linkedin",), "LinkedIn"),
    (("instagram",), "Instagram"),
]

DIRECT_SOURCE = "Direct"


def classify_device_type(device_family: Optional[str], is_mobile: bool = False, is_tablet: bool = False) -> str:
    """Map a device family to desktop, mobile or tablet.

    Explicit family names win over the parser's form-factor flags, and
    anything unclassified falls back to desktop.
    """
    family = (device_family or "").lower()
    if family in ("", "spider", "other"):
        return "desktop"
    if "mobile" in family or "phone" in family:
        return "mobile"
    if "tablet" in family or "ipad" in family:
        return "tablet"
    if is_tablet:
        return "tablet"
    if is_mobile:
        return "mobile"
    return "desktop"


class UserAgentClassifier:

    def classify(self, user_agent_string: Optional[str]) -> UserAgentInfo:
        if not user_agent_string:
            return UserAgentInfo()
        try:
            return self._parse(user_agent_string)
        except Exception as e:
            logger.warning("User agent parsing failed: %s (ua=%r)", e, user_agent_string)
            return UserAgentInfo()

    def _parse(self, user_agent_string: str) -> UserAgentInfo:
        ua = parse(user_agent_string)
        return UserAgentInfo(
            browser=ua.browser.family or None,
            browser_version=ua.browser.version_string or None,
            os=ua.os.family or None,
            os_version=ua.os.version_string or None,
            device_type=classify_device_type(ua.device.family, ua.is_mobile, ua.is_tablet),
            device_brand=ua.device.brand or None,
            device_model=ua.device.model or None,
        )


def is_private_ip(ip_address: Optional[str]) -> bool:
    """Loopback and private ranges never reach the geo lookup"""
    if not ip_address:
        return True
    return (
        ip_address in ['127.0.0.1', 'localhost', '::1']
        or ip_address.startswith('192.168.')
        or ip_address.startswith('10.')
    )


class GeoClassifier:
    """Base geo classifier; subclasses implement ``_lookup``"""

    def lookup(self, ip_address: Optional[str]) -> Optional[GeoLocation]:
        if is_private_ip(ip_address):
            logger.debug("Skipping geo lookup for local IP: %s", ip_address)
            return None
        try:
            return self._lookup(ip_address)
        except Exception as e:
            logger.warning("Geo lookup failed for %s: %s", ip_address, e)
            return None

    def _lookup(self, ip_address: str) -> Optional[GeoLocation]:
        return None

    def close(self):
        pass


class NullGeoClassifier(GeoClassifier):
    pass


class MaxMindGeoClassifier(GeoClassifier):
    """Lookups against a local GeoLite2-City database"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._reader = None
        if os.path.exists(db_path):
            self._reader = geoip2.database.Reader(db_path)
        else:
            logger.warning("GeoIP database not found at %s; geo data disabled", db_path)

    def _lookup(self, ip_address: str) -> Optional[GeoLocation]:
        if self._reader is None:
            return None
        response = self._reader.city(ip_address)
        return GeoLocation(
            country=response.country.name,
            country_code=response.country.iso_code,
            city=response.city.name,
            region=response.subdivisions.most_specific.name if response.subdivisions else None,
            latitude=response.location.latitude,
            longitude=response.location.longitude,
            timezone=response.location.time_zone,
        )

    def close(self):
        if self._reader is not None:
            self._reader.close()
            self._reader = None


class IpApiGeoClassifier(GeoClassifier):
    """Lookups through the ip-api.com JSON API (45 requests/minute, no key)"""

    FIELDS = "status,message,country,countryCode,regionName,city,lat,lon,timezone,query"

    def __init__(self, base_url: str = "http://ip-api.com/json", timeout: float = 3):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()

    def _lookup(self, ip_address: str) -> Optional[GeoLocation]:
        response = self._session.get(
            f"{self.base_url}/{ip_address}",
            params={"fields": self.FIELDS},
            timeout=self.timeout
        )
        response.raise_for_status()
        data = response.json()
        if data.get('status') != 'success':
            raise ClassificationFailure(data.get('message', 'Unknown error'))
        return GeoLocation(
            country=data.get('country'),
            country_code=data.get('countryCode'),
            city=data.get('city'),
            region=data.get('regionName'),
            latitude=data.get('lat'),
            longitude=data.get('lon'),
            timezone=data.get('timezone'),
        )

    def close(self):
        self._session.close()


def build_geo_classifier(settings: Settings) -> GeoClassifier:
    if settings.geoip_provider == "maxmind":
        return MaxMindGeoClassifier(settings.geoip_db_path)
    if settings.geoip_provider == "ip-api":
        return IpApiGeoClassifier(settings.geoip_api_url, settings.geoip_timeout)
    return NullGeoClassifier()
