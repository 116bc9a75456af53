"""
Beacon normalizer: the only place the raw, untyped tracking payload is read.

Required identifiers are checked first and fail fast with ValidationError.
Every optional section is validated on its own; a malformed section is
logged and dropped instead of rejecting the beacon.
"""
import json
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ValidationError as PydanticValidationError

from exceptions import ClassificationFailure, ValidationError
from schemas import (
    BrowserInfo, DetailUpsert, EventInfo, EventInsert, NormalizedBeacon, PageInfo,
    PageViewInsert, ScreenInfo, SessionEnd, SessionUpsert, UtmInfo, VisitorUpsert
)
from services.classifiers import GeoClassifier, UserAgentClassifier

logger = logging.getLogger("app.normalizer")

PAGEVIEW = "pageview"
SESSION_END = "session_end"


def parse_referrer(referrer: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(referrer, referrer_domain)``.

    An unparseable referrer is kept verbatim with a null domain.
    """
    if referrer is None or referrer.strip() == "":
        return None, None
    try:
        parsed = urlparse(referrer)
        if not parsed.scheme or not parsed.netloc or not parsed.hostname:
            raise ClassificationFailure(f"Invalid referrer URL: {referrer}")
        return referrer, parsed.hostname
    except (ValueError, ClassificationFailure) as e:
        logger.warning("Invalid referrer URL %r: %s", referrer, e)
        return referrer, None


def parse_utm(utm: Optional[UtmInfo], page_url: Optional[str]) -> Dict[str, Optional[str]]:
    if utm is not None and (utm.source or utm.medium or utm.campaign):
        return {
            "utm_source": utm.source or None,
            "utm_medium": utm.medium or None,
            "utm_campaign": utm.campaign or None
        }

    result = {"utm_source": None, "utm_medium": None, "utm_campaign": None}
    if not page_url:
        return result
    try:
        query = parse_qs(urlparse(page_url).query)
    except ValueError:
        logger.warning("Invalid page URL %r, ignoring UTM parameters", page_url)
        return result
    for key in result:
        values = query.get(key)
        if values and values[0]:
            result[key] = values[0]
    return result


def _required_id(raw: Dict[str, Any], field: str) -> str:
    value = raw.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


def _section(raw: Dict[str, Any], field: str, model: type) -> Optional[BaseModel]:
    value = raw.get(field)
    if value is None:
        return None
    if not isinstance(value, dict):
        logger.warning("Ignoring malformed %r section: expected object, got %s", field, type(value).__name__)
        return None
    try:
        return model.model_validate(value)
    except PydanticValidationError as e:
        logger.warning("Ignoring malformed %r section: %s", field, e.errors())
        return None


class BeaconNormalizer:

    def __init__(self, ua_classifier: UserAgentClassifier, geo_classifier: GeoClassifier):
        self.ua_classifier = ua_classifier
        self.geo_classifier = geo_classifier

    def normalize(self, raw: Any, ip_address: Optional[str]) -> NormalizedBeacon:
        if not isinstance(raw, dict):
            raise ValidationError("Beacon payload must be a JSON object")

        visitor_id = _required_id(raw, "visitorId")
        session_id = _required_id(raw, "sessionId")

        beacon_type = raw.get("type") if isinstance(raw.get("type"), str) else None
        page = _section(raw, "page", PageInfo)
        browser = _section(raw, "browser", BrowserInfo)
        screen = _section(raw, "screen", ScreenInfo)
        utm = _section(raw, "utm", UtmInfo)
        event = _section(raw, "event", EventInfo)

        user_agent = browser.userAgent if browser and browser.userAgent else ""
        referrer, referrer_domain = parse_referrer(page.referrer if page else None)

        normalized = NormalizedBeacon(
            visitor=VisitorUpsert(
                visitor_id=visitor_id,
                ip_address=ip_address,
                user_agent=user_agent
            ),
            session=SessionUpsert(
                session_id=session_id,
                visitor_id=visitor_id,
                referrer=referrer,
                referrer_domain=referrer_domain,
                is_new_session=bool(raw.get("isNewSession")),
                **parse_utm(utm, page.url if page else None)
            )
        )

        if beacon_type == PAGEVIEW:
            normalized.page_view = PageViewInsert(
                session_id=session_id,
                visitor_id=visitor_id,
                page_path=(page.path if page and page.path else "/"),
                page_title=(page.title if page and page.title else "")
            )
        elif beacon_type == SESSION_END:
            normalized.session_end = SessionEnd(session_id=session_id, visitor_id=visitor_id)
        elif beacon_type or (event and event.type):
            normalized.event = self._event(session_id, visitor_id, beacon_type, event, page)

        normalized.detail = self._detail(visitor_id, ip_address, user_agent, browser, screen)
        return normalized

    def _event(self, session_id, visitor_id, beacon_type, event, page) -> EventInsert:
        event_data = None
        if event is not None and event.data is not None:
            event_data = json.dumps(event.data)
        return EventInsert(
            session_id=session_id,
            visitor_id=visitor_id,
            event_type=(event.type if event and event.type else beacon_type),
            event_name=event.name if event else None,
            event_data=event_data,
            page_path=page.path if page else None
        )

    def _detail(self, visitor_id, ip_address, user_agent, browser, screen) -> Optional[DetailUpsert]:
        geo = self.geo_classifier.lookup(ip_address)
        if browser is None and screen is None and geo is None:
            return None

        ua_info = self.ua_classifier.classify(user_agent)
        geo_fields = geo.model_dump() if geo else {}
        return DetailUpsert(
            visitor_id=visitor_id,
            screen_width=screen.width if screen else None,
            screen_height=screen.height if screen else None,
            language=browser.language if browser else None,
            **ua_info.model_dump(),
            **geo_fields
        )
