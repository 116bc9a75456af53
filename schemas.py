from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Optional

# Beacon sections. Every field is optional; presence of the required
# identifiers is checked by the normalizer, not here.

class PageInfo(BaseModel):
    path: Optional[str] = None
    title: Optional[str] = None
    referrer: Optional[str] = None
    url: Optional[str] = None

class BrowserInfo(BaseModel):
    userAgent: Optional[str] = None
    language: Optional[str] = None

MAX_SCREEN_DIMENSION = 100000

class ScreenInfo(BaseModel):
    width: Optional[int] = Field(None, ge=0, le=MAX_SCREEN_DIMENSION)
    height: Optional[int] = Field(None, ge=0, le=MAX_SCREEN_DIMENSION)

class UtmInfo(BaseModel):
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None

class EventInfo(BaseModel):
    type: Optional[str] = None
    name: Optional[str] = None
    data: Optional[Any] = None

# Normalized records handed to the ingestion engine

class VisitorUpsert(BaseModel):
    visitor_id: str
    ip_address: Optional[str] = None
    user_agent: str = ""

class SessionUpsert(BaseModel):
    session_id: str
    visitor_id: str
    referrer: Optional[str] = None
    referrer_domain: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    is_new_session: bool = False  # advisory only

class PageViewInsert(BaseModel):
    session_id: str
    visitor_id: str
    page_path: str = "/"
    page_title: str = ""

class EventInsert(BaseModel):
    session_id: str
    visitor_id: str
    event_type: str
    event_name: Optional[str] = None
    event_data: Optional[str] = None
    page_path: Optional[str] = None

class SessionEnd(BaseModel):
    session_id: str
    visitor_id: str

class DetailUpsert(BaseModel):
    visitor_id: str
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device_type: Optional[str] = None
    device_brand: Optional[str] = None
    device_model: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    language: Optional[str] = None

class NormalizedBeacon(BaseModel):
    visitor: VisitorUpsert
    session: SessionUpsert
    page_view: Optional[PageViewInsert] = None
    event: Optional[EventInsert] = None
    session_end: Optional[SessionEnd] = None
    detail: Optional[DetailUpsert] = None

# Classifier results

class UserAgentInfo(BaseModel):
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = None
    device_type: str = "desktop"
    device_brand: Optional[str] = None
    device_model: Optional[str] = None

class GeoLocation(BaseModel):
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None

# Responses

class TrackResponse(BaseModel):
    success: bool
    error: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
