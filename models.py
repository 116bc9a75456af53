from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text

from database import Base
from utils import utcnow


class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String, unique=True, nullable=False, index=True)
    ip_address = Column(String)
    user_agent = Column(String)
    created_at = Column(DateTime, default=utcnow)
    last_seen = Column(DateTime, default=utcnow)


class VisitSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    # Weak references: beacons may arrive out of order, so no FK constraints
    visitor_id = Column(String, nullable=False, index=True)
    session_id = Column(String, unique=True, nullable=False, index=True)
    started_at = Column(DateTime, default=utcnow, index=True)
    ended_at = Column(DateTime)
    duration = Column(Integer)  # seconds
    page_views = Column(Integer, default=0, nullable=False)
    referrer = Column(String)
    referrer_domain = Column(String)
    utm_source = Column(String)
    utm_medium = Column(String)
    utm_campaign = Column(String)


class PageView(Base):
    __tablename__ = "page_views"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, nullable=False, index=True)
    visitor_id = Column(String, nullable=False, index=True)
    page_path = Column(String, nullable=False)
    page_title = Column(String)
    viewed_at = Column(DateTime, default=utcnow, index=True)
    is_bounce = Column(Boolean, default=False)


class VisitorDetail(Base):
    __tablename__ = "visitor_details"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String, unique=True, nullable=False, index=True)
    country = Column(String)
    country_code = Column(String)
    city = Column(String)
    region = Column(String)
    latitude = Column(Float)
    longitude = Column(Float)
    timezone = Column(String)
    browser = Column(String)
    browser_version = Column(String)
    device_type = Column(String)  # desktop, mobile, tablet
    device_brand = Column(String)
    device_model = Column(String)
    os = Column(String)
    os_version = Column(String)
    screen_width = Column(Integer)
    screen_height = Column(Integer)
    language = Column(String)
    updated_at = Column(DateTime, default=utcnow, index=True)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, nullable=False, index=True)
    visitor_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)  # click, scroll, form_submit, etc.
    event_name = Column(String)
    event_data = Column(Text)  # JSON
    page_path = Column(String)
    created_at = Column(DateTime, default=utcnow, index=True)
