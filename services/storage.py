"""
Storage primitives the ingestion engine and the listing endpoints need:
keyed upsert, insert-if-absent, append-only insert, counter increment and
a couple of read queries. Transactions are owned by the caller.
"""
from datetime import datetime
from typing import List, Tuple

from sqlalchemy import desc, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from schemas import DetailUpsert, EventInsert, PageViewInsert, SessionUpsert, VisitorUpsert


class AnalyticsRepository:

    def __init__(self, db: Session):
        self.db = db

    # Writes

    def upsert_visitor(self, record: VisitorUpsert, now: datetime) -> bool:
        """Insert a new visitor or bump ``last_seen``; returns True on insert.

        ip_address and user_agent are first-write-wins.
        """
        exists = self.db.query(models.Visitor.id).filter(
            models.Visitor.visitor_id == record.visitor_id
        ).first()
        if exists is None:
            try:
                with self.db.begin_nested():
                    self.db.add(models.Visitor(
                        visitor_id=record.visitor_id,
                        ip_address=record.ip_address,
                        user_agent=record.user_agent,
                        created_at=now,
                        last_seen=now
                    ))
                return True
            except IntegrityError:
                # A concurrent beacon created it first
                pass

        self.db.query(models.Visitor).filter(
            models.Visitor.visitor_id == record.visitor_id,
            or_(models.Visitor.last_seen.is_(None), models.Visitor.last_seen < now)
        ).update({models.Visitor.last_seen: now}, synchronize_session=False)
        return False

    def get_session(self, session_id: str):
        return self.db.query(models.VisitSession).filter(
            models.VisitSession.session_id == session_id
        ).first()

    def insert_session_if_absent(self, record: SessionUpsert, now: datetime) -> Tuple[models.VisitSession, bool]:
        """Create the session unless a row for its session_id already exists.

        An existing row is returned untouched, whatever the beacon's
        ``is_new_session`` flag says.
        """
        existing = self.get_session(record.session_id)
        if existing is not None:
            return existing, False

        session = models.VisitSession(
            visitor_id=record.visitor_id,
            session_id=record.session_id,
            started_at=now,
            page_views=0,
            referrer=record.referrer,
            referrer_domain=record.referrer_domain,
            utm_source=record.utm_source,
            utm_medium=record.utm_medium,
            utm_campaign=record.utm_campaign
        )
        try:
            with self.db.begin_nested():
                self.db.add(session)
        except IntegrityError:
            return self.get_session(record.session_id), False
        return session, True

    def append_page_view(self, record: PageViewInsert, now: datetime) -> int:
        """Insert a page view and bump its session counter by one.

        Both statements run in the caller's transaction; the return value
        is the number of session rows incremented.
        """
        self.db.add(models.PageView(
            session_id=record.session_id,
            visitor_id=record.visitor_id,
            page_path=record.page_path,
            page_title=record.page_title,
            viewed_at=now
        ))
        self.db.flush()
        return self.increment_page_views(record.session_id, 1)

    def increment_page_views(self, session_id: str, delta: int) -> int:
        return self.db.query(models.VisitSession).filter(
            models.VisitSession.session_id == session_id
        ).update(
            {models.VisitSession.page_views: models.VisitSession.page_views + delta},
            synchronize_session=False
        )

    def append_event(self, record: EventInsert, now: datetime):
        self.db.add(models.Event(created_at=now, **record.model_dump()))

    def end_session(self, session: models.VisitSession, now: datetime):
        if session.ended_at is not None and session.ended_at >= now:
            return
        session.ended_at = now
        if session.started_at is not None:
            session.duration = max(0, int((now - session.started_at).total_seconds()))

    def replace_detail(self, record: DetailUpsert, now: datetime):
        """Overwrite every column of the visitor's detail row (no field merge)"""
        values = record.model_dump()
        values["updated_at"] = now

        detail = self.db.query(models.VisitorDetail).filter(
            models.VisitorDetail.visitor_id == record.visitor_id
        ).first()
        if detail is None:
            self.db.add(models.VisitorDetail(**values))
        else:
            for field, value in values.items():
                setattr(detail, field, value)
        self.db.flush()

    # Reads

    def list_recent_visitors(self, limit: int) -> List[dict]:
        session_totals = self.db.query(
            models.VisitSession.visitor_id.label('visitor_id'),
            func.count(models.VisitSession.id).label('session_count'),
            func.sum(models.VisitSession.page_views).label('total_page_views')
        ).group_by(models.VisitSession.visitor_id).subquery()

        rows = self.db.query(
            models.Visitor.visitor_id,
            models.Visitor.ip_address,
            models.Visitor.last_seen,
            models.VisitorDetail.country,
            models.VisitorDetail.city,
            models.VisitorDetail.browser,
            models.VisitorDetail.device_type,
            models.VisitorDetail.os,
            session_totals.c.session_count,
            session_totals.c.total_page_views
        ).outerjoin(
            models.VisitorDetail, models.VisitorDetail.visitor_id == models.Visitor.visitor_id
        ).outerjoin(
            session_totals, session_totals.c.visitor_id == models.Visitor.visitor_id
        ).order_by(
            desc(models.Visitor.last_seen), models.Visitor.visitor_id
        ).limit(limit).all()

        return [{
            "visitor_id": r[0],
            "ip_address": r[1],
            "last_seen": r[2],
            "country": r[3],
            "city": r[4],
            "browser": r[5],
            "device_type": r[6],
            "os": r[7],
            "session_count": r[8] or 0,
            "total_page_views": r[9] or 0
        } for r in rows]

    def list_active_page_views(self, since: datetime, limit: int) -> List[dict]:
        rows = self.db.query(
            models.Visitor.visitor_id,
            models.VisitorDetail.country,
            models.VisitorDetail.city,
            models.VisitorDetail.browser,
            models.VisitorDetail.device_type,
            models.PageView.page_path,
            models.PageView.viewed_at
        ).select_from(models.PageView).join(
            models.Visitor, models.PageView.visitor_id == models.Visitor.visitor_id
        ).outerjoin(
            models.VisitorDetail, models.VisitorDetail.visitor_id == models.Visitor.visitor_id
        ).filter(
            models.PageView.viewed_at > since
        ).order_by(desc(models.PageView.viewed_at), desc(models.PageView.id)).limit(limit).all()

        return [{
            "visitor_id": r[0],
            "country": r[1],
            "city": r[2],
            "browser": r[3],
            "device_type": r[4],
            "page_path": r[5],
            "viewed_at": r[6]
        } for r in rows]
