"""
Upsert engine: applies a normalized beacon to storage.

The primary path (visitor, session, page view + counter, event, session end)
commits as one transaction, so a session's page_views counter always matches
its page_views rows. The visitor detail snapshot is written afterwards in its
own transaction; if that fails the beacon is still accepted.
"""
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exceptions import PartialWriteFailure, StorageFailure
from schemas import NormalizedBeacon
from services.storage import AnalyticsRepository
from utils import utcnow

logger = logging.getLogger("app.ingestion")


class IngestionService:

    def __init__(self, db: Session, clock: Callable = utcnow):
        self.db = db
        self.repo = AnalyticsRepository(db)
        self.clock = clock

    def ingest(self, beacon: NormalizedBeacon) -> bool:
        """Apply one beacon. Returns False when the detail write was dropped.

        Raises StorageFailure if any primary write fails; nothing from the
        primary path is kept in that case.
        """
        now = self.clock()
        try:
            self._apply_primary(beacon, now)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Tracking error for visitor=%s session=%s",
                             beacon.visitor.visitor_id, beacon.session.session_id)
            raise StorageFailure(f"Failed to record beacon: {e}") from e

        if beacon.detail is None:
            return True
        try:
            self._apply_detail(beacon, now)
        except PartialWriteFailure as failure:
            logger.warning("%s (visitor=%s)", failure.message, beacon.visitor.visitor_id)
            return False
        return True

    def _apply_detail(self, beacon: NormalizedBeacon, now):
        # Driver-level errors (e.g. integer overflow) are not wrapped by SQLAlchemy
        try:
            self.repo.replace_detail(beacon.detail, now)
            self.db.commit()
        except (SQLAlchemyError, ValueError, OverflowError) as e:
            self.db.rollback()
            raise PartialWriteFailure(f"Visitor details update error: {e}") from e

    def _apply_primary(self, beacon: NormalizedBeacon, now):
        visitor_id = beacon.visitor.visitor_id

        if self.repo.upsert_visitor(beacon.visitor, now):
            logger.info("New visitor %s", visitor_id)

        session, created = self.repo.insert_session_if_absent(beacon.session, now)
        if created:
            logger.debug("New session %s for visitor %s", session.session_id, visitor_id)
        elif beacon.session.is_new_session:
            logger.debug("Session %s already exists; ignoring isNewSession", session.session_id)

        owned = session.visitor_id == visitor_id
        if not owned:
            logger.warning("Session %s belongs to visitor %s, not %s; skipping session writes",
                           session.session_id, session.visitor_id, visitor_id)

        if beacon.page_view is not None and owned:
            self.repo.append_page_view(beacon.page_view, now)

        if beacon.session_end is not None and owned:
            self.repo.end_session(session, now)

        if beacon.event is not None:
            self.repo.append_event(beacon.event, now)
