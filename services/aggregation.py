"""
Aggregation engine: read-only statistics over sessions, page views and
visitor details.

Session metrics filter on ``started_at``, page-view metrics on ``viewed_at``
and visitor-detail breakdowns on ``updated_at``. Breakdowns leave out rows
whose classification value is null; referrer and UTM groupings bucket the
absence explicitly ("Direct" / "none").
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, case, desc, func, or_
from sqlalchemy.orm import Session, aliased

import models
import utils
from services.classifiers import DIRECT_SOURCE, REFERRER_SOURCES
from services.window import ReportingWindow

logger = logging.getLogger("app.aggregation")

ACTIVE_WINDOW = timedelta(minutes=5)


class StatsService:

    def __init__(self, db: Session, window: ReportingWindow, now: Optional[datetime] = None):
        self.db = db
        self.window = window
        self.now = now or utils.utcnow()
        self.dialect = db.get_bind().dialect.name

    # Filters

    def _session_filters(self):
        return self.window.filters(models.VisitSession.started_at)

    def _page_view_filters(self):
        return self.window.filters(models.PageView.viewed_at)

    def _detail_filters(self):
        return self.window.filters(models.VisitorDetail.updated_at)

    # Cardinality

    def total_visitors(self) -> int:
        return self.db.query(func.count(func.distinct(models.VisitSession.visitor_id))).filter(
            *self._session_filters()
        ).scalar() or 0

    def total_sessions(self) -> int:
        return self.db.query(func.count(models.VisitSession.id)).filter(
            *self._session_filters()
        ).scalar() or 0

    def total_page_views(self) -> int:
        return self.db.query(func.count(models.PageView.id)).filter(
            *self._page_view_filters()
        ).scalar() or 0

    def unique_today(self) -> int:
        """Distinct visitors with a session started since midnight (UTC)"""
        day_start = utils.get_start_of_day(self.now)
        return self.db.query(func.count(func.distinct(models.VisitSession.visitor_id))).filter(
            models.VisitSession.started_at >= day_start,
            models.VisitSession.started_at < day_start + timedelta(days=1)
        ).scalar() or 0

    def active_sessions(self) -> int:
        return self.db.query(func.count(func.distinct(models.PageView.session_id))).filter(
            models.PageView.viewed_at > self.now - ACTIVE_WINDOW
        ).scalar() or 0

    # Ratios and averages

    def bounce_rate(self) -> float:
        total, bounced = self.db.query(
            func.count(models.VisitSession.id),
            func.sum(case((models.VisitSession.page_views == 1, 1), else_=0))
        ).filter(*self._session_filters()).one()
        if not total:
            return 0
        return (bounced or 0) * 100.0 / total

    def avg_session_duration(self) -> float:
        # Sessions that never ended have no duration and are left out
        avg = self.db.query(func.avg(models.VisitSession.duration)).filter(
            models.VisitSession.duration.isnot(None),
            *self._session_filters()
        ).scalar()
        return float(avg) if avg is not None else 0

    def avg_pages_per_session(self) -> float:
        avg = self.db.query(func.avg(models.VisitSession.page_views)).filter(
            *self._session_filters()
        ).scalar()
        return float(avg) if avg is not None else 0

    def return_visitors(self) -> int:
        """Visitors whose first session in the window is not their first ever"""
        first_in_window = self.db.query(
            models.VisitSession.visitor_id.label('visitor_id'),
            func.min(models.VisitSession.started_at).label('first_start')
        ).filter(*self._session_filters()).group_by(models.VisitSession.visitor_id).subquery()

        earlier = aliased(models.VisitSession)
        has_earlier = self.db.query(earlier.id).filter(
            earlier.visitor_id == first_in_window.c.visitor_id,
            earlier.started_at < first_in_window.c.first_start
        ).exists()

        return self.db.query(func.count()).select_from(first_in_window).filter(has_earlier).scalar() or 0

    # Pages

    def top_pages(self, limit: int = 10) -> List[dict]:
        rows = self.db.query(
            models.PageView.page_path,
            func.count(models.PageView.id).label('views')
        ).filter(
            *self._page_view_filters()
        ).group_by(models.PageView.page_path).order_by(
            desc('views'), models.PageView.page_path
        ).limit(limit).all()
        return [{"page_path": r[0], "views": r[1]} for r in rows]

    def top_pages_detailed(self, limit: int = 20) -> List[dict]:
        sessions = func.count(func.distinct(models.PageView.session_id))
        bounced = func.count(func.distinct(case(
            (models.VisitSession.page_views == 1, models.PageView.session_id)
        )))
        rows = self.db.query(
            models.PageView.page_path,
            func.count(models.PageView.id).label('views'),
            sessions.label('sessions'),
            bounced.label('bounced')
        ).outerjoin(
            models.VisitSession, models.VisitSession.session_id == models.PageView.session_id
        ).filter(
            *self._page_view_filters()
        ).group_by(models.PageView.page_path).order_by(
            desc('views'), models.PageView.page_path
        ).limit(limit).all()

        return [{
            "page_path": r[0],
            "views": r[1],
            "sessions": r[2],
            "bounce_rate": (r[3] * 100.0 / r[2]) if r[2] else 0
        } for r in rows]

    def _boundary_pages(self, boundary, count_label: str, limit: int) -> List[dict]:
        per_session = self.db.query(
            models.PageView.session_id.label('session_id'),
            boundary(models.PageView.viewed_at).label('viewed_at')
        ).filter(*self._page_view_filters()).group_by(models.PageView.session_id).subquery()

        rows = self.db.query(
            models.PageView.page_path,
            func.count(models.PageView.id).label(count_label)
        ).join(
            per_session,
            and_(
                models.PageView.session_id == per_session.c.session_id,
                models.PageView.viewed_at == per_session.c.viewed_at
            )
        ).group_by(models.PageView.page_path).order_by(
            desc(count_label), models.PageView.page_path
        ).limit(limit).all()
        return [{"page_path": r[0], count_label: r[1]} for r in rows]

    def entry_pages(self, limit: int = 10) -> List[dict]:
        return self._boundary_pages(func.min, 'entries', limit)

    def exit_pages(self, limit: int = 10) -> List[dict]:
        return self._boundary_pages(func.max, 'exits', limit)

    # Trends

    def hourly_trends(self) -> List[dict]:
        """Sessions and visitors per hour of day over the last 24 hours"""
        hour = utils.get_hour_expr(models.VisitSession.started_at, self.dialect)
        rows = self.db.query(
            hour.label('hour'),
            func.count(models.VisitSession.id),
            func.count(func.distinct(models.VisitSession.visitor_id))
        ).filter(
            models.VisitSession.started_at > self.now - timedelta(hours=24)
        ).group_by(hour).order_by(hour).all()
        return [{"hour": utils.format_hour(r[0]), "sessions": r[1], "visitors": r[2]} for r in rows]

    def daily_trends(self) -> List[dict]:
        """Sessions, visitors and page views per calendar day over the last 30 days"""
        since = self.now - timedelta(days=30)

        session_day = utils.get_date_expr(models.VisitSession.started_at, self.dialect)
        session_rows = self.db.query(
            session_day.label('date'),
            func.count(models.VisitSession.id),
            func.count(func.distinct(models.VisitSession.visitor_id))
        ).filter(
            models.VisitSession.started_at > since
        ).group_by(session_day).all()

        view_day = utils.get_date_expr(models.PageView.viewed_at, self.dialect)
        view_rows = self.db.query(
            view_day.label('date'),
            func.count(models.PageView.id)
        ).filter(
            models.PageView.viewed_at > since
        ).group_by(view_day).all()

        days = {}
        for day, sessions, visitors in session_rows:
            days[utils.format_date(day)] = {"sessions": sessions, "visitors": visitors}
        page_views = {utils.format_date(day): count for day, count in view_rows}

        result = []
        for day in sorted(set(days) | set(page_views)):
            counts = days.get(day, {"sessions": 0, "visitors": 0})
            result.append({
                "date": day,
                "sessions": counts["sessions"],
                "visitors": counts["visitors"],
                "page_views_count": page_views.get(day, 0)
            })
        return result

    def peak_hours(self, limit: int = 5) -> List[dict]:
        """Busiest hours of day by session count, over all time"""
        hour = utils.get_hour_expr(models.VisitSession.started_at, self.dialect)
        rows = self.db.query(
            hour.label('hour'),
            func.count(models.VisitSession.id).label('sessions')
        ).group_by(hour).order_by(desc('sessions'), hour).limit(limit).all()
        return [{"hour": utils.format_hour(r[0]), "sessions": r[1]} for r in rows]

    # Traffic sources

    def referrers(self, limit: int = 15) -> List[dict]:
        domain = func.lower(models.VisitSession.referrer_domain)
        whens = [(
            or_(models.VisitSession.referrer_domain.is_(None), models.VisitSession.referrer_domain == ''),
            DIRECT_SOURCE
        )]
        for fragments, name in REFERRER_SOURCES:
            whens.append((or_(*[domain.like(f"%{fragment}%") for fragment in fragments]), name))
        source = case(*whens, else_=models.VisitSession.referrer_domain)

        # Group over a subquery so the bound CASE literals appear only once
        labeled = self._labeled_sessions(source)
        rows = self.db.query(
            labeled.c.value,
            func.count(labeled.c.id).label('sessions'),
            func.count(func.distinct(labeled.c.visitor_id)).label('visitors')
        ).group_by(labeled.c.value).order_by(desc('sessions'), labeled.c.value).limit(limit).all()
        return [{"source": r[0], "sessions": r[1], "visitors": r[2]} for r in rows]

    def _utm(self, column, label: str, limit: int) -> List[dict]:
        labeled = self._labeled_sessions(func.coalesce(column, 'none'))
        rows = self.db.query(
            labeled.c.value,
            func.count(labeled.c.id).label('sessions')
        ).group_by(labeled.c.value).order_by(desc('sessions'), labeled.c.value).limit(limit).all()
        return [{label: r[0], "sessions": r[1]} for r in rows]

    def _labeled_sessions(self, expression):
        return self.db.query(
            expression.label('value'),
            models.VisitSession.id.label('id'),
            models.VisitSession.visitor_id.label('visitor_id')
        ).filter(*self._session_filters()).subquery()

    def utm_sources(self, limit: int = 10) -> List[dict]:
        return self._utm(models.VisitSession.utm_source, 'source', limit)

    def utm_mediums(self, limit: int = 10) -> List[dict]:
        return self._utm(models.VisitSession.utm_medium, 'medium', limit)

    # Visitor detail breakdowns

    def _breakdown(self, columns, limit: Optional[int] = None, required=None) -> List[dict]:
        """Distinct visitors per combination of ``columns``.

        Rows where any ``required`` column (default: the last one) is null
        are left out.
        """
        required = required if required is not None else columns[-1:]
        query = self.db.query(
            *columns,
            func.count(func.distinct(models.VisitorDetail.visitor_id)).label('visitors')
        ).filter(
            *self._detail_filters(),
            *[column.isnot(None) for column in required]
        ).group_by(*columns).order_by(desc('visitors'), *columns)
        if limit:
            query = query.limit(limit)

        names = [column.key for column in columns]
        return [dict(zip(names + ["visitors"], row)) for row in query.all()]

    def top_countries(self, limit: int = 10) -> List[dict]:
        return self._breakdown([models.VisitorDetail.country], limit)

    def top_countries_detailed(self, limit: int = 20) -> List[dict]:
        rows = self.db.query(
            models.VisitorDetail.country,
            models.VisitorDetail.country_code,
            func.count(func.distinct(models.VisitorDetail.visitor_id)).label('visitors'),
            func.count(func.distinct(models.VisitorDetail.city)).label('cities')
        ).filter(
            *self._detail_filters(),
            models.VisitorDetail.country.isnot(None)
        ).group_by(
            models.VisitorDetail.country, models.VisitorDetail.country_code
        ).order_by(desc('visitors'), models.VisitorDetail.country).limit(limit).all()
        return [{"country": r[0], "country_code": r[1], "visitors": r[2], "cities": r[3]} for r in rows]

    def top_cities(self, limit: int = 20) -> List[dict]:
        return self._breakdown(
            [models.VisitorDetail.city, models.VisitorDetail.country], limit,
            required=[models.VisitorDetail.city]
        )

    def top_browsers(self, limit: int = 10) -> List[dict]:
        return self._breakdown([models.VisitorDetail.browser], limit)

    def device_types(self) -> List[dict]:
        return self._breakdown([models.VisitorDetail.device_type])

    def device_brands(self, limit: int = 10) -> List[dict]:
        return self._breakdown([models.VisitorDetail.device_brand], limit)

    def device_models(self, limit: int = 15) -> List[dict]:
        return self._breakdown(
            [models.VisitorDetail.device_brand, models.VisitorDetail.device_model], limit,
            required=[models.VisitorDetail.device_model]
        )

    def os_versions(self, limit: int = 15) -> List[dict]:
        return self._breakdown(
            [models.VisitorDetail.os, models.VisitorDetail.os_version], limit,
            required=[models.VisitorDetail.os, models.VisitorDetail.os_version]
        )

    def browser_versions(self, limit: int = 15) -> List[dict]:
        return self._breakdown(
            [models.VisitorDetail.browser, models.VisitorDetail.browser_version], limit,
            required=[models.VisitorDetail.browser, models.VisitorDetail.browser_version]
        )

    def screen_resolutions(self, limit: int = 15) -> List[dict]:
        rows = self._breakdown(
            [models.VisitorDetail.screen_width, models.VisitorDetail.screen_height], limit,
            required=[models.VisitorDetail.screen_width, models.VisitorDetail.screen_height]
        )
        return [{
            "resolution": f"{r['screen_width']}x{r['screen_height']}",
            "visitors": r["visitors"]
        } for r in rows]

    def languages(self, limit: int = 15) -> List[dict]:
        return self._breakdown([models.VisitorDetail.language], limit)

    # Reports

    def basic_stats(self) -> dict:
        return {
            "totalVisitors": self.total_visitors(),
            "totalSessions": self.total_sessions(),
            "totalPageViews": self.total_page_views(),
            "uniqueToday": self.unique_today(),
            "topPages": self.top_pages(),
            "topCountries": self.top_countries(),
            "topBrowsers": self.top_browsers(),
            "deviceTypes": self.device_types()
        }

    def enhanced_stats(self) -> dict:
        total_visitors = self.total_visitors()
        return_visitors = self.return_visitors()
        logger.debug("Computing enhanced stats for %r", self.window)

        return {
            # Basic metrics
            "totalVisitors": total_visitors,
            "totalSessions": self.total_sessions(),
            "totalPageViews": self.total_page_views(),
            "uniqueToday": self.unique_today(),

            # Advanced metrics
            "bounceRate": self.bounce_rate(),
            "avgSessionDuration": self.avg_session_duration(),
            "avgPagesPerSession": self.avg_pages_per_session(),
            "returnVisitors": return_visitors,
            "newVisitors": total_visitors - return_visitors,

            # Trends
            "hourlyTrends": self.hourly_trends(),
            "dailyTrends": self.daily_trends(),

            # Pages
            "topPages": self.top_pages_detailed(),
            "entryPages": self.entry_pages(),
            "exitPages": self.exit_pages(),

            # Referrers & marketing
            "referrers": self.referrers(),
            "utmSources": self.utm_sources(),
            "utmMediums": self.utm_mediums(),

            # Geographic
            "topCountries": self.top_countries_detailed(),
            "topCities": self.top_cities(),

            # Devices & technology
            "deviceTypes": self.device_types(),
            "deviceBrands": self.device_brands(),
            "deviceModels": self.device_models(),
            "osVersions": self.os_versions(),
            "browserVersions": self.browser_versions(),
            "topBrowsers": self.top_browsers(),
            "screenResolutions": self.screen_resolutions(),
            "languages": self.languages(),

            # Real-time
            "activeSessions": self.active_sessions(),

            # Insights
            "peakHours": self.peak_hours()
        }
