"""
Read-only analytics over the visitor store.

Every ``project_name`` argument accepts the literal ``"All"`` to drop the
project filter. Time buckets are computed on ``last_visit`` in UTC.

Because a visitor record keeps only its latest visit, anything bucketed by
day (trend, DAU) counts each identity once, on the last day it was seen.
"""
import logging
import math
from datetime import date, datetime, time, timedelta, timezone

from .config import ALL_PROJECTS
from .errors import InvalidDateFormat, InvalidDimension, InvalidIdentity, InvalidInput, InvalidPeriod, NotFound
from .resolver import utc_now
from .store import VisitorFilter, VisitorStore, to_iso

logger = logging.getLogger(__name__)

PERIOD_GROUPS = {"daily": "day", "weekly": "week", "monthly": "month"}
DIMENSIONS = ("location", "device", "browser")

# public field name -> column
SORT_FIELDS = {"lastVisit": "last_visit", "createdAt": "created_at", "updatedAt": "updated_at"}
EDITABLE_FIELDS = {"userAgent": "user_agent", "browser": "browser", "device": "device", "location": "location"}
IDENTITY_FIELDS = ("ipAddress", "projectName")


# -----------------------------------------------------------------------------
# Date helpers
# -----------------------------------------------------------------------------
def parse_day(value) -> date:
    """
    Parse a YYYY-MM-DD string; anything else is InvalidDateFormat.
    """
    if not isinstance(value, str) or not value:
        raise InvalidDateFormat()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidDateFormat() from None


def start_of_day(day: date) -> str:
    return to_iso(datetime.combine(day, time.min, tzinfo=timezone.utc))


def end_of_day(day: date) -> str:
    return to_iso(datetime.combine(day, time(23, 59, 59, 999000), tzinfo=timezone.utc))


def project_filter(project_name: str | None, **extra) -> VisitorFilter:
    if not project_name:
        raise InvalidIdentity("Project Name is required")
    if project_name == ALL_PROJECTS:
        return VisitorFilter(**extra)
    return VisitorFilter(project_name=project_name, **extra)


def _unless_all(value):
    return None if not value or value == ALL_PROJECTS else value


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------
class AggregationEngine:
    def __init__(self, store: VisitorStore, clock=utc_now, dau_days: int = 30, active_minutes: int = 5):
        self.store = store
        self.clock = clock
        self.dau_days = dau_days
        self.active_minutes = active_minutes

    # -- counts / trends -------------------------------------------------------
    def unique_count(self, project_name: str) -> int:
        return self.store.count(project_filter(project_name))

    def trend(self, project_name: str, period: str):
        """
        [{bucket, count}] ascending. daily -> "YYYY-MM-DD", weekly -> week of
        year (Sunday start, 0-53), monthly -> month number (1-12, years merged).
        """
        group = PERIOD_GROUPS.get(period)
        if group is None:
            raise InvalidPeriod(details={"period": period})
        rows = self.store.aggregate(group, project_filter(project_name))
        return [{"bucket": bucket, "count": count} for bucket, count in rows]

    def visits_by_project(self):
        rows = self.store.aggregate("project_name")
        return [{"projectName": name, "uniqueVisitors": count} for name, count in rows]

    # same grouping, served as /api/total-visits
    total_visits = visits_by_project

    def growth(self):
        """
        Month-over-month unique visitors, [{period: "YYYY-MM", count}] ascending.
        """
        return [{"period": period, "count": count} for period, count in self.store.aggregate("year_month")]

    def daily_active_users(self, project_name: str, start_date: str | None = None, end_date: str | None = None):
        today = self.clock().astimezone(timezone.utc).date()
        start = parse_day(start_date) if start_date else today - timedelta(days=self.dau_days)
        end = parse_day(end_date) if end_date else today

        flt = project_filter(project_name, since=start_of_day(start), until=end_of_day(end))
        rows = self.store.aggregate("day", flt, distinct="ip_address")
        return {
            "projectName": project_name,
            "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
            "dailyActiveUsers": [{"date": day, "uniqueVisitors": count} for day, count in rows],
        }

    def active_now(self, minutes: int | None = None):
        minutes = self.active_minutes if minutes is None else minutes
        if minutes <= 0:
            raise InvalidInput("minutes must be positive")
        threshold = self.clock() - timedelta(minutes=minutes)
        return self.store.find(VisitorFilter(since=to_iso(threshold)))

    # -- breakdowns ------------------------------------------------------------
    def breakdown(self, dimension: str):
        """
        [{<dimension>, visitorCount}] straight from the store, unsorted.
        """
        if dimension not in DIMENSIONS:
            raise InvalidDimension(details={"dimension": dimension})
        rows = self.store.aggregate(dimension, ordered=False)
        return [{dimension: value, "visitorCount": count} for value, count in rows]

    def top_n(self, dimension: str, n: int | None = None):
        rows = sorted(self.breakdown(dimension), key=lambda r: (-r["visitorCount"], str(r[dimension])))
        if n is not None:
            if n < 1:
                raise InvalidInput("limit must be positive")
            rows = rows[:n]
        return rows

    def browser_os_stats(self):
        return {
            "browserStats": [{"browser": b, "count": c} for b, c in self.store.aggregate("browser")],
            "osStats": [{"userAgent": ua, "count": c} for ua, c in self.store.aggregate("user_agent")],
        }

    def statistics(self, project_name: str):
        """
        Representative browser/device/location of the project: taken from the
        first stored record, not the most frequent value. None when empty.
        """
        first = self.store.find(project_filter(project_name), sort=(("id", "ASC"),), limit=1)
        if not first:
            return None
        record = first[0]
        return {
            "mostUsedBrowser": record.browser,
            "mostUsedDevice": record.device,
            "mostVisitedLocation": record.location,
        }

    # -- searches --------------------------------------------------------------
    def filter_search(self, filters: dict, page: int = 1, limit: int = 10, sort: str = "-lastVisit"):
        if page < 1 or limit < 1:
            raise InvalidInput("page and limit must be positive")

        descending = sort.startswith("-")
        column = SORT_FIELDS.get(sort[1:] if descending else sort)
        if column is None:
            raise InvalidInput(f"cannot sort by {sort}")

        start, end = filters.get("startDate"), filters.get("endDate")
        flt = VisitorFilter(
            project_name=_unless_all(filters.get("projectName")),
            device=_unless_all(filters.get("device")),
            browser=_unless_all(filters.get("browser")),
            location=_unless_all(filters.get("location")),
            since=start_of_day(parse_day(start)) if start else None,
            until=end_of_day(parse_day(end)) if end else None,
        )

        visitors = self.store.find(
            flt,
            sort=((column, "DESC" if descending else "ASC"),),
            skip=(page - 1) * limit,
            limit=limit,
        )
        total = self.store.count(flt)
        return {
            "visitors": visitors,
            "totalCount": total,
            "totalPages": math.ceil(total / limit),
            "currentPage": page,
        }

    def date_range_search(self, start_date: str, end_date: str):
        if not start_date or not end_date:
            raise InvalidDateFormat("Start date and end date are required")
        flt = VisitorFilter(since=start_of_day(parse_day(start_date)), until=end_of_day(parse_day(end_date)))
        visitors = self.store.find(flt)
        return {
            "startDate": start_date,
            "endDate": end_date,
            "visitorCount": len(visitors),
            "visitors": visitors,
        }

    # -- lookups / admin -------------------------------------------------------
    def all_visitors(self):
        return self.store.find()

    def get_visitor(self, visitor_id: int):
        record = self.store.get(visitor_id)
        if record is None:
            raise NotFound(f"Visitor {visitor_id} not found")
        return record

    def visitors_by_ip(self, ip_address: str):
        if not ip_address:
            raise InvalidIdentity("IP Address is required")
        visitors = self.store.find(VisitorFilter(ip_address=ip_address))
        if not visitors:
            raise NotFound("No visitor found with this IP address")
        return visitors

    def update_visitor(self, visitor_id: int, changes: dict):
        """
        Overwrite descriptive fields of one record. Identity is immutable.
        """
        if not isinstance(changes, dict) or not changes:
            raise InvalidInput("Nothing to update")
        frozen = [name for name in IDENTITY_FIELDS if name in changes]
        if frozen:
            raise InvalidInput("ipAddress and projectName cannot be changed", details={"fields": frozen})
        unknown = [name for name in changes if name not in EDITABLE_FIELDS]
        if unknown:
            raise InvalidInput("Unknown fields", details={"fields": unknown})
        if not all(isinstance(value, str) for value in changes.values()):
            raise InvalidInput("Field values must be strings")

        columns = {EDITABLE_FIELDS[name]: value for name, value in changes.items()}
        record = self.store.update(visitor_id, columns, to_iso(self.clock()))
        if record is None:
            raise NotFound(f"Visitor {visitor_id} not found")
        logger.info("visitor %s updated: %s", visitor_id, ", ".join(sorted(changes)))
        return record

    def delete_visitor(self, visitor_id: int):
        if not self.store.delete(visitor_id):
            raise NotFound(f"Visitor {visitor_id} not found")
        logger.info("visitor %s deleted", visitor_id)
