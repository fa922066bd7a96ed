import logging
from datetime import datetime, timezone
from typing import NamedTuple

from .enrichment import GeoLocator, format_location, parse_user_agent
from .errors import AnalyticsError, InvalidIdentity, InvalidInput
from .identity import identity_of
from .store import VisitorFilter, VisitorRecord, VisitorStore, to_iso

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VisitResult(NamedTuple):
    record: VisitorRecord
    unique_visitors: int
    created: bool


class VisitResolver:
    """
    Turns an incoming hit into the canonical visitor record for its
    (ip, project) identity and reports the project's unique visitor count.
    """

    def __init__(self, store: VisitorStore, geo: GeoLocator, clock=utc_now):
        self.store = store
        self.geo = geo
        self.clock = clock

    def record_visit(self, ip_address: str | None, project_name: str | None, user_agent: str | None) -> VisitResult:
        if not project_name:
            raise InvalidIdentity("Project Name is required")
        identity = identity_of(ip_address or "unknown", project_name)

        agent = parse_user_agent(user_agent)
        location = format_location(self.geo.lookup(identity.ip_address))
        now = to_iso(self.clock())

        # last write wins: every field is overwritten, even with Unknown
        record, created = self.store.upsert(
            VisitorRecord(
                ip_address=identity.ip_address,
                project_name=identity.project_name,
                user_agent=agent.to_agent_string(),
                browser=agent.browser,
                device=agent.device,
                location=location,
                last_visit=now,
                created_at=now,
                updated_at=now,
            )
        )
        if created:
            logger.info("new visitor for %s: %s | %s | %s", project_name, location, agent.browser, agent.device)
        else:
            logger.debug("repeat visitor for %s (id=%s)", project_name, record.id)

        count = self.store.count(VisitorFilter(project_name=identity.project_name))
        return VisitResult(record, count, created)

    def record_visits(self, hits) -> list[dict]:
        """
        Resolve a batch of hits (dicts with ipAddress, projectName, userAgent).
        Each hit succeeds or fails on its own; one bad hit never fails the batch.
        """
        results = []
        for index, hit in enumerate(hits):
            try:
                if not isinstance(hit, dict):
                    raise InvalidInput("Each hit must be an object")
                result = self.record_visit(hit.get("ipAddress"), hit.get("projectName"), hit.get("userAgent"))
            except AnalyticsError as exc:
                logger.warning("batch hit %d rejected: %s", index, exc.message)
                results.append({"index": index, "ok": False, "error": exc.message})
                continue
            results.append({
                "index": index,
                "ok": True,
                "projectName": result.record.project_name,
                "uniqueVisitors": result.unique_visitors,
                "created": result.created,
            })
        return results
