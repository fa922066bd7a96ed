import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from .config import UNKNOWN
from .errors import StoreUnavailable
from .identity import IdentityKey

logger = logging.getLogger(__name__)


def to_iso(dt: datetime) -> str:
    """
    Single stored timestamp format: UTC, millisecond precision.
    Lexical order of these strings is chronological order.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")


# -----------------------------------------------------------------------------
# Records / filters
# -----------------------------------------------------------------------------
@dataclass
class VisitorRecord:
    ip_address: str
    project_name: str
    user_agent: str = UNKNOWN
    browser: str = UNKNOWN
    device: str = UNKNOWN
    location: str = UNKNOWN
    last_visit: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None

    @property
    def identity(self) -> IdentityKey:
        return IdentityKey(self.ip_address, self.project_name)

    @classmethod
    def from_row(cls, row):
        return cls(**{name: row[name] for name in row.keys()})

    def to_dict(self):
        return {
            "id": self.id,
            "ipAddress": self.ip_address,
            "projectName": self.project_name,
            "userAgent": self.user_agent,
            "browser": self.browser,
            "device": self.device,
            "location": self.location,
            "lastVisit": self.last_visit,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class VisitorFilter:
    """
    Literal column filter. Every field left as None is not constrained;
    ``since``/``until`` are inclusive bounds on last_visit.
    """
    project_name: str | None = None
    ip_address: str | None = None
    device: str | None = None
    browser: str | None = None
    location: str | None = None
    since: str | None = None
    until: str | None = None

    def where(self):
        clauses, params = [], []
        for column in ("project_name", "ip_address", "device", "browser", "location"):
            value = getattr(self, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if self.since is not None:
            clauses.append("last_visit >= ?")
            params.append(self.since)
        if self.until is not None:
            clauses.append("last_visit <= ?")
            params.append(self.until)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params


# group keys accepted by aggregate(); never interpolate anything else
GROUP_EXPRESSIONS = {
    "project_name": "project_name",
    "location": "location",
    "device": "device",
    "browser": "browser",
    "user_agent": "user_agent",
    "day": "strftime('%Y-%m-%d', last_visit)",
    # Sunday-started week of year, 0 before the first Sunday
    "week": "(CAST(strftime('%j', last_visit) AS INTEGER) + 6 - CAST(strftime('%w', last_visit) AS INTEGER)) / 7",
    "month": "CAST(strftime('%m', last_visit) AS INTEGER)",
    "year_month": "strftime('%Y-%m', last_visit)",
}

SORT_COLUMNS = {"id", "last_visit", "created_at", "updated_at"}
EDITABLE_COLUMNS = ("user_agent", "browser", "device", "location")


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------
class VisitorStore:
    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def connect(self):
        """
        One short-lived connection per operation: commit on success,
        rollback on failure, always closed. sqlite errors become
        StoreUnavailable; the diagnostic only goes to the log.
        """
        try:
            db = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as exc:
            logger.error("cannot open visitor store %s: %s", self.db_path, exc)
            raise StoreUnavailable() from exc
        db.row_factory = sqlite3.Row
        try:
            yield db
            db.commit()
        except sqlite3.Error as exc:
            db.rollback()
            logger.error("visitor store failure: %s", exc)
            raise StoreUnavailable() from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ensure_schema(self):
        """
        Create the visitors table if missing and backfill new columns.
        Safe to run on every start.
        """
        with self.connect() as db:
            db.execute("PRAGMA journal_mode=WAL;")
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS visitors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ip_address TEXT NOT NULL,
                    project_name TEXT NOT NULL,
                    user_agent TEXT,
                    browser TEXT,
                    device TEXT,
                    location TEXT,
                    last_visit TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

            # try to add missing columns on upgrade
            for coldef in (
                "user_agent TEXT",
                "browser TEXT",
                "device TEXT",
                "location TEXT",
                "updated_at TEXT NOT NULL DEFAULT ''",
            ):
                colname = coldef.split()[0]
                try:
                    db.execute(f"SELECT {colname} FROM visitors LIMIT 1;")
                except sqlite3.OperationalError:
                    db.execute(f"ALTER TABLE visitors ADD COLUMN {coldef};")

            db.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_visitors_identity
                ON visitors (ip_address, project_name);
                """
            )
            db.execute("CREATE INDEX IF NOT EXISTS idx_visitors_last_visit ON visitors (last_visit);")

    # -- writes ---------------------------------------------------------------
    def upsert(self, record: VisitorRecord) -> tuple[VisitorRecord, bool]:
        """
        Insert the record, or overwrite the descriptive fields and last_visit
        of the one already stored under the same identity. One statement,
        so concurrent first hits for an identity cannot both insert.
        Returns the stored row and whether it was newly created.
        """
        with self.connect() as db:
            rows = db.execute(
                """
                INSERT INTO visitors
                    (ip_address, project_name, user_agent, browser, device, location,
                     last_visit, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (ip_address, project_name) DO UPDATE SET
                    user_agent = excluded.user_agent,
                    browser = excluded.browser,
                    device = excluded.device,
                    location = excluded.location,
                    last_visit = excluded.last_visit,
                    updated_at = excluded.updated_at
                RETURNING *;
                """,
                (
                    record.ip_address,
                    record.project_name,
                    record.user_agent,
                    record.browser,
                    record.device,
                    record.location,
                    record.last_visit,
                    record.created_at,
                    record.updated_at,
                ),
            ).fetchall()
            # stays 0 on this fresh connection when the DO UPDATE branch ran
            inserted_id = db.execute("SELECT last_insert_rowid();").fetchone()[0]
        stored = VisitorRecord.from_row(rows[0])
        return stored, inserted_id == stored.id

    def update(self, visitor_id: int, changes: dict, updated_at: str) -> VisitorRecord | None:
        assignments = [f"{column} = ?" for column in changes if column in EDITABLE_COLUMNS]
        params = [value for column, value in changes.items() if column in EDITABLE_COLUMNS]
        assignments.append("updated_at = ?")
        params += [updated_at, visitor_id]
        with self.connect() as db:
            rows = db.execute(
                f"UPDATE visitors SET {', '.join(assignments)} WHERE id = ? RETURNING *;",
                params,
            ).fetchall()
        return VisitorRecord.from_row(rows[0]) if rows else None

    def delete(self, visitor_id: int) -> bool:
        with self.connect() as db:
            cur = db.execute("DELETE FROM visitors WHERE id = ?;", (visitor_id,))
            return cur.rowcount > 0

    # -- reads ----------------------------------------------------------------
    def find_one(self, identity: IdentityKey) -> VisitorRecord | None:
        with self.connect() as db:
            row = db.execute(
                "SELECT * FROM visitors WHERE ip_address = ? AND project_name = ?;",
                (identity.ip_address, identity.project_name),
            ).fetchone()
        return VisitorRecord.from_row(row) if row else None

    def get(self, visitor_id: int) -> VisitorRecord | None:
        with self.connect() as db:
            row = db.execute("SELECT * FROM visitors WHERE id = ?;", (visitor_id,)).fetchone()
        return VisitorRecord.from_row(row) if row else None

    def count(self, flt: VisitorFilter | None = None) -> int:
        where, params = (flt or VisitorFilter()).where()
        with self.connect() as db:
            return db.execute(f"SELECT COUNT(*) FROM visitors{where};", params).fetchone()[0]

    def find(self, flt=None, sort=(("last_visit", "DESC"),), skip=0, limit=None):
        """
        Records matching ``flt`` ordered by ``sort`` ((column, "ASC"|"DESC") pairs).
        id is always appended as the last sort key so pages never overlap.
        """
        where, params = (flt or VisitorFilter()).where()
        order = []
        for column, direction in sort:
            if column not in SORT_COLUMNS or direction not in ("ASC", "DESC"):
                raise ValueError(f"unsupported sort {column} {direction}")
            order.append(f"{column} {direction}")
        if not any(column == "id" for column, _ in sort):
            order.append("id " + (sort[0][1] if sort else "ASC"))

        sql = f"SELECT * FROM visitors{where} ORDER BY {', '.join(order)}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + [limit, skip]
        elif skip:
            sql += " LIMIT -1 OFFSET ?"
            params = params + [skip]
        with self.connect() as db:
            rows = db.execute(sql + ";", params).fetchall()
        return [VisitorRecord.from_row(row) for row in rows]

    def aggregate(self, group: str, flt=None, distinct: str | None = None, ordered: bool = True):
        """
        [(group key, count)] for one of GROUP_EXPRESSIONS. With ``distinct``
        the count is COUNT(DISTINCT column) instead of a row count.
        """
        expr = GROUP_EXPRESSIONS[group]
        counted = "*"
        if distinct is not None:
            if distinct not in ("ip_address", "project_name"):
                raise ValueError(f"unsupported distinct column {distinct}")
            counted = f"DISTINCT {distinct}"
        where, params = (flt or VisitorFilter()).where()
        sql = f"SELECT {expr} AS bucket, COUNT({counted}) AS hits FROM visitors{where} GROUP BY bucket"
        if ordered:
            sql += " ORDER BY bucket ASC"
        with self.connect() as db:
            rows = db.execute(sql + ";", params).fetchall()
        return [(row["bucket"], row["hits"]) for row in rows]
