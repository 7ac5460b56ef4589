"""
SQLite Database Repository - Review and Audit Persistence
==========================================================

Stores reviews keyed by (location_id, external_review_id) and the append-only
audit event ledger.

DESIGN:
- Reviews are written with a keyed upsert; the natural key never changes.
- Audit events are insert-only; there is no update or delete method.
- Lists and dicts are stored as JSON text, timestamps as ISO-8601 strings.
"""

import json
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from ...domain.models import (
    AuditAction,
    AuditEvent,
    AuditTargetType,
    Review,
    ReviewStatus,
    Sentiment,
    Urgency,
    utc_now,
)

logger = logging.getLogger(__name__)

DATABASE_FILE = "replyguard.db"

E = TypeVar("E", bound=Enum)

# Columns a caller may change through update_review()
MUTABLE_REVIEW_COLUMNS = {
    "author_name", "rating", "comment", "updated_at",
    "sentiment", "urgency", "topics", "suggested_actions", "risk_flags",
    "reply_draft", "reply_language_code", "reply_variants",
    "status", "replied_at", "last_analyzed_at", "needs_approval_since",
    "last_reminder_at", "escalation_level", "approved_at", "approved_by",
}

JSON_COLUMNS = {"topics", "suggested_actions", "risk_flags", "reply_variants"}


def _to_db(column: str, value: Any) -> Any:
    """Convert a domain value to its SQLite representation."""
    if value is None:
        return None
    if column in JSON_COLUMNS:
        return json.dumps(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_json(value: Optional[str]) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed JSON column value: {value[:60]!r}")
        return None


def _parse_enum(enum_cls: Type[E], value: Optional[str]) -> Optional[E]:
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


class Database:
    """
    SQLite database for ReplyGuard.

    Usage:
        db = Database("replyguard.db")
        db.init()

        review_id = db.upsert_review(review)
        pending = db.list_reviews("biz_1", status=ReviewStatus.NEEDS_APPROVAL)
    """

    def __init__(self, db_path: str = DATABASE_FILE):
        self.db_path = str(db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    business_id TEXT NOT NULL,
                    location_id TEXT NOT NULL,
                    external_review_id TEXT NOT NULL,
                    author_name TEXT NOT NULL DEFAULT 'Guest',
                    rating INTEGER NOT NULL DEFAULT 0,
                    comment TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    sentiment TEXT,
                    urgency TEXT,
                    topics TEXT,
                    suggested_actions TEXT,
                    risk_flags TEXT,
                    reply_draft TEXT,
                    reply_language_code TEXT,
                    reply_variants TEXT,
                    status TEXT NOT NULL DEFAULT 'PendingAnalysis',
                    replied_at TEXT,
                    last_analyzed_at TEXT,
                    needs_approval_since TEXT,
                    last_reminder_at TEXT,
                    escalation_level INTEGER NOT NULL DEFAULT 0,
                    UNIQUE(location_id, external_review_id)
                )
            """)

            # Migrations for older databases
            self._migrate_reviews_table(conn)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    business_id TEXT NOT NULL,
                    actor_user_id TEXT,
                    actor_role TEXT,
                    action TEXT NOT NULL,
                    target_type TEXT NOT NULL,
                    target_id TEXT,
                    original_sha256 TEXT NOT NULL,
                    sanitized_sha256 TEXT NOT NULL,
                    violation_codes TEXT,
                    metadata TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reviews_business_status ON reviews (business_id, status)"
            )

            logger.info(f"Database initialized: {self.db_path}")

    def _migrate_reviews_table(self, conn):
        """Add missing columns to existing reviews table."""
        existing = {row[1] for row in conn.execute("PRAGMA table_info(reviews)").fetchall()}

        migrations = {
            "approved_at": "ALTER TABLE reviews ADD COLUMN approved_at TEXT",
            "approved_by": "ALTER TABLE reviews ADD COLUMN approved_by TEXT",
        }

        for col, sql in migrations.items():
            if col not in existing:
                try:
                    conn.execute(sql)
                    logger.info(f"Migrated: added '{col}' column to reviews")
                except sqlite3.OperationalError:
                    pass

    # ── Reviews ────────────────────────────────────────────────────

    def get_review(self, location_id: str, external_review_id: str) -> Optional[Review]:
        """Get review by its natural key."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE location_id = ? AND external_review_id = ?",
                (location_id, external_review_id)
            ).fetchone()
            return self._row_to_review(row) if row else None

    def get_review_by_id(self, review_id: int) -> Optional[Review]:
        """Get review by internal ID."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
            return self._row_to_review(row) if row else None

    def list_reviews(
        self,
        business_id: str,
        status: Optional[ReviewStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Review]:
        """Reviews for a business, oldest first, optionally filtered by status."""
        sql = "SELECT * FROM reviews WHERE business_id = ?"
        params: List[Any] = [business_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._row_to_review(row) for row in rows]

    def latest_update_time(self, location_id: str) -> Optional[datetime]:
        """Newest external update time stored for a location."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT MAX(updated_at) FROM reviews WHERE location_id = ?", (location_id,)
            ).fetchone()
            return _parse_dt(row[0]) if row else None

    def upsert_review(self, review: Review) -> int:
        """
        Insert or update a review keyed by (location_id, external_review_id).

        Returns:
            Internal review ID.
        """
        columns = ["business_id", "location_id", "external_review_id", "created_at"]
        columns += sorted(MUTABLE_REVIEW_COLUMNS)
        values = [_to_db(col, getattr(review, col)) for col in columns]

        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{col} = excluded.{col}" for col in sorted(MUTABLE_REVIEW_COLUMNS))

        with self._get_connection() as conn:
            conn.execute(
                f"""INSERT INTO reviews ({", ".join(columns)}) VALUES ({placeholders})
                    ON CONFLICT(location_id, external_review_id) DO UPDATE SET {updates}""",
                values
            )
            row = conn.execute(
                "SELECT id FROM reviews WHERE location_id = ? AND external_review_id = ?",
                (review.location_id, review.external_review_id)
            ).fetchone()
            return row["id"]

    def update_review(self, review_id: int, **updates) -> bool:
        """Update selected review fields by internal ID."""
        return self._update_review_where("id = ?", (review_id,), updates)

    def update_review_by_key(self, location_id: str, external_review_id: str, **updates) -> bool:
        """Update selected review fields by natural key."""
        return self._update_review_where(
            "location_id = ? AND external_review_id = ?",
            (location_id, external_review_id),
            updates,
        )

    def _update_review_where(self, where: str, where_params: tuple, updates: Dict[str, Any]) -> bool:
        if not updates:
            return False

        unknown = set(updates) - MUTABLE_REVIEW_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update review columns: {sorted(unknown)}")

        set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
        values = [_to_db(k, v) for k, v in updates.items()] + list(where_params)

        with self._get_connection() as conn:
            cursor = conn.execute(f"UPDATE reviews SET {set_clause} WHERE {where}", values)
            return cursor.rowcount > 0

    def get_review_stats(self, business_id: str) -> Dict[str, int]:
        """Review counts per workflow status for a business."""
        stats = {status.value: 0 for status in ReviewStatus}
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM reviews WHERE business_id = ? GROUP BY status",
                (business_id,)
            ).fetchall()
        for row in rows:
            stats[row["status"]] = row["n"]
        stats["total"] = sum(stats[s.value] for s in ReviewStatus)
        return stats

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        """Convert database row to Review object."""
        keys = row.keys()
        return Review(
            id=row["id"],
            business_id=row["business_id"],
            location_id=row["location_id"],
            external_review_id=row["external_review_id"],
            author_name=row["author_name"] or "Guest",
            rating=row["rating"] or 0,
            comment=row["comment"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
            sentiment=_parse_enum(Sentiment, row["sentiment"]),
            urgency=_parse_enum(Urgency, row["urgency"]),
            topics=_parse_json(row["topics"]),
            suggested_actions=_parse_json(row["suggested_actions"]),
            risk_flags=_parse_json(row["risk_flags"]),
            reply_draft=row["reply_draft"],
            reply_language_code=row["reply_language_code"],
            reply_variants=_parse_json(row["reply_variants"]),
            status=_parse_enum(ReviewStatus, row["status"]) or ReviewStatus.PENDING_ANALYSIS,
            replied_at=_parse_dt(row["replied_at"]),
            last_analyzed_at=_parse_dt(row["last_analyzed_at"]),
            needs_approval_since=_parse_dt(row["needs_approval_since"]),
            last_reminder_at=_parse_dt(row["last_reminder_at"]),
            escalation_level=row["escalation_level"] or 0,
            approved_at=_parse_dt(row["approved_at"]) if "approved_at" in keys else None,
            approved_by=row["approved_by"] if "approved_by" in keys else None,
        )

    # ── Audit events (append-only) ─────────────────────────────────

    def insert_audit_event(self, event: AuditEvent) -> int:
        """Append an audit event and return its ID."""
        created_at = event.created_at or utc_now()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """INSERT INTO audit_events (
                       business_id, actor_user_id, actor_role, action, target_type, target_id,
                       original_sha256, sanitized_sha256, violation_codes, metadata, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event.business_id,
                    event.actor_user_id,
                    event.actor_role,
                    event.action.value,
                    event.target_type.value,
                    event.target_id,
                    event.original_sha256,
                    event.sanitized_sha256,
                    json.dumps(event.violation_codes) if event.violation_codes else None,
                    json.dumps(event.metadata) if event.metadata else None,
                    _to_db("created_at", created_at),
                )
            )
            return cursor.lastrowid

    def list_audit_events(self, business_id: str, limit: int = 100) -> List[AuditEvent]:
        """Most recent audit events first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_events WHERE business_id = ? ORDER BY id DESC LIMIT ?",
                (business_id, limit)
            ).fetchall()
            return [self._row_to_audit_event(row) for row in rows]

    def _row_to_audit_event(self, row: sqlite3.Row) -> AuditEvent:
        """Convert database row to AuditEvent object."""
        return AuditEvent(
            id=row["id"],
            business_id=row["business_id"],
            actor_user_id=row["actor_user_id"],
            actor_role=row["actor_role"],
            action=AuditAction(row["action"]),
            target_type=AuditTargetType(row["target_type"]),
            target_id=row["target_id"],
            original_sha256=row["original_sha256"],
            sanitized_sha256=row["sanitized_sha256"],
            violation_codes=_parse_json(row["violation_codes"]) or [],
            metadata=_parse_json(row["metadata"]),
            created_at=_parse_dt(row["created_at"]),
        )


def init_database(db_path: str = DATABASE_FILE) -> Database:
    """Create the database file and tables if needed."""
    db = Database(db_path)
    db.init()
    return db
