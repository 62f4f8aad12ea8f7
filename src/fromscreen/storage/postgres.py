"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from fromscreen.storage.models import ConversionRecord, QuotaBucket, QuotaDecider


class PostgresConversionStorage:
    """Persist conversions and quota counters in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("FROMSCREEN_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    html_output TEXT NOT NULL,
                    image_preview TEXT,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_conversions_created_at
                ON conversions(created_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage (
                    user_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, date)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS quota_buckets (
                    user_id TEXT PRIMARY KEY,
                    tokens INTEGER NOT NULL,
                    refilled_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def insert_conversion(
        self,
        *,
        conversion_id: str,
        owner: str,
        markup: str,
        preview_image: str | None = None,
    ) -> ConversionRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            # Plain INSERT: a duplicate id is a primary key violation, never an update.
            conn.execute(
                """
                INSERT INTO conversions (id, user_id, html_output, image_preview, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (conversion_id, owner, markup, preview_image, now),
            )
            conn.commit()
        return ConversionRecord(
            conversion_id=conversion_id,
            owner=owner,
            markup=markup,
            created_at=now,
            preview_image=preview_image,
        )

    def get_conversion(self, conversion_id: str) -> ConversionRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversions WHERE id = %s",
                (conversion_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_conversion(row)

    def list_conversions(self, *, limit: int) -> list[ConversionRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM conversions ORDER BY created_at DESC LIMIT %s",
                (limit,),
            ).fetchall()
        return [self._row_to_conversion(row) for row in rows]

    def consume_quota(
        self,
        owner: str,
        *,
        day: str,
        cost: int,
        decide: QuotaDecider,
    ) -> tuple[QuotaBucket, bool]:
        with self._lock, self._connect() as conn:
            # Serializes decisions for this owner across processes until commit.
            conn.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (owner,))
            row = conn.execute(
                "SELECT * FROM quota_buckets WHERE user_id = %s",
                (owner,),
            ).fetchone()
            current = self._row_to_bucket(row) if row is not None else None
            bucket, allowed = decide(current)
            conn.execute(
                """
                INSERT INTO quota_buckets (user_id, tokens, refilled_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id)
                DO UPDATE SET tokens = EXCLUDED.tokens, refilled_at = EXCLUDED.refilled_at
                """,
                (owner, bucket.tokens, bucket.refilled_at),
            )
            if allowed:
                conn.execute(
                    """
                    INSERT INTO usage (user_id, date, count)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (user_id, date)
                    DO UPDATE SET count = usage.count + EXCLUDED.count
                    """,
                    (owner, day, cost),
                )
            conn.commit()
        return bucket, allowed

    def get_quota_bucket(self, owner: str) -> QuotaBucket | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM quota_buckets WHERE user_id = %s",
                (owner,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_bucket(row)

    def get_usage_count(self, owner: str, *, day: str) -> int:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT count FROM usage WHERE user_id = %s AND date = %s",
                (owner, day),
            ).fetchone()
        if row is None:
            return 0
        return int(row["count"] or 0)

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_conversion(cls, row: Any) -> ConversionRecord:
        return ConversionRecord(
            conversion_id=row["id"],
            owner=row["user_id"],
            markup=row["html_output"],
            created_at=cls._parse_datetime(row["created_at"]),
            preview_image=row["image_preview"],
        )

    @classmethod
    def _row_to_bucket(cls, row: Any) -> QuotaBucket:
        return QuotaBucket(
            owner=row["user_id"],
            tokens=int(row["tokens"]),
            refilled_at=cls._parse_datetime(row["refilled_at"]),
        )
