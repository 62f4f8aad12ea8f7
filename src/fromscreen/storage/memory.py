"""In-memory storage backend for tests only."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from fromscreen.storage.models import ConversionRecord, QuotaBucket, QuotaDecider


class InMemoryConversionStorage:
    """Simple in-memory implementation for unit tests."""

    def __init__(self) -> None:
        self._conversions: dict[str, ConversionRecord] = {}
        self._buckets: dict[str, QuotaBucket] = {}
        self._usage: dict[tuple[str, str], int] = {}
        # One lock serializes every quota decision, which covers per-owner atomicity.
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def insert_conversion(
        self,
        *,
        conversion_id: str,
        owner: str,
        markup: str,
        preview_image: str | None = None,
    ) -> ConversionRecord:
        with self._lock:
            if conversion_id in self._conversions:
                raise ValueError(f"Conversion {conversion_id} already exists")
            record = ConversionRecord(
                conversion_id=conversion_id,
                owner=owner,
                markup=markup,
                created_at=datetime.now(UTC),
                preview_image=preview_image,
            )
            self._conversions[conversion_id] = record
        return record

    def get_conversion(self, conversion_id: str) -> ConversionRecord | None:
        return self._conversions.get(conversion_id)

    def list_conversions(self, *, limit: int) -> list[ConversionRecord]:
        # Insertion order breaks timestamp ties.
        ordered = sorted(
            enumerate(self._conversions.values()),
            key=lambda item: (item[1].created_at, item[0]),
            reverse=True,
        )
        return [record for _, record in ordered[:limit]]

    def consume_quota(
        self,
        owner: str,
        *,
        day: str,
        cost: int,
        decide: QuotaDecider,
    ) -> tuple[QuotaBucket, bool]:
        with self._lock:
            bucket, allowed = decide(self._buckets.get(owner))
            self._buckets[owner] = bucket
            if allowed:
                key = (owner, day)
                self._usage[key] = self._usage.get(key, 0) + cost
        return bucket, allowed

    def get_quota_bucket(self, owner: str) -> QuotaBucket | None:
        return self._buckets.get(owner)

    def get_usage_count(self, owner: str, *, day: str) -> int:
        return self._usage.get((owner, day), 0)
