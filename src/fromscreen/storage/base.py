"""Storage interface for conversion artifacts and quota counters."""

from __future__ import annotations

from typing import Protocol

from fromscreen.storage.models import ConversionRecord, QuotaBucket, QuotaDecider


class ConversionStorage(Protocol):
    def migrate(self) -> None: ...

    def insert_conversion(
        self,
        *,
        conversion_id: str,
        owner: str,
        markup: str,
        preview_image: str | None = None,
    ) -> ConversionRecord: ...

    def get_conversion(self, conversion_id: str) -> ConversionRecord | None: ...

    def list_conversions(self, *, limit: int) -> list[ConversionRecord]: ...

    def consume_quota(
        self,
        owner: str,
        *,
        day: str,
        cost: int,
        decide: QuotaDecider,
    ) -> tuple[QuotaBucket, bool]: ...

    def get_quota_bucket(self, owner: str) -> QuotaBucket | None: ...

    def get_usage_count(self, owner: str, *, day: str) -> int: ...
