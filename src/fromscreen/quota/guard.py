"""Token-bucket quota guard.

`QuotaGuard.check` is the only place budget is deducted. Each accepted check
also bumps the owner's usage counter for the current UTC day inside the same
atomic store operation, so the usage report and the bucket never drift apart
through a second writer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable

from fromscreen.storage.base import ConversionStorage
from fromscreen.storage.models import QuotaBucket

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class TokenBucketPolicy:
    """Fixed capacity, refilled by `refill_rate` tokens every whole interval."""

    capacity: int = 5
    refill_rate: int = 5
    interval_s: int = 86400


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    retry_after_s: int | None = None


@dataclass(frozen=True)
class UsageSnapshot:
    count: int
    limit: int
    remaining: int
    has_reached_limit: bool


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_day(moment: datetime) -> str:
    return moment.astimezone(UTC).date().isoformat()


def refill_bucket(
    bucket: QuotaBucket | None,
    *,
    owner: str,
    policy: TokenBucketPolicy,
    now: datetime,
) -> QuotaBucket:
    """Return the bucket after crediting every whole interval elapsed since the last refill."""
    if bucket is None:
        return QuotaBucket(owner=owner, tokens=policy.capacity, refilled_at=now)

    elapsed_s = (now - bucket.refilled_at).total_seconds()
    intervals = int(elapsed_s // policy.interval_s) if elapsed_s > 0 else 0
    if intervals == 0:
        return bucket
    if bucket.tokens >= policy.capacity:
        # A full bucket restarts its interval so idle time is not banked.
        return bucket.model_copy(update={"refilled_at": now})
    tokens = min(policy.capacity, bucket.tokens + intervals * policy.refill_rate)
    refilled_at = bucket.refilled_at + timedelta(seconds=intervals * policy.interval_s)
    return bucket.model_copy(update={"tokens": tokens, "refilled_at": refilled_at})


class QuotaGuard:
    """Decide whether an owner may start a conversion and consume budget atomically."""

    def __init__(
        self,
        storage: ConversionStorage,
        *,
        policy: TokenBucketPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.storage = storage
        self.policy = policy or TokenBucketPolicy()
        self._clock = clock or utc_now

    def check(self, owner: str, cost: int = 1) -> QuotaDecision:
        if cost < 1:
            raise ValueError("cost must be a positive integer")
        now = self._clock()

        def decide(current: QuotaBucket | None) -> tuple[QuotaBucket, bool]:
            bucket = refill_bucket(current, owner=owner, policy=self.policy, now=now)
            if bucket.tokens < cost:
                return bucket, False
            return bucket.model_copy(update={"tokens": bucket.tokens - cost}), True

        bucket, allowed = self.storage.consume_quota(
            owner,
            day=utc_day(now),
            cost=cost,
            decide=decide,
        )
        if allowed:
            return QuotaDecision(allowed=True, remaining=bucket.tokens)

        retry_after_s = self._retry_after_s(bucket, now)
        logger.info(
            "quota event=denied owner=%s tokens=%d retry_after_s=%d",
            owner,
            bucket.tokens,
            retry_after_s,
        )
        return QuotaDecision(allowed=False, remaining=bucket.tokens, retry_after_s=retry_after_s)

    def usage(self, owner: str) -> UsageSnapshot:
        """Read-only view of today's usage; never consumes budget."""
        now = self._clock()
        bucket = refill_bucket(
            self.storage.get_quota_bucket(owner),
            owner=owner,
            policy=self.policy,
            now=now,
        )
        count = self.storage.get_usage_count(owner, day=utc_day(now))
        remaining = max(0, bucket.tokens)
        return UsageSnapshot(
            count=count,
            limit=self.policy.capacity,
            remaining=remaining,
            has_reached_limit=remaining < 1,
        )

    def _retry_after_s(self, bucket: QuotaBucket, now: datetime) -> int:
        next_refill = bucket.refilled_at + timedelta(seconds=self.policy.interval_s)
        return max(1, int((next_refill - now).total_seconds()))
