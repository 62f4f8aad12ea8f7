"""Per-identity conversion quota."""

from fromscreen.quota.guard import (
    QuotaDecision,
    QuotaGuard,
    TokenBucketPolicy,
    UsageSnapshot,
    refill_bucket,
)

__all__ = [
    "QuotaDecision",
    "QuotaGuard",
    "TokenBucketPolicy",
    "UsageSnapshot",
    "refill_bucket",
]
