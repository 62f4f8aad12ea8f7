"""Storage models shared by API, quota guard, and persistence backends."""

from datetime import datetime
from typing import Callable

from pydantic import BaseModel


class ConversionRecord(BaseModel):
    """Persisted conversion artifact. Immutable once written."""

    conversion_id: str
    owner: str
    markup: str
    created_at: datetime
    preview_image: str | None = None


class QuotaBucket(BaseModel):
    """Token bucket state for one owner."""

    owner: str
    tokens: int
    refilled_at: datetime


# Receives the owner's current bucket (None for a new owner) and returns the
# bucket to store plus whether the request was accepted.
QuotaDecider = Callable[[QuotaBucket | None], tuple[QuotaBucket, bool]]
