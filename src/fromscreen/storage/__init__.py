"""Storage backends and models."""

from fromscreen.storage.base import ConversionStorage
from fromscreen.storage.memory import InMemoryConversionStorage
from fromscreen.storage.models import ConversionRecord, QuotaBucket, QuotaDecider
from fromscreen.storage.postgres import PostgresConversionStorage

__all__ = [
    "ConversionRecord",
    "ConversionStorage",
    "InMemoryConversionStorage",
    "PostgresConversionStorage",
    "QuotaBucket",
    "QuotaDecider",
]
