"""SQLAlchemy ORM models for deeptrend."""

from deeptrend.models.base import Base
from deeptrend.models.insight import InsightRecord
from deeptrend.models.raw_signal import RawSignal

__all__ = [
    "Base",
    "InsightRecord",
    "RawSignal",
]
