"""Source period schemas."""

from datetime import date
from enum import Enum
from pydantic import BaseModel


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BI_MONTHLY = "bi_monthly"


class SourcePeriod(BaseModel):
    """Precomputed calendar interval shared by every user."""

    id: str  # e.g. "2025M11"
    type: PeriodType
    start_date: date
    end_date: date

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date
