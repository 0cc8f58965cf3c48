"""Budget schemas."""

from datetime import date
from pydantic import BaseModel, Field


class Budget(BaseModel):
    """Date-ranged spending envelope, read-only for the sync pipeline."""

    id: str
    user_id: str
    name: str = Field(default="General")
    start_date: date | None = None  # Budgets without a start never match
    end_date: date | None = None
    is_ongoing: bool = True
    is_active: bool = True
    is_system_everything_else: bool = False

    def covers(self, day: date) -> bool:
        """Whether `day` falls inside this budget's date range."""
        if self.start_date is None or day < self.start_date:
            return False
        if self.is_ongoing or self.end_date is None:
            return True
        return day <= self.end_date
