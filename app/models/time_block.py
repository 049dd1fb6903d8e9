from enum import Enum
from typing import Optional
from datetime import datetime

from sqlmodel import SQLModel, Field


class RecurrencePattern(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TimeBlock(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    title: str = "Bloqueio"

    start_time: datetime = Field(index=True)
    end_time: datetime = Field(index=True)

    is_recurring: bool = False
    recurrence_pattern: str = RecurrencePattern.NONE.value
    recurrence_end_date: Optional[datetime] = None

    is_active: bool = Field(default=True, index=True)
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class TimeBlockCreate(SQLModel):
    title: str = "Bloqueio"
    start_time: datetime
    end_time: datetime
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE
    recurrence_end_date: Optional[datetime] = None
    notes: Optional[str] = None
