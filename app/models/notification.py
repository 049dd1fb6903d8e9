from enum import Enum
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    CANCELED = "canceled"
    DELETED = "deleted"
    REMINDER = "reminder"


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # sem FK: o agendamento pode ter sido excluído
    appointment_id: int = Field(index=True)
    event_type: str = Field(index=True)

    client_name: str
    client_email: str
    appointment_start: Optional[datetime] = None

    previous_status: Optional[str] = None
    new_status: Optional[str] = None

    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    read_at: Optional[datetime] = None
