from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class SyncFailure(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    kind: str = Field(index=True)
    # reconciliation | missing_client | linking_conflict | linking

    email: str = Field(index=True)
    appointment_id: Optional[int] = Field(default=None, index=True)
    user_id: Optional[int] = None

    detail: str = ""
    attempts: int = 1

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    resolved_at: Optional[datetime] = Field(default=None, index=True)
