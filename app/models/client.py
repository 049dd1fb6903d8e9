from typing import Optional
from datetime import datetime

from sqlmodel import SQLModel, Field


def canonical_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class Client(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    first_name: str = ""
    last_name: str = ""
    email: str = Field(index=True, unique=True)  # chave de deduplicação
    phone: str = ""

    # ESTATÍSTICAS AGREGADAS
    total_appointments: int = 0
    completed_appointments: int = 0
    no_show_count: int = 0
    total_spent_cents: int = 0
    last_appointment_at: Optional[datetime] = None

    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    internal_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
