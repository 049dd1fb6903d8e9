from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class Payment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    appointment_id: int = Field(foreign_key="appointment.id", index=True)

    kind: str = Field(index=True)  # deposit | tip
    provider: str = "manual"  # stripe | manual
    external_id: Optional[str] = None  # id do Stripe, por exemplo

    amount_cents: int

    status: str = Field(default="paid", index=True)
    # pending | paid | failed | refunded

    created_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: Optional[datetime] = None


class TipCreate(SQLModel):
    amount_cents: int
    provider: str = "manual"
    external_id: Optional[str] = None
