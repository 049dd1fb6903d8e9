from typing import Optional
from sqlmodel import SQLModel, Field


class Service(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    name: str
    duration_minutes: int
    # intervalo de limpeza depois do atendimento, embutido no end_time
    buffer_minutes: int = 0
    price_cents: int
    deposit_cents: int = 0
    active: bool = True
