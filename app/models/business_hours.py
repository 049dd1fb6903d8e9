from typing import Any, Dict, List, Optional
from datetime import time

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class BusinessHours(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # 0=segunda ... 6=domingo
    weekday: int = Field(index=True, unique=True)

    is_closed: bool = False

    # intervalos nomeados do dia: [{"name": "manhã", "start": "09:00", "end": "12:00"}, ...]
    intervals: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))


class WorkingInterval(SQLModel):
    name: str = ""
    start: time
    end: time


class BusinessHoursUpdate(SQLModel):
    is_closed: bool = False
    intervals: List[WorkingInterval] = []
