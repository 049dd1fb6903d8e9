from datetime import date
from sqlmodel import SQLModel, Field


class SlotLock(SQLModel, table=True):
    """Uma linha por dia da agenda.

    A transação de agendamento incrementa ``version`` dos dias que o horário
    toca antes de revalidar a sobreposição, serializando escritores do mesmo dia.
    """

    day: date = Field(primary_key=True)
    version: int = 0
