"""Relógio da agenda.

Agendamentos, bloqueios e expediente são gravados no horário local do
estabelecimento, sem tzinfo. Datas com offset vindas da API são convertidas
para esse fuso na entrada.
"""

from datetime import datetime
from typing import Optional

from dateutil import tz

from app.core.config import BUSINESS_TIMEZONE

BUSINESS_TZ = tz.gettz(BUSINESS_TIMEZONE)
if BUSINESS_TZ is None:
    raise RuntimeError(f"BUSINESS_TIMEZONE inválido: {BUSINESS_TIMEZONE}")


def to_business_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(BUSINESS_TZ).replace(tzinfo=None)


def business_now() -> datetime:
    return datetime.now(BUSINESS_TZ).replace(tzinfo=None)
