import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from app.core.clock import business_now
from app.core.config import DAY_OF_REMINDER_HOURS, REMINDER_LEAD_HOURS
from app.core.errors import ValidationError
from app.models.appointment import Appointment, OCCUPYING_STATUSES

logger = logging.getLogger(__name__)

# tipo de lembrete -> coluna marcador no agendamento
MARKERS: Dict[str, str] = {
    "confirmation": "confirmation_email_sent_at",
    "reminder": "reminder_email_sent_at",
    "day_of": "day_of_reminder_email_sent_at",
}

# antecedência de cada lembrete agendado
LEAD_HOURS: Dict[str, int] = {
    "reminder": REMINDER_LEAD_HOURS,
    "day_of": DAY_OF_REMINDER_HOURS,
}


def _marker_column(marker: str):
    if marker not in MARKERS:
        raise ValidationError(f"Tipo de lembrete desconhecido: {marker}", marker=marker)
    return getattr(Appointment, MARKERS[marker])


def reminder_window(marker: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Janela [agora, agora + antecedência) em que o lembrete ``marker`` é devido."""
    if marker not in LEAD_HOURS:
        raise ValidationError(f"Lembrete sem antecedência configurada: {marker}", marker=marker)
    now = now or business_now()
    return now, now + timedelta(hours=LEAD_HOURS[marker])


def find_due_reminders(
    session: Session,
    window_start: datetime,
    window_end: datetime,
    marker: str = "reminder",
) -> List[Appointment]:
    """Agendamentos ativos que começam na janela e ainda não receberam ``marker``."""
    column = _marker_column(marker)
    return list(
        session.exec(
            select(Appointment)
            .where(
                Appointment.status.in_(OCCUPYING_STATUSES),
                Appointment.start_time >= window_start,
                Appointment.start_time < window_end,
                column.is_(None),
            )
            .order_by(Appointment.start_time)
        ).all()
    )


def mark_reminder_sent(
    session: Session,
    appointment_id: int,
    marker: str = "reminder",
    sent_at: Optional[datetime] = None,
) -> bool:
    """Grava o marcador só se ainda estiver vazio. False = já marcado (ou não existe)."""
    column = _marker_column(marker)
    result = session.execute(
        update(Appointment)
        .where(Appointment.id == appointment_id, column.is_(None))
        .values({MARKERS[marker]: sent_at or datetime.utcnow()})
        .execution_options(synchronize_session=False)
    )
    session.commit()
    marked = result.rowcount > 0
    if not marked:
        logger.info("Lembrete %s do agendamento %s já marcado", marker, appointment_id)
    return marked
