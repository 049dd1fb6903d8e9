import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.errors import NotFoundError
from app.database import session_scope
from app.models.appointment import Appointment
from app.models.notification import EventType, Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppointmentEvent:
    appointment_id: int
    client_name: str
    client_email: str
    appointment_start: Optional[datetime]
    event_type: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None

    @classmethod
    def for_appointment(
        cls,
        appt: Appointment,
        event_type: EventType,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
    ) -> "AppointmentEvent":
        return cls(
            appointment_id=appt.id,
            client_name=appt.client_full_name,
            client_email=appt.client_email,
            appointment_start=appt.start_time,
            event_type=event_type.value,
            previous_status=previous_status,
            new_status=new_status,
        )


class NotificationEmitter:
    """Grava eventos na caixa de saída consumida pelo serviço de email.

    Falhar aqui nunca desfaz a mudança que gerou o evento.
    """

    def __init__(self, bind: Engine):
        self.bind = bind

    def emit(self, event: AppointmentEvent) -> bool:
        try:
            with session_scope(self.bind) as session:
                session.add(Notification(**asdict(event)))
                session.commit()
        except SQLAlchemyError:
            logger.exception(
                "Falha ao emitir evento %s do agendamento %s",
                event.event_type,
                event.appointment_id,
            )
            return False

        logger.info("Evento %s emitido para o agendamento %s", event.event_type, event.appointment_id)
        return True


def list_notifications(session: Session, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = select(Notification)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712
    return list(session.exec(query.order_by(Notification.created_at.desc()).limit(limit)).all())


def mark_read(session: Session, notification_id: int) -> Notification:
    notification = session.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notificação não encontrada")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        session.add(notification)
        session.commit()
        session.refresh(notification)
    return notification
