"""Job periódico de lembretes (cron / scheduler externo).

Para cada tipo de lembrete: busca os agendamentos devidos, marca o envio
(update condicional) e só então publica o evento ``reminder`` na caixa de
saída. Rodar duas vezes seguidas não duplica lembretes.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.core.config import LOG_LEVEL
from app.database import engine as default_engine
from app.models.notification import EventType
from app.services.notifications import AppointmentEvent, NotificationEmitter
from app.services.reminders import LEAD_HOURS, find_due_reminders, mark_reminder_sent, reminder_window

logger = logging.getLogger(__name__)


def send_due_reminders(bind: Engine, now: Optional[datetime] = None) -> Dict[str, int]:
    emitter = NotificationEmitter(bind)
    sent: Dict[str, int] = {}

    with Session(bind) as session:
        for marker in LEAD_HOURS:
            window_start, window_end = reminder_window(marker, now)
            sent[marker] = 0
            for appt in find_due_reminders(session, window_start, window_end, marker):
                event = AppointmentEvent.for_appointment(appt, EventType.REMINDER, new_status=appt.status)
                if not mark_reminder_sent(session, appt.id, marker):
                    continue
                if emitter.emit(event):
                    sent[marker] += 1
                else:
                    logger.error("Lembrete %s do agendamento %s marcado mas não emitido", marker, appt.id)

    logger.info("Lembretes enviados: %s", sent)
    return sent


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sent = send_due_reminders(default_engine)
    print(f"✅ Lembretes: {sent}")


if __name__ == "__main__":
    main()
