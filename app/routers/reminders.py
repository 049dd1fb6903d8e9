from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.errors import NotFoundError
from app.core.security import get_current_admin
from app.database import get_session
from app.models.appointment import Appointment
from app.models.user import User
from app.services.reminders import find_due_reminders, mark_reminder_sent, reminder_window

router = APIRouter(prefix="/reminders", tags=["reminders"])


# =========================
# LEMBRETES DEVIDOS
# GET /reminders/due?marker=reminder  (ou day_of)
# =========================
@router.get("/due")
def list_due(
    marker: str = "reminder",
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    window_start, window_end = reminder_window(marker)
    return find_due_reminders(session, window_start, window_end, marker)


@router.post("/{appointment_id}/sent")
def mark_sent(
    appointment_id: int,
    marker: str = "reminder",
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    if not session.get(Appointment, appointment_id):
        raise NotFoundError("Agendamento não encontrado", appointment_id=appointment_id)

    return {"appointment_id": appointment_id, "marker": marker, "marked": mark_reminder_sent(session, appointment_id, marker)}
