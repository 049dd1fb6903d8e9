from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from app.core.errors import NotFoundError
from app.database import get_session
from app.models.payment import Payment, TipCreate
from app.models.appointment import Appointment
from app.models.user import User
from app.core.security import get_current_admin
from app.services.lifecycle import LifecycleService


router = APIRouter(prefix="/payments", tags=["payments"])


# =========================
# PAGAMENTOS DO AGENDAMENTO
# =========================
@router.get("/{appointment_id}")
def list_payments(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    if not session.get(Appointment, appointment_id):
        raise NotFoundError("Agendamento não encontrado", appointment_id=appointment_id)

    return session.exec(
        select(Payment).where(Payment.appointment_id == appointment_id).order_by(Payment.created_at)
    ).all()


# =========================
# GORJETA
# - soma no total gasto do cliente se o agendamento já foi concluído
# =========================
@router.post("/{appointment_id}/tip")
def add_tip(
    appointment_id: int,
    payload: TipCreate,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return LifecycleService(session).record_tip(
        appointment_id,
        payload.amount_cents,
        provider=payload.provider,
        external_id=payload.external_id,
    )
