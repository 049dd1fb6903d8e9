from datetime import date, datetime, timedelta
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlmodel import Session, select

from app.core.clock import business_now, to_business_time
from app.core.config import CANCEL_MIN_HOURS_BEFORE, RECONCILE_MODE
from app.core.errors import NotFoundError, ValidationError
from app.core.security import get_current_admin, get_current_user, get_current_user_optional
from app.database import get_session
from app.models.appointment import (
    Appointment,
    AppointmentRead,
    AppointmentStatus,
    AppointmentUpdate,
    BookingRequest,
    StatusUpdate,
)
from app.models.client import canonical_email
from app.models.service import Service
from app.models.user import User
from app.services.account_linker import link_after_commit
from app.services.availability import AvailabilityChecker
from app.services.booking import BookingService
from app.services.lifecycle import LifecycleService

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _get_or_404(session: Session, appointment_id: int) -> Appointment:
    appt = session.get(Appointment, appointment_id)
    if not appt:
        raise NotFoundError("Agendamento não encontrado", appointment_id=appointment_id)
    return appt


def _is_owner(appt: Appointment, user: User) -> bool:
    return user.role == "client" and appt.user_id is not None and appt.user_id == user.id


# =========================
# CRIAR AGENDAMENTO (público)
# =========================
@router.post("/", status_code=status.HTTP_201_CREATED, response_model=AppointmentRead)
def create_appointment(
    request: BookingRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: Optional[User] = Depends(get_current_user_optional),
):
    # reconciliação depois da resposta, se configurado
    defer = background_tasks.add_task if RECONCILE_MODE == "background" else None
    appointment = BookingService(session, defer=defer).create_appointment(request)

    if current_user is not None and current_user.role == "client":
        # o horário já está gravado; falha de vínculo não derruba a resposta
        link_after_commit(session, current_user.id, current_user.email)
        session.refresh(appointment)

    return appointment


# =========================
# LISTAR AGENDAMENTOS
# - admin: todos, com filtros
# - cliente: só os vinculados à conta
# =========================
@router.get("/")
def list_appointments(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status_filter: Optional[AppointmentStatus] = Query(default=None, alias="status"),
    email: Optional[str] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    query = select(Appointment)

    if current_user.role == "client":
        query = query.where(Appointment.user_id == current_user.id)
    elif current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Sem permissão")

    if start is not None:
        query = query.where(Appointment.start_time >= to_business_time(start))
    if end is not None:
        query = query.where(Appointment.start_time < to_business_time(end))
    if status_filter is not None:
        query = query.where(Appointment.status == status_filter.value)
    if email:
        query = query.where(Appointment.client_email == canonical_email(email))

    return list(session.exec(query.order_by(Appointment.start_time)).all())


# =========================
# HORÁRIOS DISPONÍVEIS (dia + serviço)
# GET /appointments/available?service_id=1&day=2026-02-14
# =========================
@router.get("/available")
def get_available_slots(
    service_id: int,
    day: date,
    session: Session = Depends(get_session),
) -> Dict:
    service = session.get(Service, service_id)
    if not service or not service.active:
        raise HTTPException(status_code=404, detail="Serviço não encontrado ou inativo")

    return AvailabilityChecker(session).available_slots(service, day)


@router.get("/{appointment_id}")
def get_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    appt = _get_or_404(session, appointment_id)
    if current_user.role != "admin" and not _is_owner(appt, current_user):
        raise HTTPException(status_code=403, detail="Sem permissão")
    return appt


# =========================
# STATUS (admin)
# =========================
@router.patch("/{appointment_id}/status")
def update_status(
    appointment_id: int,
    payload: StatusUpdate,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return LifecycleService(session).transition(appointment_id, payload.status, canceled_by="admin")


# =========================
# CANCELAR AGENDAMENTO
# - cliente: somente se for dele e com antecedência
# - admin: pode sempre
# =========================
@router.patch("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    reason: str = "Cancelado",
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    appt = _get_or_404(session, appointment_id)

    if appt.status == AppointmentStatus.CANCELED.value:
        return appt

    is_admin = current_user.role == "admin"
    if not (is_admin or _is_owner(appt, current_user)):
        raise HTTPException(status_code=403, detail="Sem permissão")

    # regra: cliente só pode cancelar até X horas antes
    if not is_admin and appt.start_time - business_now() < timedelta(hours=CANCEL_MIN_HOURS_BEFORE):
        raise ValidationError(
            f"Cliente só pode cancelar com pelo menos {CANCEL_MIN_HOURS_BEFORE}h de antecedência",
            appointment_id=appointment_id,
        )

    return LifecycleService(session).transition(
        appointment_id,
        AppointmentStatus.CANCELED,
        canceled_by="admin" if is_admin else "client",
        reason=reason,
    )


# =========================
# EDIÇÃO / EXCLUSÃO (admin)
# =========================
@router.patch("/{appointment_id}")
def update_appointment(
    appointment_id: int,
    payload: AppointmentUpdate,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return LifecycleService(session).update_details(
        appointment_id,
        admin_notes=payload.admin_notes,
        intake_notes=payload.intake_notes,
    )


@router.delete("/{appointment_id}")
def delete_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    LifecycleService(session).delete_appointment(appointment_id)
    return {"message": "Agendamento removido"}
