from datetime import date, datetime, timedelta, time
from collections import Counter

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from app.database import get_session
from app.core.security import get_current_admin
from app.models.user import User
from app.models.appointment import Appointment, AppointmentStatus
from app.models.business_hours import BusinessHours
from app.models.sync_failure import SyncFailure
from app.services.availability import parse_hhmm


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _day_bounds(d: date):
    start = datetime.combine(d, time(0, 0))
    end = start + timedelta(days=1)
    return start, end


def _capacity_minutes(bh: BusinessHours) -> int:
    total = 0
    for item in bh.intervals or []:
        start = parse_hhmm(item.get("start"))
        end = parse_hhmm(item.get("end"))
        if start is None or end is None:
            continue
        total += (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
    return max(total, 0)


@router.get("/summary")
def dashboard_summary(
    day: date,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    start, end = _day_bounds(day)

    appts = session.exec(
        select(Appointment).where(
            Appointment.start_time >= start,
            Appointment.start_time < end,
        )
    ).all()

    # métricas
    total = len(appts)
    by_status = Counter([a.status for a in appts])

    # receita: só completed (depósito + gorjeta)
    completed = [a for a in appts if a.status == AppointmentStatus.COMPLETED.value]
    revenue_cents = sum(a.amount_paid_cents for a in completed)
    tips_cents = sum(a.tip_amount_cents for a in completed)
    minutes_completed = sum(a.service_duration_snapshot for a in completed)

    # ocupação: compara minutos concluídos com o expediente do dia (se houver)
    bh = session.exec(select(BusinessHours).where(BusinessHours.weekday == day.weekday())).first()

    capacity_minutes = None
    occupancy = None
    if bh and not bh.is_closed:
        capacity_minutes = _capacity_minutes(bh)
        if capacity_minutes > 0:
            occupancy = round((minutes_completed / capacity_minutes) * 100, 2)

    # top serviços (por quantidade de agendamentos do dia)
    top_counter = Counter(a.service_name_snapshot for a in appts)
    top = [{"name": name, "count": qty} for name, qty in top_counter.most_common(5)]

    pending_failures = len(
        session.exec(select(SyncFailure.id).where(SyncFailure.resolved_at.is_(None))).all()
    )

    return {
        "day": day.isoformat(),
        "total_appointments": total,
        "status": dict(by_status),
        "revenue_completed_cents": revenue_cents,
        "tips_completed_cents": tips_cents,
        "minutes_completed": minutes_completed,
        "capacity_minutes": capacity_minutes,
        "occupancy_percent": occupancy,
        "top_services": top,
        "pending_sync_failures": pending_failures,
    }
