from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from app.database import get_session
from app.models.business_hours import BusinessHours, BusinessHoursUpdate
from app.models.user import User
from app.core.security import get_current_admin

router = APIRouter(prefix="/business-hours", tags=["business-hours"])


@router.get("/")
def list_business_hours(
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return session.exec(select(BusinessHours).order_by(BusinessHours.weekday)).all()


@router.put("/{weekday}")
def upsert_business_hours(
    weekday: int,
    payload: BusinessHoursUpdate,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    """
    weekday: 0=segunda ... 6=domingo
    """
    if weekday < 0 or weekday > 6:
        raise HTTPException(status_code=400, detail="weekday deve ser 0..6")

    intervals = sorted(payload.intervals, key=lambda i: i.start)

    # validações básicas
    if not payload.is_closed:
        if not intervals:
            raise HTTPException(status_code=400, detail="Informe ao menos um intervalo quando is_closed=false")

        for item in intervals:
            if item.end <= item.start:
                raise HTTPException(status_code=400, detail=f"Intervalo '{item.name}': end deve ser maior que start")

        for previous, current in zip(intervals, intervals[1:]):
            if current.start < previous.end:
                raise HTTPException(status_code=400, detail="Intervalos do dia não podem se sobrepor")

    stored = [
        {"name": i.name, "start": i.start.strftime("%H:%M"), "end": i.end.strftime("%H:%M")}
        for i in intervals
    ]

    row = session.exec(select(BusinessHours).where(BusinessHours.weekday == weekday)).first()
    if row is None:
        row = BusinessHours(weekday=weekday)

    row.is_closed = payload.is_closed
    row.intervals = stored
    session.add(row)
    session.commit()
    session.refresh(row)
    return row
