from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from app.core.clock import to_business_time
from app.database import get_session
from app.models.time_block import RecurrencePattern, TimeBlock, TimeBlockCreate
from app.models.user import User
from app.core.security import get_current_admin

router = APIRouter(prefix="/time-blocks", tags=["time-blocks"])


@router.get("/")
def list_time_blocks(
    include_inactive: bool = False,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    query = select(TimeBlock)
    if not include_inactive:
        query = query.where(TimeBlock.is_active == True)  # noqa: E712
    return session.exec(query.order_by(TimeBlock.start_time)).all()


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_time_block(
    payload: TimeBlockCreate,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    start = to_business_time(payload.start_time)
    end = to_business_time(payload.end_time)
    until = to_business_time(payload.recurrence_end_date)

    if end <= start:
        raise HTTPException(status_code=400, detail="end_time deve ser maior que start_time")

    pattern = payload.recurrence_pattern if payload.is_recurring else RecurrencePattern.NONE
    if payload.is_recurring and pattern == RecurrencePattern.NONE:
        raise HTTPException(status_code=400, detail="Bloqueio recorrente precisa de recurrence_pattern")

    if until and until < start:
        raise HTTPException(status_code=400, detail="recurrence_end_date deve ser depois de start_time")

    block = TimeBlock(
        title=payload.title,
        start_time=start,
        end_time=end,
        is_recurring=payload.is_recurring,
        recurrence_pattern=pattern.value,
        recurrence_end_date=until if payload.is_recurring else None,
        notes=payload.notes,
    )
    session.add(block)
    session.commit()
    session.refresh(block)
    return block


@router.delete("/{block_id}")
def delete_time_block(
    block_id: int,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    block = session.get(TimeBlock, block_id)
    if not block:
        raise HTTPException(status_code=404, detail="Bloqueio não encontrado")

    session.delete(block)
    session.commit()
    return {"message": "Bloqueio removido"}
