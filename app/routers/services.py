from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from app.database import get_session
from app.models.service import Service
from app.models.user import User
from app.core.security import get_current_admin


router = APIRouter(
    prefix="/services",
    tags=["services"]
)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_service(
    service: Service,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    if service.duration_minutes <= 0:
        raise HTTPException(status_code=400, detail="duration_minutes deve ser positivo")
    if service.buffer_minutes < 0 or service.price_cents < 0 or service.deposit_cents < 0:
        raise HTTPException(status_code=400, detail="Valores não podem ser negativos")

    service.id = None
    session.add(service)
    session.commit()
    session.refresh(service)

    return service


# catálogo público: só serviços ativos
@router.get("/")
def list_services(session: Session = Depends(get_session)):
    return session.exec(
        select(Service).where(Service.active == True).order_by(Service.name)  # noqa: E712
    ).all()
