import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from app.core.security import get_current_user, get_password_hash
from app.database import get_session
from app.models.client import canonical_email
from app.models.user import User, UserCreate
from app.services.account_linker import link_after_commit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_user(user: UserCreate, session: Session = Depends(get_session)):
    # admins só pelo seed
    if user.role != "client":
        raise HTTPException(status_code=403, detail="Cadastro público só cria clientes")

    email = canonical_email(user.email)
    if not email:
        raise HTTPException(status_code=400, detail="Email obrigatório")

    existing_user = session.exec(select(User).where(User.email == email)).first()
    if existing_user:
        raise HTTPException(status_code=400, detail="Email já cadastrado")

    db_user = User(
        name=user.name,
        email=email,
        password_hash=get_password_hash(user.password),
        role="client",
    )
    session.add(db_user)
    session.commit()
    session.refresh(db_user)

    # histórico de agendamentos feitos como convidado passa para a conta
    result = link_after_commit(session, db_user.id, email)
    if result is None:
        logger.warning("Conta %s criada sem vínculo com o histórico", email)

    return {
        "id": db_user.id,
        "name": db_user.name,
        "email": db_user.email,
        "linked_appointments": result.linked_appointments if result else 0,
    }


@router.get("/me")
def read_me(current_user: User = Depends(get_current_user)):
    return {
        "id": current_user.id,
        "name": current_user.name,
        "email": current_user.email,
        "role": current_user.role,
    }
