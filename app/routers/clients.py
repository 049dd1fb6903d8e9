from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.errors import NotFoundError
from app.core.security import get_current_admin, get_current_client
from app.database import get_session
from app.models.user import User
from app.services.account_linker import link_account_to_history
from app.services.directory import (
    DirectoryReconciler,
    get_client_by_email,
    list_clients,
    open_failures,
    recalculate_stats,
)

router = APIRouter(prefix="/clients", tags=["clients"])


# =========================
# DIRETÓRIO (admin)
# =========================
@router.get("/")
def list_directory(
    search: Optional[str] = None,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return list_clients(session, search)


@router.get("/by-email")
def get_by_email(
    email: str,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    client = get_client_by_email(session, email)
    if not client:
        raise NotFoundError("Cliente não encontrado", email=email)
    return client


@router.post("/recalculate")
def recalculate(
    email: str,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return recalculate_stats(session, email)


# =========================
# FALHAS DE SINCRONIZAÇÃO (admin)
# =========================
@router.get("/sync-failures")
def list_sync_failures(
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return open_failures(session)


@router.post("/repair")
def repair(
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    repaired = DirectoryReconciler(session.get_bind()).repair_pending()
    return {"repaired": repaired}


# =========================
# VÍNCULO DA CONTA (cliente)
# =========================
@router.post("/me/claim")
def claim_history(
    session: Session = Depends(get_session),
    current_client: User = Depends(get_current_client),
):
    result = link_account_to_history(session, current_client.id, current_client.email)
    return asdict(result)
