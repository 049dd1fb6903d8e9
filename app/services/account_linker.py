"""Vínculo retroativo entre uma conta de usuário e o histórico do email."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.errors import BookingError, LinkingConflict, ReconciliationFailure, ValidationError
from app.models.appointment import Appointment
from app.models.client import Client, canonical_email
from app.services.directory import CREATE_RACE_ATTEMPTS, record_sync_failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkResult:
    client_id: int
    linked_appointments: int
    # agendamentos do email já vinculados a outro usuário (não alterados)
    conflicting_appointments: int
    created_client: bool = False


def link_account_to_history(session: Session, user_id: int, email: str) -> LinkResult:
    """Liga ``user_id`` ao cliente do email e aos agendamentos ainda sem dono.

    Pode rodar quantas vezes for preciso: a segunda execução não muda nada.
    Se o cliente já pertence a outro usuário, registra o conflito e levanta
    ``LinkingConflict`` sem tocar em nenhum agendamento.
    """
    email = canonical_email(email)
    if not email or user_id is None:
        raise ValidationError("Usuário e email são obrigatórios para vincular histórico")

    for attempt in range(1, CREATE_RACE_ATTEMPTS + 1):
        try:
            result = _link_once(session, user_id, email)
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info("Cliente %s criado em paralelo durante vínculo (%s)", email, attempt)
            continue
        except LinkingConflict as exc:
            # solta o lock antes de gravar o conflito em outra sessão
            session.rollback()
            logger.error(
                "Conflito de vínculo: cliente %s pertence ao usuário %s, pedido pelo usuário %s",
                email,
                exc.existing_user_id,
                user_id,
            )
            record_sync_failure(
                session.get_bind(),
                kind="linking_conflict",
                email=email,
                detail=exc.message,
                user_id=user_id,
            )
            raise
        except Exception:
            session.rollback()
            raise

        if result.conflicting_appointments:
            logger.warning(
                "%s agendamento(s) de %s já vinculados a outro usuário, mantidos",
                result.conflicting_appointments,
                email,
            )
        logger.info(
            "Usuário %s vinculado ao cliente %s (%s agendamento(s) novos)",
            user_id,
            email,
            result.linked_appointments,
        )
        return result

    raise ReconciliationFailure(f"Não foi possível vincular {email}", email=email, user_id=user_id)


def link_after_commit(session: Session, user_id: int, email: str) -> Optional[LinkResult]:
    """Vínculo disparado depois de um commit que já vale (agendamento, cadastro).

    Falhas não sobem: ficam em SyncFailure e o cliente pode refazer o vínculo
    por ``POST /clients/me/claim``.
    """
    try:
        return link_account_to_history(session, user_id, email)
    except LinkingConflict:
        # já registrado por link_account_to_history
        return None
    except (BookingError, SQLAlchemyError) as exc:
        session.rollback()
        logger.exception("Vínculo do usuário %s com %s falhou", user_id, email)
        record_sync_failure(
            session.get_bind(),
            kind="linking",
            email=email,
            detail=str(exc),
            user_id=user_id,
        )
        return None


def _link_once(session: Session, user_id: int, email: str) -> LinkResult:
    now = datetime.utcnow()

    session.execute(
        update(Client)
        .where(Client.email == email, Client.user_id.is_(None))
        .values(user_id=user_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    client = session.exec(
        select(Client).where(Client.email == email).execution_options(populate_existing=True)
    ).first()

    created = False
    if client is None:
        client = Client(email=email, user_id=user_id, created_at=now, updated_at=now)
        session.add(client)
        session.flush()
        created = True
    elif client.user_id != user_id:
        raise LinkingConflict(email, client.user_id, user_id)

    linked = session.execute(
        update(Appointment)
        .where(Appointment.client_email == email, Appointment.user_id.is_(None))
        .values(user_id=user_id)
        .execution_options(synchronize_session=False)
    ).rowcount

    conflicting = session.exec(
        select(func.count(Appointment.id)).where(
            Appointment.client_email == email,
            Appointment.user_id.is_not(None),
            Appointment.user_id != user_id,
        )
    ).one()

    return LinkResult(
        client_id=client.id,
        linked_appointments=linked,
        conflicting_appointments=conflicting,
        created_client=created,
    )
