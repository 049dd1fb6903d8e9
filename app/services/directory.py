"""Diretório de clientes: reconciliação a partir dos agendamentos.

Só este módulo (e o Account Linker) grava nos contadores do ``Client``.
A deduplicação por email depende da constraint única em ``client.email``:
quem perde a corrida de criação recebe IntegrityError e refaz como update.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import case, func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.errors import NotFoundError, ReconciliationFailure
from app.core.retry import RetryPolicy, policy_for
from app.database import session_scope
from app.models.appointment import Appointment, AppointmentStatus
from app.models.client import Client, canonical_email
from app.models.sync_failure import SyncFailure

logger = logging.getLogger(__name__)

# tentativas de "criar -> conflito -> atualizar" dentro de uma reconciliação
CREATE_RACE_ATTEMPTS = 3

REPAIRABLE_KINDS = ("reconciliation", "missing_client")


@dataclass(frozen=True)
class CounterDelta:
    total_appointments: int = 0
    completed_appointments: int = 0
    no_show_count: int = 0
    total_spent_cents: int = 0
    # entrar em completed atualiza last_appointment_at
    refresh_last_appointment: bool = False
    # sair de completed recalcula last_appointment_at a partir do histórico
    recompute_last_appointment: bool = False

    @property
    def is_zero(self) -> bool:
        return not (
            self.total_appointments
            or self.completed_appointments
            or self.no_show_count
            or self.total_spent_cents
            or self.refresh_last_appointment
            or self.recompute_last_appointment
        )

    def __add__(self, other: "CounterDelta") -> "CounterDelta":
        return CounterDelta(
            self.total_appointments + other.total_appointments,
            self.completed_appointments + other.completed_appointments,
            self.no_show_count + other.no_show_count,
            self.total_spent_cents + other.total_spent_cents,
            self.refresh_last_appointment or other.refresh_last_appointment,
            self.recompute_last_appointment or other.recompute_last_appointment,
        )


def _clamped(column, delta: int):
    # contadores nunca ficam negativos
    return case((column + delta < 0, 0), else_=column + delta)


def _fill_if_empty(column, value: str):
    return case((or_(column.is_(None), column == ""), value), else_=column)


def _bulk(statement):
    return statement.execution_options(synchronize_session=False)


# =========================
# LEITURAS
# =========================

def get_client_by_email(session: Session, email: str) -> Optional[Client]:
    return session.exec(select(Client).where(Client.email == canonical_email(email))).first()


def list_clients(session: Session, search: Optional[str] = None) -> List[Client]:
    query = select(Client)
    if search:
        term = f"%{search.strip().lower()}%"
        query = query.where(
            or_(
                func.lower(Client.first_name).like(term),
                func.lower(Client.last_name).like(term),
                Client.email.like(term),
                Client.phone.like(term),
            )
        )
    return list(session.exec(query.order_by(Client.last_name, Client.first_name, Client.email)).all())


# =========================
# ESCRITAS
# =========================

def apply_counter_delta(
    session: Session,
    email: str,
    delta: CounterDelta,
    appointment_start: Optional[datetime] = None,
) -> bool:
    """Aplica o delta no cliente do email dentro da transação corrente.

    Retorna False se não existe cliente para o email.
    """
    email = canonical_email(email)
    values = {"updated_at": datetime.utcnow()}
    for name in ("total_appointments", "completed_appointments", "no_show_count", "total_spent_cents"):
        amount = getattr(delta, name)
        if amount:
            values[name] = _clamped(getattr(Client, name), amount)

    if delta.recompute_last_appointment:
        # roda depois da escrita do agendamento, na mesma transação
        values["last_appointment_at"] = (
            select(func.max(Appointment.start_time))
            .where(Appointment.client_email == email, Appointment.status == AppointmentStatus.COMPLETED.value)
            .scalar_subquery()
        )
    elif delta.refresh_last_appointment and appointment_start is not None:
        values["last_appointment_at"] = case(
            (
                or_(Client.last_appointment_at.is_(None), Client.last_appointment_at < appointment_start),
                appointment_start,
            ),
            else_=Client.last_appointment_at,
        )

    result = session.execute(_bulk(update(Client).where(Client.email == email).values(**values)))
    return result.rowcount > 0


def record_sync_failure(
    bind: Engine,
    kind: str,
    email: str,
    detail: str,
    appointment_id: Optional[int] = None,
    user_id: Optional[int] = None,
    attempts: int = 1,
) -> None:
    """Registro durável para o passe de reparo. Grava em sessão própria."""
    try:
        with session_scope(bind) as session:
            session.add(
                SyncFailure(
                    kind=kind,
                    email=canonical_email(email),
                    appointment_id=appointment_id,
                    user_id=user_id,
                    detail=detail[:1000],
                    attempts=attempts,
                )
            )
            session.commit()
    except SQLAlchemyError:
        logger.exception("Não foi possível registrar SyncFailure (%s) para %s: %s", kind, email, detail)


def open_failures(session: Session, kinds: Optional[tuple] = None) -> List[SyncFailure]:
    query = select(SyncFailure).where(SyncFailure.resolved_at.is_(None))
    if kinds:
        query = query.where(SyncFailure.kind.in_(kinds))
    return list(session.exec(query.order_by(SyncFailure.created_at)).all())


class DirectoryReconciler:
    """Cria/atualiza o cliente a partir de um agendamento já gravado.

    Roda numa sessão própria ligada ao engine, fora da permissão de quem
    enviou o agendamento.
    """

    def __init__(
        self,
        bind: Engine,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.bind = bind
        self.retry_policy = retry_policy or policy_for(ReconciliationFailure)
        self.sleep = sleep

    def reconcile(self, appointment_id: int) -> bool:
        """Reconcilia uma vez. Retorna False se o agendamento já tinha sido reconciliado."""
        for attempt in range(1, CREATE_RACE_ATTEMPTS + 1):
            try:
                with session_scope(self.bind) as session:
                    try:
                        applied = self._reconcile_once(session, appointment_id)
                        session.commit()
                        return applied
                    except IntegrityError:
                        session.rollback()
                        logger.info(
                            "Cliente criado em paralelo para o agendamento %s, refazendo como atualização (%s/%s)",
                            appointment_id,
                            attempt,
                            CREATE_RACE_ATTEMPTS,
                        )
            except SQLAlchemyError as exc:
                raise ReconciliationFailure(
                    f"Erro de banco ao reconciliar agendamento {appointment_id}: {exc}",
                    appointment_id=appointment_id,
                ) from exc

        raise ReconciliationFailure(
            f"Conflito persistente ao criar cliente para o agendamento {appointment_id}",
            appointment_id=appointment_id,
        )

    def _reconcile_once(self, session: Session, appointment_id: int) -> bool:
        appt = session.get(Appointment, appointment_id)
        if appt is None:
            raise NotFoundError(f"Agendamento {appointment_id} não encontrado")

        email = canonical_email(appt.client_email)
        if not email:
            logger.warning("Agendamento %s sem email, reconciliação ignorada", appointment_id)
            return False

        now = datetime.utcnow()

        # marca antes de mexer no cliente: uma segunda chamada não conta de novo
        claimed = session.execute(
            _bulk(
                update(Appointment)
                .where(Appointment.id == appointment_id, Appointment.directory_synced_at.is_(None))
                .values(directory_synced_at=now)
            )
        ).rowcount
        if not claimed:
            logger.info("Agendamento %s já reconciliado, nada a fazer", appointment_id)
            return False

        values = {"total_appointments": Client.total_appointments + 1, "updated_at": now}
        for field, value in (
            ("first_name", appt.client_first_name),
            ("last_name", appt.client_last_name),
            ("phone", appt.client_phone),
        ):
            if value:
                values[field] = _fill_if_empty(getattr(Client, field), value)

        updated = session.execute(_bulk(update(Client).where(Client.email == email).values(**values))).rowcount
        if updated:
            logger.info("Cliente %s atualizado a partir do agendamento %s", email, appointment_id)
            return True

        session.add(
            Client(
                first_name=appt.client_first_name or "",
                last_name=appt.client_last_name or "",
                email=email,
                phone=appt.client_phone or "",
                total_appointments=1,
                created_at=now,
                updated_at=now,
            )
        )
        session.flush()
        logger.info("Cliente %s criado a partir do agendamento %s", email, appointment_id)
        return True

    def reconcile_safely(self, appointment_id: int, email: str = "") -> bool:
        """Reconcilia com retry; falhas vão para log e SyncFailure, nunca sobem."""
        try:
            self.retry_policy.run(
                self.reconcile,
                appointment_id,
                retry_on=(ReconciliationFailure,),
                sleep=self.sleep,
            )
            return True
        except ReconciliationFailure as exc:
            logger.error(
                "Reconciliação do agendamento %s (%s) falhou após %s tentativas: %s",
                appointment_id,
                email,
                self.retry_policy.max_attempts,
                exc.message,
            )
            record_sync_failure(
                self.bind,
                kind="reconciliation",
                email=email,
                detail=exc.message,
                appointment_id=appointment_id,
                attempts=self.retry_policy.max_attempts,
            )
            return False
        except NotFoundError as exc:
            logger.warning("Reconciliação ignorada: %s", exc.message)
            return False

    def repair_pending(self) -> List[str]:
        """Recalcula os clientes com falhas de reconciliação em aberto."""
        with session_scope(self.bind) as session:
            emails = sorted({f.email for f in open_failures(session, REPAIRABLE_KINDS) if f.email})

        repaired = []
        for email in emails:
            try:
                with session_scope(self.bind) as session:
                    recalculate_stats(session, email)
                repaired.append(email)
            except (NotFoundError, SQLAlchemyError):
                logger.exception("Reparo do cliente %s falhou", email)
        return repaired


# =========================
# RECÁLCULO
# =========================

def recalculate_stats(session: Session, email: str) -> Client:
    """Recalcula todos os contadores a partir do histórico e sobrescreve o agregado.

    Cria o cliente se ele não existir. Pode rodar a qualquer momento.
    """
    email = canonical_email(email)
    for attempt in range(1, CREATE_RACE_ATTEMPTS + 1):
        try:
            client = _recalculate_once(session, email)
            session.commit()
            session.refresh(client)
            logger.info(
                "Estatísticas recalculadas para %s: total=%s concluídos=%s faltas=%s gasto=%s",
                email,
                client.total_appointments,
                client.completed_appointments,
                client.no_show_count,
                client.total_spent_cents,
            )
            return client
        except IntegrityError:
            session.rollback()
            logger.info("Cliente %s criado em paralelo durante recálculo (%s)", email, attempt)
    raise ReconciliationFailure(f"Não foi possível recalcular {email}", email=email)


def _recalculate_once(session: Session, email: str) -> Client:
    client = session.exec(
        select(Client).where(Client.email == email).with_for_update().execution_options(populate_existing=True)
    ).first()

    appts = list(
        session.exec(
            select(Appointment)
            .where(Appointment.client_email == email)
            .order_by(Appointment.created_at, Appointment.id)
            .execution_options(populate_existing=True)
        ).all()
    )
    if client is None and not appts:
        raise NotFoundError(f"Nenhum cliente ou agendamento para {email}")

    completed = [a for a in appts if a.status == AppointmentStatus.COMPLETED.value]
    now = datetime.utcnow()

    if client is None:
        latest = appts[-1]
        client = Client(
            first_name=latest.client_first_name,
            last_name=latest.client_last_name,
            email=email,
            phone=latest.client_phone,
            created_at=now,
        )

    client.total_appointments = len(appts)
    client.completed_appointments = len(completed)
    client.no_show_count = sum(1 for a in appts if a.status == AppointmentStatus.NO_SHOW.value)
    client.total_spent_cents = sum(a.amount_paid_cents for a in completed)
    client.last_appointment_at = max((a.start_time for a in completed), default=None)
    client.updated_at = now
    session.add(client)
    session.flush()

    if appts:
        # o que foi contado aqui não pode ser contado de novo pela reconciliação
        session.execute(
            _bulk(
                update(Appointment)
                .where(Appointment.id.in_([a.id for a in appts]), Appointment.directory_synced_at.is_(None))
                .values(directory_synced_at=now)
            )
        )

    session.execute(
        _bulk(
            update(SyncFailure)
            .where(
                SyncFailure.email == email,
                SyncFailure.resolved_at.is_(None),
                SyncFailure.kind.in_(REPAIRABLE_KINDS),
            )
            .values(resolved_at=now)
        )
    )
    return client
