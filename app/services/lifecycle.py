"""Ciclo de vida do agendamento.

Cada mudança de status vira um delta entre o status anterior e o novo,
aplicado no cliente na mesma transação da escrita do status. Assim uma
correção (no_show -> completed) desfaz exatamente o que foi somado antes.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from sqlalchemy import delete, update
from sqlmodel import Session

from app.core.config import TRANSITION_MAX_ATTEMPTS
from app.core.errors import ConcurrentUpdate, InvalidTransition, NotFoundError, SlotConflict, ValidationError
from app.models.appointment import Appointment, AppointmentStatus, OCCUPYING_STATUSES
from app.models.notification import EventType
from app.models.payment import Payment
from app.services.availability import find_overlapping
from app.services.booking import acquire_slot_locks
from app.services.directory import CounterDelta, apply_counter_delta, record_sync_failure
from app.services.notifications import AppointmentEvent, NotificationEmitter

logger = logging.getLogger(__name__)

S = AppointmentStatus

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    S.CONFIRMED.value: frozenset({S.ARRIVED.value, S.COMPLETED.value, S.NO_SHOW.value, S.CANCELED.value}),
    S.ARRIVED.value: frozenset({S.CONFIRMED.value, S.COMPLETED.value, S.NO_SHOW.value, S.CANCELED.value}),
    S.COMPLETED.value: frozenset({S.NO_SHOW.value, S.CANCELED.value}),
    S.NO_SHOW.value: frozenset({S.ARRIVED.value, S.COMPLETED.value, S.CANCELED.value}),
    S.CANCELED.value: frozenset({S.CONFIRMED.value}),
}


def can_transition(previous: str, new: str) -> bool:
    return new in TRANSITIONS.get(previous, frozenset())


def _status_value(status) -> Optional[str]:
    if status is None:
        return None
    return status.value if isinstance(status, AppointmentStatus) else str(status)


def stat_delta(previous, new, amount_cents: int) -> CounterDelta:
    """Delta nos contadores do cliente para previous -> new.

    ``None`` representa o agendamento ausente (antes de criar / depois de excluir);
    só esses extremos mexem em total_appointments.
    """
    previous = _status_value(previous)
    new = _status_value(new)
    if previous == new:
        return CounterDelta()

    total = completed = no_show = spent = 0
    completed_value = S.COMPLETED.value
    no_show_value = S.NO_SHOW.value

    if previous is None:
        total += 1
    if new is None:
        total -= 1

    if previous == completed_value:
        completed -= 1
        spent -= amount_cents
    if new == completed_value:
        completed += 1
        spent += amount_cents

    if previous == no_show_value:
        no_show -= 1
    if new == no_show_value:
        no_show += 1

    return CounterDelta(
        total_appointments=total,
        completed_appointments=completed,
        no_show_count=no_show,
        total_spent_cents=spent,
        refresh_last_appointment=new == completed_value,
        recompute_last_appointment=previous == completed_value,
    )


class LifecycleService:
    """Única porta de mudança de status (e de exclusão) de agendamentos."""

    def __init__(
        self,
        session: Session,
        notifier: Optional[NotificationEmitter] = None,
        max_attempts: int = TRANSITION_MAX_ATTEMPTS,
    ):
        self.session = session
        self.bind = session.get_bind()
        self.notifier = notifier or NotificationEmitter(self.bind)
        self.max_attempts = max_attempts

    def _load(self, appointment_id: int) -> Appointment:
        appt = self.session.get(Appointment, appointment_id, populate_existing=True)
        if not appt:
            raise NotFoundError("Agendamento não encontrado", appointment_id=appointment_id)
        return appt

    def _apply_delta(self, appt: Appointment, delta: CounterDelta) -> bool:
        if delta.is_zero:
            return True
        return apply_counter_delta(self.session, appt.client_email, delta, appointment_start=appt.start_time)

    def _report_missing_client(self, email: str, appointment_id: int, delta: CounterDelta) -> None:
        # depois do commit: o registro usa outra conexão
        logger.warning(
            "Cliente %s não encontrado ao atualizar estatísticas do agendamento %s (%s); recalcular depois",
            email,
            appointment_id,
            delta,
        )
        record_sync_failure(
            self.bind,
            kind="missing_client",
            email=email,
            detail=f"delta não aplicado: {delta}",
            appointment_id=appointment_id,
        )

    # =========================
    # STATUS
    # =========================

    def transition(
        self,
        appointment_id: int,
        new_status,
        canceled_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        new = _status_value(new_status)
        if new not in TRANSITIONS:
            raise ValidationError(f"Status desconhecido: {new}")

        for attempt in range(1, self.max_attempts + 1):
            appt = self._load(appointment_id)
            previous = appt.status
            if previous == new:
                return appt
            if not can_transition(previous, new):
                raise InvalidTransition(previous, new)

            now = datetime.utcnow()
            values = {"status": new, "updated_at": now}
            if new == S.CANCELED.value:
                values.update(canceled_at=now, canceled_by=canceled_by or "admin", cancel_reason=reason)
            elif previous == S.CANCELED.value:
                values.update(canceled_at=None, canceled_by=None, cancel_reason=None)

            try:
                # voltar a ocupar o horário exige revalidar sob lock
                if new in OCCUPYING_STATUSES and previous not in OCCUPYING_STATUSES:
                    acquire_slot_locks(self.session, appt.start_time, appt.end_time)
                    if find_overlapping(self.session, appt.start_time, appt.end_time, exclude_id=appt.id):
                        raise SlotConflict(reason="overlap", appointment_id=appt.id)

                result = self.session.execute(
                    update(Appointment)
                    .where(Appointment.id == appt.id, Appointment.status == previous)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    # outro escritor mudou o status depois da leitura
                    self.session.rollback()
                    logger.info(
                        "Corrida na transição do agendamento %s (%s/%s), relendo",
                        appointment_id,
                        attempt,
                        self.max_attempts,
                    )
                    continue

                delta = stat_delta(previous, new, appt.amount_paid_cents)
                found = self._apply_delta(appt, delta)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

            appt = self._load(appointment_id)
            if not found:
                self._report_missing_client(appt.client_email, appt.id, delta)
            logger.info("Agendamento %s: %s -> %s", appt.id, previous, new)
            event_type = EventType.CANCELED if new == S.CANCELED.value else EventType.STATUS_CHANGED
            self.notifier.emit(
                AppointmentEvent.for_appointment(appt, event_type, previous_status=previous, new_status=new)
            )
            return appt

        raise ConcurrentUpdate(
            "Agendamento alterado por outra operação, tente novamente",
            appointment_id=appointment_id,
        )

    # =========================
    # EXCLUSÃO
    # =========================

    def delete_appointment(self, appointment_id: int) -> None:
        appt = self._load(appointment_id)
        snapshot = AppointmentEvent.for_appointment(appt, EventType.DELETED, previous_status=appt.status)

        delta = stat_delta(appt.status, None, appt.amount_paid_cents)
        if appt.directory_synced_at is None:
            # nunca foi contado no diretório
            delta = CounterDelta(
                completed_appointments=delta.completed_appointments,
                no_show_count=delta.no_show_count,
                total_spent_cents=delta.total_spent_cents,
            )

        try:
            self.session.execute(delete(Payment).where(Payment.appointment_id == appt.id))
            self.session.delete(appt)
            self.session.flush()
            found = self._apply_delta(appt, delta)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Agendamento %s excluído (%s)", appointment_id, snapshot.client_email)
        if not found:
            self._report_missing_client(snapshot.client_email, appointment_id, delta)
        self.notifier.emit(snapshot)

    # =========================
    # EDIÇÕES ADMINISTRATIVAS
    # =========================

    def record_tip(
        self,
        appointment_id: int,
        amount_cents: int,
        provider: str = "manual",
        external_id: Optional[str] = None,
    ) -> Appointment:
        if amount_cents <= 0:
            raise ValidationError("Valor da gorjeta deve ser positivo", amount_cents=amount_cents)

        for _attempt in range(self.max_attempts):
            appt = self._load(appointment_id)
            status = appt.status
            now = datetime.utcnow()
            try:
                result = self.session.execute(
                    update(Appointment)
                    .where(Appointment.id == appt.id, Appointment.status == status)
                    .values(tip_amount_cents=Appointment.tip_amount_cents + amount_cents, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    self.session.rollback()
                    continue

                self.session.add(
                    Payment(
                        appointment_id=appt.id,
                        kind="tip",
                        provider=provider,
                        external_id=external_id,
                        amount_cents=amount_cents,
                        status="paid",
                        paid_at=now,
                    )
                )
                delta = CounterDelta(total_spent_cents=amount_cents) if status == S.COMPLETED.value else CounterDelta()
                found = self._apply_delta(appt, delta)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

            logger.info("Gorjeta de %s registrada no agendamento %s", amount_cents, appointment_id)
            appt = self._load(appointment_id)
            if not found:
                self._report_missing_client(appt.client_email, appt.id, delta)
            return appt

        raise ConcurrentUpdate("Agendamento alterado por outra operação", appointment_id=appointment_id)

    def update_details(
        self,
        appointment_id: int,
        admin_notes: Optional[str] = None,
        intake_notes: Optional[str] = None,
    ) -> Appointment:
        appt = self._load(appointment_id)
        if admin_notes is not None:
            appt.admin_notes = admin_notes
        if intake_notes is not None:
            appt.intake_notes = intake_notes
        appt.updated_at = datetime.utcnow()
        self.session.add(appt)
        self.session.commit()
        self.session.refresh(appt)
        self.notifier.emit(AppointmentEvent.for_appointment(appt, EventType.UPDATED, new_status=appt.status))
        return appt
