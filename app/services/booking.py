import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session

from app.core.clock import to_business_time
from app.core.errors import SlotConflict, ValidationError
from app.models.appointment import Appointment, AppointmentStatus, BookingRequest, REQUIRED_ACKNOWLEDGMENTS
from app.models.client import canonical_email
from app.models.notification import EventType
from app.models.payment import Payment
from app.models.service import Service
from app.models.slot_lock import SlotLock
from app.services.availability import AvailabilityChecker, find_overlapping, load_calendar_snapshot
from app.services.directory import DirectoryReconciler
from app.services.notifications import AppointmentEvent, NotificationEmitter

logger = logging.getLogger(__name__)

_UPSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def days_touched(start: datetime, end: datetime) -> List[date]:
    """Dias do calendário que [start, end) ocupa, em ordem crescente."""
    last = (end - timedelta(microseconds=1)).date()
    days = []
    current = start.date()
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def acquire_slot_locks(session: Session, start: datetime, end: datetime) -> None:
    """Trava os dias tocados pelo intervalo até o fim da transação.

    Tem que ser a primeira escrita da transação: no sqlite pega o lock de
    escrita do banco, no postgres o lock da linha de cada dia.
    """
    insert = _UPSERTS.get(session.get_bind().dialect.name)
    for day in days_touched(start, end):
        if insert is not None:
            session.execute(insert(SlotLock).values(day=day, version=0).on_conflict_do_nothing(index_elements=["day"]))
        elif session.get(SlotLock, day) is None:
            session.add(SlotLock(day=day))
            session.flush()
        session.execute(
            update(SlotLock)
            .where(SlotLock.day == day)
            .values(version=SlotLock.version + 1)
            .execution_options(synchronize_session=False)
        )


def missing_booking_fields(request: BookingRequest, service: Optional[Service] = None) -> List[str]:
    missing = []
    for field in ("client_first_name", "client_last_name", "client_email", "client_phone"):
        if not (getattr(request, field) or "").strip():
            missing.append(field)

    compliance = request.compliance
    if compliance.health_disclosure is None:
        missing.append("compliance.health_disclosure")

    for flag in REQUIRED_ACKNOWLEDGMENTS:
        if not compliance.required_acknowledgments.get(flag):
            missing.append(f"compliance.required_acknowledgments.{flag}")
    if compliance.required_acknowledgments_accepted_at is None:
        missing.append("compliance.required_acknowledgments_accepted_at")

    policy = compliance.cancellation_policy
    if policy is None or not policy.acknowledged:
        missing.append("compliance.cancellation_policy")
    elif not (policy.policy_version or policy.policy_text_hash):
        missing.append("compliance.cancellation_policy.policy_version")

    if service is not None and service.deposit_cents > 0 and not request.payment_reference:
        missing.append("payment_reference")
    return missing


class BookingService:
    """Única porta de criação de agendamentos."""

    def __init__(
        self,
        session: Session,
        reconciler: Optional[DirectoryReconciler] = None,
        notifier: Optional[NotificationEmitter] = None,
        defer: Optional[Callable] = None,
    ):
        bind = session.get_bind()
        self.session = session
        self.checker = AvailabilityChecker(session)
        self.reconciler = reconciler or DirectoryReconciler(bind)
        self.notifier = notifier or NotificationEmitter(bind)
        # ex.: BackgroundTasks.add_task; None reconcilia na hora
        self.defer = defer

    def create_appointment(self, request: BookingRequest) -> Appointment:
        service = self.session.get(Service, request.service_id)
        if not service or not service.active:
            raise ValidationError("Serviço não encontrado ou inativo", service_id=request.service_id)

        missing = missing_booking_fields(request, service)
        if missing:
            raise ValidationError("Campos obrigatórios ausentes", missing=missing)

        start = to_business_time(request.start_time)
        end = start + timedelta(minutes=service.duration_minutes + service.buffer_minutes)

        # checagem prévia (pode estar desatualizada, é refeita sob lock)
        calendar = load_calendar_snapshot(self.session, start, end)
        availability = self.checker.check(start, end, calendar)
        if not availability.bookable:
            raise SlotConflict(reason=availability.reason, start=start.isoformat(), end=end.isoformat())

        appointment = self._commit(request, service, start, end)
        self._after_commit(appointment)
        return appointment

    def _commit(self, request: BookingRequest, service: Service, start: datetime, end: datetime) -> Appointment:
        compliance = request.compliance
        now = datetime.utcnow()
        try:
            acquire_slot_locks(self.session, start, end)

            if find_overlapping(self.session, start, end):
                raise SlotConflict(reason="overlap", start=start.isoformat(), end=end.isoformat())

            required = dict(compliance.required_acknowledgments)
            required["accepted_at"] = compliance.required_acknowledgments_accepted_at.isoformat()

            appointment = Appointment(
                service_id=service.id,
                client_first_name=request.client_first_name.strip(),
                client_last_name=request.client_last_name.strip(),
                client_email=canonical_email(request.client_email),
                client_phone=request.client_phone.strip(),
                intake_notes=request.intake_notes,
                start_time=start,
                end_time=end,
                service_name_snapshot=service.name,
                service_price_snapshot=service.price_cents,
                service_duration_snapshot=service.duration_minutes,
                service_buffer_snapshot=service.buffer_minutes,
                status=AppointmentStatus.CONFIRMED.value,
                health_disclosure=compliance.health_disclosure,
                required_acknowledgments=required,
                cancellation_policy=compliance.cancellation_policy.model_dump(mode="json"),
                terms_acceptance=compliance.terms_acceptance,
                deposit_amount_cents=service.deposit_cents,
                payment_reference=request.payment_reference,
                created_at=now,
                updated_at=now,
            )
            self.session.add(appointment)
            self.session.flush()

            if request.payment_reference:
                self.session.add(
                    Payment(
                        appointment_id=appointment.id,
                        kind="deposit",
                        provider=request.payment_provider,
                        external_id=request.payment_reference,
                        amount_cents=service.deposit_cents,
                        status="paid",
                        paid_at=now,
                    )
                )

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(appointment)
        logger.info(
            "Agendamento %s criado: %s %s-%s",
            appointment.id,
            appointment.client_email,
            start.isoformat(),
            end.isoformat(),
        )
        return appointment

    def _after_commit(self, appointment: Appointment) -> None:
        # nada aqui pode desfazer o agendamento já gravado
        self.notifier.emit(
            AppointmentEvent.for_appointment(appointment, EventType.CREATED, new_status=appointment.status)
        )
        if self.defer is not None:
            self.defer(self.reconciler.reconcile_safely, appointment.id, appointment.client_email)
            return
        try:
            self.reconciler.reconcile_safely(appointment.id, appointment.client_email)
        except Exception:
            logger.exception("Erro inesperado na reconciliação do agendamento %s", appointment.id)
