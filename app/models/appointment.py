from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class AppointmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELED = "canceled"


# status que ocupam o horário na agenda
OCCUPYING_STATUSES = (AppointmentStatus.CONFIRMED.value, AppointmentStatus.ARRIVED.value)


class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    service_id: int = Field(foreign_key="service.id", index=True)

    # DADOS DO CLIENTE (desnormalizados, o cliente pode ainda não existir)
    client_first_name: str
    client_last_name: str
    client_email: str = Field(index=True)  # forma canônica: trim + lower
    client_phone: str
    intake_notes: Optional[str] = None

    start_time: datetime = Field(index=True)
    end_time: datetime = Field(index=True)  # já inclui o buffer do serviço

    # SNAPSHOT DO SERVIÇO
    service_name_snapshot: str
    service_price_snapshot: int
    service_duration_snapshot: int
    service_buffer_snapshot: int = 0

    # STATUS DO AGENDAMENTO
    status: str = Field(default=AppointmentStatus.CONFIRMED.value, index=True)
    # confirmed | arrived | completed | no_show | canceled

    # SNAPSHOT DE COMPLIANCE (nunca recalculado a partir da política atual)
    health_disclosure: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    required_acknowledgments: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    cancellation_policy: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    terms_acceptance: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    # FINANCEIRO (centavos)
    deposit_amount_cents: int = 0
    tip_amount_cents: int = 0
    payment_reference: Optional[str] = None

    # vínculo com conta, gravado só pelo Account Linker
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    admin_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    canceled_at: Optional[datetime] = Field(default=None, index=True)
    canceled_by: Optional[str] = None
    cancel_reason: Optional[str] = None

    # MARCADORES DE IDEMPOTÊNCIA
    confirmation_email_sent_at: Optional[datetime] = None
    reminder_email_sent_at: Optional[datetime] = None
    day_of_reminder_email_sent_at: Optional[datetime] = None
    directory_synced_at: Optional[datetime] = None

    @property
    def client_full_name(self) -> str:
        return f"{self.client_first_name} {self.client_last_name}".strip()

    @property
    def amount_paid_cents(self) -> int:
        return (self.deposit_amount_cents or 0) + (self.tip_amount_cents or 0)


# =========================
# PAYLOADS
# =========================

class CancellationPolicyAck(SQLModel):
    acknowledged: bool
    acknowledged_at: datetime
    policy_version: Optional[str] = None
    policy_text_hash: Optional[str] = None


class ComplianceSnapshot(SQLModel):
    health_disclosure: Optional[Dict[str, Any]] = None
    required_acknowledgments: Dict[str, bool] = {}
    required_acknowledgments_accepted_at: Optional[datetime] = None
    cancellation_policy: Optional[CancellationPolicyAck] = None
    terms_acceptance: Optional[Dict[str, Any]] = None


class BookingRequest(SQLModel):
    service_id: int
    start_time: datetime

    client_first_name: str
    client_last_name: str
    client_email: str
    client_phone: str
    intake_notes: Optional[str] = None

    compliance: ComplianceSnapshot

    # confirmação do depósito vinda do coletor de pagamento
    payment_reference: Optional[str] = None
    payment_provider: str = "manual"


class StatusUpdate(SQLModel):
    status: AppointmentStatus


class AppointmentUpdate(SQLModel):
    admin_notes: Optional[str] = None
    intake_notes: Optional[str] = None


class AppointmentRead(SQLModel):
    id: int
    service_id: int
    client_first_name: str
    client_last_name: str
    client_email: str
    client_phone: str
    start_time: datetime
    end_time: datetime
    status: str
    service_name_snapshot: str
    deposit_amount_cents: int
    tip_amount_cents: int
    user_id: Optional[int] = None
    created_at: datetime


REQUIRED_ACKNOWLEDGMENTS: List[str] = [
    "understands_results_not_guaranteed",
    "understands_services_non_medical",
    "agrees_to_follow_aftercare",
    "accepts_inherent_risks",
]
