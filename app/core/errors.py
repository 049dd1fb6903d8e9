"""Erros de domínio do motor de agendamento.

Cada erro carrega o status HTTP que o handler global em ``app.main`` usa;
os serviços não conhecem FastAPI.
"""

from typing import Optional


class BookingError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(BookingError):
    """Campo obrigatório ausente ou inválido. Nada foi gravado."""

    status_code = 400
    code = "validation_error"


class InvalidTransition(ValidationError):
    code = "invalid_transition"

    def __init__(self, previous: str, new: str):
        super().__init__(
            f"Transição de status não permitida: {previous} -> {new}",
            previous_status=previous,
            new_status=new,
        )


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class SlotConflict(BookingError):
    """Horário não está mais disponível. O cliente deve escolher outro."""

    status_code = 409
    code = "slot_conflict"

    def __init__(self, message: str = "Horário indisponível", reason: Optional[str] = None, **context):
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class ConcurrentUpdate(BookingError):
    status_code = 409
    code = "concurrent_update"


class LinkingConflict(BookingError):
    """Cliente já vinculado a outro usuário; fica para revisão manual."""

    status_code = 409
    code = "linking_conflict"

    def __init__(self, email: str, existing_user_id: int, requested_user_id: int):
        super().__init__(
            f"Cliente {email} já vinculado a outro usuário",
            email=email,
            existing_user_id=existing_user_id,
            requested_user_id=requested_user_id,
        )
        self.email = email
        self.existing_user_id = existing_user_id
        self.requested_user_id = requested_user_id


class ReconciliationFailure(BookingError):
    """Falha ao gravar no diretório depois do agendamento já confirmado.

    Nunca chega ao cliente: é registrada em log e em ``SyncFailure``.
    """

    status_code = 500
    code = "reconciliation_failure"


class MissingConfiguration(BookingError):
    status_code = 500
    code = "missing_configuration"
