"""Fixtures compartilhadas: banco sqlite em arquivo por teste, serviços e API."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("RECONCILE_BACKOFF_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, select  # noqa: E402

from app.core.retry import RetryPolicy  # noqa: E402
from app.core.security import create_access_token, get_password_hash  # noqa: E402
from app.database import build_engine, create_db_and_tables, get_session  # noqa: E402
from app.models.appointment import BookingRequest, REQUIRED_ACKNOWLEDGMENTS  # noqa: E402
from app.models.client import Client, canonical_email  # noqa: E402
from app.models.service import Service  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.booking import BookingService  # noqa: E402
from app.services.directory import DirectoryReconciler  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """Arquivo próprio por teste: threads abrem conexões reais e independentes."""
    db_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def service(session):
    svc = Service(name="Limpeza de pele", duration_minutes=60, buffer_minutes=0, price_cents=15000)
    session.add(svc)
    session.commit()
    session.refresh(svc)
    return svc


@pytest.fixture
def deposit_service(session):
    svc = Service(name="Peeling", duration_minutes=45, buffer_minutes=15, price_cents=22000, deposit_cents=5000)
    session.add(svc)
    session.commit()
    session.refresh(svc)
    return svc


@pytest.fixture
def booking_payload():
    """Fábrica do JSON de agendamento com todo o compliance preenchido."""

    def make(service_id, start, email="ana@example.com", **overrides):
        accepted = "2029-12-01T10:00:00"
        payload = {
            "service_id": service_id,
            "start_time": start.isoformat(),
            "client_first_name": "Ana",
            "client_last_name": "Souza",
            "client_email": email,
            "client_phone": "11999990000",
            "compliance": {
                "health_disclosure": {"pregnant": False, "allergies": ""},
                "required_acknowledgments": {flag: True for flag in REQUIRED_ACKNOWLEDGMENTS},
                "required_acknowledgments_accepted_at": accepted,
                "cancellation_policy": {
                    "acknowledged": True,
                    "acknowledged_at": accepted,
                    "policy_version": "v1",
                },
                "terms_acceptance": {"version": "2024-01"},
            },
        }
        payload.update(overrides)
        return payload

    return make


@pytest.fixture
def booking_request(booking_payload):
    def make(service_id, start, email="ana@example.com", **overrides):
        return BookingRequest.model_validate(booking_payload(service_id, start, email, **overrides))

    return make


@pytest.fixture
def reconciler(engine):
    return DirectoryReconciler(engine, retry_policy=RetryPolicy(max_attempts=2), sleep=lambda _: None)


@pytest.fixture
def book(session, reconciler, booking_request):
    """Agenda direto pelo serviço. ``reconcile=False`` pula o diretório."""

    def make(service_id, start, email="ana@example.com", reconcile=True, **overrides):
        defer = None if reconcile else (lambda *args, **kwargs: None)
        booking = BookingService(session, reconciler=reconciler, defer=defer)
        return booking.create_appointment(booking_request(service_id, start, email, **overrides))

    return make


@pytest.fixture
def read_client(engine):
    """Lê o cliente numa sessão nova (sem identity map antigo)."""

    def read(email):
        with Session(engine) as fresh:
            return fresh.exec(select(Client).where(Client.email == canonical_email(email))).first()

    return read


# =========================
# API
# =========================

@pytest.fixture
def api(engine):
    from app.main import app

    def override_session():
        with Session(engine) as db_session:
            yield db_session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    def make(email, role="client", name="Usuário", password="senha123"):
        user = User(name=name, email=canonical_email(email), role=role, password_hash=get_password_hash(password))
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return make


@pytest.fixture
def headers_for():
    def headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}

    return headers


@pytest.fixture
def admin_headers(make_user, headers_for):
    return headers_for(make_user("admin@studio.com", role="admin", name="Admin"))
