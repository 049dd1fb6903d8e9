"""Testes do vínculo retroativo entre conta e histórico."""

from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from app.core.errors import LinkingConflict, ValidationError
from app.models.appointment import Appointment
from app.models.sync_failure import SyncFailure
from app.services.account_linker import link_account_to_history

START = datetime(2030, 1, 7, 10, 0)


def _owners(engine):
    with Session(engine) as fresh:
        rows = fresh.exec(select(Appointment).order_by(Appointment.id)).all()
        return [(a.client_email, a.user_id) for a in rows]


class TestLinkAccount:
    def test_links_history_once(self, engine, session, service, book, make_user, read_client):
        book(service.id, START)
        book(service.id, START + timedelta(hours=2))
        book(service.id, START + timedelta(hours=4), email="bia@example.com")
        user = make_user("Ana@Example.com")

        result = link_account_to_history(session, user.id, "ANA@example.com ")

        assert result.linked_appointments == 2
        assert result.conflicting_appointments == 0
        assert result.created_client is False
        assert read_client("ana@example.com").user_id == user.id
        assert _owners(engine) == [
            ("ana@example.com", user.id),
            ("ana@example.com", user.id),
            ("bia@example.com", None),
        ]

        again = link_account_to_history(session, user.id, user.email)
        assert again.linked_appointments == 0
        assert again.client_id == result.client_id

    def test_creates_email_only_client(self, session, make_user, read_client):
        user = make_user("nova@example.com")

        result = link_account_to_history(session, user.id, user.email)

        client = read_client("nova@example.com")
        assert result.created_client is True
        assert client.user_id == user.id
        assert client.total_appointments == 0
        assert client.first_name == ""

    def test_conflict_touches_nothing(self, engine, session, service, book, make_user, read_client):
        book(service.id, START)
        owner = make_user("ana@example.com")
        intruder = make_user("outra@example.com")
        link_account_to_history(session, owner.id, "ana@example.com")
        # agendamento novo, ainda sem dono
        book(service.id, START + timedelta(hours=2))

        with pytest.raises(LinkingConflict) as exc:
            link_account_to_history(session, intruder.id, "ana@example.com")

        assert exc.value.existing_user_id == owner.id
        assert read_client("ana@example.com").user_id == owner.id
        assert _owners(engine) == [("ana@example.com", owner.id), ("ana@example.com", None)]
        with Session(engine) as fresh:
            failures = fresh.exec(select(SyncFailure)).all()
        assert [(f.kind, f.user_id) for f in failures] == [("linking_conflict", intruder.id)]

    def test_appointments_of_other_user_are_reported(self, session, service, book, make_user):
        appt = book(service.id, START)
        other = make_user("outra@example.com")
        appt.user_id = other.id
        session.add(appt)
        session.commit()
        user = make_user("ana@example.com")

        result = link_account_to_history(session, user.id, "ana@example.com")

        assert result.linked_appointments == 0
        assert result.conflicting_appointments == 1
        session.refresh(appt)
        assert appt.user_id == other.id

    def test_requires_email(self, session):
        with pytest.raises(ValidationError):
            link_account_to_history(session, 1, "  ")
