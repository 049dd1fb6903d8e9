"""Testes da reconciliação do diretório e do recálculo de estatísticas."""

import threading
from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from app.core.errors import NotFoundError
from app.models.appointment import Appointment
from app.models.client import Client
from app.models.sync_failure import SyncFailure
from app.services.directory import (
    CounterDelta,
    apply_counter_delta,
    get_client_by_email,
    list_clients,
    open_failures,
    recalculate_stats,
    record_sync_failure,
)

START = datetime(2030, 1, 7, 10, 0)


def _clients(engine):
    with Session(engine) as fresh:
        return list(fresh.exec(select(Client)).all())


class TestReconcile:
    """Criação e atualização idempotentes de clientes no diretório."""

    def test_creates_client_once(self, engine, service, book, reconciler, read_client):
        appt = book(service.id, START, reconcile=False)

        assert reconciler.reconcile(appt.id) is True
        assert reconciler.reconcile(appt.id) is False

        client = read_client("ana@example.com")
        assert client.total_appointments == 1
        assert (client.first_name, client.last_name, client.phone) == ("Ana", "Souza", "11999990000")
        assert len(_clients(engine)) == 1

    def test_email_case_does_not_split_clients(self, engine, service, book, read_client):
        book(service.id, START, email="Ana@Example.com")
        book(service.id, START + timedelta(hours=2), email=" ana@example.COM")

        assert len(_clients(engine)) == 1
        assert read_client("ANA@example.com").total_appointments == 2

    def test_backfill_is_first_write_wins(self, session, service, book, reconciler, read_client):
        session.add(Client(email="ana@example.com", first_name="", last_name="Lima", phone="1133334444"))
        session.commit()

        appt = book(service.id, START, reconcile=False)
        reconciler.reconcile(appt.id)

        client = read_client("ana@example.com")
        assert client.first_name == "Ana"
        assert client.last_name == "Lima"
        assert client.phone == "1133334444"
        assert client.total_appointments == 1

    def test_missing_appointment_is_not_fatal(self, engine, reconciler):
        assert reconciler.reconcile_safely(12345, "x@example.com") is False
        with Session(engine) as fresh:
            assert fresh.exec(select(SyncFailure)).all() == []

    def test_concurrent_reconciliation_dedups(self, engine, service, book, reconciler, read_client):
        first = book(service.id, START, reconcile=False)
        second = book(service.id, START + timedelta(hours=2), reconcile=False)
        barrier = threading.Barrier(2)
        errors = []

        def run(appointment_id):
            barrier.wait()
            try:
                reconciler.reconcile(appointment_id)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(a,)) for a in (first.id, second.id)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(_clients(engine)) == 1
        assert read_client("ana@example.com").total_appointments == 2


class TestCounters:
    def test_clamped_at_zero(self, session, read_client):
        session.add(Client(email="ana@example.com", no_show_count=1))
        session.commit()

        found = apply_counter_delta(session, "ana@example.com", CounterDelta(no_show_count=-3, total_spent_cents=-100))
        session.commit()

        assert found is True
        client = read_client("ana@example.com")
        assert (client.no_show_count, client.total_spent_cents) == (0, 0)

    def test_last_appointment_keeps_latest(self, session, read_client):
        session.add(Client(email="ana@example.com", last_appointment_at=START))
        session.commit()

        delta = CounterDelta(refresh_last_appointment=True)
        apply_counter_delta(session, "ana@example.com", delta, appointment_start=START - timedelta(days=3))
        session.commit()
        assert read_client("ana@example.com").last_appointment_at == START

        apply_counter_delta(session, "ana@example.com", delta, appointment_start=START + timedelta(days=3))
        session.commit()
        assert read_client("ana@example.com").last_appointment_at == START + timedelta(days=3)

    def test_unknown_email(self, session):
        assert apply_counter_delta(session, "nobody@example.com", CounterDelta(total_appointments=1)) is False


class TestRecalculate:
    def test_creates_missing_client_and_marks_synced(self, engine, session, service, book, reconciler):
        appt = book(service.id, START, reconcile=False)
        with Session(engine) as fresh:
            client = recalculate_stats(fresh, "ana@example.com")

        assert client.total_appointments == 1
        assert client.first_name == "Ana"
        # já contado pelo recálculo
        assert reconciler.reconcile(appt.id) is False

    def test_overwrites_drifted_counters(self, session, service, book, read_client):
        book(service.id, START)
        client = get_client_by_email(session, "ana@example.com")
        client.total_appointments = 40
        client.no_show_count = 7
        session.add(client)
        session.commit()

        recalculate_stats(session, "ana@example.com")

        assert read_client("ana@example.com").total_appointments == 1
        assert read_client("ana@example.com").no_show_count == 0

    def test_unknown_email(self, session):
        with pytest.raises(NotFoundError):
            recalculate_stats(session, "nobody@example.com")

    def test_repair_pending_resolves_failures(self, engine, session, service, book, reconciler, read_client):
        appt = book(service.id, START, reconcile=False)
        record_sync_failure(engine, kind="reconciliation", email="ana@example.com", detail="timeout", appointment_id=appt.id)

        assert reconciler.repair_pending() == ["ana@example.com"]
        assert read_client("ana@example.com").total_appointments == 1
        with Session(engine) as fresh:
            assert open_failures(fresh) == []


def test_list_clients_search(session):
    session.add(Client(email="ana@example.com", first_name="Ana", last_name="Souza"))
    session.add(Client(email="bia@example.com", first_name="Beatriz", last_name="Lima", phone="1188887777"))
    session.commit()

    assert [c.email for c in list_clients(session)] == ["bia@example.com", "ana@example.com"]
    assert [c.email for c in list_clients(session, "SOUZA")] == ["ana@example.com"]
    assert [c.email for c in list_clients(session, "8888")] == ["bia@example.com"]


def test_reconciled_marker_is_set(engine, service, book):
    appt = book(service.id, START)
    with Session(engine) as fresh:
        assert fresh.get(Appointment, appt.id).directory_synced_at is not None
