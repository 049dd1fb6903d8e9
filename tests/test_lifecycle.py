"""Testes da máquina de estados do agendamento."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlmodel import Session, select

from app.core.errors import ConcurrentUpdate, InvalidTransition, NotFoundError, SlotConflict, ValidationError
from app.models.appointment import Appointment, AppointmentStatus
from app.models.notification import Notification
from app.models.payment import Payment
from app.models.sync_failure import SyncFailure
from app.services.directory import CounterDelta, recalculate_stats
from app.services.lifecycle import TRANSITIONS, LifecycleService, can_transition, stat_delta

START = datetime(2030, 1, 7, 10, 0)

COUNTERS = ("total_appointments", "completed_appointments", "no_show_count", "total_spent_cents")


def _counters(client):
    return tuple(getattr(client, name) for name in COUNTERS)


class TestStatDelta:
    """Delta puro dos contadores entre dois status."""

    def test_enter_completed(self):
        delta = stat_delta("confirmed", "completed", 5000)
        assert delta == CounterDelta(completed_appointments=1, total_spent_cents=5000, refresh_last_appointment=True)

    def test_leave_completed_for_no_show(self):
        delta = stat_delta("completed", "no_show", 5000)
        assert delta == CounterDelta(
            completed_appointments=-1, no_show_count=1, total_spent_cents=-5000, recompute_last_appointment=True
        )

    def test_canceled_has_no_effect(self):
        assert stat_delta("confirmed", "canceled", 5000).is_zero
        assert stat_delta("canceled", "confirmed", 5000).is_zero

    def test_creation_and_deletion(self):
        assert stat_delta(None, "confirmed", 0) == CounterDelta(total_appointments=1)
        assert stat_delta("no_show", None, 0) == CounterDelta(total_appointments=-1, no_show_count=-1)

    def test_same_status(self):
        assert stat_delta("completed", "completed", 100).is_zero

    def test_round_trip_cancels_out(self):
        forward = stat_delta("no_show", "completed", 700)
        back = stat_delta("completed", "no_show", 700)
        total = forward + back
        assert (total.completed_appointments, total.no_show_count, total.total_spent_cents) == (0, 0, 0)

    def test_accepts_enum_values(self):
        assert stat_delta(AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW, 0).no_show_count == 1


class TestTransitionsTable:
    def test_table(self):
        assert can_transition("confirmed", "arrived")
        assert can_transition("no_show", "completed")
        assert can_transition("canceled", "confirmed")
        assert not can_transition("completed", "confirmed")
        assert not can_transition("canceled", "completed")
        assert set(TRANSITIONS) == {s.value for s in AppointmentStatus}


class TestTransition:
    """Mudanças de status e o efeito nos contadores."""

    def test_complete_updates_directory(self, session, deposit_service, book, read_client):
        appt = book(deposit_service.id, START, payment_reference="pi_1")

        updated = LifecycleService(session).transition(appt.id, "completed")

        assert updated.status == "completed"
        client = read_client("ana@example.com")
        assert _counters(client) == (1, 1, 0, 5000)
        assert client.last_appointment_at == START

    def test_invalid_transition(self, session, service, book):
        appt = book(service.id, START)
        lifecycle = LifecycleService(session)
        lifecycle.transition(appt.id, "completed")

        with pytest.raises(InvalidTransition):
            lifecycle.transition(appt.id, "confirmed")

    def test_unknown_status(self, session, service, book):
        appt = book(service.id, START)
        with pytest.raises(ValidationError):
            LifecycleService(session).transition(appt.id, "paused")

    def test_same_status_is_noop(self, engine, session, service, book):
        appt = book(service.id, START)
        LifecycleService(session).transition(appt.id, "confirmed")

        with Session(engine) as fresh:
            events = fresh.exec(select(Notification.event_type)).all()
        assert events == ["created"]

    def test_not_found(self, session):
        with pytest.raises(NotFoundError):
            LifecycleService(session).transition(999, "arrived")

    def test_cancel_records_who_and_why(self, engine, session, service, book):
        appt = book(service.id, START)
        canceled = LifecycleService(session).transition(appt.id, "canceled", canceled_by="client", reason="viagem")

        assert canceled.canceled_by == "client"
        assert canceled.cancel_reason == "viagem"
        assert canceled.canceled_at is not None

        with Session(engine) as fresh:
            events = fresh.exec(select(Notification.event_type).order_by(Notification.id)).all()
        assert events == ["created", "canceled"]

    def test_reconfirm_rechecks_overlap(self, session, service, book):
        appt = book(service.id, START)
        lifecycle = LifecycleService(session)
        lifecycle.transition(appt.id, "canceled")
        book(service.id, START, email="bia@example.com")

        with pytest.raises(SlotConflict):
            lifecycle.transition(appt.id, "confirmed")
        assert lifecycle._load(appt.id).status == "canceled"

    def test_counters_match_recalculation_after_corrections(self, engine, session, deposit_service, book, read_client):
        appt = book(deposit_service.id, START, payment_reference="pi_1")
        book(deposit_service.id, START + timedelta(days=1), payment_reference="pi_2")
        lifecycle = LifecycleService(session)

        for status in ("completed", "no_show", "arrived", "completed", "canceled", "confirmed", "no_show", "completed"):
            lifecycle.transition(appt.id, status)

        incremental = read_client("ana@example.com")
        with Session(engine) as fresh:
            recalculated = recalculate_stats(fresh, "ana@example.com")

        assert _counters(incremental) == _counters(recalculated) == (2, 1, 0, 5000)
        assert incremental.last_appointment_at == recalculated.last_appointment_at == START

    def test_leaving_completed_recomputes_last_appointment(self, engine, session, service, book, read_client):
        earlier = book(service.id, START - timedelta(days=7))
        latest = book(service.id, START)
        lifecycle = LifecycleService(session)
        lifecycle.transition(earlier.id, "completed")
        lifecycle.transition(latest.id, "completed")
        assert read_client("ana@example.com").last_appointment_at == START

        lifecycle.transition(latest.id, "canceled")
        assert read_client("ana@example.com").last_appointment_at == START - timedelta(days=7)

        lifecycle.transition(earlier.id, "no_show")
        incremental = read_client("ana@example.com")
        with Session(engine) as fresh:
            recalculated = recalculate_stats(fresh, "ana@example.com")
        assert incremental.last_appointment_at is None
        assert recalculated.last_appointment_at is None

    def test_lost_race_exhausts_retries(self, engine, session, service, book, monkeypatch):
        appt = book(service.id, START)
        lifecycle = LifecycleService(session, max_attempts=2)

        real_load = lifecycle._load

        def racing_load(appointment_id):
            loaded = real_load(appointment_id)
            # outro escritor muda o status logo depois da leitura
            flipped = "arrived" if loaded.status == "confirmed" else "confirmed"
            with Session(engine) as other:
                other.execute(update(Appointment).where(Appointment.id == appointment_id).values(status=flipped))
                other.commit()
            return loaded

        monkeypatch.setattr(lifecycle, "_load", racing_load)
        with pytest.raises(ConcurrentUpdate):
            lifecycle.transition(appt.id, "completed")

    def test_missing_client_is_recorded(self, engine, session, service, book):
        appt = book(service.id, START, reconcile=False)

        LifecycleService(session).transition(appt.id, "completed")

        with Session(engine) as fresh:
            failures = fresh.exec(select(SyncFailure)).all()
            stored = fresh.get(Appointment, appt.id)
        assert [(f.kind, f.appointment_id) for f in failures] == [("missing_client", appt.id)]
        assert stored.status == "completed"


class TestDeleteAppointment:
    def test_delete_reverses_counters(self, engine, session, deposit_service, book, read_client):
        appt = book(deposit_service.id, START, payment_reference="pi_1")
        lifecycle = LifecycleService(session)
        lifecycle.transition(appt.id, "completed")

        lifecycle.delete_appointment(appt.id)

        assert _counters(read_client("ana@example.com")) == (0, 0, 0, 0)
        with Session(engine) as fresh:
            assert fresh.get(Appointment, appt.id) is None
            assert fresh.exec(select(Payment)).all() == []
            events = fresh.exec(select(Notification.event_type).order_by(Notification.id)).all()
        assert events[-1] == "deleted"

    def test_delete_unreconciled_keeps_total(self, session, service, book, read_client, reconciler):
        counted = book(service.id, START)
        pending = book(service.id, START + timedelta(hours=2), reconcile=False)

        LifecycleService(session).delete_appointment(pending.id)

        client = read_client("ana@example.com")
        assert client.total_appointments == 1
        assert reconciler.reconcile(counted.id) is False


class TestTips:
    def test_tip_on_completed_adds_to_spent(self, engine, session, deposit_service, book, read_client):
        appt = book(deposit_service.id, START, payment_reference="pi_1")
        lifecycle = LifecycleService(session)
        lifecycle.transition(appt.id, "completed")

        updated = lifecycle.record_tip(appt.id, 1500, provider="stripe", external_id="pi_tip")

        assert updated.tip_amount_cents == 1500
        assert read_client("ana@example.com").total_spent_cents == 6500
        with Session(engine) as fresh:
            assert recalculate_stats(fresh, "ana@example.com").total_spent_cents == 6500
            kinds = sorted(p.kind for p in fresh.exec(select(Payment)).all())
        assert kinds == ["deposit", "tip"]

    def test_tip_before_completion_counts_on_completion(self, session, service, book, read_client):
        appt = book(service.id, START)
        lifecycle = LifecycleService(session)
        lifecycle.record_tip(appt.id, 1000)
        assert read_client("ana@example.com").total_spent_cents == 0

        lifecycle.transition(appt.id, "completed")
        assert read_client("ana@example.com").total_spent_cents == 1000

    def test_tip_must_be_positive(self, session, service, book):
        appt = book(service.id, START)
        with pytest.raises(ValidationError):
            LifecycleService(session).record_tip(appt.id, 0)


def test_update_details_emits_updated(engine, session, service, book):
    appt = book(service.id, START)
    updated = LifecycleService(session).update_details(appt.id, admin_notes="pele sensível")

    assert updated.admin_notes == "pele sensível"
    with Session(engine) as fresh:
        events = fresh.exec(select(Notification.event_type).order_by(Notification.id)).all()
    assert events == ["created", "updated"]
