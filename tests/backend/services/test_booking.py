from datetime import date, datetime

import pytest

from backend.models.appointment import Appointment
from backend.models.slot import Slot
from backend.services.availability_store import AvailabilityStore, SlotUpdate
from backend.services.booking import BookingCoordinator, BookingDetails
from backend.services.errors import (
    AppointmentNotFoundError,
    DuplicateAppointmentError,
    InvalidTransitionError,
    SlotFullError,
    SlotNotFoundError,
)
from backend.services.ledger import AppointmentLedger
from backend.services.notifications import BookingNotifier

SLOT_DATE = date(2024, 6, 1)


def _slot(db, doctor_id: int, slot_time: str = '09:00') -> Slot:
    db.expire_all()
    return db.query(Slot).filter(Slot.doctor_id == doctor_id, Slot.date == SLOT_DATE, Slot.time == slot_time).one()


def _assert_slot_consistent(db, doctor_id: int, slot_time: str = '09:00') -> None:
    slot = _slot(db, doctor_id, slot_time)
    active = AppointmentLedger(db).find_active_by_doctor_slot(doctor_id, SLOT_DATE, slot_time)
    assert 0 <= slot.current_bookings <= slot.patient_limit
    assert slot.current_bookings == len(active)


@pytest.fixture
def coordinator(booking_db, locks):
    return BookingCoordinator(booking_db, locks=locks, notifier=BookingNotifier())


@pytest.fixture
def doctor(booking_db, add_doctor):
    return add_doctor(booking_db)


def test_single_capacity_slot_scenario(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=1)

    first = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    assert first.status == 'scheduled'
    assert _slot(booking_db, doctor.id).current_bookings == 1
    assert _slot(booking_db, doctor.id).is_booked

    with pytest.raises(SlotFullError):
        coordinator.book(doctor.id, 2, SLOT_DATE, '09:00')

    coordinator.cancel(first.id)
    assert _slot(booking_db, doctor.id).current_bookings == 0

    second = coordinator.book(doctor.id, 2, SLOT_DATE, '09:00')
    assert second.patient_id == 2
    _assert_slot_consistent(booking_db, doctor.id)


def test_book_accepts_mixed_date_and_time_representations(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, slot_time='14:00', patient_limit=2)

    appointment = coordinator.book(
        doctor.id,
        1,
        '2024-06-01T00:00:00.000Z',
        '14:00:00',
        BookingDetails(appointment_type=' Consultation ', symptoms='  chest pain  '),
    )

    assert appointment.date == SLOT_DATE
    assert appointment.time == '14:00'
    assert appointment.appointment_type == 'consultation'
    assert appointment.symptoms == 'chest pain'


def test_book_rejects_duplicate_without_mutation(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=3)
    coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')

    with pytest.raises(DuplicateAppointmentError):
        coordinator.book(doctor.id, 1, SLOT_DATE, '9:00')

    assert _slot(booking_db, doctor.id).current_bookings == 1
    assert booking_db.query(Appointment).count() == 1


def test_book_rejects_missing_or_closed_slot(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, slot_time='10:00', is_available=False)

    with pytest.raises(SlotNotFoundError):
        coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    with pytest.raises(SlotNotFoundError):
        coordinator.book(doctor.id, 1, SLOT_DATE, '10:00')

    assert booking_db.query(Appointment).count() == 0


def test_book_cancel_book_round_trip_restores_count(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=3)
    coordinator.book(doctor.id, 5, SLOT_DATE, '09:00')
    original = _slot(booking_db, doctor.id).current_bookings

    booked = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(booked.id)
    coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    assert _slot(booking_db, doctor.id).current_bookings == original + 1

    latest = AppointmentLedger(booking_db).find_by_patient_doctor_slot(1, doctor.id, SLOT_DATE, '09:00')
    coordinator.cancel(latest.id)
    assert _slot(booking_db, doctor.id).current_bookings == original
    _assert_slot_consistent(booking_db, doctor.id)


def test_cancel_requires_active_appointment(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id)
    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(appointment.id)

    with pytest.raises(InvalidTransitionError):
        coordinator.cancel(appointment.id)

    assert _slot(booking_db, doctor.id).current_bookings == 0


def test_cancel_unknown_appointment(coordinator) -> None:
    with pytest.raises(AppointmentNotFoundError):
        coordinator.cancel(999)


def test_completing_releases_capacity(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=1)
    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')

    completed = coordinator.set_status(appointment.id, 'completed')

    assert completed.status == 'completed'
    assert _slot(booking_db, doctor.id).current_bookings == 0
    _assert_slot_consistent(booking_db, doctor.id)


def test_completed_to_completed_is_noop(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=1)
    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.set_status(appointment.id, 'completed')
    history_before = len(AppointmentLedger(booking_db).history(appointment.id))

    again = coordinator.set_status(appointment.id, 'completed')

    assert again.status == 'completed'
    assert len(AppointmentLedger(booking_db).history(appointment.id)) == history_before
    assert _slot(booking_db, doctor.id).current_bookings == 0


def test_rejected_transition_leaves_ledger_and_slot_untouched(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=2)
    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.book(doctor.id, 2, SLOT_DATE, '09:00')
    coordinator.set_status(appointment.id, 'completed')

    for forbidden in ('scheduled', 'cancelled', 'pending'):
        with pytest.raises(InvalidTransitionError):
            coordinator.set_status(appointment.id, forbidden)

    assert AppointmentLedger(booking_db).get(appointment.id).status == 'completed'
    assert _slot(booking_db, doctor.id).current_bookings == 1


def test_reactivation_must_pass_capacity_check(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=1)
    first = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(first.id)
    coordinator.book(doctor.id, 2, SLOT_DATE, '09:00')

    with pytest.raises(SlotFullError):
        coordinator.set_status(first.id, 'scheduled')

    assert AppointmentLedger(booking_db).get(first.id).status == 'cancelled'
    _assert_slot_consistent(booking_db, doctor.id)


def test_reactivation_reclaims_free_capacity(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=1)
    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(appointment.id)

    reactivated = coordinator.set_status(appointment.id, 'scheduled')

    assert reactivated.status == 'scheduled'
    assert _slot(booking_db, doctor.id).current_bookings == 1
    history = AppointmentLedger(booking_db).history(appointment.id)
    assert [change.to_status for change in history] == ['scheduled', 'cancelled', 'scheduled']


def test_reactivation_rejected_on_withdrawn_slot(booking_db, locks, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=2)
    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(appointment.id)
    AvailabilityStore(booking_db, locks).bulk_update(
        doctor.id,
        [SlotUpdate(date=SLOT_DATE, time='09:00', is_available=False)],
    )

    with pytest.raises(SlotNotFoundError):
        coordinator.set_status(appointment.id, 'scheduled')

    assert AppointmentLedger(booking_db).get(appointment.id).status == 'cancelled'
    slot = _slot(booking_db, doctor.id)
    assert (slot.is_available, slot.current_bookings) == (False, 0)
    _assert_slot_consistent(booking_db, doctor.id)


def test_reactivation_rejects_duplicate(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=3)
    first = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(first.id)
    coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')

    with pytest.raises(DuplicateAppointmentError):
        coordinator.set_status(first.id, 'scheduled')

    _assert_slot_consistent(booking_db, doctor.id)


def test_check_duplicate_is_advisory(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, patient_limit=2)

    assert coordinator.check_duplicate(1, doctor.id, SLOT_DATE, '09:00') is False
    coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    assert coordinator.check_duplicate(1, doctor.id, '2024-06-01', '9:00') is True
    assert coordinator.check_duplicate(2, doctor.id, SLOT_DATE, '09:00') is False


def test_expire_no_shows_cancels_past_active_appointments(booking_db, coordinator, doctor, add_slot) -> None:
    add_slot(booking_db, doctor.id, slot_time='09:00', patient_limit=2)
    add_slot(booking_db, doctor.id, slot_time='15:00', patient_limit=2)
    missed = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    upcoming = coordinator.book(doctor.id, 2, SLOT_DATE, '15:00')
    done = coordinator.book(doctor.id, 3, SLOT_DATE, '09:00')
    coordinator.set_status(done.id, 'completed')

    expired = coordinator.expire_no_shows(now=datetime(2024, 6, 1, 12, 0))

    assert [appointment.id for appointment in expired] == [missed.id]
    ledger = AppointmentLedger(booking_db)
    assert ledger.get(missed.id).status == 'cancelled'
    assert ledger.get(upcoming.id).status == 'scheduled'
    assert ledger.get(done.id).status == 'completed'
    _assert_slot_consistent(booking_db, doctor.id, '09:00')
    _assert_slot_consistent(booking_db, doctor.id, '15:00')


def test_notifications_follow_commit_and_failures_do_not_break_booking(
    booking_db, locks, doctor, add_slot,
) -> None:
    events: list[tuple[str, int]] = []

    def record(event: str, appointment: Appointment) -> None:
        events.append((event, appointment.patient_id))

    def explode(event: str, appointment: Appointment) -> None:
        raise RuntimeError('mail server down')

    coordinator = BookingCoordinator(booking_db, locks=locks, notifier=BookingNotifier([explode, record]))
    add_slot(booking_db, doctor.id)

    appointment = coordinator.book(doctor.id, 1, SLOT_DATE, '09:00')
    coordinator.cancel(appointment.id)

    assert events == [('booking_confirmed', 1), ('appointment_cancelled', 1)]
    assert _slot(booking_db, doctor.id).current_bookings == 0


def test_booking_details_rejects_long_symptoms() -> None:
    with pytest.raises(ValueError):
        BookingDetails(symptoms='x' * 601)
