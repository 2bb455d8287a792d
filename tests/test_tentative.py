from datetime import datetime, timedelta

import pytest

import tentative_service
from errors import TransitionError, ValidationError
from models import TentativeBookingLog


@pytest.fixture
def held(make_booking, admin):
    booking = make_booking(status='pending')
    tentative_service.make_tentative(booking, admin, hours=48)
    return booking


def test_make_tentative_sets_hold(held):
    assert held.status == 'tentative'
    assert held.is_tentative
    remaining = held.tentative_expires_at - datetime.utcnow()
    assert timedelta(hours=47) < remaining <= timedelta(hours=48)
    assert TentativeBookingLog.query.filter_by(booking_id=held.id, action='created').count() == 1


def test_make_tentative_defaults_to_setting(make_booking, admin):
    booking = make_booking(status='pending')
    now = datetime(2025, 1, 1, 12, 0)
    tentative_service.make_tentative(booking, admin, now=now)
    assert booking.tentative_expires_at == now + timedelta(hours=48)


def test_make_tentative_rejects_paid_or_confirmed(make_booking, admin):
    with pytest.raises(TransitionError, match='Confirmed bookings cannot revert'):
        tentative_service.make_tentative(make_booking(status='confirmed'), admin)
    with pytest.raises(TransitionError, match='Bookings with payments'):
        tentative_service.make_tentative(make_booking(status='pending', payment_status='partial'), admin)
    with pytest.raises(ValidationError):
        tentative_service.make_tentative(make_booking(status='pending'), admin, hours=-1)


def test_convert_to_confirmed(held, admin, outbox):
    result = tentative_service.convert_to_confirmed(held, admin)
    assert held.status == 'confirmed'
    assert not held.is_tentative
    assert result['email_sent'] is True
    assert len(outbox) == 1
    assert held.booking_reference in outbox[0].subject

    ok, reason = tentative_service.can_convert(held)
    assert not ok
    assert reason == 'Booking has already been converted'


def test_cannot_convert_after_hold_lapses(held, admin):
    later = held.tentative_expires_at + timedelta(minutes=1)
    ok, reason = tentative_service.can_convert(held, now=later)
    assert not ok
    assert reason == 'This booking has expired'
    with pytest.raises(TransitionError):
        tentative_service.convert_to_confirmed(held, admin, now=later)


def test_can_convert_reasons(make_booking):
    assert tentative_service.can_convert(None) == (False, 'Booking not found')
    assert tentative_service.can_convert(make_booking(status='cancelled')) == (False, 'This booking has been cancelled')
    assert tentative_service.can_convert(make_booking(status='pending')) == (False, 'This is not a tentative booking')


def test_cancel_tentative(held, admin):
    tentative_service.cancel_tentative(held, admin, 'Guest changed plans')
    assert held.status == 'cancelled'
    assert held.cancellation_reason == 'Guest changed plans'
    with pytest.raises(TransitionError):
        tentative_service.cancel_tentative(held, admin)


def test_expire_overdue(held, make_booking, admin):
    fresh = make_booking(status='pending')
    tentative_service.make_tentative(fresh, admin, hours=72)

    expired = tentative_service.expire_overdue(now=datetime.utcnow() + timedelta(hours=49))
    assert expired == [held]
    assert held.status == 'expired'
    assert not held.is_tentative
    assert fresh.status == 'tentative'
    assert TentativeBookingLog.query.filter_by(booking_id=held.id, action='expired').count() == 1


def test_statistics_and_listing(held, make_booking, admin):
    soon = make_booking(status='pending')
    tentative_service.make_tentative(soon, admin, hours=6)
    converted = make_booking(status='pending')
    tentative_service.make_tentative(converted, admin, hours=24)
    tentative_service.convert_to_confirmed(converted, admin)

    stats = tentative_service.statistics()
    assert stats == {'total': 2, 'expiring_soon': 1, 'expired': 0, 'converted': 1, 'active': 2}

    assert tentative_service.expiring_soon() == [soon]
    assert tentative_service.list_tentative() == [soon, held]
    assert tentative_service.list_tentative({'expiration_status': 'expiring_soon'}) == [soon]
    assert set(tentative_service.list_tentative({'status': 'all'})) == {soon, held, converted}
    assert tentative_service.list_tentative({'search': soon.booking_reference}) == [soon]


def test_reminder(held, admin, outbox):
    sent, error = tentative_service.send_reminder(held, admin)
    assert sent and error is None
    assert len(outbox) == 1
    assert TentativeBookingLog.query.filter_by(booking_id=held.id, action='reminder_sent').count() == 1


def test_non_numeric_input_is_a_validation_error(make_booking, admin):
    with pytest.raises(ValidationError, match='Hold period must be a whole number'):
        tentative_service.make_tentative(make_booking(status='pending'), admin, hours='two days')
    with pytest.raises(ValidationError, match='Limit must be a whole number'):
        tentative_service.list_tentative({'limit': 'abc'})
    with pytest.raises(ValidationError, match='Room type must be a whole number'):
        tentative_service.list_tentative({'room_id': 'standard'})
