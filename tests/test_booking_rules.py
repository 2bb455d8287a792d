from datetime import date, timedelta

import booking_rules as rules

TODAY = date(2025, 3, 10)


def _booking(**overrides):
    booking = {
        'status': 'confirmed',
        'payment_status': 'paid',
        'individual_room_id': 7,
        'check_in_date': TODAY,
        'check_out_date': TODAY + timedelta(days=2),
    }
    booking.update(overrides)
    return booking


def test_valid_transitions():
    assert rules.validate_status_transition('pending', 'confirmed').allowed
    assert rules.validate_status_transition('tentative', 'expired').allowed
    assert rules.validate_status_transition('checked-in', 'confirmed').allowed
    assert rules.validate_status_transition('confirmed', 'confirmed').allowed


def test_terminal_statuses_cannot_move():
    for status in ('checked-out', 'cancelled', 'expired', 'no-show'):
        result = rules.validate_status_transition(status, 'confirmed')
        assert not result.allowed
        assert result.code == 'status'
        assert rules.is_terminal(status)


def test_unknown_status_is_rejected():
    result = rules.validate_status_transition('archived', 'confirmed')
    assert not result.allowed
    assert 'Unknown current status' in result.reason


def test_check_in_allowed_for_paid_confirmed_booking_with_room():
    assert rules.validate_check_in(_booking(), TODAY) == rules.ALLOWED
    assert rules.validate_check_in(_booking(check_in_date=TODAY - timedelta(days=1)), TODAY).allowed


def test_check_in_failure_codes():
    assert rules.validate_check_in(_booking(status='pending'), TODAY).code == 'status'
    assert rules.validate_check_in(_booking(payment_status='partial'), TODAY).code == 'payment'
    assert rules.validate_check_in(_booking(individual_room_id=None), TODAY).code == 'room'
    assert rules.validate_check_in(_booking(check_in_date=TODAY + timedelta(days=1)), TODAY).code == 'date'


def test_check_in_accepts_iso_strings():
    assert rules.validate_check_in(_booking(check_in_date='2025-03-10'), TODAY).allowed


def test_check_out_window():
    checked_in = _booking(status='checked-in', check_out_date=TODAY)
    assert rules.validate_check_out(checked_in, TODAY).allowed
    assert rules.validate_check_out(dict(checked_in, check_out_date=TODAY + timedelta(days=1)), TODAY).allowed

    too_far = rules.validate_check_out(dict(checked_in, check_out_date=TODAY + timedelta(days=2)), TODAY)
    assert not too_far.allowed
    assert too_far.code == 'date'

    assert rules.validate_check_out(_booking(), TODAY).code == 'status'


def test_cancellation_codes():
    assert rules.validate_cancellation(_booking(status='pending')).allowed
    assert rules.validate_cancellation(_booking(status='checked-in')).code == 'checked_in'
    assert rules.validate_cancellation(_booking(status='checked-out')).code == 'checked_out'
    assert rules.validate_cancellation(_booking(status='cancelled')).code == 'cancelled'
    assert rules.validate_cancellation(_booking(status='no-show')).code == 'noshow'


def test_tentative_transition():
    assert rules.validate_tentative_transition(_booking(status='pending', payment_status='unpaid')).allowed
    assert rules.validate_tentative_transition(_booking(status='confirmed')).code == 'confirmed'
    assert rules.validate_tentative_transition(_booking(status='pending', payment_status='partial')).code == 'payment'
    assert rules.validate_tentative_transition(_booking(status='cancelled')).code == 'status'


def test_room_assignment_requires_confirmed():
    assert rules.validate_room_assignment(_booking()).allowed
    assert rules.validate_room_assignment(_booking(status='pending')).code == 'status'


def test_blocking_statuses():
    assert 'pending' in rules.blocking_statuses()
    assert 'pending' not in rules.blocking_statuses(for_individual_room=True)
    assert 'tentative' not in rules.blocking_statuses()


def test_action_error_message_falls_back_to_reason():
    result = rules.validate_check_in(_booking(payment_status='unpaid'), TODAY)
    assert rules.action_error_message('check_in', result) == 'Cannot check in: Payment must be completed first.'
    assert rules.action_error_message('unknown', result) == result.reason
