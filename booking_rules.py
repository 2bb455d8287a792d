"""
Booking lifecycle rules used by the front desk, tentative and payment pages.

Validators never touch the database. They take a booking (model instance or
dict) and return a ``RuleResult`` so callers can decide whether to flash,
raise or return JSON.
"""
from collections import namedtuple
from datetime import date, timedelta

PENDING = 'pending'
TENTATIVE = 'tentative'
CONFIRMED = 'confirmed'
CHECKED_IN = 'checked-in'
CHECKED_OUT = 'checked-out'
CANCELLED = 'cancelled'
EXPIRED = 'expired'
NO_SHOW = 'no-show'

BOOKING_STATUSES = [PENDING, TENTATIVE, CONFIRMED, CHECKED_IN, CHECKED_OUT, CANCELLED, EXPIRED, NO_SHOW]

# Room type pool is held by pending bookings too; an individual room only
# once the booking is confirmed. Tentative bookings never block.
BLOCKING_STATUSES = [PENDING, CONFIRMED, CHECKED_IN]
ROOM_BLOCKING_STATUSES = [CONFIRMED, CHECKED_IN]
ACTIVE_STATUSES = [PENDING, TENTATIVE, CONFIRMED, CHECKED_IN, CHECKED_OUT]
TERMINAL_STATUSES = [CANCELLED, EXPIRED, NO_SHOW, CHECKED_OUT]

VALID_TRANSITIONS = {
    PENDING: [TENTATIVE, CONFIRMED, CANCELLED, EXPIRED],
    TENTATIVE: [CONFIRMED, CANCELLED, EXPIRED],
    CONFIRMED: [CHECKED_IN, CANCELLED, NO_SHOW],
    CHECKED_IN: [CHECKED_OUT, CONFIRMED],
    CHECKED_OUT: [],
    CANCELLED: [],
    EXPIRED: [],
    NO_SHOW: [],
}

RuleResult = namedtuple('RuleResult', ['allowed', 'code', 'reason'])

ALLOWED = RuleResult(True, None, '')


def _deny(code, reason):
    return RuleResult(False, code, reason)


def _field(booking, name):
    if isinstance(booking, dict):
        return booking.get(name)
    return getattr(booking, name, None)


def _as_date(value):
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def blocking_statuses(for_individual_room=False):
    return list(ROOM_BLOCKING_STATUSES if for_individual_room else BLOCKING_STATUSES)


def is_terminal(status):
    return status in TERMINAL_STATUSES


def validate_status_transition(current, new):
    if current == new:
        return ALLOWED
    if current not in VALID_TRANSITIONS:
        return _deny('status', f"Unknown current status: {current}")
    if new not in VALID_TRANSITIONS[current]:
        return _deny('status', f"Cannot transition from '{current}' to '{new}'")
    return ALLOWED


def validate_check_in(booking, today=None):
    today = today or date.today()
    status = _field(booking, 'status')
    payment_status = _field(booking, 'payment_status')

    if status != CONFIRMED:
        return _deny('status', f"Booking must be CONFIRMED to check in (current: {status})")
    if payment_status != 'paid':
        return _deny('payment', f"Booking must be PAID to check in (current: {payment_status})")
    if not _field(booking, 'individual_room_id'):
        return _deny('room', "A room must be assigned before check-in")

    check_in_date = _as_date(_field(booking, 'check_in_date'))
    if check_in_date is None:
        return _deny('date', "Missing required field: check_in_date")
    if check_in_date > today:
        return _deny('date', f"Check-in date has not been reached yet (check-in: {check_in_date.isoformat()})")
    return ALLOWED


def validate_check_out(booking, today=None):
    today = today or date.today()
    status = _field(booking, 'status')

    if status != CHECKED_IN:
        return _deny('status', f"Booking must be CHECKED-IN to check out (current: {status})")

    check_out_date = _as_date(_field(booking, 'check_out_date'))
    if check_out_date is None:
        return _deny('date', "Missing required field: check_out_date")
    # Early checkout is fine, anything beyond tomorrow is a data entry mistake
    if check_out_date > today + timedelta(days=1):
        return _deny('date', f"Check-out date is too far in the future (scheduled: {check_out_date.isoformat()})")
    return ALLOWED


def validate_room_assignment(booking):
    status = _field(booking, 'status')
    if status != CONFIRMED:
        return _deny('status', f"Rooms can only be assigned to CONFIRMED bookings (current: {status})")
    return ALLOWED


_CANCELLATION_BLOCKS = {
    CHECKED_IN: ('checked_in', "Cannot cancel booking: guest has already checked in (use check-out instead)"),
    CHECKED_OUT: ('checked_out', "Cannot cancel booking: guest has already checked out"),
    CANCELLED: ('cancelled', "Booking is already cancelled"),
    NO_SHOW: ('noshow', "Cannot cancel booking: marked as no-show"),
}


def validate_cancellation(booking):
    status = _field(booking, 'status')
    if status in _CANCELLATION_BLOCKS:
        return _deny(*_CANCELLATION_BLOCKS[status])
    return ALLOWED


_TENTATIVE_STATUS_REASONS = {
    TENTATIVE: 'Booking is already tentative',
    CONFIRMED: 'Confirmed bookings cannot be made tentative',
    CHECKED_IN: 'Checked-in bookings cannot be made tentative',
    CHECKED_OUT: 'Checked-out bookings cannot be made tentative',
    CANCELLED: 'Cancelled bookings cannot be made tentative',
    NO_SHOW: 'No-show bookings cannot be made tentative',
    EXPIRED: 'Expired bookings cannot be made tentative',
}


def validate_tentative_transition(booking):
    status = _field(booking, 'status')
    payment_status = _field(booking, 'payment_status')

    if status != PENDING:
        code = 'confirmed' if status == CONFIRMED else 'status'
        return _deny(code, _TENTATIVE_STATUS_REASONS.get(
            status, f"Cannot make booking tentative from current status: {status}"))
    if payment_status in ('paid', 'partial'):
        return _deny('payment', "Bookings with payments cannot be made tentative "
                                f"(current payment status: {payment_status})")
    return ALLOWED


ACTION_MESSAGES = {
    'check_in': {
        'status': 'Cannot check in: Booking must be confirmed first.',
        'payment': 'Cannot check in: Payment must be completed first.',
        'room': 'Cannot check in: Please assign a room first.',
        'date': 'Cannot check in: Check-in date has not been reached yet.',
    },
    'check_out': {
        'status': 'Cannot check out: Guest must be checked in first.',
        'date': 'Cannot check out: Check-out date is too far in the future.',
    },
    'cancel': {
        'status': 'Cannot cancel booking: Invalid status for cancellation.',
        'checked_in': 'Cannot cancel booking: Guest has already checked in. Use check-out instead.',
        'checked_out': 'Cannot cancel booking: Guest has already checked out.',
        'cancelled': 'Booking is already cancelled.',
        'noshow': 'Cannot cancel booking: Marked as no-show.',
    },
    'assign_room': {
        'status': 'Cannot assign room: Booking must be confirmed first.',
    },
    'confirm': {
        'availability': 'Cannot confirm: No rooms available for the selected dates.',
    },
    'make_tentative': {
        'status': 'Cannot make tentative: Booking must be in pending status.',
        'payment': 'Cannot make tentative: Bookings with payments cannot be made tentative.',
        'confirmed': 'Cannot make tentative: Confirmed bookings cannot revert to tentative status.',
    },
}


def action_error_message(action, result):
    """Friendly front-desk wording for a failed ``RuleResult``"""
    return ACTION_MESSAGES.get(action, {}).get(result.code, result.reason)
