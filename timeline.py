"""Per-booking history shown on the booking detail page."""
import logging

from flask import has_request_context, request

from extensions import db
from models import BookingTimelineLog

logger = logging.getLogger(__name__)


def _request_meta():
    if not has_request_context():
        return None, None
    user_agent = request.headers.get('User-Agent', '')[:500]
    return request.remote_addr, user_agent


def log_event(booking, action, action_type, description=None, old_value=None, new_value=None,
              actor=None, metadata=None):
    """Add a timeline row. ``actor`` is an AdminUser, ``'guest'`` or None for system."""
    if actor is None:
        by_type, by_id, by_name = 'system', None, 'System'
    elif actor == 'guest':
        by_type, by_id, by_name = 'guest', None, booking.guest_name
    else:
        by_type, by_id, by_name = 'admin', actor.id, actor.display_name

    ip_address, user_agent = _request_meta()
    entry = BookingTimelineLog(
        booking_id=booking.id,
        booking_reference=booking.booking_reference,
        action=action,
        action_type=action_type,
        description=description,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        performed_by_type=by_type,
        performed_by_id=by_id,
        performed_by_name=by_name,
        ip_address=ip_address,
        user_agent=user_agent,
        extra=metadata,
    )
    db.session.add(entry)
    logger.debug("[TIMELINE] %s %s", booking.booking_reference, action)
    return entry


def log_status_change(booking, old_status, new_status, actor=None, reason=None):
    description = f'Status changed from {old_status} to {new_status}'
    if reason:
        description += f': {reason}'
    return log_event(booking, 'Status changed', 'status_change', description,
                     old_value=old_status, new_value=new_status, actor=actor)


def log_cancellation(booking, reason, actor=None):
    return log_event(booking, 'Booking cancelled', 'cancellation', reason or 'No reason given',
                     new_value='cancelled', actor=actor)


def log_email(booking, email_type, recipient, sent, error=None):
    action = f'{email_type} email sent' if sent else f'{email_type} email failed'
    return log_event(booking, action, 'email', f'To {recipient}',
                     metadata={'sent': sent, 'error': error})


def log_check_in(booking, room_number, actor=None):
    return log_event(booking, 'Guest checked in', 'check_in', f'Checked in to room {room_number}',
                     old_value='confirmed', new_value='checked-in', actor=actor)


def log_check_out(booking, room_number, actor=None, metadata=None):
    return log_event(booking, 'Guest checked out', 'check_out',
                     f'Checked out of room {room_number}' if room_number else 'Checked out',
                     old_value='checked-in', new_value='checked-out', actor=actor, metadata=metadata)


def log_tentative_conversion(booking, actor=None):
    return log_event(booking, 'Tentative booking converted', 'conversion',
                     'Tentative hold converted to a confirmed booking',
                     old_value='tentative', new_value=booking.status, actor=actor)


def log_payment(booking, payment, actor=None):
    kind = 'Refund' if payment.is_refund else 'Payment'
    return log_event(booking, f'{kind} recorded', 'payment',
                     f'{kind} {payment.payment_reference} of {payment.total_amount:.2f} via {payment.payment_method}',
                     new_value=payment.payment_status, actor=actor,
                     metadata={'payment_id': payment.id, 'amount': payment.total_amount})


def booking_timeline(booking):
    return booking.timeline.all()
