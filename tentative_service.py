"""
Tentative bookings: rooms held for a limited time until the guest confirms.
"""
import logging
from datetime import datetime, timedelta

import booking_rules
from booking_rules import action_error_message
from errors import TransitionError, ValidationError
from extensions import db
from models import Booking, TentativeBookingLog
from parsing import parse_date, parse_int
from settings import get_int_setting
from email_service import send_booking_email
import timeline

logger = logging.getLogger(__name__)

DEFAULT_HOLD_HOURS = 48
EXPIRING_SOON_HOURS = 24


def log_action(booking, action, user=None, notes=None):
    entry = TentativeBookingLog(
        booking_id=booking.id,
        action=action,
        action_by=user.id if user else None,
        notes=notes,
    )
    db.session.add(entry)
    return entry


def make_tentative(booking, user, hours=None, now=None):
    now = now or datetime.utcnow()
    result = booking_rules.validate_tentative_transition(booking)
    if not result.allowed:
        raise TransitionError(action_error_message('make_tentative', result))

    hours = parse_int(hours, 'Hold period') or get_int_setting('tentative_hold_hours', DEFAULT_HOLD_HOURS)
    if hours <= 0:
        raise ValidationError('Hold period must be at least one hour.')

    old_status = booking.status
    booking.status = booking_rules.TENTATIVE
    booking.is_tentative = True
    booking.tentative_expires_at = now + timedelta(hours=hours)
    log_action(booking, 'created', user, f'Held for {hours} hours')
    timeline.log_status_change(booking, old_status, booking.status, user,
                               reason=f'Tentative hold until {booking.tentative_expires_at:%Y-%m-%d %H:%M} UTC')
    return booking


def can_convert(booking, now=None):
    """``(ok, reason)`` for converting a tentative booking"""
    now = now or datetime.utcnow()
    if booking is None:
        return False, 'Booking not found'
    if booking.status == booking_rules.CANCELLED:
        return False, 'This booking has been cancelled'
    if booking.status == booking_rules.EXPIRED:
        return False, 'This booking has expired'
    if not booking.is_tentative:
        if booking.tentative_expires_at is not None and booking.status in booking_rules.ACTIVE_STATUSES:
            return False, 'Booking has already been converted'
        return False, 'This is not a tentative booking'
    if booking.status != booking_rules.TENTATIVE:
        return False, 'This is not a tentative booking'
    if booking.tentative_expires_at is not None and booking.tentative_expires_at < now:
        return False, 'This booking has expired'
    return True, ''


def convert_to_confirmed(booking, user, now=None):
    ok, reason = can_convert(booking, now)
    if not ok:
        raise TransitionError(reason)

    booking.status = booking_rules.CONFIRMED
    booking.is_tentative = False
    log_action(booking, 'converted', user, 'Converted to confirmed booking')
    timeline.log_tentative_conversion(booking, user)

    sent, error = send_booking_email(booking, 'Booking confirmed',
                                     f'Booking Confirmed - {booking.booking_reference}',
                                     'email/tentative_converted.html')
    logger.info("[TENTATIVE] %s converted", booking.booking_reference)
    return {'message': f'Booking {booking.booking_reference} confirmed',
            'email_sent': sent, 'warnings': [] if sent else [f'Confirmation email failed: {error}']}


def cancel_tentative(booking, user, reason=None):
    if booking.status != booking_rules.TENTATIVE:
        raise TransitionError('Only tentative bookings can be cancelled here.')
    booking.status = booking_rules.CANCELLED
    booking.is_tentative = False
    booking.cancelled_at = datetime.utcnow()
    booking.cancellation_reason = (reason or '').strip() or 'Tentative hold cancelled'
    log_action(booking, 'cancelled', user, booking.cancellation_reason)
    timeline.log_cancellation(booking, booking.cancellation_reason, user)
    return booking


def mark_expired(booking, user=None):
    if booking.status != booking_rules.TENTATIVE:
        raise TransitionError('Only tentative bookings can expire.')
    booking.status = booking_rules.EXPIRED
    booking.is_tentative = False
    log_action(booking, 'expired', user, 'Tentative hold expired')
    timeline.log_status_change(booking, booking_rules.TENTATIVE, booking_rules.EXPIRED, user,
                               reason='Hold period elapsed')
    return booking


def expired_bookings(now=None):
    now = now or datetime.utcnow()
    return Booking.query.filter(
        Booking.status == booking_rules.TENTATIVE,
        Booking.tentative_expires_at.isnot(None),
        Booking.tentative_expires_at < now,
    ).order_by(Booking.tentative_expires_at).all()


def expire_overdue(now=None):
    expired = [mark_expired(b) for b in expired_bookings(now)]
    if expired:
        logger.info("[TENTATIVE] Expired %d bookings", len(expired))
    return expired


def expiring_soon(hours=EXPIRING_SOON_HOURS, now=None):
    now = now or datetime.utcnow()
    return Booking.query.filter(
        Booking.status == booking_rules.TENTATIVE,
        Booking.tentative_expires_at >= now,
        Booking.tentative_expires_at <= now + timedelta(hours=hours),
    ).order_by(Booking.tentative_expires_at).all()


def statistics(now=None):
    now = now or datetime.utcnow()
    tentative = Booking.query.filter(Booking.status == booking_rules.TENTATIVE)
    total = tentative.count()
    expired = tentative.filter(Booking.tentative_expires_at < now).count()
    soon = tentative.filter(Booking.tentative_expires_at >= now,
                            Booking.tentative_expires_at <= now + timedelta(hours=EXPIRING_SOON_HOURS)).count()
    converted = Booking.query.filter(
        Booking.is_tentative.is_(False),
        Booking.tentative_expires_at.isnot(None),
        Booking.status.in_(booking_rules.ACTIVE_STATUSES),
    ).count()
    return {
        'total': total,
        'expiring_soon': soon,
        'expired': expired,
        'converted': converted,
        'active': total - expired,
    }


def list_tentative(filters=None, now=None):
    filters = filters or {}
    now = now or datetime.utcnow()

    status = filters.get('status') or booking_rules.TENTATIVE
    if status == 'all':
        query = Booking.query.filter(Booking.tentative_expires_at.isnot(None))
    else:
        query = Booking.query.filter(Booking.status == status)

    if filters.get('room_id'):
        query = query.filter(Booking.room_id == parse_int(filters['room_id'], 'Room type'))

    expiration = filters.get('expiration_status')
    if expiration == 'expired':
        query = query.filter(Booking.tentative_expires_at < now)
    elif expiration == 'expiring_soon':
        query = query.filter(Booking.tentative_expires_at >= now,
                             Booking.tentative_expires_at <= now + timedelta(hours=EXPIRING_SOON_HOURS))
    elif expiration == 'active':
        query = query.filter(Booking.tentative_expires_at >= now)

    if filters.get('date_from'):
        query = query.filter(Booking.check_in_date >= parse_date(filters['date_from']))
    if filters.get('date_to'):
        query = query.filter(Booking.check_in_date <= parse_date(filters['date_to']))

    search = (filters.get('search') or '').strip()
    if search:
        like = f'%{search}%'
        query = query.filter(db.or_(Booking.guest_name.ilike(like),
                                 Booking.guest_email.ilike(like),
                                 Booking.booking_reference.ilike(like)))

    query = query.order_by(Booking.tentative_expires_at)
    limit = filters.get('limit')
    if limit:
        query = query.limit(parse_int(limit, 'Limit'))
    return query.all()


def send_reminder(booking, user=None):
    if booking.status != booking_rules.TENTATIVE:
        raise TransitionError('Reminders can only be sent for tentative bookings.')
    sent, error = send_booking_email(booking, 'Tentative reminder',
                                     f'Your reservation hold expires soon - {booking.booking_reference}',
                                     'email/tentative_reminder.html')
    if sent:
        log_action(booking, 'reminder_sent', user, f'Reminder sent to {booking.guest_email}')
    return sent, error
