"""
Room status machine and the front-desk workflows built on it.

Every status change is written to the room log and triggers the matching
housekeeping workflow (turnover cleaning, inspection, blocking work during
maintenance). Functions here add and flush but leave the commit to the caller.
"""
import logging
from datetime import datetime, timedelta

import booking_rules
from booking_rules import RuleResult, action_error_message
from errors import ValidationError, TransitionError
from extensions import db
from housekeeping_service import open_assignments, log_room_status, audit, snapshot
from models import Booking, HousekeepingAssignment, IndividualRoom, RoomInspection
from settings import get_bool_setting
from timeutils import hotel_today
from email_service import send_booking_email
from invoice_service import generate_and_send_final_invoice
from parsing import parse_date
import payment_service
import timeline

logger = logging.getLogger(__name__)

ROOM_STATUSES = ['available', 'occupied', 'cleaning', 'inspection', 'maintenance', 'out_of_order']

ROOM_TRANSITIONS = {
    'available': ['occupied', 'maintenance', 'out_of_order'],
    'occupied': ['cleaning', 'maintenance', 'out_of_order'],
    'cleaning': ['inspection', 'available', 'maintenance', 'out_of_order'],
    'inspection': ['available', 'cleaning', 'maintenance', 'out_of_order'],
    'maintenance': ['cleaning', 'available', 'out_of_order'],
    'out_of_order': ['maintenance', 'cleaning', 'available'],
}

STALE_CLEANING_HOURS = 4


def validate_room_transition(current, new):
    if new not in ROOM_STATUSES:
        return RuleResult(False, 'status', f'Invalid room status: {new}')
    if current == new:
        return RuleResult(False, 'same', 'Room is already in this status')
    if new not in ROOM_TRANSITIONS.get(current, []):
        return RuleResult(False, 'status', f"Cannot change room from '{current}' to '{new}'")
    return booking_rules.ALLOWED


def _append_note(existing, note):
    return f'{existing}\n{note}' if existing else note


def ensure_turnover_assignment(room, user=None, urgent=False, notes=None, booking=None, today=None):
    """Open a turnover cleaning task unless the room already has open work.

    Returns ``(assignment, created)``.
    """
    existing = open_assignments(room.id)
    if existing:
        return existing[0], False

    parts = ['Room turnover cleaning']
    if room.notes:
        parts.append(room.notes)
    if notes:
        parts.append(notes)
    assignment_notes = ' | '.join(parts)

    assignment = HousekeepingAssignment(
        individual_room_id=room.id,
        status='pending',
        priority='high' if urgent else 'medium',
        assignment_type='checkout_cleanup' if booking else 'regular_cleaning',
        due_date=today or hotel_today(),
        created_by=user.id if user else None,
        notes=assignment_notes,
        auto_created=True,
        linked_booking_id=booking.id if booking else None,
    )
    db.session.add(assignment)
    db.session.flush()
    audit(assignment.id, 'created', user, new_values=snapshot(assignment))

    room.housekeeping_status = 'pending'
    room.housekeeping_notes = assignment_notes
    logger.info("[ROOMS] Turnover assignment %s opened for room %s", assignment.id, room.room_number)
    return assignment, True


def _close_open_work(room, user, statuses=('pending', 'in_progress')):
    closed = []
    for assignment in open_assignments(room.id):
        if assignment.status not in statuses:
            continue
        old_values = snapshot(assignment)
        assignment.status = 'completed'
        assignment.completed_at = datetime.utcnow()
        audit(assignment.id, 'status_changed', user, old_values, snapshot(assignment))
        closed.append(assignment)
    return closed


def _pending_inspection(room):
    return RoomInspection.query.filter_by(individual_room_id=room.id, status='pending') \
        .order_by(RoomInspection.created_at.desc()).first()


def complete_turnover(room, user=None, notes=None):
    _close_open_work(room, user)
    inspection = _pending_inspection(room)
    if inspection is not None:
        inspection.status = 'passed'
        inspection.inspected_by = user.id if user else None
        inspection.inspected_at = datetime.utcnow()
        if notes:
            inspection.notes = notes
    room.housekeeping_status = 'completed'
    room.housekeeping_notes = None
    room.last_cleaned_at = datetime.utcnow()


def _start_inspection(room, booking=None):
    inspection = _pending_inspection(room)
    if inspection is None:
        inspection = RoomInspection(individual_room_id=room.id, status='pending',
                                    booking_id=booking.id if booking else None)
        db.session.add(inspection)
    return inspection


def _block_open_work(room, new_status, reason):
    label = new_status.replace('_', ' ')
    note = f'[Blocked] Room moved to {label}' + (f': {reason}' if reason else '')
    for assignment in open_assignments(room.id):
        if assignment.status in ('pending', 'in_progress'):
            assignment.status = 'blocked'
            assignment.notes = _append_note(assignment.notes, note)
    room.housekeeping_status = 'blocked'


def update_room_status(room, new_status, reason=None, user=None, force=False,
                       urgent=False, notes=None, booking=None):
    """Move a room to ``new_status`` and run the workflow for it.

    ``force`` skips transition checks; checkout and check-in use it.
    """
    if new_status not in ROOM_STATUSES:
        raise ValidationError(f'Invalid room status: {new_status}')
    if not force:
        result = validate_room_transition(room.status, new_status)
        if not result.allowed:
            raise TransitionError(result.reason)

    old_status = room.status
    room.status = new_status
    room.updated_at = datetime.utcnow()
    log_room_status(room, old_status, new_status, reason, user)

    outcome = {'old_status': old_status, 'new_status': new_status,
               'assignment': None, 'housekeeping_created': False, 'inspection': None}

    if new_status == 'cleaning':
        assignment, created = ensure_turnover_assignment(room, user, urgent=urgent, notes=notes, booking=booking)
        outcome['assignment'] = assignment
        outcome['housekeeping_created'] = created
    elif new_status == 'inspection':
        outcome['inspection'] = _start_inspection(room, booking)
        room.housekeeping_status = 'completed'
    elif new_status == 'available':
        complete_turnover(room, user)
    elif new_status in ('maintenance', 'out_of_order'):
        _block_open_work(room, new_status, reason)

    db.session.flush()
    logger.info("[ROOMS] Room %s: %s -> %s%s", room.room_number, old_status, new_status,
                ' (forced)' if force else '')
    return outcome


def restore_availability(booking):
    room_type = booking.room_type
    if room_type is not None and room_type.rooms_available < room_type.total_rooms:
        room_type.rooms_available += 1


def _require_rule(action, result):
    if not result.allowed:
        raise TransitionError(action_error_message(action, result))


def _conditional_status_update(booking, expected, values):
    """Status change that fails if someone else moved the booking first"""
    updated = Booking.query.filter_by(id=booking.id, status=expected) \
        .update(values, synchronize_session='fetch')
    if not updated:
        raise TransitionError('This booking was changed by someone else. Reload and try again.', 409)


def _notify_guest(booking, email_type, subject, status_label, warnings, **context):
    """Status mail to the guest; a failure becomes a warning, never an error"""
    sent, error = send_booking_email(booking, email_type, subject, 'email/booking_status.html',
                                     status_label=status_label, **context)
    if not sent:
        warnings.append(f'{email_type} email could not be sent: {error}')
    return sent


def check_in_guest(booking, user, today=None):
    today = today or hotel_today()
    _require_rule('check_in', booking_rules.validate_check_in(booking, today))

    _conditional_status_update(booking, booking_rules.CONFIRMED, {
        'status': booking_rules.CHECKED_IN,
        'checked_in_at': datetime.utcnow(),
    })

    room = booking.individual_room
    update_room_status(room, 'occupied', f'Guest check-in: {booking.booking_reference}', user,
                       force=True, booking=booking)
    timeline.log_check_in(booking, room.room_number, user)

    warnings = []
    sent = _notify_guest(booking, 'Check-in', f'Welcome - Booking {booking.booking_reference}',
                         'Checked In', warnings, room=room)
    logger.info("[FRONT_DESK] %s checked in to room %s", booking.booking_reference, room.room_number)
    return {
        'message': f'{booking.guest_name} checked in to room {room.room_number}',
        'room_number': room.room_number,
        'email_sent': sent,
        'warnings': warnings,
    }


def cancel_check_in(booking, user):
    result = booking_rules.validate_status_transition(booking.status, booking_rules.CONFIRMED)
    if booking.status != booking_rules.CHECKED_IN or not result.allowed:
        raise TransitionError('Only checked-in bookings can have their check-in cancelled.')

    _conditional_status_update(booking, booking_rules.CHECKED_IN, {
        'status': booking_rules.CONFIRMED,
        'checked_in_at': None,
    })
    room = booking.individual_room
    if room is not None and room.status == 'occupied':
        update_room_status(room, 'available', f'Check-in cancelled: {booking.booking_reference}', user, force=True)
    timeline.log_status_change(booking, booking_rules.CHECKED_IN, booking_rules.CONFIRMED, user,
                               reason='Check-in cancelled')

    warnings = []
    sent = _notify_guest(booking, 'Check-in cancelled', f'Check-in Cancelled - {booking.booking_reference}',
                         'Confirmed', warnings, room=room)
    return {'message': 'Check-in cancelled', 'room_number': room.room_number if room else None,
            'email_sent': sent, 'warnings': warnings}


def process_guest_checkout(booking, user, next_status='cleaning', urgent_cleaning=False, today=None):
    """Check the guest out, turn the room over and send the final invoice"""
    today = today or hotel_today()
    if next_status not in ROOM_STATUSES or next_status == 'occupied':
        raise ValidationError(f'Invalid room status after checkout: {next_status}')
    _require_rule('check_out', booking_rules.validate_check_out(booking, today))

    _conditional_status_update(booking, booking_rules.CHECKED_IN, {
        'status': booking_rules.CHECKED_OUT,
        'checkout_completed_at': datetime.utcnow(),
        'checkout_processed_by': user.id if user else None,
    })
    restore_availability(booking)

    warnings = []
    room = booking.individual_room
    room_status = None
    housekeeping_created = False
    if room is not None:
        turnover_note = f'Turnover after {booking.guest_name} checkout'
        outcome = update_room_status(room, next_status, f'Guest checkout: {booking.booking_reference}', user,
                                     force=True, urgent=urgent_cleaning, notes=turnover_note, booking=booking)
        housekeeping_created = outcome['housekeeping_created']
        room_status = room.status
    else:
        warnings.append('No room was assigned; room status not updated.')

    timeline.log_check_out(booking, room.room_number if room else None, user,
                           metadata={'next_room_status': room_status, 'urgent_cleaning': urgent_cleaning})

    invoice = None
    try:
        invoice = generate_and_send_final_invoice(booking, user)
        if not invoice.get('success'):
            warnings.append(invoice.get('message') or 'Final invoice could not be generated.')
        elif not invoice.get('idempotent') and not invoice.get('email_sent'):
            warnings.append(f"Final invoice email failed: {invoice.get('email_error')}")
    except OSError as e:
        logger.error("[CHECKOUT] Final invoice for %s failed: %s", booking.booking_reference, e)
        warnings.append(f'Final invoice could not be generated: {e}')

    checkout_sent = _notify_guest(booking, 'Check-out', f'Thank you for staying - Booking {booking.booking_reference}',
                                  'Checked Out', warnings, room=room)

    logger.info("[CHECKOUT] %s checked out (room %s -> %s)", booking.booking_reference,
                room.room_number if room else '-', room_status)
    message = f'{booking.guest_name} checked out successfully'
    if room is not None:
        message += f'; room {room.room_number} set to {room_status}'
    return {
        'message': message,
        'room_number': room.room_number if room else None,
        'room_status': room_status,
        'housekeeping_created': housekeeping_created,
        'invoice': invoice,
        'email_sent': checkout_sent,
        'warnings': warnings,
    }


def mark_room_clean(room, user, require_inspection=None):
    if require_inspection is None:
        require_inspection = get_bool_setting('room_inspection_required', True)
    target = 'inspection' if require_inspection else 'available'
    result = validate_room_transition(room.status, target)
    if not result.allowed:
        raise TransitionError(result.reason)

    _close_open_work(room, user)
    update_room_status(room, target, 'Cleaning completed', user)
    return {'message': f'Room {room.room_number} marked clean', 'room_status': room.status}


def pass_inspection(room, user, notes=None):
    if room.status != 'inspection':
        raise TransitionError('Room is not awaiting inspection.')
    inspection = _pending_inspection(room)
    if inspection is not None and notes:
        inspection.notes = notes
    update_room_status(room, 'available', 'Inspection passed', user)
    return {'message': f'Room {room.room_number} passed inspection', 'room_status': room.status}


def fail_inspection(room, reason, user):
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A reason is required when failing an inspection.')
    if room.status != 'inspection':
        raise TransitionError('Room is not awaiting inspection.')

    inspection = _pending_inspection(room)
    if inspection is not None:
        inspection.status = 'failed'
        inspection.inspected_by = user.id if user else None
        inspection.inspected_at = datetime.utcnow()
        inspection.notes = reason
    outcome = update_room_status(room, 'cleaning', f'Inspection failed: {reason}', user,
                                 urgent=True, notes=f'Re-clean required: {reason}')
    return {'message': f'Room {room.room_number} sent back for cleaning',
            'room_status': room.status, 'assignment': outcome['assignment']}


def _release_room(booking):
    room = booking.individual_room
    booking.individual_room_id = None
    return room


def cancel_booking(booking, reason, user):
    _require_rule('cancel', booking_rules.validate_cancellation(booking))
    old_status = booking.status

    booking.status = booking_rules.CANCELLED
    booking.cancelled_at = datetime.utcnow()
    booking.cancellation_reason = (reason or '').strip() or None
    booking.is_tentative = False

    released = None
    if old_status == booking_rules.CONFIRMED:
        restore_availability(booking)
        released = _release_room(booking)

    timeline.log_cancellation(booking, booking.cancellation_reason, user)
    send_booking_email(booking, 'Cancellation', f'Booking Cancelled - {booking.booking_reference}',
                       'email/booking_status.html', status_label='Cancelled',
                       reason=booking.cancellation_reason)
    logger.info("[FRONT_DESK] %s cancelled (was %s)", booking.booking_reference, old_status)
    return {'message': f'Booking {booking.booking_reference} cancelled',
            'released_room': released.room_number if released else None}


def mark_no_show(booking, user):
    result = booking_rules.validate_status_transition(booking.status, booking_rules.NO_SHOW)
    if booking.status != booking_rules.CONFIRMED or not result.allowed:
        raise TransitionError('Only confirmed bookings can be marked as no-show.')

    booking.status = booking_rules.NO_SHOW
    restore_availability(booking)
    released = _release_room(booking)
    timeline.log_status_change(booking, booking_rules.CONFIRMED, booking_rules.NO_SHOW, user,
                               reason='Guest did not arrive')
    return {'message': f'Booking {booking.booking_reference} marked as no-show',
            'released_room': released.room_number if released else None}


def room_is_free(room, check_in_date, check_out_date, exclude_booking_id=None):
    query = Booking.query.filter(
        Booking.individual_room_id == room.id,
        Booking.status.in_(booking_rules.blocking_statuses(for_individual_room=True)),
        Booking.check_in_date < check_out_date,
        Booking.check_out_date > check_in_date,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.count() == 0


def assign_room(booking, room, user):
    _require_rule('assign_room', booking_rules.validate_room_assignment(booking))
    if room is None or not room.is_active:
        raise ValidationError('Selected room does not exist or is inactive.')
    if room.room_type_id != booking.room_id:
        raise ValidationError(f'Room {room.room_number} is not a {booking.room_type.name} room.')
    if room.status in ('maintenance', 'out_of_order'):
        raise ValidationError(f'Room {room.room_number} is out of service.')
    if not room_is_free(room, booking.check_in_date, booking.check_out_date, exclude_booking_id=booking.id):
        raise ValidationError(f'Room {room.room_number} is already booked for overlapping dates.')

    previous = booking.individual_room
    booking.individual_room_id = room.id
    timeline.log_event(booking, 'Room assigned', 'room_assignment', f'Room {room.room_number} assigned',
                       old_value=previous.room_number if previous else None,
                       new_value=room.room_number, actor=user)
    return {'message': f'Room {room.room_number} assigned to {booking.booking_reference}'}


def find_free_room(booking):
    rooms = IndividualRoom.query.filter(
        IndividualRoom.room_type_id == booking.room_id,
        IndividualRoom.is_active.is_(True),
        IndividualRoom.status.notin_(['maintenance', 'out_of_order']),
    ).order_by(IndividualRoom.floor, IndividualRoom.room_number).all()
    for room in rooms:
        if room_is_free(room, booking.check_in_date, booking.check_out_date, exclude_booking_id=booking.id):
            return room
    return None


def reserve_availability(booking):
    room_type = booking.room_type
    if room_type is not None and room_type.rooms_available > 0:
        room_type.rooms_available -= 1


def confirm_booking(booking, user):
    """Pending -> confirmed: take a unit from the pool, pick a room and tell the guest"""
    if booking.status != booking_rules.PENDING:
        raise TransitionError(f'Only pending bookings can be confirmed (current: {booking.status}).')
    room_type = booking.room_type
    if room_type is None or room_type.rooms_available <= 0:
        _require_rule('confirm', RuleResult(False, 'availability', 'No rooms available'))

    _conditional_status_update(booking, booking_rules.PENDING, {'status': booking_rules.CONFIRMED})
    reserve_availability(booking)
    timeline.log_status_change(booking, booking_rules.PENDING, booking_rules.CONFIRMED, user)

    warnings = []
    room = booking.individual_room
    if room is None:
        room = find_free_room(booking)
        if room is not None:
            booking.individual_room_id = room.id
            timeline.log_event(booking, 'Room assigned', 'room_assignment',
                               f'Room {room.room_number} auto-assigned on confirmation',
                               new_value=room.room_number, actor=user)
        else:
            warnings.append('No free room to assign; assign one before check-in.')

    sent = _notify_guest(booking, 'Booking confirmed', f'Booking Confirmed - {booking.booking_reference}',
                         'Confirmed', warnings, room=room)
    logger.info("[FRONT_DESK] %s confirmed%s", booking.booking_reference,
                f' in room {room.room_number}' if room else '')
    return {
        'message': f'Booking {booking.booking_reference} confirmed',
        'room_number': room.room_number if room else None,
        'email_sent': sent,
        'warnings': warnings,
    }


AMENDABLE_STATUSES = [booking_rules.PENDING, booking_rules.TENTATIVE, booking_rules.CONFIRMED,
                      booking_rules.CHECKED_IN]


def amend_dates(booking, check_in_date, check_out_date, user):
    """Change the stay dates, re-price the stay and re-derive the balance.

    A checked-in guest keeps the arrival date; only the departure moves.
    """
    if booking.status not in AMENDABLE_STATUSES:
        raise TransitionError(f'Dates cannot be changed on a {booking.status} booking.')
    new_in = parse_date(check_in_date) or booking.check_in_date
    new_out = parse_date(check_out_date)
    if new_out is None:
        raise ValidationError('Check-out date is required.')
    if new_out <= new_in:
        raise ValidationError('Check-out date must be after check-in date.')
    if booking.status == booking_rules.CHECKED_IN and new_in != booking.check_in_date:
        raise ValidationError('The check-in date cannot change once the guest has checked in.')
    if new_in == booking.check_in_date and new_out == booking.check_out_date:
        raise ValidationError('The new dates are the same as the current ones.')

    room = booking.individual_room
    if room is not None and not room_is_free(room, new_in, new_out, exclude_booking_id=booking.id):
        raise ValidationError(f'Room {room.room_number} is already booked for overlapping dates.')

    old_in, old_out, old_nights = booking.check_in_date, booking.check_out_date, booking.nights
    nightly = (booking.total_amount or 0.0) / old_nights if old_nights > 0 else 0.0
    booking.check_in_date = new_in
    booking.check_out_date = new_out
    booking.total_amount = round(nightly * booking.nights, 2)
    payment_service.apply_booking_vat(booking)
    payment_service.recalculate_booking_payments(booking)

    timeline.log_event(booking, 'Dates amended', 'modification',
                       f'{old_in:%d %b %Y} - {old_out:%d %b %Y} changed to {new_in:%d %b %Y} - {new_out:%d %b %Y}',
                       old_value=f'{old_in.isoformat()}/{old_out.isoformat()}',
                       new_value=f'{new_in.isoformat()}/{new_out.isoformat()}', actor=user)

    warnings = []
    sent = _notify_guest(booking, 'Booking modified', f'Booking Updated - {booking.booking_reference}',
                         'Updated', warnings, room=room)
    logger.info("[FRONT_DESK] %s dates amended to %s - %s", booking.booking_reference, new_in, new_out)
    return {
        'message': f'Booking {booking.booking_reference} now runs {new_in:%d %b} to {new_out:%d %b %Y}',
        'total_amount': booking.total_amount,
        'nights': booking.nights,
        'email_sent': sent,
        'warnings': warnings,
    }


def auto_release_stale_cleaning_rooms(hours=STALE_CLEANING_HOURS, now=None):
    """Rooms left in cleaning with nobody working on them go back to available"""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=hours)
    stale = IndividualRoom.query.filter(
        IndividualRoom.status == 'cleaning',
        IndividualRoom.is_active.is_(True),
        IndividualRoom.updated_at < cutoff,
    ).all()

    released = []
    for room in stale:
        if any(a.status in ('pending', 'in_progress') for a in open_assignments(room.id)):
            continue
        update_room_status(room, 'available', f'Auto-released after {hours} hours in cleaning', force=True)
        released.append(room.room_number)
    if released:
        logger.info("[ROOMS] Auto-released rooms: %s", ', '.join(released))
    return released


def dashboard_summary(today=None):
    today = today or hotel_today()
    rooms = IndividualRoom.query.filter_by(is_active=True).order_by(IndividualRoom.room_number).all()
    counts = {status: 0 for status in ROOM_STATUSES}
    for room in rooms:
        counts[room.status] = counts.get(room.status, 0) + 1

    total = len(rooms)
    occupancy_rate = round(counts['occupied'] / total * 100, 1) if total else 0.0

    checkouts_today = Booking.query.filter(
        Booking.status == booking_rules.CHECKED_IN,
        Booking.check_out_date == today,
    ).order_by(Booking.guest_name).all()
    checkins_today = Booking.query.filter(
        Booking.status == booking_rules.CONFIRMED,
        Booking.check_in_date == today,
    ).order_by(Booking.guest_name).all()

    return {
        'date': today,
        'status_counts': counts,
        'total_rooms': total,
        'available_now': counts['available'],
        'occupancy_rate': occupancy_rate,
        'cleaning_queue': [r for r in rooms if r.status == 'cleaning'],
        'inspection_queue': [r for r in rooms if r.status == 'inspection'],
        'checkouts_today': checkouts_today,
        'checkins_today': checkins_today,
    }
