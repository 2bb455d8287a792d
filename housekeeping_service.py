"""
Housekeeping assignments: CRUD with an audit trail, and reconciliation of
each room's housekeeping status with its open work.
"""
import logging
from datetime import date, datetime

from flask import has_request_context, request

from errors import ValidationError, TransitionError
from extensions import db
from parsing import parse_date, parse_int
from models import (AdminUser, Booking, HousekeepingAssignment, HousekeepingAuditLog,
                    IndividualRoom, RoomStatusLog)
from timeutils import hotel_today, utc_day_bounds

logger = logging.getLogger(__name__)

STATUSES = ['pending', 'in_progress', 'completed', 'verified', 'blocked']
OPEN_STATUSES = ['pending', 'in_progress', 'blocked']
DONE_STATUSES = ['completed', 'verified']
PRIORITIES = ['high', 'medium', 'low']
ASSIGNMENT_TYPES = ['checkout_cleanup', 'regular_cleaning', 'maintenance', 'deep_clean', 'turn_down']
RECURRING_PATTERNS = {'daily': 1, 'weekly': 7, 'monthly': 30}

_PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}
_STATUS_RANK = {'in_progress': 0, 'pending': 1, 'blocked': 2}

AUDITED_FIELDS = ['individual_room_id', 'status', 'priority', 'assignment_type', 'due_date',
                  'assigned_to', 'notes', 'is_recurring', 'recurring_pattern']


def open_assignments(room_id):
    """Open work for a room, most pressing first"""
    rows = HousekeepingAssignment.query.filter(
        HousekeepingAssignment.individual_room_id == room_id,
        HousekeepingAssignment.status.in_(OPEN_STATUSES),
    ).all()
    return sorted(rows, key=lambda a: (_PRIORITY_RANK.get(a.priority, 3),
                                       _STATUS_RANK.get(a.status, 3),
                                       a.due_date or date.max,
                                       a.id))


def has_open_assignment(room_id):
    return HousekeepingAssignment.query.filter(
        HousekeepingAssignment.individual_room_id == room_id,
        HousekeepingAssignment.status.in_(OPEN_STATUSES),
    ).count() > 0


def log_room_status(room, old_status, new_status, reason=None, user=None):
    entry = RoomStatusLog(
        individual_room_id=room.id,
        status_from=old_status,
        status_to=new_status,
        reason=reason,
        performed_by=user.id if user else None,
    )
    db.session.add(entry)
    return entry


def snapshot(assignment):
    values = {}
    for field in AUDITED_FIELDS:
        value = getattr(assignment, field)
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        values[field] = value
    return values


def audit(assignment_id, action, user=None, old_values=None, new_values=None):
    changed = None
    if old_values is not None and new_values is not None:
        changed = [f for f in AUDITED_FIELDS if old_values.get(f) != new_values.get(f)]
    entry = HousekeepingAuditLog(
        assignment_id=assignment_id,
        action=action,
        old_values=old_values,
        new_values=new_values,
        changed_fields=changed,
        performed_by=user.id if user else None,
        performed_by_name=user.display_name if user else 'System',
        ip_address=request.remote_addr if has_request_context() else None,
        user_agent=(request.headers.get('User-Agent') or '')[:500] if has_request_context() else None,
    )
    db.session.add(entry)
    return entry


def audit_log(assignment_id):
    return HousekeepingAuditLog.query.filter_by(assignment_id=assignment_id) \
        .order_by(HousekeepingAuditLog.created_at.desc(), HousekeepingAuditLog.id.desc()).all()


def _parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def _validate_choice(value, choices, label):
    if value not in choices:
        raise ValidationError(f'Invalid {label}: {value}')
    return value


def _require_active_room(room_id):
    room = db.session.get(IndividualRoom, room_id) if room_id else None
    if room is None or not room.is_active:
        raise ValidationError('Selected room does not exist or is inactive.')
    return room


def _require_active_assignee(user_id):
    if user_id is None:
        return None
    user = db.session.get(AdminUser, user_id)
    if user is None or not user.is_active:
        raise ValidationError('Selected staff member does not exist or is inactive.')
    return user


def reconcile_room(room, user=None):
    """Bring the room's housekeeping status in line with its open assignments"""
    pending_work = open_assignments(room.id)
    if pending_work:
        top = pending_work[0]
        room.housekeeping_status = top.status
        room.housekeeping_notes = top.notes
        if room.status == 'available':
            log_room_status(room, room.status, 'cleaning', 'Housekeeping assignment opened', user)
            room.status = 'cleaning'
    else:
        room.housekeeping_status = 'completed'
        room.housekeeping_notes = None
        if room.status == 'cleaning':
            log_room_status(room, room.status, 'available', 'All housekeeping assignments closed', user)
            room.status = 'available'
            room.last_cleaned_at = datetime.utcnow()
    return room


def create_assignment(data, user, today=None, reconcile=True):
    today = today or hotel_today()

    room = _require_active_room(parse_int(data.get('individual_room_id')))
    due_date = parse_date(data.get('due_date')) or today
    if due_date < today:
        raise ValidationError('Due date cannot be in the past.')

    status = _validate_choice(data.get('status') or 'pending', STATUSES, 'status')
    priority = _validate_choice(data.get('priority') or 'medium', PRIORITIES, 'priority')
    assignment_type = _validate_choice(data.get('assignment_type') or 'regular_cleaning',
                                       ASSIGNMENT_TYPES, 'assignment type')
    assignee = _require_active_assignee(parse_int(data.get('assigned_to')))

    is_recurring = _parse_bool(data.get('is_recurring', False))
    pattern = data.get('recurring_pattern') or None
    if is_recurring:
        _validate_choice(pattern, RECURRING_PATTERNS, 'recurring pattern')
    else:
        pattern = None

    assignment = HousekeepingAssignment(
        individual_room_id=room.id,
        status=status,
        priority=priority,
        assignment_type=assignment_type,
        due_date=due_date,
        assigned_to=assignee.id if assignee else None,
        created_by=user.id if user else None,
        notes=(data.get('notes') or '').strip() or None,
        is_recurring=is_recurring,
        recurring_pattern=pattern,
        auto_created=_parse_bool(data.get('auto_created', False)),
        linked_booking_id=parse_int(data.get('linked_booking_id')),
    )
    if status in DONE_STATUSES:
        assignment.completed_at = datetime.utcnow()
    db.session.add(assignment)
    db.session.flush()

    audit(assignment.id, 'created', user, new_values=snapshot(assignment))
    if reconcile:
        reconcile_room(room, user)
    logger.info("[HOUSEKEEPING] Assignment %s created for room %s", assignment.id, room.room_number)
    return assignment


def _audit_action(old, new):
    if old['status'] != new['status']:
        return 'status_changed'
    if old['assigned_to'] != new['assigned_to']:
        return 'assigned' if new['assigned_to'] else 'unassigned'
    if old['priority'] != new['priority']:
        return 'priority_changed'
    changed = [f for f in AUDITED_FIELDS if old[f] != new[f]]
    if changed == ['notes']:
        return 'notes_updated'
    return 'updated'


def update_assignment(assignment, data, user, today=None):
    today = today or hotel_today()
    old_values = snapshot(assignment)
    old_room = assignment.room

    if 'individual_room_id' in data:
        assignment.individual_room_id = _require_active_room(parse_int(data['individual_room_id'])).id
    if 'status' in data:
        assignment.status = _validate_choice(data['status'], STATUSES, 'status')
    if 'priority' in data:
        assignment.priority = _validate_choice(data['priority'], PRIORITIES, 'priority')
    if 'assignment_type' in data:
        assignment.assignment_type = _validate_choice(data['assignment_type'], ASSIGNMENT_TYPES, 'assignment type')
    if 'due_date' in data:
        due_date = parse_date(data['due_date'])
        if due_date is None:
            raise ValidationError('Due date is required.')
        if due_date != assignment.due_date and due_date < today:
            raise ValidationError('Due date cannot be in the past.')
        assignment.due_date = due_date
    if 'assigned_to' in data:
        assignee = _require_active_assignee(parse_int(data['assigned_to']))
        assignment.assigned_to = assignee.id if assignee else None
    if 'notes' in data:
        assignment.notes = (data['notes'] or '').strip() or None
    if 'is_recurring' in data:
        assignment.is_recurring = _parse_bool(data['is_recurring'])
    if 'recurring_pattern' in data or 'is_recurring' in data:
        pattern = data.get('recurring_pattern', assignment.recurring_pattern) or None
        if assignment.is_recurring:
            _validate_choice(pattern, RECURRING_PATTERNS, 'recurring pattern')
        assignment.recurring_pattern = pattern if assignment.is_recurring else None

    if assignment.status in DONE_STATUSES:
        if assignment.completed_at is None:
            assignment.completed_at = datetime.utcnow()
    else:
        assignment.completed_at = None
    if assignment.status == 'verified' and old_values['status'] != 'verified':
        assignment.verified_by = user.id if user else None
        assignment.verified_at = datetime.utcnow()

    new_values = snapshot(assignment)
    if new_values == old_values:
        return assignment

    audit(assignment.id, _audit_action(old_values, new_values), user, old_values, new_values)
    db.session.flush()
    reconcile_room(db.session.get(IndividualRoom, assignment.individual_room_id), user)
    if old_room is not None and old_room.id != assignment.individual_room_id:
        reconcile_room(old_room, user)
    return assignment


def delete_assignment(assignment, user):
    room = assignment.room
    audit(assignment.id, 'deleted', user, old_values=snapshot(assignment))
    db.session.delete(assignment)
    db.session.flush()
    if room is not None:
        reconcile_room(room, user)


def verify_assignment(assignment, user):
    if assignment.status != 'completed':
        raise TransitionError('Only completed assignments can be verified.')
    old_values = snapshot(assignment)
    assignment.status = 'verified'
    assignment.verified_by = user.id if user else None
    assignment.verified_at = datetime.utcnow()
    audit(assignment.id, 'verified', user, old_values, snapshot(assignment))
    return assignment


def auto_create_checkout_assignments(user=None, today=None):
    """Checkout cleanups for departed or departing guests whose room has no open work"""
    today = today or hotel_today()
    bookings = Booking.query.filter(
        Booking.status.in_(['checked-out', 'checked-in']),
        Booking.check_out_date <= today,
        Booking.individual_room_id.isnot(None),
    ).order_by(Booking.check_out_date).all()

    created = []
    seen_rooms = set()
    for booking in bookings:
        room_id = booking.individual_room_id
        if room_id in seen_rooms or has_open_assignment(room_id):
            continue
        already_linked = HousekeepingAssignment.query.filter_by(
            linked_booking_id=booking.id, assignment_type='checkout_cleanup').count()
        if already_linked:
            continue
        room = db.session.get(IndividualRoom, room_id)
        if room is None or not room.is_active:
            continue
        assignment = create_assignment({
            'individual_room_id': room_id,
            'assignment_type': 'checkout_cleanup',
            'priority': 'high',
            'due_date': today,
            'notes': f'Checkout cleanup after {booking.guest_name} ({booking.booking_reference})',
            'auto_created': True,
            'linked_booking_id': booking.id,
        }, user, today=today)
        seen_rooms.add(room_id)
        created.append(assignment)
    logger.info("[HOUSEKEEPING] Auto-created %d checkout assignments", len(created))
    return created


def bulk_assign_occupied(assignee_id, user, today=None):
    today = today or hotel_today()
    assignee = _require_active_assignee(parse_int(assignee_id))
    rooms = IndividualRoom.query.filter_by(status='occupied', is_active=True) \
        .order_by(IndividualRoom.room_number).all()

    created, skipped = [], []
    for room in rooms:
        if has_open_assignment(room.id):
            skipped.append(room.room_number)
            continue
        created.append(create_assignment({
            'individual_room_id': room.id,
            'assignment_type': 'regular_cleaning',
            'priority': 'medium',
            'due_date': today,
            'assigned_to': assignee.id if assignee else None,
            'notes': 'Daily service for occupied room',
        }, user, today=today, reconcile=False))
        room.housekeeping_status = 'pending'
    return created, skipped


def create_recurring_assignments(user=None, today=None):
    """Spawn the next instance of each finished recurring assignment whose interval has elapsed"""
    today = today or hotel_today()
    recurring = HousekeepingAssignment.query.filter(
        HousekeepingAssignment.is_recurring.is_(True),
        HousekeepingAssignment.recurring_pattern.isnot(None),
    ).order_by(HousekeepingAssignment.due_date.desc(), HousekeepingAssignment.id.desc()).all()

    latest = {}
    for assignment in recurring:
        key = (assignment.individual_room_id, assignment.assignment_type, assignment.recurring_pattern)
        latest.setdefault(key, assignment)

    created = []
    for (room_id, assignment_type, pattern), template in latest.items():
        if template.status not in DONE_STATUSES:
            continue
        interval = RECURRING_PATTERNS.get(pattern)
        if interval is None or (today - template.due_date).days < interval:
            continue
        room = db.session.get(IndividualRoom, room_id)
        if room is None or not room.is_active:
            continue

        next_assignment = HousekeepingAssignment(
            individual_room_id=room_id,
            status='pending',
            priority=template.priority,
            assignment_type=assignment_type,
            due_date=today,
            assigned_to=template.assigned_to,
            created_by=user.id if user else template.created_by,
            notes=template.notes,
            is_recurring=True,
            recurring_pattern=pattern,
            auto_created=True,
        )
        db.session.add(next_assignment)
        db.session.flush()
        audit(next_assignment.id, 'recurring_created', user, new_values=snapshot(next_assignment))
        reconcile_room(room, user)
        created.append(next_assignment)

    logger.info("[HOUSEKEEPING] Created %d recurring assignments", len(created))
    return created


def get_occupied_rooms(today=None):
    today = today or hotel_today()
    bookings = Booking.query.filter(
        Booking.status == 'checked-in',
        Booking.individual_room_id.isnot(None),
    ).order_by(Booking.check_out_date).all()

    rooms = []
    for booking in bookings:
        if booking.check_out_date == today:
            occupancy = 'checkout_today'
        elif booking.check_out_date < today:
            occupancy = 'overdue_checkout'
        else:
            occupancy = 'occupied'
        rooms.append({
            'room': booking.individual_room,
            'booking': booking,
            'occupancy_status': occupancy,
            'has_open_assignment': has_open_assignment(booking.individual_room_id),
        })
    return rooms


def staff_workload(today=None):
    today = today or hotel_today()
    day_start, day_end = utc_day_bounds(today)

    workload = []
    for staff in AdminUser.query.filter_by(is_active=True).order_by(AdminUser.username).all():
        tasks = HousekeepingAssignment.query.filter_by(assigned_to=staff.id)
        workload.append({
            'user_id': staff.id,
            'name': staff.display_name,
            'active_tasks': tasks.filter(HousekeepingAssignment.status.in_(['pending', 'in_progress'])).count(),
            'high_priority_pending': tasks.filter(HousekeepingAssignment.status == 'pending',
                                                  HousekeepingAssignment.priority == 'high').count(),
            'completed_today': tasks.filter(HousekeepingAssignment.completed_at >= day_start,
                                            HousekeepingAssignment.completed_at < day_end).count(),
        })
    return workload


def list_assignments(filters=None):
    filters = filters or {}
    query = HousekeepingAssignment.query
    if filters.get('status'):
        query = query.filter(HousekeepingAssignment.status == filters['status'])
    if filters.get('priority'):
        query = query.filter(HousekeepingAssignment.priority == filters['priority'])
    if filters.get('assignment_type'):
        query = query.filter(HousekeepingAssignment.assignment_type == filters['assignment_type'])
    if filters.get('assigned_to'):
        query = query.filter(HousekeepingAssignment.assigned_to == parse_int(filters['assigned_to']))
    if filters.get('room_id'):
        query = query.filter(HousekeepingAssignment.individual_room_id == parse_int(filters['room_id']))
    if filters.get('due_date'):
        query = query.filter(HousekeepingAssignment.due_date == parse_date(filters['due_date']))
    rows = query.order_by(HousekeepingAssignment.due_date, HousekeepingAssignment.id).all()
    return sorted(rows, key=lambda a: (a.status in DONE_STATUSES, a.due_date,
                                       _PRIORITY_RANK.get(a.priority, 3)))
