from datetime import timedelta

import pytest

import housekeeping_service as hk
from errors import TransitionError, ValidationError
from models import HousekeepingAssignment, HousekeepingAuditLog


def _create(room, user, **data):
    payload = {'individual_room_id': room.id}
    payload.update(data)
    return hk.create_assignment(payload, user)


def test_create_assignment_moves_available_room_to_cleaning(room, admin, today):
    assignment = _create(room, admin, priority='high', notes='Spill on carpet')
    assert assignment.status == 'pending'
    assert assignment.due_date == today
    assert room.status == 'cleaning'
    assert room.housekeeping_status == 'pending'
    assert room.housekeeping_notes == 'Spill on carpet'
    entry = HousekeepingAuditLog.query.filter_by(assignment_id=assignment.id).one()
    assert entry.action == 'created'
    assert entry.performed_by_name == admin.display_name


def test_create_assignment_validation(room, admin, today, make_user):
    with pytest.raises(ValidationError, match='does not exist or is inactive'):
        hk.create_assignment({'individual_room_id': 999}, admin)
    with pytest.raises(ValidationError, match='cannot be in the past'):
        _create(room, admin, due_date=(today - timedelta(days=1)).isoformat())
    with pytest.raises(ValidationError, match='Invalid priority'):
        _create(room, admin, priority='urgent')

    away = make_user('away', role='housekeeping', is_active=False)
    with pytest.raises(ValidationError, match='staff member does not exist or is inactive'):
        _create(room, admin, assigned_to=away.id)


def test_open_assignments_sorted_by_priority_then_status(room, admin):
    low = _create(room, admin, priority='low')
    high_pending = _create(room, admin, priority='high')
    high_started = _create(room, admin, priority='high', status='in_progress')
    assert hk.open_assignments(room.id) == [high_started, high_pending, low]


def test_completing_last_assignment_releases_room(room, admin):
    assignment = _create(room, admin)
    hk.update_assignment(assignment, {'status': 'completed'}, admin)

    assert assignment.completed_at is not None
    assert room.status == 'available'
    assert room.housekeeping_status == 'completed'
    assert room.last_cleaned_at is not None
    actions = [entry.action for entry in hk.audit_log(assignment.id)]
    assert actions[0] == 'status_changed'


def test_update_audit_actions(room, admin, make_user):
    maid = make_user('maid', role='housekeeping')
    assignment = _create(room, admin)

    hk.update_assignment(assignment, {'assigned_to': maid.id}, admin)
    hk.update_assignment(assignment, {'priority': 'high'}, admin)
    hk.update_assignment(assignment, {'notes': 'Extra towels'}, admin)
    hk.update_assignment(assignment, {'assigned_to': ''}, admin)

    entries = list(reversed(hk.audit_log(assignment.id)))
    assert [e.action for e in entries] == ['created', 'assigned', 'priority_changed', 'notes_updated', 'unassigned']
    assert entries[1].changed_fields == ['assigned_to']
    assert entries[2].old_values['priority'] == 'medium'
    assert entries[2].new_values['priority'] == 'high'


def test_noop_update_writes_no_audit(room, admin):
    assignment = _create(room, admin)
    hk.update_assignment(assignment, {'priority': 'medium'}, admin)
    assert len(hk.audit_log(assignment.id)) == 1


def test_audit_survives_delete(room, admin, db):
    assignment = _create(room, admin)
    assignment_id = assignment.id
    hk.delete_assignment(assignment, admin)
    db.session.commit()

    assert db.session.get(HousekeepingAssignment, assignment_id) is None
    assert [e.action for e in hk.audit_log(assignment_id)] == ['deleted', 'created']
    assert room.status == 'available'


def test_verify_requires_completed(room, admin):
    assignment = _create(room, admin)
    with pytest.raises(TransitionError, match='Only completed assignments can be verified'):
        hk.verify_assignment(assignment, admin)

    hk.update_assignment(assignment, {'status': 'completed'}, admin)
    hk.verify_assignment(assignment, admin)
    assert assignment.status == 'verified'
    assert assignment.verified_by == admin.id
    assert assignment.verified_at is not None


def test_auto_create_checkout_assignments(make_booking, make_room, admin, today):
    departed = make_room('201', status='occupied')
    busy = make_room('202', status='occupied')
    booking = make_booking(status='checked-in', room=departed, check_in=today - timedelta(days=1), nights=1)
    make_booking(status='checked-out', room=busy, check_in=today - timedelta(days=2), nights=2)
    _create(busy, admin)

    created = hk.auto_create_checkout_assignments(admin, today=today)
    assert len(created) == 1
    assert created[0].individual_room_id == departed.id
    assert created[0].assignment_type == 'checkout_cleanup'
    assert created[0].priority == 'high'
    assert created[0].linked_booking_id == booking.id

    assert hk.auto_create_checkout_assignments(admin, today=today) == []


def test_bulk_assign_occupied(make_room, make_user, admin):
    maid = make_user('maid', role='housekeeping')
    first = make_room('301', status='occupied')
    second = make_room('302', status='occupied')
    _create(second, admin)

    created, skipped = hk.bulk_assign_occupied(maid.id, admin)
    assert [a.individual_room_id for a in created] == [first.id]
    assert created[0].assigned_to == maid.id
    assert skipped == ['302']
    assert first.status == 'occupied'


def test_recurring_assignment_spawns_after_interval(room, admin, today, db):
    assignment = _create(room, admin, is_recurring='1', recurring_pattern='weekly', assignment_type='deep_clean')
    hk.update_assignment(assignment, {'status': 'completed'}, admin)
    db.session.commit()

    assert hk.create_recurring_assignments(admin, today=today + timedelta(days=6)) == []

    created = hk.create_recurring_assignments(admin, today=today + timedelta(days=7))
    assert len(created) == 1
    spawned = created[0]
    assert spawned.status == 'pending'
    assert spawned.assignment_type == 'deep_clean'
    assert spawned.recurring_pattern == 'weekly'
    assert spawned.due_date == today + timedelta(days=7)

    # The new instance is still open, so nothing more is spawned
    assert hk.create_recurring_assignments(admin, today=today + timedelta(days=14)) == []


def test_recurring_requires_valid_pattern(room, admin):
    with pytest.raises(ValidationError, match='recurring pattern'):
        _create(room, admin, is_recurring=True, recurring_pattern='hourly')


def test_staff_workload(room, admin, make_user):
    maid = make_user('maid', role='housekeeping')
    _create(room, admin, assigned_to=maid.id, priority='high')
    done = _create(room, admin, assigned_to=maid.id)
    hk.update_assignment(done, {'status': 'completed'}, admin)

    row = next(r for r in hk.staff_workload() if r['user_id'] == maid.id)
    assert row['active_tasks'] == 1
    assert row['high_priority_pending'] == 1
    assert row['completed_today'] == 1


def test_occupied_room_status(make_booking, make_room, today):
    room = make_room('401', status='occupied')
    make_booking(status='checked-in', room=room, check_in=today - timedelta(days=3), nights=2)
    rows = hk.get_occupied_rooms(today)
    assert rows[0]['occupancy_status'] == 'overdue_checkout'
    assert rows[0]['has_open_assignment'] is False
