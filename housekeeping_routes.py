from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify
from flask_login import current_user

import housekeeping_service as hk
from extensions import db
from models import AdminUser, HousekeepingAssignment, IndividualRoom
from routes import admin_required, roles_required

housekeeping_bp = Blueprint('housekeeping', __name__, url_prefix='/admin/housekeeping')

FILTER_KEYS = ('status', 'priority', 'assignment_type', 'assigned_to', 'room_id', 'due_date')


def _form_data():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


@housekeeping_bp.route('/')
@admin_required
def index():
    filters = {k: request.args.get(k) for k in FILTER_KEYS if request.args.get(k)}
    return render_template(
        'housekeeping.html',
        assignments=hk.list_assignments(filters),
        filters=filters,
        rooms=IndividualRoom.query.filter_by(is_active=True).order_by(IndividualRoom.room_number).all(),
        staff=AdminUser.query.filter_by(is_active=True).order_by(AdminUser.username).all(),
        workload=hk.staff_workload(),
        occupied=hk.get_occupied_rooms(),
        statuses=hk.STATUSES,
        priorities=hk.PRIORITIES,
        types=hk.ASSIGNMENT_TYPES,
        patterns=list(hk.RECURRING_PATTERNS),
    )


@housekeeping_bp.route('/assignments', methods=['POST'])
@roles_required('manager', 'housekeeping', 'receptionist')
def create():
    assignment = hk.create_assignment(_form_data(), current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'assignment': assignment.to_dict()}), 201
    flash('Housekeeping assignment created.', 'success')
    return redirect(url_for('housekeeping.index'))


@housekeeping_bp.route('/assignments/<int:assignment_id>/update', methods=['POST'])
@roles_required('manager', 'housekeeping')
def update(assignment_id):
    assignment = HousekeepingAssignment.query.get_or_404(assignment_id)
    hk.update_assignment(assignment, _form_data(), current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'assignment': assignment.to_dict()})
    flash('Assignment updated.', 'success')
    return redirect(url_for('housekeeping.index'))


@housekeeping_bp.route('/assignments/<int:assignment_id>/delete', methods=['POST'])
@roles_required('manager')
def delete(assignment_id):
    assignment = HousekeepingAssignment.query.get_or_404(assignment_id)
    hk.delete_assignment(assignment, current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True})
    flash('Assignment deleted.', 'success')
    return redirect(url_for('housekeeping.index'))


@housekeeping_bp.route('/assignments/<int:assignment_id>/verify', methods=['POST'])
@roles_required('manager', 'housekeeping')
def verify(assignment_id):
    assignment = HousekeepingAssignment.query.get_or_404(assignment_id)
    hk.verify_assignment(assignment, current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'assignment': assignment.to_dict()})
    flash('Assignment verified.', 'success')
    return redirect(url_for('housekeeping.index'))


@housekeeping_bp.route('/assignments/<int:assignment_id>/audit')
@admin_required
def audit(assignment_id):
    assignment = db.session.get(HousekeepingAssignment, assignment_id)
    entries = hk.audit_log(assignment_id)
    if assignment is None and not entries:
        return jsonify({'success': False, 'message': 'Assignment not found'}), 404
    return render_template('housekeeping_audit.html', assignment=assignment, entries=entries,
                           assignment_id=assignment_id)


@housekeeping_bp.route('/auto-create-checkout', methods=['POST'])
@roles_required('manager', 'housekeeping', 'receptionist')
def auto_create_checkout():
    created = hk.auto_create_checkout_assignments(current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'created': len(created)})
    flash(f'{len(created)} checkout cleaning assignment(s) created.', 'success')
    return redirect(url_for('housekeeping.index'))


@housekeeping_bp.route('/bulk-assign-occupied', methods=['POST'])
@roles_required('manager', 'housekeeping')
def bulk_assign_occupied():
    created, skipped = hk.bulk_assign_occupied(_form_data().get('assigned_to'), current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'created': len(created), 'skipped': skipped})
    flash(f'{len(created)} assignment(s) created, {len(skipped)} room(s) skipped.', 'success')
    return redirect(url_for('housekeeping.index'))
