from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify
from flask_login import current_user

import booking_rules
import room_management
from extensions import db
from models import Booking, IndividualRoom, RoomStatusLog
from parsing import parse_int
from routes import FRONT_DESK_ROLES, admin_required, roles_required
from timeline import booking_timeline
from timeutils import hotel_today

front_desk_bp = Blueprint('front_desk', __name__, url_prefix='/admin')


def _wants_json():
    return request.is_json or request.accept_mimetypes.best == 'application/json'


def _form():
    return request.get_json(silent=True) or request.form


def _finish(result, redirect_to):
    """Commit and answer an action either as JSON or as flash + redirect"""
    db.session.commit()
    if _wants_json():
        payload = {k: v for k, v in result.items() if k not in ('assignment', 'invoice')}
        return jsonify({'success': True, **payload})
    flash(result['message'], 'success')
    for warning in result.get('warnings', []):
        flash(warning, 'warning')
    return redirect(redirect_to)


@front_desk_bp.route('/')
@admin_required
def dashboard():
    summary = room_management.dashboard_summary()
    return render_template('dashboard.html', summary=summary)


@front_desk_bp.route('/bookings')
@admin_required
def bookings():
    status = request.args.get('status', '')
    search = request.args.get('search', '').strip()
    query = Booking.query
    if status:
        query = query.filter(Booking.status == status)
    if search:
        like = f'%{search}%'
        query = query.filter(db.or_(Booking.guest_name.ilike(like),
                                 Booking.guest_email.ilike(like),
                                 Booking.booking_reference.ilike(like)))
    page = request.args.get('page', 1, type=int)
    pagination = query.order_by(Booking.check_in_date.desc()).paginate(page=page, per_page=50, error_out=False)
    return render_template('bookings.html', pagination=pagination, status=status, search=search,
                           statuses=booking_rules.BOOKING_STATUSES)


@front_desk_bp.route('/bookings/<int:booking_id>')
@admin_required
def booking_detail(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    rooms = IndividualRoom.query.filter_by(room_type_id=booking.room_id, is_active=True) \
        .order_by(IndividualRoom.room_number).all()
    return render_template('booking_detail.html', booking=booking, rooms=rooms,
                           timeline=booking_timeline(booking),
                           check_in_rule=booking_rules.validate_check_in(booking, hotel_today()),
                           check_out_rule=booking_rules.validate_check_out(booking, hotel_today()))


@front_desk_bp.route('/bookings/<int:booking_id>/check-in', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def check_in(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    result = room_management.check_in_guest(booking, current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/cancel-check-in', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def cancel_check_in(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    result = room_management.cancel_check_in(booking, current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/check-out', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def check_out(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    data = _form()
    urgent = str(data.get('urgent_cleaning', '')).lower() in ('1', 'true', 'on', 'yes')
    result = room_management.process_guest_checkout(
        booking, current_user,
        next_status=data.get('next_room_status') or 'cleaning',
        urgent_cleaning=urgent,
    )
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/cancel', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def cancel_booking(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    result = room_management.cancel_booking(booking, _form().get('reason'), current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/no-show', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def no_show(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    result = room_management.mark_no_show(booking, current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/assign-room', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def assign_room(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    room_id = parse_int(_form().get('individual_room_id'), 'Room')
    room = db.session.get(IndividualRoom, room_id) if room_id else None
    result = room_management.assign_room(booking, room, current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/confirm', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def confirm_booking(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    result = room_management.confirm_booking(booking, current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/bookings/<int:booking_id>/amend-dates', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def amend_dates(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    data = _form()
    result = room_management.amend_dates(booking, data.get('check_in_date'), data.get('check_out_date'),
                                         current_user)
    return _finish(result, url_for('front_desk.booking_detail', booking_id=booking.id))


@front_desk_bp.route('/rooms')
@admin_required
def rooms():
    status = request.args.get('status', '')
    query = IndividualRoom.query.filter_by(is_active=True)
    if status:
        query = query.filter_by(status=status)
    room_list = query.order_by(IndividualRoom.floor, IndividualRoom.room_number).all()
    recent_changes = RoomStatusLog.query.order_by(RoomStatusLog.created_at.desc()).limit(20).all()
    return render_template('rooms.html', rooms=room_list, status=status,
                           statuses=room_management.ROOM_STATUSES,
                           transitions=room_management.ROOM_TRANSITIONS,
                           recent_changes=recent_changes)


@front_desk_bp.route('/rooms/<int:room_id>/status', methods=['POST'])
@roles_required(*FRONT_DESK_ROLES)
def update_room_status(room_id):
    room = IndividualRoom.query.get_or_404(room_id)
    data = _form()
    room_management.update_room_status(room, data.get('status'), data.get('reason'), current_user)
    return _finish({'message': f'Room {room.room_number} is now {room.status}', 'room_status': room.status},
                   url_for('front_desk.rooms'))


@front_desk_bp.route('/rooms/<int:room_id>/clean', methods=['POST'])
@admin_required
def mark_room_clean(room_id):
    room = IndividualRoom.query.get_or_404(room_id)
    return _finish(room_management.mark_room_clean(room, current_user), url_for('front_desk.rooms'))


@front_desk_bp.route('/rooms/<int:room_id>/inspection/pass', methods=['POST'])
@roles_required('manager', 'housekeeping')
def pass_inspection(room_id):
    room = IndividualRoom.query.get_or_404(room_id)
    result = room_management.pass_inspection(room, current_user, _form().get('notes'))
    return _finish(result, url_for('front_desk.rooms'))


@front_desk_bp.route('/rooms/<int:room_id>/inspection/fail', methods=['POST'])
@roles_required('manager', 'housekeeping')
def fail_inspection(room_id):
    room = IndividualRoom.query.get_or_404(room_id)
    result = room_management.fail_inspection(room, _form().get('reason'), current_user)
    return _finish(result, url_for('front_desk.rooms'))


@front_desk_bp.route('/rooms/release-stale', methods=['POST'])
@roles_required('manager')
def release_stale_rooms():
    released = room_management.auto_release_stale_cleaning_rooms()
    message = f"Released {len(released)} room(s): {', '.join(released)}" if released \
        else 'No stale cleaning rooms found'
    return _finish({'message': message, 'released': released}, url_for('front_desk.rooms'))
