from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify
from flask_login import current_user

import tentative_service
from extensions import db
from models import Booking, RoomType
from routes import admin_required, roles_required

tentative_bp = Blueprint('tentative', __name__, url_prefix='/admin/tentative')

FILTER_KEYS = ('status', 'room_id', 'expiration_status', 'date_from', 'date_to', 'search')


def _respond(message, booking, warnings=()):
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'message': message, 'booking': booking.to_dict(),
                        'warnings': list(warnings)})
    flash(message, 'success')
    for warning in warnings:
        flash(warning, 'warning')
    return redirect(url_for('tentative.index'))


@tentative_bp.route('/')
@admin_required
def index():
    filters = {k: request.args.get(k) for k in FILTER_KEYS if request.args.get(k)}
    bookings = tentative_service.list_tentative(filters)
    if request.args.get('format') == 'json':
        return jsonify({'bookings': [b.to_dict() for b in bookings],
                        'statistics': tentative_service.statistics()})
    return render_template('tentative.html',
                           bookings=bookings,
                           stats=tentative_service.statistics(),
                           expiring=tentative_service.expiring_soon(),
                           room_types=RoomType.query.order_by(RoomType.name).all(),
                           filters=filters)


@tentative_bp.route('/<int:booking_id>/hold', methods=['POST'])
@roles_required('manager', 'receptionist')
def hold(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    data = request.get_json(silent=True) or request.form
    tentative_service.make_tentative(booking, current_user, hours=data.get('hours') or None)
    return _respond(f'Booking {booking.booking_reference} held until '
                    f'{booking.tentative_expires_at:%Y-%m-%d %H:%M} UTC', booking)


@tentative_bp.route('/<int:booking_id>/convert', methods=['POST'])
@roles_required('manager', 'receptionist')
def convert(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    result = tentative_service.convert_to_confirmed(booking, current_user)
    return _respond(result['message'], booking, result['warnings'])


@tentative_bp.route('/<int:booking_id>/cancel', methods=['POST'])
@roles_required('manager', 'receptionist')
def cancel(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    data = request.get_json(silent=True) or request.form
    tentative_service.cancel_tentative(booking, current_user, data.get('reason'))
    return _respond(f'Tentative booking {booking.booking_reference} cancelled', booking)


@tentative_bp.route('/<int:booking_id>/expire', methods=['POST'])
@roles_required('manager')
def expire(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    tentative_service.mark_expired(booking, current_user)
    return _respond(f'Tentative booking {booking.booking_reference} marked expired', booking)


@tentative_bp.route('/<int:booking_id>/reminder', methods=['POST'])
@roles_required('manager', 'receptionist')
def reminder(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    sent, error = tentative_service.send_reminder(booking, current_user)
    if not sent:
        db.session.commit()
        if request.is_json:
            return jsonify({'success': False, 'message': f'Reminder failed: {error}'}), 502
        flash(f'Reminder failed: {error}', 'danger')
        return redirect(url_for('tentative.index'))
    return _respond(f'Reminder sent to {booking.guest_email}', booking)


@tentative_bp.route('/expire-overdue', methods=['POST'])
@roles_required('manager')
def expire_overdue():
    expired = tentative_service.expire_overdue()
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'expired': [b.booking_reference for b in expired]})
    flash(f'{len(expired)} tentative booking(s) expired.', 'success')
    return redirect(url_for('tentative.index'))
