"""
JSON API for the front desk tablets and the housekeeping app.

Clients obtain a bearer token from ``POST /api/auth/token`` and send it as
``Authorization: Bearer <token>`` on every other call.
"""
import logging
from datetime import datetime, timedelta
from functools import wraps

import jwt
from flask import Blueprint, current_app, jsonify, request

import auth_service
import housekeeping_service
import room_management
import tentative_service
from errors import AuthError, ValidationError
from extensions import db
from models import AdminUser, Booking, IndividualRoom
from routes import FRONT_DESK_ROLES, has_role

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

JWT_ALGORITHM = 'HS256'


def issue_token(user):
    hours = current_app.config.get('JWT_EXPIRATION_HOURS', 8)
    payload = {
        'user_id': user.id,
        'username': user.username,
        'role': user.role,
        'exp': datetime.utcnow() + timedelta(hours=hours),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET_KEY'], algorithm=JWT_ALGORITHM)


def token_required(f):
    """Resolve the bearer token to an active admin user and pass it as ``user``"""
    @wraps(f)
    def decorated(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            raise AuthError('Authorization token is missing')
        try:
            payload = jwt.decode(header[7:], current_app.config['JWT_SECRET_KEY'], algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthError('Token has expired')
        except jwt.InvalidTokenError:
            raise AuthError('Invalid token')

        user = db.session.get(AdminUser, payload.get('user_id'))
        if user is None or not user.is_active:
            raise AuthError('Invalid token')
        return f(user, *args, **kwargs)
    return decorated


def token_roles_required(*roles):
    """Bearer token plus the same role check the session routes apply"""
    def decorator(f):
        @wraps(f)
        @token_required
        def decorated(user, *args, **kwargs):
            if not has_role(user, roles):
                raise AuthError('Insufficient permissions', 403)
            return f(user, *args, **kwargs)
        return decorated
    return decorator


def _json_body():
    return request.get_json(silent=True) or {}


@api_bp.route('/auth/token', methods=['POST'])
def create_token():
    data = _json_body()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        raise ValidationError('Username and password required')

    user = auth_service.authenticate(username, password)
    logger.info("[API] Token issued for %s", user.username)
    return jsonify({
        'success': True,
        'token': issue_token(user),
        'expires_in': current_app.config.get('JWT_EXPIRATION_HOURS', 8) * 3600,
        'user': user.to_dict(),
    })


@api_bp.route('/dashboard/summary', methods=['GET'])
@token_required
def dashboard_summary(user):
    summary = room_management.dashboard_summary()
    return jsonify({
        'success': True,
        'date': summary['date'].isoformat(),
        'status_counts': summary['status_counts'],
        'total_rooms': summary['total_rooms'],
        'available_now': summary['available_now'],
        'occupancy_rate': summary['occupancy_rate'],
        'cleaning_queue': [r.room_number for r in summary['cleaning_queue']],
        'inspection_queue': [r.room_number for r in summary['inspection_queue']],
        'checkouts_today': [b.to_dict() for b in summary['checkouts_today']],
        'checkins_today': [b.to_dict() for b in summary['checkins_today']],
    })


@api_bp.route('/rooms/<int:room_id>/status', methods=['POST'])
@token_roles_required(*FRONT_DESK_ROLES)
def update_room_status(user, room_id):
    room = db.session.get(IndividualRoom, room_id)
    if room is None:
        return jsonify({'success': False, 'message': 'Room not found'}), 404
    data = _json_body()
    outcome = room_management.update_room_status(room, data.get('status'), data.get('reason'), user,
                                                 urgent=bool(data.get('urgent')), notes=data.get('notes'))
    db.session.commit()
    return jsonify({
        'success': True,
        'room': room.to_dict(),
        'housekeeping_created': outcome['housekeeping_created'],
        'assignment_id': outcome['assignment'].id if outcome.get('assignment') else None,
    })


@api_bp.route('/bookings/<int:booking_id>/check-in', methods=['POST'])
@token_roles_required(*FRONT_DESK_ROLES)
def check_in(user, booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        return jsonify({'success': False, 'message': 'Booking not found'}), 404
    result = room_management.check_in_guest(booking, user)
    db.session.commit()
    return jsonify({'success': True, 'booking': booking.to_dict(), **result})


@api_bp.route('/bookings/<int:booking_id>/check-out', methods=['POST'])
@token_roles_required(*FRONT_DESK_ROLES)
def check_out(user, booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        return jsonify({'success': False, 'message': 'Booking not found'}), 404
    data = _json_body()
    result = room_management.process_guest_checkout(booking, user,
                                                    next_status=data.get('next_room_status') or 'cleaning',
                                                    urgent_cleaning=bool(data.get('urgent_cleaning')))
    db.session.commit()
    invoice = result.pop('invoice') or {}
    return jsonify({'success': True, 'booking': booking.to_dict(),
                    'invoice_number': invoice.get('invoice_number'), **result})


@api_bp.route('/tentative/statistics', methods=['GET'])
@token_required
def tentative_statistics(user):
    return jsonify({'success': True, 'statistics': tentative_service.statistics()})


@api_bp.route('/housekeeping/workload', methods=['GET'])
@token_required
def housekeeping_workload(user):
    return jsonify({'success': True, 'workload': housekeeping_service.staff_workload()})
