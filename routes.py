import logging
from functools import wraps

from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify
from flask_login import current_user, login_user, logout_user, login_required

import auth_service
from errors import AuthError, ValidationError
from extensions import db, login_manager
from models import AdminUser

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

# Roles allowed to run the front desk workflows, shared by the session and token routes
FRONT_DESK_ROLES = ('manager', 'receptionist')


def has_role(user, roles):
    return user.role == 'admin' or user.role in roles


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(AdminUser, int(user_id))


def admin_required(f):
    """Session login plus an active account; optional role restriction via roles_required"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_active:
            logout_user()
            flash('This account has been deactivated. Contact your administrator.', 'danger')
            return redirect(url_for('auth.login'))
        return f(*args, **kwargs)
    return decorated_function


def roles_required(*roles):
    def decorator(f):
        @wraps(f)
        @admin_required
        def decorated_function(*args, **kwargs):
            if not has_role(current_user, roles):
                if request.is_json:
                    return jsonify({'success': False, 'message': 'Insufficient permissions'}), 403
                flash('You do not have permission to perform this action.', 'danger')
                return redirect(url_for('front_desk.dashboard'))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


@auth_bp.route('/')
def index():
    return redirect(url_for('front_desk.dashboard'))


@auth_bp.route('/health')
def health():
    return jsonify({'status': 'healthy'})


@auth_bp.route('/admin/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('front_desk.dashboard'))

    if request.method == 'POST':
        username = request.form.get('username', '')
        password = request.form.get('password', '')
        try:
            user = auth_service.authenticate(username, password)
        except AuthError as e:
            flash(e.message, 'danger')
            return render_template('login.html', username=username), e.status_code

        login_user(user)
        next_url = request.args.get('next')
        if not next_url or not next_url.startswith('/'):
            next_url = url_for('front_desk.dashboard')
        return redirect(next_url)

    return render_template('login.html')


@auth_bp.route('/admin/logout')
@login_required
def logout():
    auth_service.record_logout(current_user)
    logout_user()
    flash('You have been logged out.', 'info')
    return redirect(url_for('auth.login'))


@auth_bp.route('/admin/forgot-password', methods=['GET', 'POST'])
def forgot_password():
    if request.method == 'POST':
        try:
            message, _ = auth_service.request_password_reset(request.form.get('email'))
        except ValidationError as e:
            flash(e.message, 'danger')
            return render_template('forgot_password.html')
        flash(message, 'success')
        return redirect(url_for('auth.login'))
    return render_template('forgot_password.html')


@auth_bp.route('/admin/reset-password/<token>', methods=['GET', 'POST'])
def reset_password(token):
    if auth_service.validate_reset_token(token) is None:
        flash('This password reset link is invalid or has expired.', 'danger')
        return redirect(url_for('auth.forgot_password'))

    if request.method == 'POST':
        try:
            auth_service.reset_password(token, request.form.get('password'), request.form.get('confirm_password'))
        except ValidationError as e:
            db.session.rollback()
            flash(e.message, 'danger')
            return render_template('reset_password.html', token=token)
        flash('Your password has been reset. You can now log in.', 'success')
        return redirect(url_for('auth.login'))

    return render_template('reset_password.html', token=token)


@auth_bp.route('/admin/users', methods=['GET', 'POST'])
@roles_required()
def users():
    if request.method == 'POST':
        user = auth_service.create_user(request.get_json(silent=True) or request.form, current_user)
        db.session.commit()
        if request.is_json:
            return jsonify({'success': True, 'user': user.to_dict()}), 201
        flash(f"User '{user.display_name}' created.", 'success')
        return redirect(url_for('auth.users'))
    return render_template('users.html', users=auth_service.list_users(), roles=auth_service.ROLES)


@auth_bp.route('/admin/users/<int:user_id>', methods=['POST'])
@roles_required()
def update_user(user_id):
    user = AdminUser.query.get_or_404(user_id)
    auth_service.update_user(user, request.get_json(silent=True) or request.form, current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'user': user.to_dict()})
    flash(f"User '{user.display_name}' updated.", 'success')
    return redirect(url_for('auth.users'))
