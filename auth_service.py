"""
Admin login with per-account lockout and per-IP throttling, plus the
emailed password reset flow.
"""
import hashlib
import logging
import math
import secrets
from datetime import datetime, timedelta

from flask import has_request_context, request, url_for

from errors import AuthError, ValidationError
from extensions import db
from models import AdminUser, ActivityLog, PasswordReset
from email_service import send_template_email

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_MINUTES = 15
IP_MAX_FAILURES = 10
IP_WINDOW_MINUTES = 15
RESET_TOKEN_HOURS = 1
MIN_PASSWORD_LENGTH = 8

GENERIC_LOGIN_ERROR = 'Invalid username or password.'
RESET_REQUEST_MESSAGE = ('If an account exists with that email address, '
                         'a password reset link has been sent.')


def _client_ip():
    return request.remote_addr if has_request_context() else None


def _client_agent():
    if not has_request_context():
        return None
    return (request.headers.get('User-Agent') or '')[:500]


def log_activity(action, user=None, username=None, details=None):
    entry = ActivityLog(
        user_id=user.id if user else None,
        username=user.username if user else username,
        action=action,
        details=details,
        ip_address=_client_ip(),
        user_agent=_client_agent(),
    )
    db.session.add(entry)
    return entry


def recent_ip_failures(ip_address, now=None):
    now = now or datetime.utcnow()
    if not ip_address:
        return 0
    return ActivityLog.query.filter(
        ActivityLog.ip_address == ip_address,
        ActivityLog.action == 'login_failed',
        ActivityLog.created_at >= now - timedelta(minutes=IP_WINDOW_MINUTES),
    ).count()


def authenticate(username, password, now=None):
    """Return the AdminUser or raise AuthError. Commits the attempt either way."""
    now = now or datetime.utcnow()
    username = (username or '').strip()

    if not username or not password:
        raise AuthError('Please enter both username and password.')

    if recent_ip_failures(_client_ip(), now) >= IP_MAX_FAILURES:
        log_activity('login_blocked', username=username, details='IP rate limit exceeded')
        db.session.commit()
        logger.warning("[AUTH] Login blocked for %s: too many failures from %s", username, _client_ip())
        raise AuthError('Too many failed login attempts from your network. '
                        f'Please try again in {IP_WINDOW_MINUTES} minutes.', 429)

    user = AdminUser.query.filter(
        (AdminUser.username == username) | (AdminUser.email == username)
    ).first()

    if user is None:
        log_activity('login_failed', username=username, details='Unknown username')
        db.session.commit()
        raise AuthError(GENERIC_LOGIN_ERROR)

    if not user.is_active:
        log_activity('login_failed', user=user, details='Account deactivated')
        db.session.commit()
        raise AuthError('This account has been deactivated. Contact your administrator.', 403)

    if user.locked_until and user.locked_until > now:
        minutes = max(1, math.ceil((user.locked_until - now).total_seconds() / 60))
        log_activity('login_blocked', user=user, details='Account locked')
        db.session.commit()
        raise AuthError('Account temporarily locked due to too many failed attempts. '
                        f'Try again in {minutes} minute(s).', 423)

    if not user.check_password(password):
        # A lock that has run out starts a fresh count
        if user.locked_until and user.locked_until <= now:
            user.failed_login_attempts = 0
            user.locked_until = None
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        remaining = MAX_FAILED_ATTEMPTS - user.failed_login_attempts
        log_activity('login_failed', user=user, details=f'Wrong password (attempt {user.failed_login_attempts})')

        if remaining <= 0:
            user.locked_until = now + timedelta(minutes=LOCKOUT_MINUTES)
            db.session.commit()
            logger.warning("[AUTH] Account %s locked", user.username)
            raise AuthError(f'Account locked for {LOCKOUT_MINUTES} minutes due to too many failed attempts.', 423)

        db.session.commit()
        if remaining <= 2:
            raise AuthError(f'Invalid username or password. {remaining} attempt(s) remaining before lockout.')
        raise AuthError(GENERIC_LOGIN_ERROR)

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login = now
    log_activity('login_success', user=user)
    db.session.commit()
    logger.info("[AUTH] %s logged in", user.username)
    return user


def record_logout(user):
    log_activity('logout', user=user)
    db.session.commit()


def hash_token(raw_token):
    return hashlib.sha256(raw_token.encode('utf-8')).hexdigest()


def _invalidate_open_tokens(user_id, now, keep_id=None):
    query = PasswordReset.query.filter(
        PasswordReset.user_id == user_id,
        PasswordReset.used_at.is_(None),
    )
    if keep_id is not None:
        query = query.filter(PasswordReset.id != keep_id)
    for reset in query.all():
        reset.used_at = now


def request_password_reset(email, now=None):
    """Always returns the same message so addresses cannot be probed."""
    now = now or datetime.utcnow()
    email = (email or '').strip().lower()
    if not email:
        raise ValidationError('Please enter your email address.')

    user = AdminUser.query.filter(db.func.lower(AdminUser.email) == email).first()
    if user is None or not user.is_active:
        logger.info("[AUTH] Password reset requested for unknown or inactive address")
        return RESET_REQUEST_MESSAGE, None

    _invalidate_open_tokens(user.id, now)
    raw_token = secrets.token_hex(32)
    reset = PasswordReset(
        user_id=user.id,
        token=hash_token(raw_token),
        expires_at=now + timedelta(hours=RESET_TOKEN_HOURS),
    )
    db.session.add(reset)
    db.session.commit()

    reset_url = url_for('auth.reset_password', token=raw_token, _external=True)
    sent, error = send_template_email(
        user.email, 'Password Reset Request', 'email/password_reset.html',
        user=user, reset_url=reset_url, expires_hours=RESET_TOKEN_HOURS,
    )
    if not sent:
        logger.error("[AUTH] Could not send reset email to %s: %s", user.email, error)
    return RESET_REQUEST_MESSAGE, raw_token


def validate_reset_token(raw_token, now=None):
    now = now or datetime.utcnow()
    if not raw_token:
        return None
    reset = PasswordReset.query.filter_by(token=hash_token(raw_token)).first()
    if reset is None or reset.used_at is not None or reset.expires_at <= now:
        return None
    if reset.user is None or not reset.user.is_active:
        return None
    return reset


def reset_password(raw_token, password, confirm_password, now=None):
    now = now or datetime.utcnow()
    reset = validate_reset_token(raw_token, now)
    if reset is None:
        raise ValidationError('This password reset link is invalid or has expired.')
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')
    if password != confirm_password:
        raise ValidationError('Passwords do not match.')

    user = reset.user
    user.set_password(password)
    user.failed_login_attempts = 0
    user.locked_until = None
    reset.used_at = now
    _invalidate_open_tokens(user.id, now, keep_id=reset.id)
    log_activity('password_reset', user=user, details='Password reset via email link')
    db.session.commit()
    logger.info("[AUTH] Password reset for %s", user.username)
    return user


ROLES = ['admin', 'manager', 'receptionist', 'housekeeping']


def list_users():
    return AdminUser.query.order_by(AdminUser.is_active.desc(), AdminUser.username).all()


def _check_role(role):
    if role not in ROLES:
        raise ValidationError('Invalid role selected.')


def _check_password(password):
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')


def _active_admin_count():
    return AdminUser.query.filter_by(role='admin', is_active=True).count()


def create_user(data, actor):
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    full_name = (data.get('full_name') or '').strip()
    role = data.get('role') or 'receptionist'
    password = data.get('password') or ''

    if not username or not email or not full_name or not password:
        raise ValidationError('All fields are required.')
    _check_password(password)
    _check_role(role)
    duplicate = AdminUser.query.filter(
        (AdminUser.username == username) | (db.func.lower(AdminUser.email) == email)
    ).first()
    if duplicate is not None:
        raise ValidationError('Username or email already exists.')

    user = AdminUser(username=username, email=email, full_name=full_name, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    log_activity('user_created', user=actor, details=f"Created user '{username}' with role '{role}'")
    logger.info("[AUTH] %s created user %s (%s)", actor.username, username, role)
    return user


def update_user(user, data, actor):
    """Edit profile, role, active flag and optionally the password.

    The last active admin can neither lose the role nor be deactivated, and
    nobody can deactivate their own account.
    """
    full_name = (data.get('full_name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    role = data.get('role') or user.role
    is_active = str(data.get('is_active', '')).lower() in ('1', 'true', 'on', 'yes')
    new_password = data.get('new_password') or ''

    if not full_name or not email:
        raise ValidationError('Full name and email are required.')
    _check_role(role)
    taken = AdminUser.query.filter(db.func.lower(AdminUser.email) == email, AdminUser.id != user.id).first()
    if taken is not None:
        raise ValidationError('Email already in use by another user.')
    if user.id == actor.id and not is_active:
        raise ValidationError('You cannot deactivate your own account.')
    if user.role == 'admin' and user.is_active and (role != 'admin' or not is_active) \
            and _active_admin_count() <= 1:
        raise ValidationError('Cannot change this user: it is the last active admin.')
    if new_password:
        _check_password(new_password)
        user.set_password(new_password)

    changes = []
    if user.role != role:
        changes.append(f'role {user.role} -> {role}')
    if user.is_active != is_active:
        changes.append('activated' if is_active else 'deactivated')
    if new_password:
        changes.append('password changed')

    user.full_name = full_name
    user.email = email
    user.role = role
    user.is_active = is_active
    log_activity('user_updated', user=actor,
                 details=f"Updated user '{user.username}'" + (f": {', '.join(changes)}" if changes else ''))
    return user
