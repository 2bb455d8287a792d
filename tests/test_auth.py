from datetime import datetime, timedelta

import pytest

import auth_service
from errors import AuthError, ValidationError
from models import ActivityLog, PasswordReset


def test_authenticate_by_username_or_email(admin):
    assert auth_service.authenticate('frontdesk', 'correct-horse') == admin
    assert auth_service.authenticate('frontdesk@hotel.test', 'correct-horse') == admin
    assert admin.last_login is not None
    assert ActivityLog.query.filter_by(action='login_success').count() == 2


def test_unknown_user_gets_generic_error(admin):
    with pytest.raises(AuthError) as exc:
        auth_service.authenticate('nobody', 'whatever')
    assert exc.value.message == auth_service.GENERIC_LOGIN_ERROR
    assert exc.value.status_code == 401


def test_remaining_attempts_warning_then_lockout(admin):
    messages = []
    for _ in range(4):
        with pytest.raises(AuthError) as exc:
            auth_service.authenticate('frontdesk', 'wrong')
        messages.append(exc.value.message)

    assert messages[0] == auth_service.GENERIC_LOGIN_ERROR
    assert messages[1] == auth_service.GENERIC_LOGIN_ERROR
    assert '2 attempt(s) remaining' in messages[2]
    assert '1 attempt(s) remaining' in messages[3]

    with pytest.raises(AuthError) as exc:
        auth_service.authenticate('frontdesk', 'wrong')
    assert exc.value.status_code == 423
    assert 'locked for 15 minutes' in exc.value.message
    assert admin.locked_until is not None

    # The right password does not get through while locked
    with pytest.raises(AuthError) as exc:
        auth_service.authenticate('frontdesk', 'correct-horse')
    assert exc.value.status_code == 423
    assert 'Try again in' in exc.value.message


def test_lock_expires(admin, db):
    admin.failed_login_attempts = 5
    admin.locked_until = datetime.utcnow() - timedelta(minutes=1)
    db.session.commit()

    user = auth_service.authenticate('frontdesk', 'correct-horse')
    assert user.failed_login_attempts == 0
    assert user.locked_until is None


def test_inactive_account_is_refused(make_user):
    make_user('retired', is_active=False)
    with pytest.raises(AuthError) as exc:
        auth_service.authenticate('retired', 'correct-horse')
    assert exc.value.status_code == 403


def test_ip_rate_limit(app, admin, db):
    for _ in range(auth_service.IP_MAX_FAILURES):
        db.session.add(ActivityLog(username='someone', action='login_failed', ip_address='10.0.0.5'))
    db.session.commit()

    with app.test_request_context(environ_base={'REMOTE_ADDR': '10.0.0.5'}):
        with pytest.raises(AuthError) as exc:
            auth_service.authenticate('frontdesk', 'correct-horse')
    assert exc.value.status_code == 429

    with app.test_request_context(environ_base={'REMOTE_ADDR': '10.0.0.6'}):
        assert auth_service.authenticate('frontdesk', 'correct-horse') == admin


def test_password_reset_flow(app, admin, outbox):
    with app.test_request_context():
        message, token = auth_service.request_password_reset('FrontDesk@hotel.test')

    assert message == auth_service.RESET_REQUEST_MESSAGE
    assert token
    assert len(outbox) == 1
    assert token in outbox[0].html

    stored = PasswordReset.query.one()
    assert stored.token == auth_service.hash_token(token)
    assert stored.token != token

    with pytest.raises(ValidationError, match='at least 8 characters'):
        auth_service.reset_password(token, 'short', 'short')
    with pytest.raises(ValidationError, match='do not match'):
        auth_service.reset_password(token, 'new-password-1', 'new-password-2')

    auth_service.reset_password(token, 'new-password-1', 'new-password-1')
    assert admin.check_password('new-password-1')
    assert auth_service.validate_reset_token(token) is None


def test_reset_request_for_unknown_email_looks_the_same(app, admin, outbox):
    with app.test_request_context():
        message, token = auth_service.request_password_reset('ghost@hotel.test')
    assert message == auth_service.RESET_REQUEST_MESSAGE
    assert token is None
    assert len(outbox) == 0


def test_new_reset_request_invalidates_older_token(app, admin):
    with app.test_request_context():
        _, first = auth_service.request_password_reset(admin.email)
        _, second = auth_service.request_password_reset(admin.email)
    assert auth_service.validate_reset_token(first) is None
    assert auth_service.validate_reset_token(second) is not None


def test_expired_reset_token(app, admin):
    with app.test_request_context():
        _, token = auth_service.request_password_reset(admin.email)
    later = datetime.utcnow() + timedelta(hours=auth_service.RESET_TOKEN_HOURS, minutes=1)
    assert auth_service.validate_reset_token(token, now=later) is None
    with pytest.raises(ValidationError, match='invalid or has expired'):
        auth_service.reset_password(token, 'new-password-1', 'new-password-1', now=later)
