from datetime import timedelta

import pytest

from models import AdminUser, HousekeepingAssignment


def _token(client, username='frontdesk', password='correct-horse'):
    response = client.post('/api/auth/token', json={'username': username, 'password': password})
    return response


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'healthy'}


def test_login_page_renders(client):
    response = client.get('/admin/login')
    assert response.status_code == 200
    assert b'password' in response.data


def test_dashboard_requires_login(client):
    response = client.get('/admin/')
    assert response.status_code == 302
    assert '/admin/login' in response.headers['Location']


def test_login_redirects_to_dashboard(client, admin):
    response = client.post('/admin/login', data={'username': 'frontdesk', 'password': 'correct-horse'})
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/admin/')


def test_login_with_wrong_password(client, admin):
    response = client.post('/admin/login', data={'username': 'frontdesk', 'password': 'nope'})
    assert response.status_code == 401


def test_dashboard_renders(auth_client, room):
    response = auth_client.get('/admin/')
    assert response.status_code == 200
    assert b'Front desk' in response.data


def test_json_check_in(auth_client, make_booking, room):
    booking = make_booking(status='confirmed', payment_status='paid', room=room)
    response = auth_client.post(f'/admin/bookings/{booking.id}/check-in', json={})
    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['room_number'] == '101'
    assert booking.status == 'checked-in'


def test_json_check_in_rejected_as_conflict(auth_client, make_booking, room):
    booking = make_booking(status='confirmed', payment_status='partial', room=room)
    response = auth_client.post(f'/admin/bookings/{booking.id}/check-in', json={})
    assert response.status_code == 409
    body = response.get_json()
    assert body['success'] is False
    assert 'Payment must be completed first' in body['message']


def test_housekeeping_create_returns_201(auth_client, room):
    response = auth_client.post('/admin/housekeeping/assignments',
                                json={'individual_room_id': room.id, 'priority': 'low'})
    assert response.status_code == 201
    assert response.get_json()['success'] is True
    assert HousekeepingAssignment.query.count() == 1


def test_api_token_and_dashboard(client, admin, room):
    response = _token(client)
    assert response.status_code == 200
    body = response.get_json()
    assert body['user']['username'] == 'frontdesk'
    assert body['expires_in'] == 8 * 3600

    summary = client.get('/api/dashboard/summary', headers={'Authorization': f"Bearer {body['token']}"})
    assert summary.status_code == 200
    assert summary.get_json()['total_rooms'] == 1


def test_api_token_bad_credentials(client, admin):
    assert _token(client, password='wrong').status_code == 401
    assert client.post('/api/auth/token', json={'username': 'frontdesk'}).status_code == 400


@pytest.mark.parametrize('headers', [{}, {'Authorization': 'Bearer not-a-token'}, {'Authorization': 'Token x'}])
def test_api_rejects_missing_or_bad_token(client, headers):
    response = client.get('/api/tentative/statistics', headers=headers)
    assert response.status_code == 401
    assert response.get_json()['success'] is False


def test_api_room_status_change(client, admin, room):
    token = _token(client).get_json()['token']
    response = client.post(f'/api/rooms/{room.id}/status', json={'status': 'maintenance', 'reason': 'Leak'},
                           headers={'Authorization': f'Bearer {token}'})
    assert response.status_code == 200
    assert response.get_json()['room']['status'] == 'maintenance'

    missing = client.post('/api/rooms/999/status', json={'status': 'maintenance'},
                          headers={'Authorization': f'Bearer {token}'})
    assert missing.status_code == 404


@pytest.fixture
def maid_token(client, make_user):
    make_user('maid', role='housekeeping')
    return _token(client, username='maid').get_json()['token']


def test_api_front_desk_actions_need_a_front_desk_role(client, maid_token, make_booking, room):
    headers = {'Authorization': f'Bearer {maid_token}'}
    arrival = make_booking(status='confirmed', payment_status='paid', room=room)

    response = client.post(f'/api/bookings/{arrival.id}/check-in', json={}, headers=headers)
    assert response.status_code == 403
    assert response.get_json() == {'success': False, 'message': 'Insufficient permissions'}
    assert arrival.status == 'confirmed'

    assert client.post(f'/api/bookings/{arrival.id}/check-out', json={}, headers=headers).status_code == 403
    status = client.post(f'/api/rooms/{room.id}/status', json={'status': 'maintenance'}, headers=headers)
    assert status.status_code == 403
    assert room.status == 'available'

    # read-only endpoints stay open to every role
    assert client.get('/api/housekeeping/workload', headers=headers).status_code == 200


def test_api_check_in_as_receptionist(client, make_user, make_booking, room):
    make_user('desk', role='receptionist')
    token = _token(client, username='desk').get_json()['token']
    arrival = make_booking(status='confirmed', payment_status='paid', room=room)
    response = client.post(f'/api/bookings/{arrival.id}/check-in', json={},
                           headers={'Authorization': f'Bearer {token}'})
    assert response.status_code == 200
    assert response.get_json()['room_number'] == '101'


def test_json_confirm_and_amend_dates(auth_client, make_booking, room, today):
    booking = make_booking(status='pending')
    response = auth_client.post(f'/admin/bookings/{booking.id}/confirm', json={})
    assert response.status_code == 200
    assert response.get_json()['room_number'] == '101'
    assert booking.status == 'confirmed'

    bad = auth_client.post(f'/admin/bookings/{booking.id}/amend-dates', json={'check_out_date': '31/12/2030'})
    assert bad.status_code == 400
    assert 'YYYY-MM-DD' in bad.get_json()['message']

    new_out = (today + timedelta(days=4)).isoformat()
    good = auth_client.post(f'/admin/bookings/{booking.id}/amend-dates', json={'check_out_date': new_out})
    assert good.status_code == 200
    assert good.get_json()['nights'] == 4


def test_assign_room_with_non_numeric_id_is_rejected(auth_client, make_booking, room):
    booking = make_booking(status='confirmed')
    response = auth_client.post(f'/admin/bookings/{booking.id}/assign-room', json={'individual_room_id': 'abc'})
    assert response.status_code == 400
    assert 'Room must be a whole number' in response.get_json()['message']
    assert booking.individual_room_id is None


def test_admin_creates_and_updates_users(auth_client, admin):
    response = auth_client.post('/admin/users', json={
        'username': 'tiwonge', 'email': 'Tiwonge@Hotel.test', 'full_name': 'Tiwonge Phiri',
        'role': 'receptionist', 'password': 'front-desk-1',
    })
    assert response.status_code == 201
    user = AdminUser.query.filter_by(username='tiwonge').one()
    assert user.email == 'tiwonge@hotel.test'
    assert user.check_password('front-desk-1')

    duplicate = auth_client.post('/admin/users', json={
        'username': 'tiwonge', 'email': 'other@hotel.test', 'full_name': 'Someone', 'password': 'long-enough',
    })
    assert duplicate.status_code == 400

    update = auth_client.post(f'/admin/users/{user.id}', json={
        'full_name': 'Tiwonge Phiri', 'email': 'tiwonge@hotel.test', 'role': 'manager', 'is_active': False,
    })
    assert update.status_code == 200
    assert user.role == 'manager'
    assert user.is_active is False

    assert auth_client.get('/admin/users').status_code == 200


def test_last_admin_cannot_be_demoted(auth_client, admin):
    response = auth_client.post(f'/admin/users/{admin.id}', json={
        'full_name': admin.full_name, 'email': admin.email, 'role': 'manager', 'is_active': True,
    })
    assert response.status_code == 400
    assert 'last active admin' in response.get_json()['message']
    assert admin.role == 'admin'


def test_user_management_is_admin_only(client, make_user):
    manager = make_user('boss', role='manager')
    with client.session_transaction() as session:
        session['_user_id'] = str(manager.id)
        session['_fresh'] = True
    response = client.post('/admin/users', json={'username': 'x'})
    assert response.status_code == 403
