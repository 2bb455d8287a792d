from datetime import timedelta

import pytest

from app import create_app
from config import TestConfig
from extensions import db as _db
from models import AdminUser, Booking, IndividualRoom, RoomType
from timeutils import hotel_today


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig)
    app.config['INVOICE_DIR'] = str(tmp_path / 'invoices')
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def today(app):
    return hotel_today()


@pytest.fixture
def make_user(db):
    def _make_user(username='frontdesk', role='admin', password='correct-horse', **kwargs):
        user = AdminUser(username=username, email=kwargs.pop('email', f'{username}@hotel.test'),
                         role=role, full_name=kwargs.pop('full_name', username.title()), **kwargs)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user()


@pytest.fixture
def room_type(db):
    room_type = RoomType(name='Standard Room', slug='standard', price_per_night=50000.0,
                         total_rooms=3, rooms_available=2)
    db.session.add(room_type)
    db.session.commit()
    return room_type


@pytest.fixture
def make_room(db, room_type):
    def _make_room(number='101', status='available', **kwargs):
        room = IndividualRoom(room_type_id=room_type.id, room_number=number, floor='1', status=status, **kwargs)
        db.session.add(room)
        db.session.commit()
        return room
    return _make_room


@pytest.fixture
def room(make_room):
    return make_room()


@pytest.fixture
def make_booking(db, room_type, today):
    counter = {'n': 0}

    def _make_booking(status='confirmed', payment_status='unpaid', room=None, nights=2,
                      check_in=None, guest_email='guest@example.com', total=100000.0, **kwargs):
        counter['n'] += 1
        check_in = check_in or today
        booking = Booking(
            booking_reference=f'BK-TEST-{counter["n"]:04d}',
            room_id=room_type.id,
            individual_room_id=room.id if room else None,
            guest_name=kwargs.pop('guest_name', 'Chikondi Banda'),
            guest_email=guest_email,
            check_in_date=check_in,
            check_out_date=check_in + timedelta(days=nights),
            total_amount=total,
            status=status,
            payment_status=payment_status,
            **kwargs,
        )
        db.session.add(booking)
        db.session.commit()
        return booking
    return _make_booking


@pytest.fixture
def auth_client(client, admin):
    with client.session_transaction() as session:
        session['_user_id'] = str(admin.id)
        session['_fresh'] = True
    return client


@pytest.fixture
def outbox(app):
    from extensions import mail
    with mail.record_messages() as messages:
        yield messages
