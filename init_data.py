"""
Seed the back office with an admin account, default settings and a room inventory
"""
import os

from extensions import db
from models import AdminUser, RoomType, IndividualRoom, Setting
from settings import DEFAULT_SETTINGS

ROOM_TYPES = [
    {
        'name': 'Standard Room',
        'slug': 'standard',
        'description': 'Comfortable standard accommodation',
        'price_per_night': 45000.00,
        'rooms': [('101', '1'), ('102', '1'), ('103', '1'), ('104', '1')],
    },
    {
        'name': 'Deluxe Room',
        'slug': 'deluxe',
        'description': 'Spacious room with lake view',
        'price_per_night': 65000.00,
        'rooms': [('201', '2'), ('202', '2'), ('203', '2')],
    },
    {
        'name': 'Executive Suite',
        'slug': 'executive-suite',
        'description': 'Suite with separate lounge and work area',
        'price_per_night': 120000.00,
        'rooms': [('301', '3'), ('302', '3')],
    },
]


def seed_settings():
    created = 0
    for key, value in DEFAULT_SETTINGS.items():
        if Setting.query.filter_by(key=key).first() is None:
            db.session.add(Setting(key=key, value=value))
            created += 1
    return created


def create_admin(username, email, password, role='admin', full_name=None):
    """Create or update a staff account; returns ``(user, created)``"""
    user = AdminUser.query.filter((AdminUser.username == username) | (AdminUser.email == email)).first()
    created = user is None
    if created:
        user = AdminUser(username=username, email=email)
        db.session.add(user)
    user.role = role
    user.full_name = full_name or user.full_name
    user.is_active = True
    user.failed_login_attempts = 0
    user.locked_until = None
    user.set_password(password)
    db.session.flush()
    return user, created


def seed_rooms():
    created = 0
    for data in ROOM_TYPES:
        room_type = RoomType.query.filter_by(slug=data['slug']).first()
        if room_type is None:
            room_type = RoomType(
                name=data['name'],
                slug=data['slug'],
                description=data['description'],
                price_per_night=data['price_per_night'],
                total_rooms=len(data['rooms']),
                rooms_available=len(data['rooms']),
            )
            db.session.add(room_type)
            db.session.flush()
            print(f"Created room type: {data['name']}")

        for number, floor in data['rooms']:
            if IndividualRoom.query.filter_by(room_number=number).first() is None:
                db.session.add(IndividualRoom(room_type_id=room_type.id, room_number=number, floor=floor))
                created += 1
    return created


def create_initial_data():
    """Create initial data for the application"""
    try:
        if AdminUser.query.count() == 0:
            user, _ = create_admin(
                os.environ.get('ADMIN_USERNAME', 'admin'),
                os.environ.get('ADMIN_EMAIL', 'admin@hotel.local'),
                os.environ.get('ADMIN_PASSWORD', 'admin12345'),
                role='admin',
                full_name='Hotel Administrator',
            )
            print(f"Created admin user: {user.username}")

        settings_created = seed_settings()
        rooms_created = seed_rooms()
        db.session.commit()
        print(f"Seeded {settings_created} setting(s) and {rooms_created} room(s)")
    except Exception as e:
        db.session.rollback()
        print(f"Error creating initial data: {str(e)}")
        raise
