from datetime import datetime
from extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash


class AdminUser(UserMixin, db.Model):
    """Back-office staff account"""
    __tablename__ = 'admin_users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    full_name = db.Column(db.String(150))
    role = db.Column(db.String(30), default='receptionist')  # admin, manager, receptionist, housekeeping
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Lockout tracking
    failed_login_attempts = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        return self.full_name or self.username

    @property
    def is_locked(self):
        return self.locked_until is not None and self.locked_until > datetime.utcnow()

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'is_active': self.is_active,
            'last_login': self.last_login.isoformat() if self.last_login else None,
        }

    def __repr__(self):
        return f'<AdminUser {self.username}>'


class ActivityLog(db.Model):
    __tablename__ = 'admin_activity_log'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    username = db.Column(db.String(64))
    action = db.Column(db.String(50), nullable=False)  # login_success, login_failed, login_blocked, logout, password_reset, refund_created
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f'<ActivityLog {self.action} {self.username}>'


class PasswordReset(db.Model):
    __tablename__ = 'password_resets'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('admin_users.id'), nullable=False)
    token = db.Column(db.String(64), nullable=False, index=True)  # sha256 of the emailed token
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('AdminUser', backref=db.backref('password_resets', lazy='dynamic'))

    def __repr__(self):
        return f'<PasswordReset user={self.user_id}>'


class Setting(db.Model):
    __tablename__ = 'settings'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.Text)

    def __repr__(self):
        return f'<Setting {self.key}>'


class RoomType(db.Model):
    """Sellable room category holding the availability pool"""
    __tablename__ = 'rooms'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(100), unique=True)
    description = db.Column(db.Text)
    price_per_night = db.Column(db.Float, nullable=False, default=0.0)
    total_rooms = db.Column(db.Integer, nullable=False, default=0)
    rooms_available = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    individual_rooms = db.relationship('IndividualRoom', backref='room_type', lazy='dynamic')
    bookings = db.relationship('Booking', backref='room_type', lazy='dynamic')

    def __repr__(self):
        return f'<RoomType {self.name}>'


class IndividualRoom(db.Model):
    """Physical room carrying the operational status"""
    __tablename__ = 'individual_rooms'

    id = db.Column(db.Integer, primary_key=True)
    room_type_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False)
    room_number = db.Column(db.String(20), unique=True, nullable=False)
    room_name = db.Column(db.String(100))
    floor = db.Column(db.String(20))
    status = db.Column(db.String(20), default='available', nullable=False)  # available, occupied, cleaning, inspection, maintenance, out_of_order
    housekeeping_status = db.Column(db.String(20), default='completed')
    housekeeping_notes = db.Column(db.Text)
    last_cleaned_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bookings = db.relationship('Booking', backref='individual_room', lazy='dynamic')
    status_logs = db.relationship('RoomStatusLog', backref='room', lazy='dynamic',
                                  order_by='RoomStatusLog.created_at.desc()')
    inspections = db.relationship('RoomInspection', backref='room', lazy='dynamic')
    assignments = db.relationship('HousekeepingAssignment', backref='room', lazy='dynamic')

    @property
    def label(self):
        return f'{self.room_number} ({self.room_type.name})' if self.room_type else self.room_number

    def to_dict(self):
        return {
            'id': self.id,
            'room_number': self.room_number,
            'room_type': self.room_type.name if self.room_type else None,
            'floor': self.floor,
            'status': self.status,
            'housekeeping_status': self.housekeeping_status,
            'housekeeping_notes': self.housekeeping_notes,
            'last_cleaned_at': self.last_cleaned_at.isoformat() if self.last_cleaned_at else None,
        }

    def __repr__(self):
        return f'<IndividualRoom {self.room_number}>'


class RoomStatusLog(db.Model):
    __tablename__ = 'room_maintenance_log'

    id = db.Column(db.Integer, primary_key=True)
    individual_room_id = db.Column(db.Integer, db.ForeignKey('individual_rooms.id'), nullable=False)
    status_from = db.Column(db.String(20))
    status_to = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.Text)
    performed_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<RoomStatusLog {self.status_from}->{self.status_to}>'


class RoomInspection(db.Model):
    __tablename__ = 'room_inspections'

    id = db.Column(db.Integer, primary_key=True)
    individual_room_id = db.Column(db.Integer, db.ForeignKey('individual_rooms.id'), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'))
    status = db.Column(db.String(20), default='pending')  # pending, passed, failed
    inspected_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    inspected_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<RoomInspection {self.id} {self.status}>'


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    booking_reference = db.Column(db.String(30), unique=True, nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False)
    individual_room_id = db.Column(db.Integer, db.ForeignKey('individual_rooms.id'))

    # Guest information
    guest_name = db.Column(db.String(150), nullable=False)
    guest_email = db.Column(db.String(120))
    guest_phone = db.Column(db.String(30))
    number_of_guests = db.Column(db.Integer, default=1)
    special_requests = db.Column(db.Text)

    check_in_date = db.Column(db.Date, nullable=False)
    check_out_date = db.Column(db.Date, nullable=False)

    # Pricing
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    amount_paid = db.Column(db.Float, default=0.0)
    amount_due = db.Column(db.Float, default=0.0)
    vat_rate = db.Column(db.Float, default=0.0)
    vat_amount = db.Column(db.Float, default=0.0)
    total_with_vat = db.Column(db.Float, default=0.0)
    last_payment_date = db.Column(db.DateTime)

    # Booking status: pending, tentative, confirmed, checked-in, checked-out, cancelled, expired, no-show
    status = db.Column(db.String(20), default='pending', nullable=False)
    # Payment status: unpaid, partial, paid, refunded
    payment_status = db.Column(db.String(20), default='unpaid', nullable=False)

    # Tentative hold
    is_tentative = db.Column(db.Boolean, default=False)
    tentative_expires_at = db.Column(db.DateTime)

    # Front desk tracking
    checked_in_at = db.Column(db.DateTime)
    checkout_completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    cancellation_reason = db.Column(db.Text)

    # Final invoice
    final_invoice_generated = db.Column(db.Boolean, default=False)
    final_invoice_number = db.Column(db.String(50))
    final_invoice_path = db.Column(db.String(255))
    final_invoice_sent_at = db.Column(db.DateTime)
    checkout_processed_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payments = db.relationship('Payment', foreign_keys='Payment.booking_id', backref='booking', lazy='dynamic')
    timeline = db.relationship('BookingTimelineLog', backref='booking', lazy='dynamic',
                               order_by='BookingTimelineLog.created_at.desc()')

    @property
    def nights(self):
        return (self.check_out_date - self.check_in_date).days

    @property
    def balance_due(self):
        total = self.total_with_vat or self.total_amount or 0.0
        return max(0.0, round(total - (self.amount_paid or 0.0), 2))

    def to_dict(self):
        return {
            'id': self.id,
            'booking_reference': self.booking_reference,
            'room_id': self.room_id,
            'room_type': self.room_type.name if self.room_type else None,
            'individual_room_id': self.individual_room_id,
            'room_number': self.individual_room.room_number if self.individual_room else None,
            'guest_name': self.guest_name,
            'guest_email': self.guest_email,
            'guest_phone': self.guest_phone,
            'check_in_date': self.check_in_date.isoformat() if self.check_in_date else None,
            'check_out_date': self.check_out_date.isoformat() if self.check_out_date else None,
            'nights': self.nights,
            'total_amount': float(self.total_amount or 0.0),
            'amount_paid': float(self.amount_paid or 0.0),
            'amount_due': float(self.amount_due or 0.0),
            'status': self.status,
            'payment_status': self.payment_status,
            'is_tentative': bool(self.is_tentative),
            'tentative_expires_at': self.tentative_expires_at.isoformat() if self.tentative_expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Booking {self.booking_reference}>'


class Payment(db.Model):
    """Ledger row; refunds are rows pointing at their original payment"""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    payment_reference = db.Column(db.String(40), unique=True, nullable=False)
    booking_type = db.Column(db.String(20), default='room', nullable=False)  # room, conference
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    booking_reference = db.Column(db.String(30))
    payment_date = db.Column(db.Date, nullable=False)

    payment_amount = db.Column(db.Float, nullable=False)
    vat_rate = db.Column(db.Float, default=0.0)
    vat_amount = db.Column(db.Float, default=0.0)
    total_amount = db.Column(db.Float, nullable=False)

    payment_method = db.Column(db.String(30), nullable=False)  # cash, card, bank_transfer, mobile_money, cheque, other
    payment_type = db.Column(db.String(30), default='full_payment')  # deposit, partial_payment, full_payment, refund
    payment_status = db.Column(db.String(20), default='completed')  # pending, partial, completed, paid, refunded, failed
    transaction_reference = db.Column(db.String(100))
    notes = db.Column(db.Text)

    # Invoice
    invoice_number = db.Column(db.String(50))
    invoice_path = db.Column(db.String(255))
    invoice_generated = db.Column(db.Boolean, default=False)

    # Refund fields
    original_payment_id = db.Column(db.Integer, db.ForeignKey('payments.id'))
    refund_reason = db.Column(db.String(50))
    refund_status = db.Column(db.String(20))  # pending, processing, completed, failed
    refund_amount = db.Column(db.Float)
    refund_notes = db.Column(db.Text)

    recorded_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    deleted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    original_payment = db.relationship('Payment', remote_side=[id], backref=db.backref('refunds', lazy='dynamic'))
    recorder = db.relationship('AdminUser')

    @property
    def is_refund(self):
        return self.payment_type == 'refund'

    def to_dict(self):
        return {
            'id': self.id,
            'payment_reference': self.payment_reference,
            'booking_type': self.booking_type,
            'booking_id': self.booking_id,
            'booking_reference': self.booking_reference,
            'payment_date': self.payment_date.isoformat() if self.payment_date else None,
            'payment_amount': self.payment_amount,
            'vat_rate': self.vat_rate,
            'vat_amount': self.vat_amount,
            'total_amount': self.total_amount,
            'payment_method': self.payment_method,
            'payment_type': self.payment_type,
            'payment_status': self.payment_status,
            'invoice_number': self.invoice_number,
            'refund_status': self.refund_status,
        }

    def __repr__(self):
        return f'<Payment {self.payment_reference} - {self.payment_method} - {self.total_amount}>'


class HousekeepingAssignment(db.Model):
    __tablename__ = 'housekeeping_assignments'

    id = db.Column(db.Integer, primary_key=True)
    individual_room_id = db.Column(db.Integer, db.ForeignKey('individual_rooms.id'), nullable=False)
    status = db.Column(db.String(20), default='pending', nullable=False)  # pending, in_progress, completed, verified, blocked
    priority = db.Column(db.String(10), default='medium', nullable=False)  # high, medium, low
    assignment_type = db.Column(db.String(30), default='regular_cleaning', nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    assigned_to = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    created_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    notes = db.Column(db.Text)

    is_recurring = db.Column(db.Boolean, default=False)
    recurring_pattern = db.Column(db.String(10))  # daily, weekly, monthly
    auto_created = db.Column(db.Boolean, default=False)
    linked_booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'))

    completed_at = db.Column(db.DateTime)
    verified_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    verified_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    assignee = db.relationship('AdminUser', foreign_keys=[assigned_to])
    creator = db.relationship('AdminUser', foreign_keys=[created_by])
    verifier = db.relationship('AdminUser', foreign_keys=[verified_by])
    linked_booking = db.relationship('Booking')

    def to_dict(self):
        return {
            'id': self.id,
            'individual_room_id': self.individual_room_id,
            'room_number': self.room.room_number if self.room else None,
            'status': self.status,
            'priority': self.priority,
            'assignment_type': self.assignment_type,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'assigned_to': self.assigned_to,
            'assigned_to_name': self.assignee.display_name if self.assignee else None,
            'notes': self.notes,
            'is_recurring': bool(self.is_recurring),
            'recurring_pattern': self.recurring_pattern,
            'auto_created': bool(self.auto_created),
            'linked_booking_id': self.linked_booking_id,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'verified_at': self.verified_at.isoformat() if self.verified_at else None,
        }

    def __repr__(self):
        return f'<HousekeepingAssignment {self.id} room={self.individual_room_id} {self.status}>'


class HousekeepingAuditLog(db.Model):
    __tablename__ = 'housekeeping_audit_log'

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, index=True)  # kept after the assignment is deleted
    action = db.Column(db.String(30), nullable=False)
    old_values = db.Column(db.JSON)
    new_values = db.Column(db.JSON)
    changed_fields = db.Column(db.JSON)
    performed_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    performed_by_name = db.Column(db.String(150))
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<HousekeepingAuditLog {self.assignment_id} {self.action}>'


class TentativeBookingLog(db.Model):
    __tablename__ = 'tentative_booking_log'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    action = db.Column(db.String(30), nullable=False)  # created, converted, cancelled, expired, reminder_sent
    action_by = db.Column(db.Integer, db.ForeignKey('admin_users.id'))
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    booking = db.relationship('Booking', backref=db.backref('tentative_logs', lazy='dynamic'))

    def __repr__(self):
        return f'<TentativeBookingLog {self.booking_id} {self.action}>'


class BookingTimelineLog(db.Model):
    __tablename__ = 'booking_timeline_logs'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    booking_reference = db.Column(db.String(30))
    action = db.Column(db.String(100), nullable=False)
    action_type = db.Column(db.String(30), nullable=False)  # status_change, cancellation, email, check_in, check_out, conversion, payment, room_assignment, modification
    description = db.Column(db.Text)
    old_value = db.Column(db.String(255))
    new_value = db.Column(db.String(255))
    performed_by_type = db.Column(db.String(10), default='system')  # admin, system, guest
    performed_by_id = db.Column(db.Integer)
    performed_by_name = db.Column(db.String(150))
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    extra = db.Column('metadata', db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'action': self.action,
            'action_type': self.action_type,
            'description': self.description,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'performed_by': self.performed_by_name,
            'performed_by_type': self.performed_by_type,
            'metadata': self.extra,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<BookingTimelineLog {self.booking_reference} {self.action}>'
