"""
Payment ledger for room bookings: recording payments, VAT, refunds and the
booking balance derived from them.
"""
import logging
import random
from datetime import datetime, date

from auth_service import log_activity
from errors import ValidationError, TransitionError
from extensions import db
from models import Payment
from parsing import parse_int
from settings import get_bool_setting, get_float_setting
from timeutils import hotel_today
import invoice_service
import timeline

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

PAYMENT_METHODS = ['cash', 'card', 'bank_transfer', 'mobile_money', 'cheque', 'other']
PAYMENT_TYPES = ['deposit', 'partial_payment', 'full_payment', 'refund']
PAYMENT_STATUSES = ['pending', 'partial', 'completed', 'paid', 'refunded', 'failed']
COLLECTED_STATUSES = ['completed', 'paid']
OUTSTANDING_STATUSES = ['pending', 'partial']

REFUND_REASONS = ['early_checkout', 'late_checkout_charge', 'cancellation', 'service_issue', 'overpayment', 'other']
REFUND_STATUSES = ['pending', 'processing', 'completed', 'failed']


def calculate_vat(amount):
    """VAT on top of a net amount, using the hotel settings"""
    amount = round(float(amount or 0), 2)
    if not get_bool_setting('vat_enabled', False):
        return {'vat_rate': 0.0, 'vat_amount': 0.0, 'total': amount}
    rate = get_float_setting('vat_rate', 0.0)
    vat_amount = round(amount * rate / 100, 2)
    return {'vat_rate': rate, 'vat_amount': vat_amount, 'total': round(amount + vat_amount, 2)}


def vat_portion(gross, rate):
    """VAT contained in a VAT-inclusive amount"""
    if not rate:
        return 0.0
    return round(gross * rate / (100 + rate), 2)


def _unique_reference(prefix, year=None):
    year = year or datetime.utcnow().year
    while True:
        reference = f'{prefix}-{year}-{random.randint(0, 999999):06d}'
        if not Payment.query.filter_by(payment_reference=reference).first():
            return reference


def _parse_amount(value, label='Amount'):
    try:
        amount = round(float(value), 2)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} must be a number.')
    return amount


def _parse_date(value):
    if value in (None, ''):
        return hotel_today()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError('Invalid date format. Use YYYY-MM-DD.')


def booking_total(booking):
    return booking.total_with_vat or booking.total_amount or 0.0


def apply_booking_vat(booking):
    vat = calculate_vat(booking.total_amount)
    booking.vat_rate = vat['vat_rate']
    booking.vat_amount = vat['vat_amount']
    booking.total_with_vat = vat['total']
    return vat


def recalculate_booking_payments(booking):
    """Derive amount_paid, amount_due and payment_status from the ledger"""
    rows = Payment.query.filter(
        Payment.booking_id == booking.id,
        Payment.deleted_at.is_(None),
    ).all()

    received = sum(p.total_amount for p in rows
                   if not p.is_refund and p.payment_status in COLLECTED_STATUSES + ['refunded'])
    refunded = sum(p.total_amount for p in rows if p.is_refund and p.refund_status == 'completed')
    paid = round(received - refunded, 2)
    total = booking_total(booking)

    booking.amount_paid = paid
    booking.amount_due = max(0.0, round(total - paid, 2))
    payment_dates = [p.payment_date for p in rows if not p.is_refund]
    if payment_dates:
        booking.last_payment_date = datetime.combine(max(payment_dates), datetime.min.time())

    if refunded > 0 and paid <= 0:
        booking.payment_status = 'refunded'
    elif paid <= 0:
        booking.payment_status = 'unpaid'
    elif booking.amount_due <= 0:
        booking.payment_status = 'paid'
    else:
        booking.payment_status = 'partial'
    return booking


def record_payment(booking, amount, method, user, payment_type='partial_payment', status='completed',
                   payment_date=None, transaction_reference=None, notes=None):
    amount = _parse_amount(amount)
    if amount <= 0:
        raise ValidationError('Payment amount must be greater than zero.')
    if method not in PAYMENT_METHODS:
        raise ValidationError(f'Invalid payment method: {method}')
    if payment_type not in PAYMENT_TYPES or payment_type == 'refund':
        raise ValidationError(f'Invalid payment type: {payment_type}')
    if status not in PAYMENT_STATUSES or status == 'refunded':
        raise ValidationError(f'Invalid payment status: {status}')

    if not booking.total_with_vat:
        apply_booking_vat(booking)
    vat = calculate_vat(amount)
    payment = Payment(
        payment_reference=_unique_reference('PAY'),
        booking_type='room',
        booking_id=booking.id,
        booking_reference=booking.booking_reference,
        payment_date=_parse_date(payment_date),
        payment_amount=amount,
        vat_rate=vat['vat_rate'],
        vat_amount=vat['vat_amount'],
        total_amount=vat['total'],
        payment_method=method,
        payment_type=payment_type,
        payment_status=status,
        transaction_reference=(transaction_reference or '').strip() or None,
        notes=(notes or '').strip() or None,
        recorded_by=user.id if user else None,
    )
    db.session.add(payment)
    db.session.flush()
    recalculate_booking_payments(booking)
    timeline.log_payment(booking, payment, user)
    logger.info("[PAYMENTS] %s recorded for %s: %.2f", payment.payment_reference,
                booking.booking_reference, payment.total_amount)
    return payment


def mark_booking_paid(booking, user):
    """Settle the whole outstanding balance in cash and email the invoice.

    Returns ``(payment, warnings)``.
    """
    if booking.status in ('cancelled', 'expired'):
        raise TransitionError(f'Cannot take payment for a {booking.status} booking.')
    if booking.payment_status == 'paid':
        raise ValidationError('This booking is already fully paid.')

    vat = apply_booking_vat(booking)
    outstanding = round(vat['total'] - (booking.amount_paid or 0.0), 2)
    if outstanding <= 0:
        raise ValidationError('There is no outstanding balance on this booking.')
    vat_amount = vat_portion(outstanding, vat['vat_rate'])

    today = hotel_today()
    reference = f'PAY-{today.year}-{booking.id:06d}'
    if Payment.query.filter_by(payment_reference=reference).first():
        reference = _unique_reference('PAY', today.year)

    payment = Payment(
        payment_reference=reference,
        booking_type='room',
        booking_id=booking.id,
        booking_reference=booking.booking_reference,
        payment_date=today,
        payment_amount=round(outstanding - vat_amount, 2),
        vat_rate=vat['vat_rate'],
        vat_amount=vat_amount,
        total_amount=outstanding,
        payment_method='cash',
        payment_type='full_payment',
        payment_status='completed',
        notes='Marked as paid from the back office',
        recorded_by=user.id if user else None,
    )
    db.session.add(payment)
    db.session.flush()

    recalculate_booking_payments(booking)
    booking.last_payment_date = datetime.utcnow()
    timeline.log_payment(booking, payment, user)

    warnings = []
    try:
        invoice_service.generate_invoice(payment)
        sent, error = invoice_service.send_invoice_email(payment)
        if not sent:
            warnings.append(f'Invoice email could not be sent: {error}')
    except OSError as e:
        logger.error("[PAYMENTS] Invoice for %s failed: %s", payment.payment_reference, e)
        warnings.append(f'Invoice could not be generated: {e}')
    return payment, warnings


def soft_delete_payment(payment, user):
    if payment.deleted_at is not None:
        raise ValidationError('Payment has already been deleted.')
    payment.deleted_at = datetime.utcnow()
    if payment.is_refund and payment.original_payment is not None:
        _refresh_original_status(payment.original_payment)
    if payment.booking is not None:
        recalculate_booking_payments(payment.booking)
        timeline.log_event(payment.booking, 'Payment deleted', 'payment',
                           f'{payment.payment_reference} removed from the ledger', actor=user)
    return payment


def refunded_total(original):
    return round(sum(r.total_amount for r in original.refunds
                     if r.deleted_at is None and r.refund_status != 'failed'), 2)


def _refresh_original_status(original):
    if refunded_total(original) >= round(original.total_amount, 2):
        original.payment_status = 'refunded'
    elif original.payment_status == 'refunded':
        original.payment_status = 'completed'


def create_refund(original, amount, reason, user, method=None, notes=None, refund_status='pending'):
    if original.is_refund:
        raise ValidationError('A refund cannot be refunded.')
    if original.deleted_at is not None or original.payment_status not in COLLECTED_STATUSES:
        raise ValidationError('Only completed or paid payments can be refunded.')

    amount = _parse_amount(amount, 'Refund amount')
    if amount <= 0:
        raise ValidationError('Refund amount must be greater than zero.')
    refundable = round(original.total_amount - refunded_total(original), 2)
    if amount > refundable:
        raise ValidationError(f'Refund amount cannot exceed {refundable:.2f}.')
    if reason not in REFUND_REASONS:
        raise ValidationError('Please select a valid refund reason.')
    if refund_status not in REFUND_STATUSES:
        raise ValidationError(f'Invalid refund status: {refund_status}')
    method = method or original.payment_method
    if method not in PAYMENT_METHODS:
        raise ValidationError(f'Invalid payment method: {method}')

    rate = original.vat_rate or 0.0
    refund_vat = vat_portion(amount, rate)
    refund = Payment(
        payment_reference=_unique_reference('REF'),
        booking_type=original.booking_type,
        booking_id=original.booking_id,
        booking_reference=original.booking_reference,
        payment_date=hotel_today(),
        payment_amount=round(amount - refund_vat, 2),
        vat_rate=rate,
        vat_amount=refund_vat,
        total_amount=amount,
        payment_method=method,
        payment_type='refund',
        payment_status='refunded',
        original_payment_id=original.id,
        refund_reason=reason,
        refund_status=refund_status,
        refund_amount=amount,
        refund_notes=(notes or '').strip() or None,
        recorded_by=user.id if user else None,
    )
    db.session.add(refund)
    db.session.flush()

    _refresh_original_status(original)
    booking = original.booking
    if booking is not None:
        recalculate_booking_payments(booking)
        timeline.log_payment(booking, refund, user)
    log_activity('refund_created', user=user,
                 details=f'{refund.payment_reference} for {amount:.2f} against {original.payment_reference} ({reason})')
    logger.info("[REFUND] %s created against %s", refund.payment_reference, original.payment_reference)
    return refund


def update_refund_status(refund, status, user):
    if not refund.is_refund:
        raise ValidationError('Payment is not a refund.')
    if status not in REFUND_STATUSES:
        raise ValidationError(f'Invalid refund status: {status}')
    old_status = refund.refund_status
    refund.refund_status = status
    if refund.original_payment is not None:
        _refresh_original_status(refund.original_payment)
    if refund.booking is not None:
        recalculate_booking_payments(refund.booking)
        timeline.log_event(refund.booking, 'Refund status changed', 'payment',
                           f'{refund.payment_reference}: {old_status} -> {status}',
                           old_value=old_status, new_value=status, actor=user)
    return refund


def _filtered_query(filters):
    filters = filters or {}
    query = Payment.query.filter(Payment.deleted_at.is_(None))
    if filters.get('booking_type'):
        query = query.filter(Payment.booking_type == filters['booking_type'])
    if filters.get('booking_id'):
        query = query.filter(Payment.booking_id == parse_int(filters['booking_id'], 'Booking'))
    if filters.get('status'):
        query = query.filter(Payment.payment_status == filters['status'])
    if filters.get('method'):
        query = query.filter(Payment.payment_method == filters['method'])
    if filters.get('start_date'):
        query = query.filter(Payment.payment_date >= _parse_date(filters['start_date']))
    if filters.get('end_date'):
        query = query.filter(Payment.payment_date <= _parse_date(filters['end_date']))
    return query


def list_payments(filters=None, page=1):
    query = _filtered_query(filters).order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    return query.paginate(page=page, per_page=PAGE_SIZE, error_out=False)


def payment_summary(filters=None):
    rows = _filtered_query(filters).all()
    return {
        'total_payments': len(rows),
        'total_collected': round(sum(p.total_amount for p in rows
                                     if not p.is_refund and p.payment_status in COLLECTED_STATUSES), 2),
        'total_pending': round(sum(p.total_amount for p in rows
                                   if not p.is_refund and p.payment_status in OUTSTANDING_STATUSES), 2),
        'total_refunded': round(sum(p.total_amount for p in rows
                                    if p.is_refund and p.refund_status != 'failed'), 2),
    }


def refundable_payments(booking_id=None):
    query = Payment.query.filter(
        Payment.deleted_at.is_(None),
        Payment.payment_type != 'refund',
        Payment.payment_status.in_(COLLECTED_STATUSES),
    )
    if booking_id:
        query = query.filter(Payment.booking_id == booking_id)
    return query.order_by(Payment.payment_date.desc()).all()