"""
Invoice numbering, rendering and delivery.

Invoices are HTML documents rendered from ``templates/invoice.html`` and
stored under INVOICE_DIR, one file per invoice number.
"""
import logging
import os
from datetime import datetime

from flask import current_app, render_template

from errors import ValidationError
from extensions import db
from models import Booking, Payment
from settings import get_setting, get_int_setting, invoice_cc_recipients
from timeutils import hotel_today
from email_service import send_booking_email

logger = logging.getLogger(__name__)


def _sequence(number, prefix):
    try:
        return int(number[len(prefix):])
    except (TypeError, ValueError):
        return None


def next_invoice_number(year=None):
    """``{prefix}-{year}-{seq:06d}``; the sequence never drops below invoice_start_number"""
    year = year or hotel_today().year
    prefix = f"{get_setting('invoice_prefix', 'INV')}-{year}-"
    start = get_int_setting('invoice_start_number', 1000)

    issued = [n for (n,) in db.session.query(Payment.invoice_number)
              .filter(Payment.invoice_number.like(f'{prefix}%'))]
    issued += [n for (n,) in db.session.query(Booking.final_invoice_number)
               .filter(Booking.final_invoice_number.like(f'{prefix}%'))]
    sequences = [s for s in (_sequence(n, prefix) for n in issued) if s is not None]

    next_seq = max([start] + [s + 1 for s in sequences])
    return f'{prefix}{next_seq:06d}'


def invoice_context(booking, invoice_number, payment=None, final=False):
    payments = booking.payments.filter(Payment.deleted_at.is_(None)) \
        .order_by(Payment.payment_date, Payment.id).all()
    total = booking.total_with_vat or booking.total_amount or 0.0
    nights = max(booking.nights, 1)
    return {
        'booking': booking,
        'payment': payment,
        'invoice_number': invoice_number,
        'issued_on': hotel_today(),
        'is_final': final,
        'room_type': booking.room_type,
        'room': booking.individual_room,
        'nights': nights,
        'rate': round((booking.total_amount or 0.0) / nights, 2),
        'subtotal': booking.total_amount or 0.0,
        'vat_rate': booking.vat_rate or 0.0,
        'vat_amount': booking.vat_amount or 0.0,
        'total': total,
        'payments': [p for p in payments if not p.is_refund],
        'refunds': [p for p in payments if p.is_refund],
        'amount_paid': booking.amount_paid or 0.0,
        'balance': booking.balance_due,
        'currency': get_setting('currency_symbol'),
        'hotel_name': get_setting('hotel_name') or current_app.config.get('SITE_NAME'),
        'hotel_address': get_setting('hotel_address'),
        'hotel_phone': get_setting('hotel_phone'),
    }


def render_invoice(booking, invoice_number, payment=None, final=False):
    return render_template('invoice.html', **invoice_context(booking, invoice_number, payment, final))


def _write_invoice(invoice_number, html):
    directory = current_app.config['INVOICE_DIR']
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f'{invoice_number}.html')
    with open(path, 'w', encoding='utf-8') as fh:
        fh.write(html)
    return path


def generate_invoice(payment, new_number=False):
    """Render and store the invoice for a payment. Returns ``(number, path)``."""
    if payment.booking is None:
        raise ValidationError('Invoices can only be generated for room bookings.')
    number = payment.invoice_number
    if new_number or not number:
        number = next_invoice_number()
    path = _write_invoice(number, render_invoice(payment.booking, number, payment=payment))
    payment.invoice_number = number
    payment.invoice_path = path
    payment.invoice_generated = True
    logger.info("[INVOICE] %s generated for %s", number, payment.payment_reference)
    return number, path


def regenerate_invoice(payment):
    return generate_invoice(payment, new_number=True)


def send_invoice_email(payment, reminder=False):
    if not payment.invoice_generated or not payment.invoice_path or not os.path.exists(payment.invoice_path):
        generate_invoice(payment)
    booking = payment.booking
    if reminder:
        subject = f'Payment Reminder - {booking.booking_reference}'
        email_type = 'Payment reminder'
    else:
        subject = f'Invoice {payment.invoice_number} - {booking.booking_reference}'
        email_type = 'Invoice'
    return send_booking_email(
        booking, email_type, subject, 'email/invoice.html',
        cc=invoice_cc_recipients(current_app.config.get('MAIL_USERNAME')),
        attachments=[payment.invoice_path],
        payment=payment, reminder=reminder, currency=get_setting('currency_symbol'),
    )


def resend_invoice(payment):
    if payment.is_refund:
        raise ValidationError('Refund records do not have invoices.')
    return send_invoice_email(payment)


def send_reminder(payment):
    booking = payment.booking
    if booking is None or booking.balance_due <= 0:
        raise ValidationError('This booking has no outstanding balance.')
    return send_invoice_email(payment, reminder=True)


def generate_and_send_final_invoice(booking, user=None):
    """Final folio at checkout; a second call returns the stored invoice"""
    if booking.final_invoice_generated:
        return {
            'success': True,
            'message': 'Final invoice already generated',
            'invoice_number': booking.final_invoice_number,
            'invoice_path': booking.final_invoice_path,
            'sent_at': booking.final_invoice_sent_at,
            'idempotent': True,
        }

    number = next_invoice_number()
    path = _write_invoice(number, render_invoice(booking, number, final=True))
    booking.final_invoice_generated = True
    booking.final_invoice_number = number
    booking.final_invoice_path = path
    booking.final_invoice_sent_at = None
    booking.checkout_processed_by = user.id if user else booking.checkout_processed_by
    db.session.flush()

    sent, error = send_booking_email(
        booking, 'Final invoice',
        f"Final Invoice - {current_app.config.get('SITE_NAME')} [{booking.booking_reference}]",
        'email/final_invoice.html',
        cc=invoice_cc_recipients(current_app.config.get('MAIL_USERNAME')),
        attachments=[path], invoice_number=number, checkout_date=hotel_today(),
    )
    if sent:
        booking.final_invoice_sent_at = datetime.utcnow()
    else:
        logger.error("[INVOICE] Final invoice email for %s failed: %s", booking.booking_reference, error)

    return {
        'success': True,
        'message': 'Final invoice generated' + (' and sent' if sent else ' (email failed)'),
        'invoice_number': number,
        'invoice_path': path,
        'email_sent': sent,
        'email_error': error,
        'idempotent': False,
    }


def list_invoices(filters=None):
    filters = filters or {}
    query = Payment.query.filter(Payment.invoice_generated.is_(True), Payment.deleted_at.is_(None))
    if filters.get('type'):
        query = query.filter(Payment.booking_type == filters['type'])
    if filters.get('status'):
        query = query.filter(Payment.payment_status == filters['status'])
    search = (filters.get('search') or '').strip()
    if search:
        like = f'%{search}%'
        query = query.filter(db.or_(
            Payment.invoice_number.ilike(like),
            Payment.payment_reference.ilike(like),
            Payment.booking_reference.ilike(like),
        ))
    return query.order_by(Payment.created_at.desc()).all()
