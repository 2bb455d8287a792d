import os

import pytest

import invoice_service
import payment_service
from errors import TransitionError, ValidationError
from models import ActivityLog, Payment
from settings import set_setting


@pytest.fixture
def booking(make_booking):
    return make_booking(status='confirmed', total=100000.0)


def test_calculate_vat_uses_settings(app, db):
    assert payment_service.calculate_vat(1000) == {'vat_rate': 16.5, 'vat_amount': 165.0, 'total': 1165.0}

    set_setting('vat_enabled', '0')
    db.session.commit()
    assert payment_service.calculate_vat(1000) == {'vat_rate': 0.0, 'vat_amount': 0.0, 'total': 1000.0}


def test_vat_portion_of_gross_amount():
    assert payment_service.vat_portion(1165.0, 16.5) == 165.0
    assert payment_service.vat_portion(500.0, 0) == 0.0


def test_record_partial_payment(booking, admin):
    payment = payment_service.record_payment(booking, '50000', 'card', admin)
    assert payment.payment_reference.startswith('PAY-')
    assert payment.vat_amount == 8250.0
    assert payment.total_amount == 58250.0

    assert booking.total_with_vat == 116500.0
    assert booking.amount_paid == 58250.0
    assert booking.amount_due == 58250.0
    assert booking.payment_status == 'partial'
    assert booking.last_payment_date is not None


def test_record_payment_validation(booking, admin):
    with pytest.raises(ValidationError, match='greater than zero'):
        payment_service.record_payment(booking, 0, 'cash', admin)
    with pytest.raises(ValidationError, match='must be a number'):
        payment_service.record_payment(booking, 'lots', 'cash', admin)
    with pytest.raises(ValidationError, match='Invalid payment method'):
        payment_service.record_payment(booking, 10, 'bitcoin', admin)
    with pytest.raises(ValidationError, match='Invalid payment type'):
        payment_service.record_payment(booking, 10, 'cash', admin, payment_type='refund')


def test_pending_payment_does_not_count_as_paid(booking, admin):
    payment_service.record_payment(booking, 1000, 'bank_transfer', admin, status='pending')
    assert booking.amount_paid == 0.0
    assert booking.payment_status == 'unpaid'


def test_mark_paid_settles_balance_and_emails_invoice(booking, admin, outbox, today):
    payment, warnings = payment_service.mark_booking_paid(booking, admin)

    assert warnings == []
    assert payment.payment_reference == f'PAY-{today.year}-{booking.id:06d}'
    assert payment.total_amount == 116500.0
    assert payment.vat_amount == 16500.0
    assert payment.payment_amount == 100000.0
    assert booking.payment_status == 'paid'
    assert booking.balance_due == 0.0

    assert payment.invoice_number == f'INV-{today.year}-001000'
    assert os.path.exists(payment.invoice_path)
    assert len(outbox) == 1
    assert payment.invoice_number in outbox[0].subject

    with pytest.raises(ValidationError, match='already fully paid'):
        payment_service.mark_booking_paid(booking, admin)


def test_mark_paid_after_deposit_charges_the_rest(booking, admin):
    payment_service.record_payment(booking, 20000, 'cash', admin, payment_type='deposit')
    payment, _ = payment_service.mark_booking_paid(booking, admin)
    assert payment.total_amount == 116500.0 - 23300.0
    assert booking.payment_status == 'paid'


def test_mark_paid_rejects_cancelled_booking(make_booking, admin):
    with pytest.raises(TransitionError):
        payment_service.mark_booking_paid(make_booking(status='cancelled'), admin)


def test_soft_delete_restores_balance(booking, admin, db):
    payment = payment_service.record_payment(booking, 50000, 'cash', admin)
    payment_service.soft_delete_payment(payment, admin)
    db.session.commit()

    assert payment.deleted_at is not None
    assert booking.amount_paid == 0.0
    assert booking.payment_status == 'unpaid'
    assert db.session.get(Payment, payment.id) is not None
    with pytest.raises(ValidationError):
        payment_service.soft_delete_payment(payment, admin)


def test_refund_limits_and_vat(booking, admin):
    original = payment_service.record_payment(booking, 10000, 'card', admin)
    assert original.total_amount == 11650.0

    refund = payment_service.create_refund(original, 1165, 'service_issue', admin)
    assert refund.payment_reference.startswith('REF-')
    assert refund.payment_type == 'refund'
    assert refund.vat_amount == 165.0
    assert refund.payment_amount == 1000.0
    assert refund.payment_method == 'card'
    assert refund.refund_status == 'pending'
    assert refund.original_payment == original

    with pytest.raises(ValidationError, match='cannot exceed 10485.00'):
        payment_service.create_refund(original, 10486, 'service_issue', admin)
    with pytest.raises(ValidationError, match='valid refund reason'):
        payment_service.create_refund(original, 10, 'because', admin)
    with pytest.raises(ValidationError, match='cannot be refunded'):
        payment_service.create_refund(refund, 10, 'other', admin)

    assert ActivityLog.query.filter_by(action='refund_created').count() == 1


def test_only_completed_refunds_reduce_amount_paid(booking, admin):
    original = payment_service.record_payment(booking, 10000, 'cash', admin)
    refund = payment_service.create_refund(original, 11650, 'cancellation', admin)
    assert booking.amount_paid == 11650.0
    assert original.payment_status == 'refunded'

    payment_service.update_refund_status(refund, 'completed', admin)
    assert booking.amount_paid == 0.0
    assert booking.payment_status == 'refunded'

    payment_service.update_refund_status(refund, 'failed', admin)
    assert original.payment_status == 'completed'
    assert booking.amount_paid == 11650.0

    with pytest.raises(ValidationError):
        payment_service.update_refund_status(refund, 'lost', admin)


def test_payment_summary_and_listing(booking, admin):
    first = payment_service.record_payment(booking, 1000, 'cash', admin)
    payment_service.record_payment(booking, 500, 'card', admin, status='pending')
    payment_service.create_refund(first, 100, 'overpayment', admin)

    summary = payment_service.payment_summary()
    assert summary['total_payments'] == 3
    assert summary['total_collected'] == 1165.0
    assert summary['total_pending'] == 582.5
    assert summary['total_refunded'] == 100.0

    page = payment_service.list_payments({'method': 'card'})
    assert [p.payment_method for p in page.items] == ['card']
    assert first in payment_service.refundable_payments(booking.id)


def test_invoice_numbers_continue_the_sequence(booking, admin, db, today):
    set_setting('invoice_start_number', '50')
    db.session.commit()
    assert invoice_service.next_invoice_number() == f'INV-{today.year}-000050'

    booking.final_invoice_number = f'INV-{today.year}-000077'
    db.session.commit()
    assert invoice_service.next_invoice_number() == f'INV-{today.year}-000078'
    assert invoice_service.next_invoice_number(year=today.year + 1) == f'INV-{today.year + 1}-000050'


def test_regenerate_issues_new_number(booking, admin, today):
    payment = payment_service.record_payment(booking, 1000, 'cash', admin)
    first, _ = invoice_service.generate_invoice(payment)
    second, path = invoice_service.regenerate_invoice(payment)
    assert first == f'INV-{today.year}-001000'
    assert second == f'INV-{today.year}-001001'
    assert payment.invoice_number == second
    assert os.path.exists(path)


def test_reminder_needs_outstanding_balance(booking, admin, outbox):
    payment, _ = payment_service.mark_booking_paid(booking, admin)
    with pytest.raises(ValidationError, match='no outstanding balance'):
        invoice_service.send_reminder(payment)


def test_invoice_listing_filters(booking, admin):
    payment, _ = payment_service.mark_booking_paid(booking, admin)
    assert invoice_service.list_invoices() == [payment]
    assert invoice_service.list_invoices({'search': payment.invoice_number}) == [payment]
    assert invoice_service.list_invoices({'status': 'pending'}) == []


def test_listing_rejects_non_numeric_booking_filter(booking, admin):
    with pytest.raises(ValidationError, match='Booking must be a whole number'):
        payment_service.list_payments({'booking_id': 'BK-1'})
