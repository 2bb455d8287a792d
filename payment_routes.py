import os

from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify, send_file, abort
from flask_login import current_user

import invoice_service
import payment_service
from extensions import db
from models import Booking, Payment
from routes import admin_required, roles_required

payments_bp = Blueprint('payments', __name__, url_prefix='/admin')

PAYMENT_FILTERS = ('booking_type', 'booking_id', 'status', 'method', 'start_date', 'end_date')


@payments_bp.route('/payments')
@admin_required
def payments():
    filters = {k: request.args.get(k) for k in PAYMENT_FILTERS if request.args.get(k)}
    page = request.args.get('page', 1, type=int)
    return render_template('payments.html',
                           pagination=payment_service.list_payments(filters, page),
                           summary=payment_service.payment_summary(filters),
                           filters=filters,
                           methods=payment_service.PAYMENT_METHODS,
                           statuses=payment_service.PAYMENT_STATUSES,
                           payment_types=payment_service.PAYMENT_TYPES)


@payments_bp.route('/bookings/<int:booking_id>/payments', methods=['POST'])
@roles_required('manager', 'receptionist')
def record_payment(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    data = request.get_json(silent=True) or request.form
    payment = payment_service.record_payment(
        booking,
        data.get('amount'),
        data.get('payment_method'),
        current_user,
        payment_type=data.get('payment_type') or 'partial_payment',
        status=data.get('payment_status') or 'completed',
        payment_date=data.get('payment_date'),
        transaction_reference=data.get('transaction_reference'),
        notes=data.get('notes'),
    )
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'payment': payment.to_dict(),
                        'booking': booking.to_dict()}), 201
    flash(f'Payment {payment.payment_reference} recorded.', 'success')
    return redirect(url_for('front_desk.booking_detail', booking_id=booking.id))


@payments_bp.route('/bookings/<int:booking_id>/mark-paid', methods=['POST'])
@roles_required('manager', 'receptionist')
def mark_paid(booking_id):
    booking = Booking.query.get_or_404(booking_id)
    payment, warnings = payment_service.mark_booking_paid(booking, current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'payment': payment.to_dict(), 'warnings': warnings})
    flash(f'Booking {booking.booking_reference} marked as paid ({payment.payment_reference}).', 'success')
    for warning in warnings:
        flash(warning, 'warning')
    return redirect(url_for('front_desk.booking_detail', booking_id=booking.id))


@payments_bp.route('/payments/<int:payment_id>/delete', methods=['POST'])
@roles_required('manager')
def delete_payment(payment_id):
    payment = Payment.query.get_or_404(payment_id)
    payment_service.soft_delete_payment(payment, current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True})
    flash(f'Payment {payment.payment_reference} deleted.', 'success')
    return redirect(url_for('payments.payments'))


@payments_bp.route('/invoices')
@admin_required
def invoices():
    filters = {k: request.args.get(k) for k in ('type', 'status', 'search') if request.args.get(k)}
    return render_template('invoices.html', invoices=invoice_service.list_invoices(filters),
                           filters=filters, statuses=payment_service.PAYMENT_STATUSES)


@payments_bp.route('/invoices/<int:payment_id>')
@admin_required
def view_invoice(payment_id):
    payment = Payment.query.get_or_404(payment_id)
    if not payment.invoice_generated or not payment.invoice_path or not os.path.exists(payment.invoice_path):
        abort(404)
    return send_file(payment.invoice_path, mimetype='text/html')


def _invoice_action(payment_id, action, success_message):
    payment = Payment.query.get_or_404(payment_id)
    sent, error = action(payment)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': sent, 'message': success_message if sent else error}), 200 if sent else 502
    if sent:
        flash(success_message, 'success')
    else:
        flash(f'Email could not be sent: {error}', 'danger')
    return redirect(url_for('payments.invoices'))


@payments_bp.route('/invoices/<int:payment_id>/resend', methods=['POST'])
@roles_required('manager', 'receptionist')
def resend_invoice(payment_id):
    return _invoice_action(payment_id, invoice_service.resend_invoice, 'Invoice sent to guest.')


@payments_bp.route('/invoices/<int:payment_id>/reminder', methods=['POST'])
@roles_required('manager', 'receptionist')
def send_reminder(payment_id):
    return _invoice_action(payment_id, invoice_service.send_reminder, 'Payment reminder sent.')


@payments_bp.route('/invoices/<int:payment_id>/regenerate', methods=['POST'])
@roles_required('manager')
def regenerate_invoice(payment_id):
    payment = Payment.query.get_or_404(payment_id)
    number, _ = invoice_service.regenerate_invoice(payment)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'invoice_number': number})
    flash(f'Invoice regenerated as {number}.', 'success')
    return redirect(url_for('payments.invoices'))
