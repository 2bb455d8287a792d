from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify
from flask_login import current_user

import payment_service
from errors import ValidationError
from extensions import db
from models import Payment
from routes import admin_required, roles_required

refund_bp = Blueprint('refund', __name__, url_prefix='/admin/refunds')


@refund_bp.route('/')
@admin_required
def refunds():
    rows = Payment.query.filter(Payment.payment_type == 'refund', Payment.deleted_at.is_(None)) \
        .order_by(Payment.created_at.desc()).all()
    return render_template('refunds.html', refunds=rows, statuses=payment_service.REFUND_STATUSES,
                           refundable=payment_service.refundable_payments())


@refund_bp.route('/new/<int:payment_id>', methods=['GET', 'POST'])
@roles_required('manager')
def new_refund(payment_id):
    original = Payment.query.get_or_404(payment_id)

    if request.method == 'POST':
        data = request.get_json(silent=True) or request.form
        try:
            refund = payment_service.create_refund(
                original,
                data.get('refund_amount'),
                data.get('refund_reason'),
                current_user,
                method=data.get('refund_method') or None,
                notes=data.get('refund_notes'),
                refund_status=data.get('refund_status') or 'pending',
            )
            db.session.commit()
        except ValidationError as e:
            db.session.rollback()
            if request.is_json:
                return jsonify(e.to_dict()), e.status_code
            flash(e.message, 'danger')
            return render_template('refund_form.html', original=original,
                                   refundable=original.total_amount - payment_service.refunded_total(original),
                                   reasons=payment_service.REFUND_REASONS,
                                   statuses=payment_service.REFUND_STATUSES,
                                   methods=payment_service.PAYMENT_METHODS), 400

        if request.is_json:
            return jsonify({'success': True, 'refund': refund.to_dict()}), 201
        flash(f'Refund {refund.payment_reference} created.', 'success')
        return redirect(url_for('refund.refunds'))

    return render_template('refund_form.html', original=original,
                           refundable=original.total_amount - payment_service.refunded_total(original),
                           reasons=payment_service.REFUND_REASONS,
                           statuses=payment_service.REFUND_STATUSES,
                           methods=payment_service.PAYMENT_METHODS)


@refund_bp.route('/<int:refund_id>/status', methods=['POST'])
@roles_required('manager')
def update_status(refund_id):
    refund = Payment.query.get_or_404(refund_id)
    data = request.get_json(silent=True) or request.form
    payment_service.update_refund_status(refund, data.get('refund_status'), current_user)
    db.session.commit()
    if request.is_json:
        return jsonify({'success': True, 'refund': refund.to_dict()})
    flash(f'Refund {refund.payment_reference} marked {refund.refund_status}.', 'success')
    return redirect(url_for('refund.refunds'))
