"""
Outgoing mail for the back office.

SendGrid is used when SENDGRID_API_KEY is configured, SMTP through
Flask-Mail otherwise. Senders return ``(sent, error)`` and never raise, so a
mail outage cannot roll back a checkout or a payment.
"""
import base64
import logging
import mimetypes
import os
import re

from flask import current_app, render_template
from flask_mail import Message
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Cc, Attachment, FileContent, FileName, FileType, Disposition

from extensions import mail
from timeline import log_email

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r'<[^>]+>')


def html_to_text(html):
    text = _TAG_RE.sub('', html or '')
    return re.sub(r'\n\s*\n+', '\n\n', text).strip()


def _read_attachment(path):
    with open(path, 'rb') as fh:
        data = fh.read()
    content_type = mimetypes.guess_type(path)[0] or 'application/octet-stream'
    return os.path.basename(path), content_type, data


def _send_with_sendgrid(api_key, to, subject, html, text, cc, attachments):
    message = Mail(
        from_email=current_app.config['EMAIL_FROM'],
        to_emails=to,
        subject=subject,
        html_content=html,
        plain_text_content=text,
    )
    for address in cc:
        message.add_cc(Cc(address))
    for path in attachments:
        filename, content_type, data = _read_attachment(path)
        message.attachment = Attachment(
            FileContent(base64.b64encode(data).decode()),
            FileName(filename),
            FileType(content_type),
            Disposition('attachment'),
        )

    response = SendGridAPIClient(api_key=api_key).send(message)
    logger.debug("[EMAIL] SendGrid response: %s", response.status_code)
    if response.status_code not in (200, 202):
        return False, f'SendGrid returned status {response.status_code}'
    return True, None


def _send_with_smtp(to, subject, html, text, cc, attachments):
    msg = Message(
        subject=subject,
        sender=current_app.config.get('MAIL_DEFAULT_SENDER') or current_app.config.get('MAIL_USERNAME'),
        recipients=[to],
        cc=cc,
        body=text,
        html=html,
    )
    for path in attachments:
        filename, content_type, data = _read_attachment(path)
        msg.attach(filename, content_type, data)
    mail.send(msg)
    return True, None


def send_email(to, subject, html, text=None, cc=None, attachments=None):
    """Send one message. Returns ``(sent, error_message)``."""
    if not to:
        return False, 'No recipient address'

    text = text or html_to_text(html)
    cc = [c for c in (cc or []) if c and c != to]
    attachments = [p for p in (attachments or []) if p and os.path.exists(p)]

    try:
        api_key = current_app.config.get('SENDGRID_API_KEY')
        if api_key:
            sent, error = _send_with_sendgrid(api_key, to, subject, html, text, cc, attachments)
        else:
            sent, error = _send_with_smtp(to, subject, html, text, cc, attachments)
    except Exception as e:
        logger.error("[EMAIL] Failed to send '%s' to %s: %s", subject, to, e)
        return False, str(e)

    if sent:
        logger.info("[EMAIL] Sent '%s' to %s (cc: %d)", subject, to, len(cc))
    else:
        logger.error("[EMAIL] Failed to send '%s' to %s: %s", subject, to, error)
    return sent, error


def send_template_email(to, subject, template, cc=None, attachments=None, **context):
    context.setdefault('site_name', current_app.config.get('SITE_NAME'))
    context.setdefault('site_url', current_app.config.get('SITE_URL'))
    html = render_template(template, **context)
    return send_email(to, subject, html, cc=cc, attachments=attachments)


def send_booking_email(booking, email_type, subject, template, cc=None, attachments=None, **context):
    """Mail the guest about their booking and note the attempt on the booking timeline"""
    if not booking.guest_email:
        log_email(booking, email_type, '(no address)', False, 'Booking has no guest email')
        return False, 'Booking has no guest email'
    sent, error = send_template_email(booking.guest_email, subject, template, cc=cc,
                                      attachments=attachments, booking=booking, **context)
    log_email(booking, email_type, booking.guest_email, sent, error)
    return sent, error
