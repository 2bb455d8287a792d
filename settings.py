"""Hotel business settings stored in the ``settings`` table."""
from extensions import db
from models import Setting

DEFAULT_SETTINGS = {
    'vat_enabled': '1',
    'vat_rate': '16.5',
    'currency_symbol': 'MWK',
    'invoice_prefix': 'INV',
    'invoice_start_number': '1000',
    'invoice_recipients': '',
    'room_inspection_required': '1',
    'tentative_hold_hours': '48',
    'hotel_name': 'Hotel Back Office',
    'hotel_address': '',
    'hotel_phone': '',
}


def get_setting(key, default=None):
    setting = Setting.query.filter_by(key=key).first()
    if setting is None or setting.value is None:
        if default is not None:
            return default
        return DEFAULT_SETTINGS.get(key)
    return setting.value


def set_setting(key, value):
    setting = Setting.query.filter_by(key=key).first()
    if setting is None:
        setting = Setting(key=key)
        db.session.add(setting)
    setting.value = None if value is None else str(value)
    return setting


def get_bool_setting(key, default=False):
    value = get_setting(key)
    if value is None:
        return default
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def get_float_setting(key, default=0.0):
    try:
        return float(get_setting(key))
    except (TypeError, ValueError):
        return default


def get_int_setting(key, default=0):
    try:
        return int(get_setting(key))
    except (TypeError, ValueError):
        return default


def invoice_cc_recipients(extra=None):
    """Comma separated ``invoice_recipients`` plus any extra address, de-duplicated"""
    raw = get_setting('invoice_recipients', '') or ''
    recipients = [r.strip() for r in raw.split(',') if r.strip() and '@' in r]
    if extra and extra not in recipients:
        recipients.append(extra)
    return recipients
