from datetime import datetime, time, timedelta

import pytz
from flask import current_app


def hotel_timezone():
    return pytz.timezone(current_app.config.get('HOTEL_TIMEZONE', 'UTC'))


def hotel_now():
    """Current time in the hotel's timezone"""
    return datetime.now(pytz.utc).astimezone(hotel_timezone())


def hotel_today():
    return hotel_now().date()


def to_local_time(dt):
    """Render a naive UTC timestamp in hotel time (Jinja filter)"""
    if not dt:
        return dt
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(hotel_timezone())


def utc_day_bounds(day):
    """Naive UTC ``(start, end)`` of a hotel-local calendar day"""
    tz = hotel_timezone()
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day + timedelta(days=1), time.min))
    return (start.astimezone(pytz.utc).replace(tzinfo=None),
            end.astimezone(pytz.utc).replace(tzinfo=None))
