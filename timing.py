# Zeitsteuerung: wann darf welches Türchen geöffnet werden

import datetime
import os

import pytz

from content import normalize_door_index

# Lokale Zeitzone festlegen
local_timezone = pytz.timezone(os.environ.get("ADVENT_TIMEZONE", "Europe/Berlin"))


def get_local_datetime():
    utc_dt = datetime.datetime.now(pytz.utc)  # aktuelle Zeit in UTC
    return utc_dt.astimezone(local_timezone)  # konvertiere in lokale Zeitzone


def _as_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    return value


def available_from(door, start_date):
    return _as_date(start_date) + datetime.timedelta(days=normalize_door_index(door) - 1)


def is_available(door, today, start_date):
    """Türchen ``n`` ist ab ``start_date + (n - 1)`` Tagen offen.

    Es zählt nur das Kalenderdatum. Der Bereich 1-24 wird hier nicht geprüft.
    """
    return _as_date(today) >= available_from(door, start_date)


def get_day_number(today, start_date):
    days = (_as_date(today) - _as_date(start_date)).days + 1
    return max(1, min(24, days))
