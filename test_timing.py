import datetime

import pytz

from content import get_puzzle_image_index, normalize_door_index
from timing import available_from, get_day_number, is_available

START = datetime.date(2024, 12, 1)


def test_door_opens_on_its_calendar_day():
    assert is_available(1, datetime.date(2024, 12, 1), START)
    assert is_available(5, datetime.date(2024, 12, 5), START)
    assert not is_available(5, datetime.date(2024, 12, 4), START)
    assert is_available(24, datetime.date(2024, 12, 24), START)
    assert not is_available(24, datetime.date(2024, 12, 23), START)


def test_every_door_matches_start_plus_offset():
    for door in range(1, 25):
        opening = START + datetime.timedelta(days=door - 1)
        assert available_from(door, START) == opening
        assert is_available(door, opening, START)
        assert not is_available(door, opening - datetime.timedelta(days=1), START)


def test_time_of_day_is_ignored():
    late_evening = datetime.datetime(2024, 12, 4, 23, 59, 59, tzinfo=pytz.utc)
    just_after_midnight = datetime.datetime(2024, 12, 5, 0, 0, 1, tzinfo=pytz.utc)

    assert not is_available(5, late_evening, START)
    assert is_available(5, just_after_midnight, START)


def test_puzzle_image_shares_release_date():
    for door in range(1, 25):
        image_index = get_puzzle_image_index(door)
        assert image_index - 1000 == door
        assert normalize_door_index(image_index) == door
        for offset in (-1, 0, 1):
            today = START + datetime.timedelta(days=door - 1 + offset)
            assert is_available(image_index, today, START) == is_available(door, today, START)


def test_day_number_is_clamped():
    assert get_day_number(datetime.date(2024, 11, 20), START) == 1
    assert get_day_number(datetime.date(2024, 12, 7), START) == 7
    assert get_day_number(datetime.date(2025, 1, 6), START) == 24
