from datetime import datetime, timedelta, timezone

import pytest

from appointment_backend.scheduling.errors import InvalidInstantError
from appointment_backend.scheduling.intervals import TimeInterval, as_utc, overlaps, parse_utc_instant


def utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 3, 10, hour, minute, tzinfo=timezone.utc)


def test_overlapping_ranges_intersect() -> None:
    assert overlaps(utc(10), utc(11), utc(10, 30), utc(11, 30))
    assert overlaps(utc(10, 30), utc(11, 30), utc(10), utc(11))


def test_touching_ranges_do_not_overlap() -> None:
    assert not overlaps(utc(10), utc(11), utc(11), utc(12))
    assert not overlaps(utc(11), utc(12), utc(10), utc(11))


def test_contained_range_overlaps() -> None:
    assert overlaps(utc(9), utc(12), utc(10), utc(10, 15))


def test_time_interval_from_duration() -> None:
    interval = TimeInterval.from_duration(utc(9), 45)

    assert interval.end == utc(9, 45)
    assert interval.duration_minutes == 45


def test_time_interval_overlap_is_symmetric() -> None:
    first = TimeInterval(utc(9), utc(10))
    second = TimeInterval(utc(9, 59), utc(10, 30))

    assert first.overlaps(second)
    assert second.overlaps(first)
    assert not first.overlaps(TimeInterval(utc(10), utc(10, 30)))


def test_time_interval_rejects_naive_bounds() -> None:
    with pytest.raises(InvalidInstantError):
        TimeInterval(datetime(2025, 3, 10, 9), utc(10))


def test_time_interval_rejects_reversed_bounds() -> None:
    with pytest.raises(ValueError):
        TimeInterval(utc(10), utc(9))


def test_as_utc_normalizes_offsets() -> None:
    eastern = timezone(timedelta(hours=-5))

    assert as_utc(datetime(2025, 3, 10, 5, 0, tzinfo=eastern)) == utc(10)
    assert as_utc(datetime(2025, 3, 10, 5, 0, tzinfo=eastern)).tzinfo == timezone.utc


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        ('2025-03-10T10:00:00Z', utc(10)),
        ('2025-03-10T10:00:00+00:00', utc(10)),
        ('2025-03-10T12:30:00+02:00', utc(10, 30)),
        (' 2025-03-10T10:00:00z ', utc(10)),
    ],
)
def test_parse_utc_instant_accepts_offsets(value: str, expected: datetime) -> None:
    assert parse_utc_instant(value) == expected


@pytest.mark.parametrize('value', ['', 'tomorrow', '2025-03-10T10:00:00', '2025-13-01T10:00:00Z'])
def test_parse_utc_instant_rejects_ambiguous_or_malformed_values(value: str) -> None:
    with pytest.raises(InvalidInstantError):
        parse_utc_instant(value)
