"""Half-open time interval primitives shared by every conflict computation.

An interval ``[start, end)`` contains its start but not its end, so two
intervals that merely touch (one ends exactly when the other begins) do not
overlap. All instants must be timezone-aware.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from appointment_backend.scheduling.errors import InvalidInstantError


def require_aware(value: datetime, name: str = 'instant') -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInstantError(f'{name} must be timezone-aware.')
    return value


def as_utc(value: datetime) -> datetime:
    return require_aware(value).astimezone(timezone.utc)


def parse_utc_instant(value: str) -> datetime:
    """Parse an RFC 3339 timestamp (``Z`` or explicit offset) into a UTC instant."""
    candidate = (value or '').strip()
    if candidate.endswith(('Z', 'z')):
        candidate = candidate[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise InvalidInstantError(f'Invalid datetime {value!r}.') from exc

    if parsed.tzinfo is None:
        raise InvalidInstantError(f'Datetime {value!r} has no UTC offset.')

    return parsed.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class TimeInterval:
    start: datetime
    end: datetime

    def __post_init__(self):
        require_aware(self.start, 'start')
        require_aware(self.end, 'end')
        if self.end < self.start:
            raise ValueError('Interval end precedes its start.')

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> 'TimeInterval':
        return cls(start, start + timedelta(minutes=duration_minutes))

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: 'TimeInterval') -> bool:
        return overlaps(self.start, self.end, other.start, other.end)
