"""Healthcare-entity time zone handling.

Scheduling always runs on UTC instants. Entity time zones are only used to
render instants for people and to read wall-clock input typed in the clinic's
zone. An empty or unknown zone falls back to UTC and never blocks a request.
"""

import logging
import time as clock
from datetime import date, datetime, timezone
from threading import Lock
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import BaseModel, ValidationError

from appointment_backend.core import config
from appointment_backend.scheduling.errors import InvalidInstantError
from appointment_backend.scheduling.intervals import as_utc

logger = logging.getLogger(__name__)

UTC_ZONE = 'UTC'

# Tried in order; the first format that parses wins.
ENTITY_LOCAL_FORMATS = (
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%d',
)


class EntityTimezoneInfo(BaseModel):
    timezone: str | None = None


def _load_zone(name: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


class TimezoneConverter:
    def __init__(self, zone_name: str | None):
        requested = (zone_name or '').strip()
        zone = _load_zone(requested) if requested else None

        if zone is None:
            if requested:
                logger.warning('Unknown time zone %r, falling back to UTC', requested)
            self.zone_name = UTC_ZONE
            self.zone = ZoneInfo(UTC_ZONE)
            self.resolved = not requested
        else:
            self.zone_name = requested
            self.zone = zone
            self.resolved = True

    def to_entity_local(self, utc_instant: datetime) -> datetime:
        return as_utc(utc_instant).astimezone(self.zone)

    def to_utc(self, local_instant: datetime) -> datetime:
        """Naive values are read as wall-clock time in the entity zone."""
        if local_instant.tzinfo is None:
            local_instant = local_instant.replace(tzinfo=self.zone)
        return local_instant.astimezone(timezone.utc)

    def parse_entity_local_string(self, value: str) -> datetime:
        candidate = (value or '').strip()
        if candidate.endswith('Z'):
            candidate = candidate[:-1] + '+0000'

        for layout in ENTITY_LOCAL_FORMATS:
            try:
                parsed = datetime.strptime(candidate, layout)
            except ValueError:
                continue
            return self.to_utc(parsed)

        raise InvalidInstantError(f'Unrecognised datetime {value!r} for zone {self.zone_name}.')

    def format_in_entity_zone(self, utc_instant: datetime, layout: str = '%Y-%m-%d %H:%M') -> str:
        return self.to_entity_local(utc_instant).strftime(layout)

    def entity_date(self, utc_instant: datetime) -> date:
        return self.to_entity_local(utc_instant).date()


class EntityTimezoneLookup:
    """Reads a healthcare entity's IANA zone from the user service."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.base_url = (base_url or config.USER_SERVICE_URL).rstrip('/')
        self.client = client or httpx.Client(timeout=timeout or config.ENTITY_LOOKUP_TIMEOUT_SECONDS)

    def get(self, healthcare_entity_id: int) -> str:
        response = self.client.get(f'{self.base_url}/api/internal/entity/{healthcare_entity_id}')
        response.raise_for_status()
        info = EntityTimezoneInfo.model_validate(response.json())
        return info.timezone or UTC_ZONE

    def close(self) -> None:
        self.client.close()


class TimezoneConverterCache:
    """Per-process cache of converters keyed by healthcare entity id.

    Entries expire after ``ttl_seconds``; a failed lookup is cached as UTC
    under the same lifetime so a flapping user service is not hammered.
    """

    def __init__(self, lookup: EntityTimezoneLookup, ttl_seconds: int | None = None, now=clock.monotonic):
        self.lookup = lookup
        self.ttl_seconds = config.TIMEZONE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._now = now
        self._entries: dict[int, tuple[float, TimezoneConverter]] = {}
        self._lock = Lock()

    def get(self, healthcare_entity_id: int) -> TimezoneConverter:
        with self._lock:
            cached = self._entries.get(healthcare_entity_id)
            if cached is not None and cached[0] > self._now():
                return cached[1]

        converter = TimezoneConverter(self._fetch_zone(healthcare_entity_id))

        with self._lock:
            self._entries[healthcare_entity_id] = (self._now() + self.ttl_seconds, converter)
        return converter

    def invalidate(self, healthcare_entity_id: int) -> None:
        with self._lock:
            self._entries.pop(healthcare_entity_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _fetch_zone(self, healthcare_entity_id: int) -> str:
        try:
            return self.lookup.get(healthcare_entity_id)
        except (httpx.HTTPError, ValidationError, ValueError):
            logger.warning(
                'Time zone lookup failed for healthcare entity %s, using UTC',
                healthcare_entity_id,
                exc_info=True,
            )
            return UTC_ZONE
