import logging
from datetime import datetime, timedelta

from appointment_backend.core import config
from appointment_backend.scheduling.conflicts import ConflictChecker, ConflictQuery
from appointment_backend.scheduling.intervals import as_utc
from appointment_backend.scheduling.slots import AvailabilitySlot, SlotService

logger = logging.getLogger(__name__)


class AlternativeSlotFinder:
    """Suggests bookable slots on the requested day and the days after it."""

    def __init__(
        self,
        slot_service: SlotService,
        conflict_checker: ConflictChecker,
        search_days: int | None = None,
        per_day_limit: int | None = None,
        total_limit: int | None = None,
    ):
        self.slot_service = slot_service
        self.conflict_checker = conflict_checker
        self.search_days = config.ALTERNATIVE_SEARCH_DAYS if search_days is None else search_days
        self.per_day_limit = config.ALTERNATIVES_PER_DAY if per_day_limit is None else per_day_limit
        self.total_limit = config.MAX_ALTERNATIVE_SLOTS if total_limit is None else total_limit

    def find_alternatives(
        self,
        doctor_id: int,
        healthcare_entity_id: int,
        from_instant: datetime,
        duration_minutes: int,
    ) -> list[AvailabilitySlot]:
        alternatives: list[AvailabilitySlot] = []
        first_day = as_utc(from_instant).date()

        for offset in range(self.search_days):
            if len(alternatives) >= self.total_limit:
                break

            day = first_day + timedelta(days=offset)
            slots = self.slot_service.slots_for_date(doctor_id, healthcare_entity_id, day, duration_minutes)
            remaining = min(self.per_day_limit, self.total_limit - len(alternatives))
            alternatives.extend(
                self._bookable(slots, doctor_id, healthcare_entity_id, remaining)
            )

        logger.info(
            'Found %d alternative slot(s) for doctor %s from %s',
            len(alternatives),
            doctor_id,
            first_day.isoformat(),
        )
        return alternatives

    def _bookable(
        self,
        slots: list[AvailabilitySlot],
        doctor_id: int,
        healthcare_entity_id: int,
        limit: int,
    ) -> list[AvailabilitySlot]:
        picked: list[AvailabilitySlot] = []
        for slot in slots:
            if len(picked) >= limit:
                break
            if not slot.is_available:
                continue
            query = ConflictQuery(
                healthcare_entity_id=healthcare_entity_id,
                doctor_id=doctor_id,
                start_time=slot.date_time,
                duration_minutes=slot.duration,
            )
            if not self.conflict_checker.has_conflict(query):
                picked.append(slot)
        return picked
