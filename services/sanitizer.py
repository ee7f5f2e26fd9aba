"""Bad-data filtering for raw measurements."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional

from models.records import CPM, DOSE_RATE_UNITS, Measurement
from rules.loader import ExportRules

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Sanitizer:
    """Applies blacklists, sanity bounds and geofenced bans.

    Rejections are not errors: rejected rows are dropped and tallied in
    ``rejections`` by reason.
    """

    def __init__(
        self,
        rules: ExportRules,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.rules = rules
        self.clock = clock
        self._excluded_ids = frozenset(rules.excluded_ids)
        self._banned_users = frozenset(rules.banned_user_ids)
        self._known_devices = frozenset(rules.sensitivity.as_mapping())
        self.rejections: Counter[str] = Counter()

    def accepts(self, measurement: Measurement, now: Optional[datetime] = None) -> bool:
        return self.rejection_reason(measurement, now) is None

    def filter(self, measurements: Iterable[Measurement]) -> Iterator[Measurement]:
        now = self.clock()
        for measurement in measurements:
            reason = self.rejection_reason(measurement, now)
            if reason is None:
                yield measurement
                continue
            self.rejections[reason] += 1
            logger.debug(
                "Dropping measurement",
                extra={"measurement_id": measurement.id, "reason": reason},
            )

    def rejection_reason(
        self, measurement: Measurement, now: Optional[datetime] = None
    ) -> Optional[str]:
        """Return why ``measurement`` is unusable, or ``None`` if it passes."""
        rules = self.rules
        sanity = rules.sanity

        if measurement.id in self._excluded_ids or any(
            id_range.contains(measurement.id) for id_range in rules.excluded_id_ranges
        ):
            return "excluded id"
        if measurement.user_id in self._banned_users:
            return "banned user"

        if measurement.captured_at is None:
            return "missing captured_at"
        captured_at = _as_utc(measurement.captured_at)
        latest = _as_utc(now or self.clock()) + sanity.future_tolerance
        if not _as_utc(sanity.earliest_capture) <= captured_at <= latest:
            return "captured_at out of range"

        value = measurement.value
        latitude = measurement.latitude
        longitude = measurement.longitude
        if value is None:
            return "missing value"
        if latitude is None or longitude is None:
            return "missing location"

        unit = (measurement.unit or "").lower()
        if unit == CPM:
            device_id = measurement.device_id
            if device_id is None:
                if not sanity.cpm_unset_device.contains(value):
                    return "cpm out of range"
            elif device_id <= sanity.max_known_device_id:
                if not sanity.cpm_known_device.contains(value):
                    return "cpm out of range"
            else:
                return "unknown device"
            if (
                rules.reject_unmapped_devices
                and device_id is not None
                and device_id not in self._known_devices
            ):
                return "unmapped device"
        elif unit in DOSE_RATE_UNITS:
            if not sanity.dose_rate.contains(value):
                return "dose rate out of range"
        else:
            return "unsupported unit"

        if latitude == 0.0 and longitude == 0.0:
            return "zero location"
        if not -sanity.latitude_limit <= latitude <= sanity.latitude_limit:
            return "latitude out of range"
        if not -sanity.longitude_limit <= longitude <= sanity.longitude_limit:
            return "longitude out of range"

        for exception in rules.geofence_exceptions:
            if not exception.allows(measurement.user_id, value, latitude, longitude):
                return f"geofence {exception.name}"

        return None
