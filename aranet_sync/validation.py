"""Structural sanity checks for raw device readings."""
import logging
from typing import Iterable, List

from aranet_sync.series import Reading, as_utc, is_zero_time

logger = logging.getLogger(__name__)


def validate_readings(readings: Iterable[Reading]) -> List[Reading]:
    """
    Drop sentinel readings and order the rest by timestamp.

    The syncer's cache is last-write-wins per metric, so readings must reach
    it in ascending time order. ``sorted`` is stable, so ties keep their
    input order.
    """
    valid = []
    for reading in readings:
        if is_zero_time(reading.time):
            logger.warning(f"Unexpected time value, skipping: {reading}")
            continue
        if reading.co2 <= 0:
            logger.warning(f"Unexpected CO2 value, skipping: {reading}")
            continue
        if reading.pressure <= 0:
            logger.warning(f"Unexpected pressure value, skipping: {reading}")
            continue
        valid.append(reading)

    return sorted(valid, key=lambda r: as_utc(r.time))
