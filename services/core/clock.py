"""
Engine reference clock

Every engine operation takes ``now`` explicitly; this module is where the
HTTP layer and the scheduler get it from. The offset lets operators replay
time (``POST /time-simulation``) without touching stored data.
"""
from datetime import datetime, timedelta, timezone

from logging_config import get_logger

logger = get_logger(__name__)


class SimulatedClock:

    def __init__(self):
        self._offset_days = 0.0

    @property
    def offset_days(self) -> float:
        return self._offset_days

    def now(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(days=self._offset_days)

    def set_offset(self, offset_days: float) -> None:
        logger.info("clock_offset_changed", old_offset_days=self._offset_days, new_offset_days=offset_days)
        self._offset_days = float(offset_days)

    def reset(self) -> None:
        self.set_offset(0)


clock = SimulatedClock()
