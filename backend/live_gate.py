"""
Attendance gate: decides whether heartbeats are accepted.

States: INACTIVE -> ACTIVE or ACTIVE_WITH_DEADLINE -> INACTIVE.
A deadline is enforced lazily: whoever asks about the gate after the
deadline has passed flips it off and persists that as part of the answer.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Tuple

from timeutils import parse_iso, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    ACTIVE_WITH_DEADLINE = "active_with_deadline"


def state_of(settings: dict) -> GateState:
    if settings.get("isAttendanceActive") != "true":
        return GateState.INACTIVE
    if settings.get("attendanceAutoStopAt"):
        return GateState.ACTIVE_WITH_DEADLINE
    return GateState.ACTIVE


def is_expired(settings: dict, now: datetime) -> bool:
    """Pure check: active with a deadline that is at or before now."""
    if state_of(settings) is not GateState.ACTIVE_WITH_DEADLINE:
        return False
    deadline = parse_iso(settings["attendanceAutoStopAt"])
    return deadline is not None and now >= deadline


class LiveStatusGate:
    """Gate state machine persisted in the StreamSettings row."""

    def __init__(self, settings_repo, clock: Callable[[], datetime] = utcnow):
        self.settings_repo = settings_repo
        self.clock = clock

    def toggle(self, on: bool, deadline: Optional[datetime] = None) -> dict:
        """
        Open or close the gate.

        Closing always clears the deadline. Opening without a deadline is a
        manual start; the auto-detect scheduler passes one.
        """
        if on:
            deadline = to_naive_utc(deadline) if deadline else None
        else:
            deadline = None

        settings = self.settings_repo.update(
            isAttendanceActive=bool(on),
            attendanceAutoStopAt=deadline,
        )
        logger.info(
            f"Attendance {'started' if on else 'stopped'}"
            + (f" until {deadline.isoformat()}" if deadline else "")
        )
        return settings

    def check_expiry(self, now: Optional[datetime] = None) -> Tuple[dict, bool]:
        """
        Apply lazy expiry.

        Returns:
            (current settings, True if this call closed the gate)
        """
        now = now or self.clock()
        settings = self.settings_repo.get()
        if is_expired(settings, now):
            logger.info(f"Attendance auto-stopped, deadline {settings['attendanceAutoStopAt']} passed")
            return self.toggle(False), True
        return settings, False

    def state(self, now: Optional[datetime] = None) -> GateState:
        settings, _ = self.check_expiry(now)
        return state_of(settings)

    def is_heartbeat_accepted(self, now: Optional[datetime] = None) -> bool:
        return self.state(now) is not GateState.INACTIVE
