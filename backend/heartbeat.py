"""
Server side of the heartbeat protocol.

Each accepted heartbeat overwrites the session's duration with the
client's elapsed-since-anchor value. Clients compute that by subtraction
from a fixed start time, so a well-behaved client never reports less than
before within one session id.
"""
import logging
from typing import Iterable

from errors import AttendanceInactiveError, InvalidBranchError
from ledger import AttendanceLedger
from live_gate import LiveStatusGate
from schemas import HeartbeatRequest
from timeutils import to_naive_utc

logger = logging.getLogger(__name__)


def presence_key(email: str, branch: str) -> str:
    return f"{email.lower()}|{branch}"


class HeartbeatService:
    """Validate, gate, then upsert and mark presence."""

    def __init__(
        self,
        ledger: AttendanceLedger,
        presence,
        gate: LiveStatusGate,
        branches: Iterable[str] = (),
    ):
        self.ledger = ledger
        self.presence = presence
        self.gate = gate
        self.branches = tuple(branches)

    def check_branch(self, branch: str):
        if self.branches and branch not in self.branches:
            raise InvalidBranchError(f"Unknown branch: {branch}")

    def process(self, payload: HeartbeatRequest) -> dict:
        """
        Apply one heartbeat.

        Raises:
            InvalidBranchError: branch not configured
            AttendanceInactiveError: gate closed; nothing is written
            StorageUnavailableError: ledger write failed
        """
        self.check_branch(payload.branch)

        if not self.gate.is_heartbeat_accepted():
            logger.info(f"Heartbeat rejected for {payload.email}: attendance inactive")
            raise AttendanceInactiveError("Attendance is not active")

        record = self.ledger.upsert(
            email=str(payload.email),
            branch=payload.branch,
            session_id=payload.stream_session_id,
            name=payload.name,
            stream_title=payload.stream_title,
            start_time=to_naive_utc(payload.start_time),
            duration_seconds=payload.duration_seconds,
        )
        self.presence.track(presence_key(str(payload.email), payload.branch), scope=payload.branch)
        return record
