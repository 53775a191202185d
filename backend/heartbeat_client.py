"""
Viewer-side heartbeat loop.

The client pins an anchor (the session start time) and on every tick
reports elapsed = now - anchor. Because the value is recomputed from a
fixed anchor rather than accumulated, missed or late ticks never make it
go backwards, and a reload that finds the stored start time carries on
from where the viewer left off.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import requests
from pydantic.networks import validate_email

from session_identity import derive_session_id, extract_video_id
from timeutils import parse_iso, utcnow
from youtube import looks_recorded

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 30
GATE_POLL_INTERVAL_SECONDS = 60
MAX_RESUME_AGE = timedelta(hours=24)
FINAL_SEND_TIMEOUT = 2.0


class Repeater:
    """Calls fn every interval seconds on a daemon thread until stopped."""

    def __init__(self, interval: float, fn: Callable[[], None], name: str):
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop,), name=self.name, daemon=True)
        self._thread.start()

    def _run(self, stop: threading.Event):
        while not stop.wait(self.interval):
            try:
                self.fn()
            except Exception as e:
                logger.exception(f"{self.name} tick failed: {e}")

    def stop(self):
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


def normalize_email(email: str) -> str:
    """The address as the portal stores it (domain lowercased)."""
    try:
        return validate_email(email)[1]
    except ValueError:
        return email


class HeartbeatClient:
    """
    Sends heartbeats for one viewer (name, email, branch) to the portal.

    Failures are logged and swallowed: the next tick is the retry.
    """

    def __init__(
        self,
        base_url: str,
        name: str,
        email: str,
        branch: str,
        session: Optional[requests.Session] = None,
        youtube=None,
        clock: Callable[[], datetime] = utcnow,
        interval: float = HEARTBEAT_INTERVAL_SECONDS,
        gate_poll_interval: float = GATE_POLL_INTERVAL_SECONDS,
        timeout: float = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.email = normalize_email(email)
        self.branch = branch
        self.http = session or requests.Session()
        self.youtube = youtube
        self.clock = clock
        self.timeout = timeout

        self.session_id: Optional[str] = None
        self.title: Optional[str] = None
        self.anchor: Optional[datetime] = None
        self.active = False

        self._lock = threading.Lock()
        self._heartbeats = Repeater(interval, self.send_heartbeat, "heartbeat")
        self._gate_poll = Repeater(gate_poll_interval, self.poll_gate, "gate-poll")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def resolve_anchor(self, session_id: str) -> datetime:
        """
        Start time to count from: the stored one for this session if it is
        sane (not in the future, not older than 24h), otherwise now.
        """
        now = self.clock()
        try:
            response = self.http.get(
                self._url("/attendance/records"),
                params={"branch": self.branch},
                timeout=self.timeout,
            )
            response.raise_for_status()
            records = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Could not look up existing session {session_id}: {e}")
            return now

        for record in records:
            if (
                record.get("email") == self.email
                and record.get("streamSessionId") == session_id
                and record.get("branch", self.branch) == self.branch
            ):
                stored = parse_iso(record.get("startTime"))
                if stored and now - MAX_RESUME_AGE <= stored <= now:
                    logger.info(f"Resuming session {session_id} from {stored.isoformat()}")
                    return stored
                logger.warning(f"Ignoring implausible stored start time {record.get('startTime')}")
                break
        return now

    def elapsed_seconds(self) -> int:
        if self.anchor is None:
            return 0
        return max(0, int((self.clock() - self.anchor).total_seconds()))

    def start_session(self, session_id: str, title: str) -> None:
        """Anchor the session, send the first heartbeat, then tick on the interval."""
        with self._lock:
            if session_id != self.session_id:
                self.anchor = self.resolve_anchor(session_id)
            self.session_id = session_id
            self.title = title
            self.active = True

        self.send_heartbeat()
        self._heartbeats.start()
        self._gate_poll.start()

    def start_for_stream(self, stream_url: str) -> Optional[str]:
        """
        Resolve the stream title, derive the session id and start.

        Returns None without starting while the title is unknown (a
        placeholder title would split one session into two) or when the
        title marks the video as a recording.
        """
        video_id = extract_video_id(stream_url)
        if not video_id or self.youtube is None:
            return None

        title = self.youtube.fetch_title(video_id)
        if not title:
            logger.info(f"Title for {video_id} not resolved yet; heartbeats not started")
            return None
        if looks_recorded(title):
            logger.info(f"{video_id} looks like a recording; heartbeats not started")
            return None

        session_id = derive_session_id(video_id, title, self.clock())
        self.start_session(session_id, title)
        return session_id

    def _payload(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "branch": self.branch,
            "streamSessionId": self.session_id,
            "streamTitle": self.title,
            "startTime": self.anchor.isoformat(),
            "durationSeconds": self.elapsed_seconds(),
        }

    def send_heartbeat(self, timeout: Optional[float] = None) -> bool:
        """POST one heartbeat. Returns True if the server stored it."""
        if not self.active or not self.session_id or self.anchor is None:
            return False

        try:
            response = self.http.post(
                self._url("/attendance/heartbeat"),
                json=self._payload(),
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Heartbeat failed: {e}")
            return False

        if response.status_code == 403:
            logger.info("Attendance closed by server; pausing heartbeats")
            self.pause()
            return False
        if not response.ok:
            logger.warning(f"Heartbeat rejected with status {response.status_code}")
            return False
        return True

    def poll_gate(self) -> Optional[bool]:
        """Check the gate; pause when closed, resume from the same anchor when reopened."""
        try:
            response = self.http.get(self._url("/stream-settings"), timeout=self.timeout)
            response.raise_for_status()
            is_open = response.json().get("isAttendanceActive") == "true"
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Gate poll failed: {e}")
            return None

        if not is_open and self.active:
            self.pause()
        elif is_open and not self.active and self.session_id:
            self.resume()
        return is_open

    def pause(self):
        """Stop ticking but keep the anchor."""
        self.active = False
        self._heartbeats.stop()

    def resume(self):
        self.active = True
        self.send_heartbeat()
        self._heartbeats.start()

    def close(self) -> None:
        """Best-effort final heartbeat, then tear the timers down."""
        self._gate_poll.stop()
        self._heartbeats.stop()
        if self.active:
            self.send_heartbeat(timeout=FINAL_SEND_TIMEOUT)
        self.active = False
