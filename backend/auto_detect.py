"""
Scheduled live-broadcast detection.

Something outside this process (a cron hitting /live-check) calls run()
on a fixed cadence. Each run is throttled to the configured weekday and
time window, at most one successful detection per day, and a minimum
interval between API calls. A detection points the portal at the live
video and opens the attendance gate until now + auto duration.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from errors import YouTubeAPIError
from live_gate import LiveStatusGate
from timeutils import parse_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/London"


class AutoDetectScheduler:
    def __init__(
        self,
        settings_repo,
        gate: LiveStatusGate,
        youtube=None,
        clock: Callable[[], datetime] = utcnow,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        self.settings_repo = settings_repo
        self.gate = gate
        self.youtube = youtube
        self.clock = clock
        self.tz = ZoneInfo(tz_name)

    def local_time(self, now: datetime) -> datetime:
        return now.replace(tzinfo=timezone.utc).astimezone(self.tz)

    def status(self) -> dict:
        """Configuration snapshot after lazy expiry; never calls the API."""
        settings, stopped = self.gate.check_expiry(self.clock())
        return {
            "configured": bool(settings["youtubeChannelId"]),
            "attendanceStopped": stopped,
            "settings": settings,
        }

    def _result(self, action: str, message: str, stopped: bool, **extra) -> dict:
        result = {"action": action, "message": message, "attendanceStopped": stopped}
        result.update(extra)
        if action in ("live_detected", "error"):
            logger.info(f"Live check: {action} - {message}")
        else:
            logger.debug(f"Live check: {action} - {message}")
        return result

    def run(self, force: bool = False) -> dict:
        """
        One scheduler tick.

        Args:
            force: Manual check; ignore the day/time window, the daily memo
                and the interval throttle

        Returns:
            Dict with 'action' (attendance_stopped, none, skipped,
            interval_wait, live_detected, no_live, error) and a message
        """
        now = self.clock()
        settings, stopped = self.gate.check_expiry(now)

        if not self.youtube or not self.youtube.api_key:
            action = "attendance_stopped" if stopped else "none"
            return self._result(action, "YouTube API key not configured", stopped)

        channel_id = settings["youtubeChannelId"]
        if not channel_id:
            return self._result("skipped", "Channel ID not configured", stopped)

        local = self.local_time(now)
        today = local.date().isoformat()

        if not force:
            skip = self._window_skip(settings, local, today)
            if skip:
                return self._result("skipped", skip, stopped, lastCheckDate=settings["lastLiveCheckDate"])

            interval = timedelta(minutes=settings["checkIntervalMinutes"] or 5)
            last_check = parse_iso(settings["lastApiCheckTime"])
            if last_check and now - last_check < interval:
                remaining = interval - (now - last_check)
                minutes = -(-int(remaining.total_seconds()) // 60)
                return self._result(
                    "interval_wait",
                    f"Waiting for check interval. Next check in {minutes} minute(s)",
                    stopped,
                    lastApiCheckTime=settings["lastApiCheckTime"],
                    checkIntervalMinutes=settings["checkIntervalMinutes"],
                )

        self.settings_repo.update(lastApiCheckTime=now)

        try:
            live = self.youtube.search_live(channel_id)
        except YouTubeAPIError as e:
            logger.error(f"YouTube live search failed for {channel_id}: {e}")
            return self._result("error", "YouTube API error", stopped, error=e.payload or str(e))

        if not live:
            return self._result("no_live", "No live stream found", stopped, channelId=channel_id)

        hours = settings["autoAttendanceDurationHours"] or 4
        auto_stop_at = now + timedelta(hours=hours)
        self.settings_repo.update(
            youtubeUrl=live["embed_url"],
            autoDetectedUrl=live["embed_url"],
            lastLiveCheckDate=today,
        )
        self.gate.toggle(True, auto_stop_at)

        return self._result(
            "live_detected",
            "Live stream detected and attendance started",
            stopped,
            videoId=live["video_id"],
            liveUrl=live["embed_url"],
            title=live["title"],
            autoStopAt=auto_stop_at.isoformat(),
        )

    def _window_skip(self, settings: dict, local: datetime, today: str) -> Optional[str]:
        if settings["lastLiveCheckDate"] == today:
            return "Already found live stream today"

        current_day = local.strftime("%A")
        if current_day != settings["checkDay"]:
            return f"Not scheduled day. Current: {current_day}, Scheduled: {settings['checkDay']}"

        current_time = local.strftime("%H:%M")
        start = settings["checkStartTime"] or "15:00"
        end = settings["checkEndTime"] or "17:00"
        if current_time < start or current_time > end:
            return f"Outside check window. Current: {current_time}, Window: {start} - {end}"
        return None
