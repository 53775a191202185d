from datetime import datetime, timedelta

import pytest

from auto_detect import AutoDetectScheduler
from errors import YouTubeAPIError

# 2024-01-15 is a Monday; London is on GMT in January.
IN_WINDOW = datetime(2024, 1, 15, 15, 30)


class FakeYouTube:
    def __init__(self, live=None, error=None, api_key="key"):
        self.api_key = api_key
        self.live = live
        self.error = error
        self.calls = []

    def search_live(self, channel_id):
        self.calls.append(channel_id)
        if self.error:
            raise self.error
        return self.live


LIVE = {
    "video_id": "LIVE1234567",
    "title": "Sunday Service",
    "embed_url": "https://www.youtube.com/embed/LIVE1234567",
}


@pytest.fixture
def configured(settings_repo):
    return settings_repo.update(youtubeChannelId="UC123")


def make_scheduler(settings_repo, gate, clock, youtube):
    return AutoDetectScheduler(settings_repo, gate, youtube, clock=clock)


def test_outside_window_skips_without_mutation(settings_repo, gate, clock, ledger, configured):
    clock.now = datetime(2024, 1, 16, 15, 30)  # Tuesday
    youtube = FakeYouTube(live=LIVE)
    before = settings_repo.get()

    result = make_scheduler(settings_repo, gate, clock, youtube).run()

    assert result["action"] == "skipped"
    assert settings_repo.get() == before
    assert ledger.list_all() == []
    assert youtube.calls == []


def test_outside_time_of_day_skips(settings_repo, gate, clock, configured):
    clock.now = datetime(2024, 1, 15, 18, 0)
    result = make_scheduler(settings_repo, gate, clock, FakeYouTube(live=LIVE)).run()

    assert result["action"] == "skipped"
    assert "Outside check window" in result["message"]


def test_no_api_key_reports_none(settings_repo, gate, clock, configured):
    clock.now = IN_WINDOW
    result = make_scheduler(settings_repo, gate, clock, FakeYouTube(api_key="")).run()
    assert result["action"] == "none"


def test_no_channel_skips(settings_repo, gate, clock):
    clock.now = IN_WINDOW
    result = make_scheduler(settings_repo, gate, clock, FakeYouTube(live=LIVE)).run()
    assert result["action"] == "skipped"
    assert result["message"] == "Channel ID not configured"


def test_live_detected_arms_gate(settings_repo, gate, clock, configured):
    clock.now = IN_WINDOW
    youtube = FakeYouTube(live=LIVE)

    result = make_scheduler(settings_repo, gate, clock, youtube).run()

    assert result["action"] == "live_detected"
    assert result["videoId"] == "LIVE1234567"
    assert youtube.calls == ["UC123"]

    settings = settings_repo.get()
    assert settings["youtubeUrl"] == LIVE["embed_url"]
    assert settings["autoDetectedUrl"] == LIVE["embed_url"]
    assert settings["lastLiveCheckDate"] == "2024-01-15"
    assert settings["isAttendanceActive"] == "true"
    assert settings["attendanceAutoStopAt"] == (IN_WINDOW + timedelta(hours=4)).isoformat()


def test_second_run_same_day_is_skipped(settings_repo, gate, clock, configured):
    clock.now = IN_WINDOW
    youtube = FakeYouTube(live=LIVE)
    scheduler = make_scheduler(settings_repo, gate, clock, youtube)
    scheduler.run()

    clock.advance(minutes=10)
    result = scheduler.run()

    assert result["action"] == "skipped"
    assert result["message"] == "Already found live stream today"
    assert len(youtube.calls) == 1


def test_no_live_then_interval_wait(settings_repo, gate, clock, configured):
    clock.now = IN_WINDOW
    youtube = FakeYouTube(live=None)
    scheduler = make_scheduler(settings_repo, gate, clock, youtube)

    assert scheduler.run()["action"] == "no_live"
    assert settings_repo.get()["isAttendanceActive"] == "false"

    clock.advance(minutes=2)
    waiting = scheduler.run()
    assert waiting["action"] == "interval_wait"
    assert "3 minute(s)" in waiting["message"]

    clock.advance(minutes=3)
    youtube.live = LIVE
    assert scheduler.run()["action"] == "live_detected"
    assert len(youtube.calls) == 2


def test_api_error_is_reported(settings_repo, gate, clock, configured):
    clock.now = IN_WINDOW
    youtube = FakeYouTube(error=YouTubeAPIError("quota", status_code=403, payload={"error": "quota"}))

    result = make_scheduler(settings_repo, gate, clock, youtube).run()

    assert result["action"] == "error"
    assert result["error"] == {"error": "quota"}
    assert settings_repo.get()["isAttendanceActive"] == "false"


def test_expired_deadline_stopped_before_check(settings_repo, gate, clock, configured):
    clock.now = datetime(2024, 1, 16, 12, 0)
    gate.toggle(True, clock.now - timedelta(minutes=1))

    result = make_scheduler(settings_repo, gate, clock, FakeYouTube(live=LIVE)).run()

    assert result["attendanceStopped"] is True
    assert result["action"] == "skipped"
    assert settings_repo.get()["isAttendanceActive"] == "false"


def test_force_ignores_window(settings_repo, gate, clock, configured):
    clock.now = datetime(2024, 1, 17, 8, 0)  # Wednesday morning
    result = make_scheduler(settings_repo, gate, clock, FakeYouTube(live=LIVE)).run(force=True)
    assert result["action"] == "live_detected"


def test_window_uses_portal_timezone(settings_repo, gate, clock, configured):
    # 14:30 UTC is 15:30 in London during BST.
    settings_repo.update(checkDay="Sunday")
    clock.now = datetime(2024, 6, 16, 14, 30)
    result = make_scheduler(settings_repo, gate, clock, FakeYouTube(live=LIVE)).run()
    assert result["action"] == "live_detected"


def test_status_snapshot(settings_repo, gate, clock, configured):
    status = make_scheduler(settings_repo, gate, clock, FakeYouTube()).status()
    assert status["configured"] is True
    assert status["settings"]["youtubeChannelId"] == "UC123"
