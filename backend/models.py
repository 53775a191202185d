"""
SQLAlchemy models for the stream attendance portal.
"""
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.orm import declarative_base

from timeutils import iso, utcnow

Base = declarative_base()

DEFAULT_BRANCH = "Pontypridd"


def new_id() -> str:
    return str(uuid.uuid4())


class AttendanceRecord(Base):
    """One viewing session for one viewer at one branch."""
    __tablename__ = "attendance_records"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    branch = Column(String, nullable=False, default=DEFAULT_BRANCH, index=True)
    stream_session_id = Column(String, nullable=False)
    stream_title = Column(String, nullable=False, default="Live Service")
    start_time = Column(DateTime, nullable=False)  # Pinned at creation
    end_time = Column(DateTime, nullable=True)  # Legacy one-shot path only
    last_seen_at = Column(DateTime, nullable=False, index=True)
    duration_seconds = Column(Integer, nullable=False, default=0)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_attendance_session_key", "email", "stream_session_id", "branch"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "branch": self.branch or DEFAULT_BRANCH,
            "streamSessionId": self.stream_session_id,
            "streamTitle": self.stream_title or "Live Service",
            "startTime": iso(self.start_time),
            "endTime": iso(self.end_time),
            "lastSeenAt": iso(self.last_seen_at),
            "durationSeconds": self.duration_seconds or 0,
            "timestamp": iso(self.timestamp),
        }


class StreamSettings(Base):
    """Deployment-wide singleton: stream URL, attendance gate, auto-detect schedule."""
    __tablename__ = "stream_settings"

    id = Column(String(36), primary_key=True, default=new_id)
    youtube_url = Column(String, nullable=False, default="")
    is_attendance_active = Column(String(5), nullable=False, default="false")
    attendance_auto_stop_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    youtube_channel_id = Column(String, nullable=False, default="")
    check_day = Column(String, nullable=False, default="Monday")
    check_start_time = Column(String(5), nullable=False, default="15:00")
    check_end_time = Column(String(5), nullable=False, default="17:00")
    auto_attendance_duration_hours = Column(Integer, nullable=False, default=4)
    check_interval_minutes = Column(Integer, nullable=False, default=5)
    last_api_check_time = Column(DateTime, nullable=True)
    last_live_check_date = Column(String(10), nullable=False, default="")
    auto_detected_url = Column(String, nullable=False, default="")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "youtubeUrl": self.youtube_url or "",
            "isAttendanceActive": self.is_attendance_active or "false",
            "attendanceAutoStopAt": iso(self.attendance_auto_stop_at),
            "updatedAt": iso(self.updated_at),
            "youtubeChannelId": self.youtube_channel_id or "",
            "checkDay": self.check_day,
            "checkStartTime": self.check_start_time,
            "checkEndTime": self.check_end_time,
            "autoAttendanceDurationHours": self.auto_attendance_duration_hours,
            "checkIntervalMinutes": self.check_interval_minutes,
            "lastApiCheckTime": iso(self.last_api_check_time),
            "lastLiveCheckDate": self.last_live_check_date or "",
            "autoDetectedUrl": self.auto_detected_url or "",
        }


# camelCase API field -> column attribute, for partial settings updates
SETTINGS_FIELDS = {
    "youtubeUrl": "youtube_url",
    "attendanceAutoStopAt": "attendance_auto_stop_at",
    "youtubeChannelId": "youtube_channel_id",
    "checkDay": "check_day",
    "checkStartTime": "check_start_time",
    "checkEndTime": "check_end_time",
    "autoAttendanceDurationHours": "auto_attendance_duration_hours",
    "checkIntervalMinutes": "check_interval_minutes",
    "lastApiCheckTime": "last_api_check_time",
    "lastLiveCheckDate": "last_live_check_date",
    "autoDetectedUrl": "auto_detected_url",
}


def default_settings() -> StreamSettings:
    """Unsaved settings object with every default applied."""
    return StreamSettings(
        id=new_id(),
        youtube_url="",
        is_attendance_active="false",
        attendance_auto_stop_at=None,
        updated_at=utcnow(),
        youtube_channel_id="",
        check_day="Monday",
        check_start_time="15:00",
        check_end_time="17:00",
        auto_attendance_duration_hours=4,
        check_interval_minutes=5,
        last_api_check_time=None,
        last_live_check_date="",
        auto_detected_url="",
    )
