"""
Request bodies. JSON field names are camelCase to match the stored records.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HeartbeatRequest(CamelModel):
    name: str = Field(min_length=1)
    email: EmailStr
    branch: str = Field(min_length=1)
    stream_session_id: str = Field(min_length=1)
    stream_title: str = Field(min_length=1)
    start_time: datetime
    duration_seconds: int = Field(ge=0, strict=True)

    @field_validator("start_time", mode="before")
    @classmethod
    def require_iso_string(cls, value):
        if not isinstance(value, str):
            raise ValueError("must be an ISO 8601 string")
        return value


class AttendanceRecordRequest(HeartbeatRequest):
    """Legacy one-shot record sent when the viewer leaves."""
    end_time: Optional[datetime] = None

    @field_validator("end_time", mode="before")
    @classmethod
    def require_iso_end(cls, value):
        if value is not None and not isinstance(value, str):
            raise ValueError("must be an ISO 8601 string")
        return value


class ToggleRequest(CamelModel):
    is_active: bool
    auto_stop_at: Optional[datetime] = None


class StreamSettingsUpdate(CamelModel):
    url: Optional[str] = None  # Older admin form sends only this
    youtube_url: Optional[str] = None
    youtube_channel_id: Optional[str] = None
    check_day: Optional[str] = Field(
        default=None,
        pattern=r"^(Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday)$",
    )
    check_start_time: Optional[str] = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    check_end_time: Optional[str] = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    auto_attendance_duration_hours: Optional[int] = Field(default=None, ge=1, le=24)
    check_interval_minutes: Optional[int] = Field(default=None, ge=1, le=1440)


class AdminLoginRequest(BaseModel):
    password: str = Field(min_length=1)
    branch: Optional[str] = None
