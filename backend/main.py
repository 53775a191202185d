import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auto_detect import AutoDetectScheduler
from database import SessionLocal, init_db
from errors import (
    AttendanceInactiveError,
    InvalidBranchError,
    InvalidStreamUrlError,
    StorageUnavailableError,
)
from heartbeat import HeartbeatService
from ledger import AttendanceLedger, SettingsRepository
from live_gate import LiveStatusGate, state_of
from logger_helper import create_logging_middleware, setup_logger
from models import DEFAULT_BRANCH, default_settings
from presence import PresenceTracker, StoragePresenceTracker
from schemas import (
    AdminLoginRequest,
    AttendanceRecordRequest,
    HeartbeatRequest,
    StreamSettingsUpdate,
    ToggleRequest,
)
from session_identity import normalize_youtube_url
from timeutils import to_naive_utc
from youtube import YouTubeClient

# Configuration
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY", "")
VIEWER_TIMEOUT_MS = int(os.getenv("VIEWER_TIMEOUT_SECONDS", "120")) * 1000
PRESENCE_BACKEND = os.getenv("PRESENCE_BACKEND", "memory")
PORTAL_TIMEZONE = os.getenv("PORTAL_TIMEZONE", "Europe/London")
BRANCHES = [b.strip() for b in os.getenv("BRANCHES", "Pontypridd,Cardiff,Newport,Swansea").split(",") if b.strip()]

logger = logging.getLogger(__name__)

# Portal components
settings_repo = SettingsRepository(SessionLocal)
ledger = AttendanceLedger(SessionLocal)
gate = LiveStatusGate(settings_repo)
if PRESENCE_BACKEND == "storage":
    presence = StoragePresenceTracker(ledger, window_ms=VIEWER_TIMEOUT_MS)
else:
    presence = PresenceTracker(window_ms=VIEWER_TIMEOUT_MS)
heartbeats = HeartbeatService(ledger, presence, gate, branches=BRANCHES)
youtube = YouTubeClient(api_key=YOUTUBE_API_KEY)
scheduler = AutoDetectScheduler(settings_repo, gate, youtube, tz_name=PORTAL_TIMEZONE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    init_db()
    logger.info("Database initialized")
    logger.info(f"Presence backend: {PRESENCE_BACKEND}, branches: {', '.join(BRANCHES)}")
    if not YOUTUBE_API_KEY:
        logger.warning("YOUTUBE_API_KEY not set; live auto-detection disabled")

    yield

    logger.info("Shutting down...")

app = FastAPI(
    title="Church Stream Attendance",
    description="Live-stream attendance portal with heartbeat session tracking",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

create_logging_middleware(app, setup_logger())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "running",
        "presence_backend": PRESENCE_BACKEND,
        "auto_detect_enabled": bool(YOUTUBE_API_KEY),
        "branches": BRANCHES,
    }


@app.get("/branches")
async def list_branches():
    return {"branches": BRANCHES, "default": DEFAULT_BRANCH}

# Stream Settings Endpoints

@app.get("/stream-settings")
async def get_stream_settings():
    """Read the settings singleton, applying any pending auto-stop."""
    try:
        settings, _ = gate.check_expiry()
        return settings
    except StorageUnavailableError as e:
        logger.error(f"Serving default settings: {e}")
        return default_settings().to_dict()


@app.put("/stream-settings")
async def update_stream_settings(request: StreamSettingsUpdate):
    """Partial settings update; any stream URL form is stored as an embed URL."""
    fields = {
        key: value
        for key, value in request.model_dump(exclude_unset=True, by_alias=True).items()
        if value is not None or key in ("url", "youtubeUrl")
    }
    url = fields.pop("url", None)
    if url is not None and "youtubeUrl" not in fields:
        fields["youtubeUrl"] = url

    try:
        if "youtubeUrl" in fields:
            fields["youtubeUrl"] = normalize_youtube_url(fields["youtubeUrl"])
        return settings_repo.update(**fields)
    except InvalidStreamUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

# Attendance Endpoints

@app.post("/attendance/toggle")
async def toggle_attendance(request: ToggleRequest):
    """Admin start/stop of attendance."""
    try:
        deadline = to_naive_utc(request.auto_stop_at) if request.auto_stop_at else None
        settings = gate.toggle(request.is_active, deadline)
        return {**settings, "state": state_of(settings).value}
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Failed to toggle attendance: {e}")


@app.get("/attendance/records")
async def list_attendance_records(branch: Optional[str] = None):
    """All attendance records, newest first."""
    try:
        return ledger.list_all(branch)
    except StorageUnavailableError:
        return []


@app.post("/attendance/heartbeat")
async def attendance_heartbeat(request: HeartbeatRequest):
    """One heartbeat tick from a viewer."""
    try:
        return heartbeats.process(request)
    except InvalidBranchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AttendanceInactiveError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.post("/attendance/record")
async def record_attendance(request: AttendanceRecordRequest):
    """Legacy one-shot record sent when a viewer leaves."""
    try:
        heartbeats.check_branch(request.branch)
        return ledger.record(
            email=str(request.email),
            branch=request.branch,
            session_id=request.stream_session_id,
            name=request.name,
            stream_title=request.stream_title,
            start_time=to_naive_utc(request.start_time),
            duration_seconds=request.duration_seconds,
            end_time=to_naive_utc(request.end_time) if request.end_time else None,
        )
    except InvalidBranchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/attendance/active-count")
async def active_viewer_count(branch: Optional[str] = None):
    """Viewers with a heartbeat inside the presence window."""
    try:
        return {"count": presence.count_active(VIEWER_TIMEOUT_MS, scope=branch)}
    except StorageUnavailableError:
        return {"count": 0}

# Live Detection Endpoints

@app.api_route("/live-check", methods=["GET", "POST"])
async def live_check(force: bool = Query(False)):
    """Scheduler trigger. force=true is the admin's manual check."""
    try:
        result = scheduler.run(force=force)
        result["settings"] = settings_repo.get()
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if result["action"] == "error":
        return JSONResponse(status_code=502, content=jsonable_encoder(result))
    return result


@app.get("/live-check/status")
async def live_check_status():
    try:
        return scheduler.status()
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

# Admin

@app.post("/admin/login")
async def admin_login(request: AdminLoginRequest):
    if request.password == ADMIN_PASSWORD:
        return {"success": True, "branch": request.branch}
    raise HTTPException(status_code=401, detail="Incorrect password")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
