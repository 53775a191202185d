"""
Durable attendance ledger and the stream settings singleton.

Both sit on a SQLAlchemy sessionmaker. Storage failures are rolled back
and re-raised as StorageUnavailableError; nothing here retries.
"""
import logging
import threading
import zlib
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import StorageUnavailableError
from models import AttendanceRecord, StreamSettings, SETTINGS_FIELDS, default_settings
from timeutils import utcnow

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class KeyedLocks:
    """
    Fixed pool of locks selected by key hash.

    Two keys may share a stripe.
    """

    def __init__(self, stripes: int = LOCK_STRIPES):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, *parts: str) -> threading.Lock:
        digest = zlib.crc32("\x1f".join(parts).encode("utf-8"))
        return self._locks[digest % len(self._locks)]


class AttendanceLedger:
    """
    Attendance records keyed by (email, stream_session_id, branch).

    Upsert is lookup-then-insert-or-update. The lookup and write for one
    key run under a per-key lock so concurrent first heartbeats inside this
    process cannot create duplicate rows.
    """

    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock
        self.locks = KeyedLocks()

    def _find(self, db, email: str, session_id: str, branch: str) -> Optional[AttendanceRecord]:
        return db.query(AttendanceRecord).filter(
            AttendanceRecord.email == email,
            AttendanceRecord.stream_session_id == session_id,
            AttendanceRecord.branch == branch,
        ).first()

    def upsert(
        self,
        email: str,
        branch: str,
        session_id: str,
        name: str,
        stream_title: str,
        start_time: datetime,
        duration_seconds: int,
    ) -> dict:
        """
        Accumulate watch time for one viewing session.

        The existing row gets name, title, duration and last_seen_at
        overwritten; its start_time is never touched. A missing row is
        created with the supplied start_time.

        Returns:
            The stored record as a dict
        """
        with self.locks.for_key(email, session_id, branch):
            db = self.session_factory()
            try:
                now = self.clock()
                record = self._find(db, email, session_id, branch)

                if record:
                    record.name = name
                    record.stream_title = stream_title
                    record.duration_seconds = duration_seconds
                    record.last_seen_at = now
                else:
                    record = AttendanceRecord(
                        name=name,
                        email=email,
                        branch=branch,
                        stream_session_id=session_id,
                        stream_title=stream_title,
                        start_time=start_time,
                        end_time=None,
                        last_seen_at=now,
                        duration_seconds=duration_seconds,
                        timestamp=now,
                    )
                    db.add(record)
                    logger.info(f"New attendance session {session_id} for {email} ({branch})")

                db.commit()
                db.refresh(record)
                return record.to_dict()

            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Attendance upsert failed for {email}/{session_id}: {e}")
                raise StorageUnavailableError("Failed to save attendance record") from e
            finally:
                db.close()

    def record(
        self,
        email: str,
        branch: str,
        session_id: str,
        name: str,
        stream_title: str,
        start_time: datetime,
        duration_seconds: int,
        end_time: Optional[datetime] = None,
    ) -> dict:
        """Legacy one-shot "record on exit": always inserts a complete row."""
        db = self.session_factory()
        try:
            now = self.clock()
            record = AttendanceRecord(
                name=name,
                email=email,
                branch=branch,
                stream_session_id=session_id,
                stream_title=stream_title,
                start_time=start_time,
                end_time=end_time,
                last_seen_at=end_time or now,
                duration_seconds=duration_seconds,
                timestamp=now,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return record.to_dict()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Attendance record insert failed for {email}: {e}")
            raise StorageUnavailableError("Failed to create attendance record") from e
        finally:
            db.close()

    def find(self, email: str, session_id: str, branch: str) -> Optional[dict]:
        db = self.session_factory()
        try:
            record = self._find(db, email, session_id, branch)
            return record.to_dict() if record else None
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Failed to read attendance record") from e
        finally:
            db.close()

    def list_all(self, branch: Optional[str] = None) -> List[dict]:
        """All records, newest first, optionally for one branch."""
        db = self.session_factory()
        try:
            query = db.query(AttendanceRecord)
            if branch:
                query = query.filter(AttendanceRecord.branch == branch)
            records = query.order_by(AttendanceRecord.timestamp.desc()).all()
            return [record.to_dict() for record in records]
        except SQLAlchemyError as e:
            logger.error(f"Listing attendance records failed: {e}")
            raise StorageUnavailableError("Failed to list attendance records") from e
        finally:
            db.close()

    def count_recent(self, window_ms: int, branch: Optional[str] = None) -> int:
        """Rows whose last_seen_at falls inside the window."""
        db = self.session_factory()
        try:
            cutoff = self.clock() - timedelta(milliseconds=window_ms)
            query = db.query(AttendanceRecord).filter(AttendanceRecord.last_seen_at >= cutoff)
            if branch:
                query = query.filter(AttendanceRecord.branch == branch)
            return query.count()
        except SQLAlchemyError as e:
            logger.error(f"Counting recent viewers failed: {e}")
            raise StorageUnavailableError("Failed to count active viewers") from e
        finally:
            db.close()


class SettingsRepository:
    """
    Persistence for the single StreamSettings row.

    The row is created with defaults on first read.
    """

    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock
        self.lock = threading.Lock()

    def _load(self, db) -> StreamSettings:
        settings = db.query(StreamSettings).first()
        if settings is None:
            settings = default_settings()
            settings.updated_at = self.clock()
            db.add(settings)
            db.flush()
            logger.info("Created default stream settings")
        return settings

    def get(self) -> dict:
        with self.lock:
            db = self.session_factory()
            try:
                settings = self._load(db)
                db.commit()
                return settings.to_dict()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Reading stream settings failed: {e}")
                raise StorageUnavailableError("Failed to read stream settings") from e
            finally:
                db.close()

    def update(self, **fields) -> dict:
        """
        Partial update keyed by camelCase API names (see SETTINGS_FIELDS),
        plus isAttendanceActive as a bool or "true"/"false".
        """
        with self.lock:
            db = self.session_factory()
            try:
                settings = self._load(db)
                for key, value in fields.items():
                    if key == "isAttendanceActive":
                        if isinstance(value, str):
                            value = value == "true"
                        settings.is_attendance_active = "true" if value else "false"
                    elif key in SETTINGS_FIELDS:
                        setattr(settings, SETTINGS_FIELDS[key], value)
                    else:
                        raise KeyError(f"Unknown settings field: {key}")
                settings.updated_at = self.clock()
                db.commit()
                db.refresh(settings)
                return settings.to_dict()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Updating stream settings failed: {e}")
                raise StorageUnavailableError("Failed to update stream settings") from e
            finally:
                db.close()
