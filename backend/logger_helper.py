import gzip
import json
import logging
import os
import shutil
import time
from logging.handlers import TimedRotatingFileHandler

from fastapi import Request

LOG_FILE = os.getenv("LOG_FILE", "portal_requests.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_MAX_SIZE = 20 * 1024 * 1024  # 20 MB
LOG_BACKUP_COUNT = 5             # Keep last 5 log files
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
REDACTED_FIELDS = {"password"}


def compress_old_log(source_path: str):
    if os.path.exists(source_path):
        with open(source_path, "rb") as f_in, gzip.open(f"{source_path}.gz", "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
        os.remove(source_path)


class CompressingRotatingHandler(TimedRotatingFileHandler):
    """
    Weekly rotation (every Monday at midnight) that also rolls over at
    LOG_MAX_SIZE and gzips rotated files.
    """

    def __init__(self, filename: str, max_bytes: int = LOG_MAX_SIZE, backup_count: int = LOG_BACKUP_COUNT):
        super().__init__(filename, when="W0", backupCount=backup_count, encoding="utf-8")
        self.max_bytes = max_bytes
        self.namer = lambda name: name + ".gz"

    def rotate(self, source: str, dest: str):
        compress_old_log(source)
        if os.path.exists(source + ".gz"):
            os.replace(source + ".gz", dest)

    def shouldRollover(self, record) -> bool:
        if os.path.exists(self.baseFilename) and os.path.getsize(self.baseFilename) >= self.max_bytes:
            return True
        return bool(super().shouldRollover(record))


def setup_logger(log_file: str = LOG_FILE, level: str = LOG_LEVEL) -> logging.Logger:
    """
    Configure portal logging: console always, rotating file when log_file is set.

    Returns the request logger used by the middleware.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, "_portal", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._portal = True
        root.addHandler(console)

        if log_file:
            handler = CompressingRotatingHandler(log_file)
            handler.setFormatter(formatter)
            handler._portal = True
            root.addHandler(handler)

    return logging.getLogger("portal.requests")


def redact_body(body: str) -> str:
    """Mask sensitive JSON fields before they reach the log."""
    if not body:
        return ""
    try:
        data = json.loads(body)
    except ValueError:
        return body
    if isinstance(data, dict):
        for key in REDACTED_FIELDS & data.keys():
            data[key] = "***"
    return json.dumps(data)


def create_logging_middleware(app, logger):
    """
    Adds a middleware to log request & response time, IP, and request bodies.
    """
    @app.middleware("http")
    async def log_request_response_time(request: Request, call_next):
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "-"
        method = request.method
        path = request.url.path

        try:
            body_bytes = await request.body()
            request_body = redact_body(body_bytes.decode("utf-8")) if body_bytes else ""
        except (UnicodeDecodeError, RuntimeError):
            request_body = "<Failed to read body>"

        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        logger.info(
            f"IP={client_ip} | {method} {path} | Status={response.status_code} | "
            f"Time={process_time:.4f}s | RequestBody={request_body}"
        )
        response.headers["X-Process-Time"] = str(round(process_time, 4))
        return response

    return app
