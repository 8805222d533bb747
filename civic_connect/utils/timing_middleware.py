import time
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from pymongo import monitoring

logger = logging.getLogger("performance")

QUIET_PATHS = ("/", "/api/health", "/favicon.ico", "/robots.txt")


class CommandLogger(monitoring.CommandListener):
    """Logs slow MongoDB commands; fast ones stay silent."""

    def __init__(self, slow_ms: float = 100.0, notice_ms: float = 50.0):
        self.slow_ms = slow_ms
        self.notice_ms = notice_ms
        self._timings = {}

    def started(self, event):
        self._timings[event.request_id] = time.time()

    def succeeded(self, event):
        start_time = self._timings.pop(event.request_id, None)
        if start_time:
            duration = (time.time() - start_time) * 1000
            if duration > self.slow_ms:
                logger.warning(f"🐌 Slow MongoDB {event.command_name}: {duration:.2f} ms")
            elif duration > self.notice_ms:
                logger.info(f"⚡ MongoDB {event.command_name}: {duration:.2f} ms")

    def failed(self, event):
        start_time = self._timings.pop(event.request_id, None)
        duration = (time.time() - start_time) * 1000 if start_time else 0

        # Index already present with other options (code 85): expected on restart
        if event.command_name == "createIndexes":
            failure_msg = str(event.failure)
            if "IndexOptionsConflict" in failure_msg or "already exists" in failure_msg or getattr(event.failure, "code", 0) == 85:
                logger.debug(f"ℹ️ MongoDB index creation overlapped (harmless): {duration:.2f} ms")
                return

        if start_time:
            logger.error(f"❌ MongoDB {event.command_name} failed after {duration:.2f} ms")
        else:
            logger.error(f"❌ MongoDB {event.command_name} failed (duration unknown)")


class TimingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, slow_ms: int = 2500, log_slow: bool = True):
        super().__init__(app)
        self.slow_ms = slow_ms
        self.log_slow = log_slow

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response: Response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        path = request.url.path
        should_log = not (
            path in QUIET_PATHS
            or path.startswith("/api/storage/")
            or path.endswith(".ico")
        )

        if should_log:
            if self.log_slow and process_time > self.slow_ms:
                logger.warning(f"🐌 Slow request {request.method} {path} took {process_time:.2f} ms (threshold {self.slow_ms} ms)")
            else:
                logger.info(f"⏱️ Request {request.method} {path} took {process_time:.2f} ms")

        response.headers["X-Process-Time-ms"] = f"{process_time:.2f}"
        return response
