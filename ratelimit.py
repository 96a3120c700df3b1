import logging
import threading
import time
from typing import Dict, Tuple

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from errors import envelope

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request ceiling per client address on ``/api`` routes."""

    def __init__(self, app, window_ms: int, max_requests: int, prefix: str = "/api"):
        super().__init__(app)
        self.window = window_ms / 1000.0
        self.max_requests = max_requests
        self.prefix = prefix
        self.hits: Dict[str, Tuple[float, int]] = {}
        self.lock = threading.Lock()
        self.last_sweep = time.monotonic()

    def _sweep(self, now: float) -> None:
        """Forget clients whose window has expired."""
        self.hits = {k: v for k, v in self.hits.items() if now - v[0] < self.window}
        self.last_sweep = now

    def _hit(self, key: str) -> bool:
        now = time.monotonic()
        with self.lock:
            if now - self.last_sweep >= self.window:
                self._sweep(now)
            started, count = self.hits.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            count += 1
            self.hits[key] = (started, count)
            return count <= self.max_requests

    async def dispatch(self, request, call_next):
        if request.url.path.startswith(self.prefix):
            client = request.client.host if request.client else "unknown"
            if not self._hit(client):
                logger.warning("Rate limit exceeded for %s", client)
                return JSONResponse(
                    status_code=429,
                    content=envelope(False, "Too many requests from this IP, please try again later."),
                )
        return await call_next(request)
