import threading
import time
from typing import Dict, List, Optional

from fastapi import HTTPException, Request


class RateLimiter:
    """Sliding-window request counter keyed by client address.

    Clients with no request inside the window are evicted on the next sweep,
    so memory stays proportional to recently active clients.
    """

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def allow(self, key: str, max_requests: Optional[int] = None, window_seconds: Optional[int] = None) -> bool:
        limit = max_requests or self.max_requests
        window = window_seconds or self.window_seconds
        now = time.time()
        cutoff = now - window
        with self._lock:
            if now - self._last_sweep > window:
                self._sweep(cutoff)
                self._last_sweep = now
            recent = [t for t in self._hits.get(key, []) if t > cutoff]
            if len(recent) >= limit:
                self._hits[key] = recent
                return False
            recent.append(now)
            self._hits[key] = recent
            return True

    def _sweep(self, cutoff: float) -> None:
        idle = [k for k, times in self._hits.items() if not times or times[-1] <= cutoff]
        for k in idle:
            del self._hits[k]

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)


def rate_limit_dependency(max_requests: Optional[int] = None, window_seconds: Optional[int] = None):
    """Create a dependency that raises HTTP 429 when the app's limiter says no"""
    def dependency(request: Request):
        limiter = getattr(request.app.state, 'rate_limiter', None)
        if limiter is None:
            return
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.allow(client_ip, max_requests, window_seconds):
            raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")
    return dependency
