import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from fastapi import Request

from .errors import TooManyRequests

log = logging.getLogger("uvicorn.error").getChild("ratelimit")


class SlidingWindowLimiter:
    """At most `limit` hits per key in any `window` seconds. Per process."""

    def __init__(self, limit: int, window: float):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def hit(self, key: str, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        hits = self._hits[key]
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if len(hits) >= self.limit:
            return False
        hits.append(now)
        return True

    def __len__(self) -> int:
        return len(self._hits)


async def limit_reports(request: Request) -> None:
    limiter: SlidingWindowLimiter = request.app.state.report_limiter
    key = request.client.host if request.client else "unknown"
    if not limiter.hit(key):
        log.warning("[ratelimit] report limit reached for %s", key)
        raise TooManyRequests("Too many incident reports from this address, please try again later")
