"""
Per-caller trade rate limiting.

Trades are initiated through the MCP tools on behalf of a client identified by its IP
address. Each client may start at most ``limit`` trades in a fixed 60-second window that
opens with its first trade; the window resets once it has elapsed.

Entries live in an OrderedDict kept in least-recently-used order, and expired windows are
purged once the table grows past ``max_entries`` so memory stays bounded.
"""
import threading
import time
from collections import OrderedDict
from typing import Callable, Tuple

from mcp_bonding_curve.config import RATE_LIMIT_PER_MINUTE
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60


class RateLimiter:
    def __init__(
        self,
        limit: int = RATE_LIMIT_PER_MINUTE,
        window: int = WINDOW_SECONDS,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window = window
        self.max_entries = max_entries
        self._clock = clock
        # {client: (count, window_start)}
        self._entries: "OrderedDict[str, Tuple[int, int]]" = OrderedDict()
        self._lock = threading.Lock()

    def check(self, client: str) -> bool:
        """Record one trade attempt for ``client``; False if its window is already full."""
        now = int(self._clock())
        with self._lock:
            if len(self._entries) > self.max_entries:
                self._purge(now - self.window)

            count, started = self._entries.get(client, (0, now))
            if now - started >= self.window:
                count, started = 0, now
            if count >= self.limit:
                logger.warning(f"Rate limit exceeded for client: {client}. Count: {count}, Limit: {self.limit}")
                return False

            self._entries[client] = (count + 1, started)
            self._entries.move_to_end(client)
            logger.debug(f"Rate limit check passed for client: {client}. Count: {count + 1}")
            return True

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _purge(self, cutoff: int) -> None:
        expired = [client for client, (_, started) in self._entries.items() if started < cutoff]
        for client in expired:
            del self._entries[client]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} old rate limit entries")


default_limiter = RateLimiter()


def check_rate_limit(client: str) -> bool:
    return default_limiter.check(client)
