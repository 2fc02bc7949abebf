"""Key Rotation Ledger: per-credential quota tracking with fixed windows.

A provider that hands out several interchangeable API keys gets one usage
record per key. ``acquire()`` walks the keys round-robin from a rotating
cursor and returns the first key that still has quota in its current window.
A key that hits its quota is blocked until its window ends.

Thread-safe via asyncio.Lock: the check-quota-then-increment step of each
acquisition runs under the lock, so concurrent requests can never push a key
past its quota.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_QUOTA = 15  # requests per window per key
DEFAULT_WINDOW_SECONDS = 60.0


@dataclass
class _UsageRecord:
    """Mutable usage state for one credential."""

    request_count: int = 0
    window_start: float = 0.0
    is_blocked: bool = False
    blocked_until: float = 0.0

    def roll_window(self, now: float, window: float) -> None:
        """Start a fresh window once the current one has elapsed."""
        if now - self.window_start >= window:
            self.request_count = 0
            self.window_start = now
            self.is_blocked = False
            self.blocked_until = 0.0


def redact_credential(credential: str) -> str:
    """Show only the first and last few characters of a credential."""
    if len(credential) <= 8:
        return "****"
    head = 10 if len(credential) >= 24 else 4
    return f"{credential[:head]}...{credential[-4:]}"


class KeyRotationLedger:
    """Round-robin credential pool with per-key quota windows.

    Usage:
        ledger = KeyRotationLedger(["key-a", "key-b"], quota=15)

        key = await ledger.acquire()
        if key is None:
            # Every key is spent for this window, move to another provider
            ...

    A pool with exactly one key always returns it without counting: a single
    key cannot rotate away from a rate limit, so the upstream 429 is the
    only signal in that setup.
    """

    def __init__(
        self,
        credentials: Sequence[str],
        quota: int = DEFAULT_QUOTA,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if quota < 1:
            raise ValueError("quota must be at least 1")
        self._credentials: tuple[str, ...] = tuple(credentials)
        self.quota = quota
        self.window_seconds = window_seconds
        self._clock = clock
        self._cursor = 0
        self._lock = asyncio.Lock()

        now = clock()
        self._records: list[_UsageRecord] = [_UsageRecord(window_start=now) for _ in self._credentials]
        logger.info("Loaded %d credential(s) for rotation", len(self._credentials))

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def rotation_enabled(self) -> bool:
        return len(self._credentials) > 1

    @property
    def cursor(self) -> int:
        return self._cursor

    async def acquire(self) -> str | None:
        """Return the next credential with remaining quota, or None if all are spent."""
        if not self._credentials:
            return None
        if len(self._credentials) == 1:
            return self._credentials[0]

        async with self._lock:
            now = self._clock()
            count = len(self._credentials)

            for offset in range(count):
                index = (self._cursor + offset) % count
                record = self._records[index]
                record.roll_window(now, self.window_seconds)

                if record.is_blocked and now < record.blocked_until:
                    logger.debug(
                        "Key #%d blocked for %.0fs more",
                        index + 1,
                        record.blocked_until - now,
                    )
                    continue

                if record.request_count < self.quota:
                    record.request_count += 1
                    self._cursor = (index + 1) % count
                    remaining = self.quota - record.request_count
                    logger.debug(
                        "Using key #%d (%d/%d used, %d remaining)",
                        index + 1,
                        record.request_count,
                        self.quota,
                        remaining,
                    )
                    if remaining <= 2:
                        logger.info("Key #%d approaching its limit (%d remaining)", index + 1, remaining)
                    return self._credentials[index]

                record.is_blocked = True
                record.blocked_until = record.window_start + self.window_seconds
                logger.info("Key #%d reached its quota, blocked until window reset", index + 1)

        logger.warning("All %d keys exhausted for the current window", count)
        return None

    def get_stats(self) -> dict:
        """Read-only snapshot of the pool. Never exposes full credentials."""
        now = self._clock()
        keys = []
        for index, (credential, record) in enumerate(zip(self._credentials, self._records)):
            elapsed = now - record.window_start
            window_over = elapsed >= self.window_seconds
            used = 0 if window_over else record.request_count
            keys.append(
                {
                    "key_number": index + 1,
                    "requests_used": used,
                    "requests_limit": self.quota,
                    "requests_remaining": max(0, self.quota - used),
                    "is_blocked": record.is_blocked and now < record.blocked_until,
                    "resets_in_seconds": 0 if window_over else max(0, math.ceil(self.window_seconds - elapsed)),
                    "key_preview": redact_credential(credential),
                }
            )
        return {
            "total_keys": len(self._credentials),
            "current_key_index": self._cursor + 1 if self._credentials else 0,
            "rotation_enabled": self.rotation_enabled,
            "combined_capacity": f"{len(self._credentials) * self.quota} requests per {int(self.window_seconds)}s",
            "keys": keys,
        }
