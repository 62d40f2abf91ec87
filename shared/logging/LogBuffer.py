"""In-memory window of recent log entries, served by GET /logs.

The buffer is an ordinary logging handler owned by whoever builds it (the API
lifespan), bounded both by entry count and by age. Pruning by age runs on
every write and additionally in a background task between start() and stop().
"""

import asyncio
import logging
import time
from collections import deque

from pydantic import BaseModel


class LogEntry(BaseModel):
    """A single buffered log line.

    Attributes:
        timestamp: Creation time in epoch milliseconds.
        level:     Lower-case level name ("info", "warning", ...).
        message:   The fully formatted message.
    """

    timestamp: int
    level: str
    message: str


class LogBuffer(logging.Handler):
    """Bounded, time-windowed log store."""

    def __init__(
        self,
        retention_seconds: float = 60.0,
        max_entries: int = 5000,
        prune_interval_seconds: float = 10.0,
    ) -> None:
        super().__init__()
        self.retention_seconds = retention_seconds
        self.prune_interval_seconds = prune_interval_seconds
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._prune_task: asyncio.Task | None = None

    ##########################################
    ############### HANDLER ##################
    ##########################################

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        entry = LogEntry(
            timestamp=int(record.created * 1000),
            level=record.levelname.lower(),
            message=message,
        )
        # Handler.handle() holds self.lock here
        self._entries.append(entry)
        self._prune_locked(now=time.time())

    ##########################################
    ############### QUERIES ##################
    ##########################################

    def get_logs(self, since_ms: int | None = None) -> list[LogEntry]:
        """Return buffered entries newer than since_ms (default: last 10 seconds).

        Args:
            since_ms (int | None): Lower bound in epoch milliseconds (inclusive).

        Returns:
            list[LogEntry]: Matching entries, oldest first.
        """
        if since_ms is None:
            since_ms = int((time.time() - 10) * 1000)
        with self.lock:
            return [entry for entry in self._entries if entry.timestamp >= since_ms]

    def prune(self, now: float | None = None) -> int:
        """Drop entries older than the retention window.

        Returns:
            int: Number of entries removed.
        """
        with self.lock:
            return self._prune_locked(now=time.time() if now is None else now)

    def _prune_locked(self, now: float) -> int:
        cutoff_ms = int((now - self.retention_seconds) * 1000)
        removed = 0
        while self._entries and self._entries[0].timestamp < cutoff_ms:
            self._entries.popleft()
            removed += 1
        return removed

    ##########################################
    ############## LIFECYCLE #################
    ##########################################

    async def start(self) -> None:
        """Start the periodic pruning task on the running event loop."""
        if self._prune_task is None or self._prune_task.done():
            self._prune_task = asyncio.create_task(self._prune_loop())

    async def stop(self) -> None:
        """Stop the periodic pruning task."""
        if self._prune_task is not None:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
            self._prune_task = None

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self.prune_interval_seconds)
            self.prune()
