"""Monthly usage quota for external provider calls.

The counter is keyed by calendar month. When the stored period differs from
the current one it is reset to zero before the limit is evaluated. Every
read-modify-write cycle holds the tracker lock and the store lock; the file
store locks on disk, so workers sharing one quota file never lose an
increment.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from filelock import FileLock

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractContextManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageCounter:
    period: str
    count: int


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int


@dataclass(frozen=True)
class UsageSnapshot:
    period: str
    count: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


def current_period(now: datetime | None = None) -> str:
    """Year-month key such as ``"2024-06"``."""
    moment = now if now is not None else datetime.now(UTC)
    return moment.strftime("%Y-%m")


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class QuotaStore(Protocol):
    """Durable storage for the single ``UsageCounter``."""

    def load(self) -> UsageCounter | None:
        """Return the stored counter, or None before first use."""
        ...

    def save(self, counter: UsageCounter) -> None:
        """Persist the counter."""
        ...

    def locked(self) -> AbstractContextManager[object]:
        """Exclusive access to the counter for one read-modify-write cycle."""
        ...


class InMemoryQuotaStore:
    """Process-local store, for tests and single-process deployments."""

    def __init__(self, counter: UsageCounter | None = None) -> None:
        self._counter = counter

    def load(self) -> UsageCounter | None:
        return self._counter

    def save(self, counter: UsageCounter) -> None:
        self._counter = counter

    def locked(self) -> AbstractContextManager[object]:
        return nullcontext()


class JsonFileQuotaStore:
    """Stores the counter as a small JSON document that survives restarts.

    Writes go to a temporary file that replaces the target atomically. A
    sibling ``.lock`` file serializes updates across processes.
    """

    def __init__(self, path: str | Path, lock_timeout: float = 10.0) -> None:
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UsageCounter | None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable quota file %s: %s", self._path, exc)
            return None
        try:
            return UsageCounter(period=str(raw["period"]), count=int(raw["count"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed quota file %s", self._path)
            return None

    def save(self, counter: UsageCounter) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"period": counter.period, "count": counter.count})
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".quota-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def locked(self) -> AbstractContextManager[object]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(self._lock_path, timeout=self._lock_timeout)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class UsageTracker:
    """Enforces a monthly call budget on top of a ``QuotaStore``."""

    def __init__(
        self,
        store: QuotaStore,
        monthly_limit: int,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._limit = monthly_limit
        self._clock = clock if clock is not None else (lambda: datetime.now(UTC))
        self._lock = threading.Lock()

    @property
    def monthly_limit(self) -> int:
        return self._limit

    def _current(self) -> UsageCounter:
        period = current_period(self._clock())
        stored = self._store.load()
        if stored is None or stored.period != period:
            if stored is not None:
                logger.info("Usage period rolled over from %s to %s", stored.period, period)
            return UsageCounter(period=period, count=0)
        return stored

    def try_consume(self) -> QuotaDecision:
        """Reserve one call if the budget allows it.

        ``remaining`` is the budget seen at check time, before this call is
        counted, so the first call of a fresh period reports the full limit.
        """
        with self._lock, self._store.locked():
            counter = self._current()
            if counter.count >= self._limit:
                self._store.save(counter)
                return QuotaDecision(allowed=False, remaining=0)
            self._store.save(UsageCounter(period=counter.period, count=counter.count + 1))
            return QuotaDecision(allowed=True, remaining=self._limit - counter.count)

    def record_usage(self, count: int = 1) -> UsageCounter:
        """Add usage without checking the limit (calls made outside ``try_consume``)."""
        if count < 0:
            raise ValueError("Usage count cannot be negative")
        with self._lock, self._store.locked():
            counter = self._current()
            updated = UsageCounter(period=counter.period, count=counter.count + count)
            self._store.save(updated)
            return updated

    def snapshot(self) -> UsageSnapshot:
        with self._lock, self._store.locked():
            counter = self._current()
        return UsageSnapshot(period=counter.period, count=counter.count, limit=self._limit)
