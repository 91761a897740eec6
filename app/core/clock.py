from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Iterator


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    """Process-wide time source.

    ``freeze`` pins ``now()`` to a fixed instant, ``travel`` shifts the real
    clock by a constant offset so time keeps moving from the new origin.
    Both are context managers and restore the previous state on exit.
    """

    def __init__(self):
        self._frozen_at: datetime | None = None
        self._offset = timedelta(0)
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            if self._frozen_at is not None:
                return self._frozen_at
            return datetime.now(timezone.utc) + self._offset

    @contextmanager
    def freeze(self, at: datetime | None = None) -> Iterator[datetime]:
        moment = as_utc(at) if at is not None else self.now()
        with self._lock:
            previous = (self._frozen_at, self._offset)
            self._frozen_at = moment
        try:
            yield moment
        finally:
            with self._lock:
                self._frozen_at, self._offset = previous

    @contextmanager
    def travel(self, to: datetime) -> Iterator[datetime]:
        target = as_utc(to)
        with self._lock:
            previous = (self._frozen_at, self._offset)
            if self._frozen_at is not None:
                self._frozen_at = target
            else:
                self._offset = target - datetime.now(timezone.utc)
        try:
            yield target
        finally:
            with self._lock:
                self._frozen_at, self._offset = previous


clock = Clock()


def utcnow() -> datetime:
    return clock.now()
