"""Locking primitives for the in-process indices."""

import threading
from collections import Counter
from contextlib import contextmanager
from typing import Hashable, Iterator

from retrieval_engine.errors import ConcurrentWriteError


class ReadWriteLock:
    """
    Writer-preferring reader-writer lock.

    Any number of readers may hold the lock together; a writer holds it alone.
    Once a writer is waiting, new readers queue behind it, so a reader never
    observes state older than the writes that were already queued when it
    started.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class OwnerClaims:
    """
    Tracks which embedding owners have a generation cycle in flight.

    Claims are re-entrant for the thread holding them; a claim from any other
    thread fails immediately with ConcurrentWriteError instead of queueing.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holders: dict[Hashable, int] = {}
        self._depth: Counter = Counter()

    @contextmanager
    def claim(self, owner_kind, owner_id) -> Iterator[None]:
        key = (owner_kind, owner_id)
        me = threading.get_ident()
        with self._lock:
            holder = self._holders.get(key)
            if holder is not None and holder != me:
                raise ConcurrentWriteError(owner_kind, owner_id)
            self._holders[key] = me
            self._depth[key] += 1
        try:
            yield
        finally:
            with self._lock:
                self._depth[key] -= 1
                if not self._depth[key]:
                    del self._depth[key]
                    del self._holders[key]
