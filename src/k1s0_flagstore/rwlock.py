"""Reader/writer lock."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """A lock allowing many concurrent readers or one exclusive writer.

    Waiting writers take priority: once a writer is waiting, new readers block
    until it has finished, so a steady stream of reads cannot starve updates.
    The thread holding the write lock may take the read lock or the write lock
    again, so callbacks run under the write lock can call back into the same
    object. A reader may not upgrade to a writer, and a thread must not nest
    read locks while another thread may be waiting to write.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writers_waiting = 0
        self._writer: int | None = None
        self._writer_reads = 0
        self._writer_depth = 0

    def rlock(self) -> None:
        with self._cond:
            if self._writer == threading.get_ident():
                self._writer_reads += 1
                return
            while self._writer is not None or self._writers_waiting > 0:
                self._cond.wait()
            self._readers += 1

    def runlock(self) -> None:
        with self._cond:
            if self._writer == threading.get_ident() and self._writer_reads > 0:
                self._writer_reads -= 1
                return
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def lock(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers > 0:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = me
            self._writer_depth = 1

    def unlock(self) -> None:
        with self._cond:
            self._writer_depth -= 1
            if self._writer_depth > 0:
                return
            self._writer = None
            self._writer_reads = 0
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.rlock()
        try:
            yield
        finally:
            self.runlock()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.lock()
        try:
            yield
        finally:
            self.unlock()
