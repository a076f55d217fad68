"""Bounded pool of OCR engines shared by concurrent pipeline runs.

Engines are created lazily up to ``max_size``. When every engine is checked
out, callers queue in strict FIFO order; acquisition honours the caller's
deadline. Engines that fail are discarded and their slot goes to the next
waiter, which then creates a fresh engine.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from receiptscan.domain.errors import OcrEngineError
from receiptscan.runtime.logging import get_logger
from receiptscan.runtime.ocr_engines import OcrEngine

logger = get_logger(__name__)


class _Waiter:
    def __init__(self) -> None:
        self.event = threading.Event()
        self.engine: OcrEngine | None = None
        # Granted permission to create a new engine instead of receiving one
        self.may_create = False

    @property
    def granted(self) -> bool:
        return self.engine is not None or self.may_create


class EnginePool:
    """Thread-safe, bounded, FIFO engine pool."""

    def __init__(self, factory: Callable[[], OcrEngine], max_size: int = 2) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self._factory = factory
        self._max_size = max_size
        self._lock = threading.Lock()
        self._idle: deque[OcrEngine] = deque()
        self._waiters: deque[_Waiter] = deque()
        self._created = 0
        self._closed = False

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        """Engines currently alive (idle or checked out)."""
        with self._lock:
            return self._created

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiters)

    def acquire(self, timeout: float | None = None) -> OcrEngine:
        """
        Check out an engine, creating one if the pool has spare capacity.

        Raises:
            OcrEngineError: kind "timeout" if no engine frees up before the
                deadline; kind "initialization" if creating an engine fails
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        waiter: _Waiter | None = None

        with self._lock:
            if self._closed:
                raise OcrEngineError("initialization", "Engine pool is closed")
            if not self._waiters and self._idle:
                return self._idle.popleft()
            if not self._waiters and self._created < self._max_size:
                self._created += 1
            else:
                waiter = _Waiter()
                self._waiters.append(waiter)

        if waiter is not None:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            waiter.event.wait(remaining)
            with self._lock:
                if not waiter.granted:
                    if self._closed:
                        raise OcrEngineError("initialization", "Engine pool was closed while waiting")
                    self._waiters.remove(waiter)
                    raise OcrEngineError("timeout", f"Timed out after {timeout}s waiting for an OCR engine")
            if waiter.engine is not None:
                return waiter.engine

        return self._create()

    def _create(self) -> OcrEngine:
        """Create an engine for a slot already reserved by the caller."""
        try:
            engine = self._factory()
        except OcrEngineError:
            self._release_slot()
            raise
        except Exception as e:
            self._release_slot()
            raise OcrEngineError("initialization", f"Failed to start OCR engine: {e}") from e
        logger.debug("Created OCR engine %s (%d/%d)", engine.name, self.size, self._max_size)
        return engine

    def _release_slot(self) -> None:
        with self._lock:
            self._created -= 1
            self._grant_slot_locked()

    def _grant_slot_locked(self) -> None:
        if self._waiters and self._created < self._max_size and not self._closed:
            waiter = self._waiters.popleft()
            waiter.may_create = True
            self._created += 1
            waiter.event.set()

    def release(self, engine: OcrEngine, discard: bool = False) -> None:
        """Return an engine to the pool, or discard it after a failure."""
        close_engine = discard
        with self._lock:
            if discard:
                self._created -= 1
                self._grant_slot_locked()
            elif self._closed:
                self._created -= 1
                close_engine = True
            elif self._waiters:
                waiter = self._waiters.popleft()
                waiter.engine = engine
                waiter.event.set()
            else:
                self._idle.append(engine)

        if close_engine:
            self._close_engine(engine)

    @contextmanager
    def engine(self, timeout: float | None = None) -> Iterator[OcrEngine]:
        """Check out an engine for the duration of a with-block.

        Engines raising OcrEngineError are discarded, except when the error
        only says the image was unreadable.
        """
        engine = self.acquire(timeout)
        try:
            yield engine
        except OcrEngineError as e:
            self.release(engine, discard=e.kind != "unreadable_image")
            raise
        except BaseException:
            self.release(engine)
            raise
        else:
            self.release(engine)

    def close(self) -> None:
        """Close idle engines; checked-out engines close when released."""
        with self._lock:
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._created -= len(idle)
            waiters = list(self._waiters)
            self._waiters.clear()
        for waiter in waiters:
            waiter.event.set()
        for engine in idle:
            self._close_engine(engine)

    @staticmethod
    def _close_engine(engine: OcrEngine) -> None:
        try:
            engine.close()
        except Exception as e:
            logger.warning("Failed to close OCR engine %s: %s", engine.name, e)

    def __enter__(self) -> EnginePool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
