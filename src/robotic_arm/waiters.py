"""
Correlates incoming controller lines with callers blocked on a reply.

The controller never tags its replies, so a caller registers the text it
expects (e.g. "MOVE_JOINT 3 COMPLETE") and the registry hands it the first
line containing that text. Waiters are scanned in registration order and a
line resolves at most one of them. Patterns that overlap (two waits both
matching "COMPLETE") resolve the earliest waiter first; callers pick
patterns that include the joint number to keep concurrent waits apart.
"""

import logging
import threading
import time
from typing import List, Optional

from .exceptions import CommandTimeoutError

logger = logging.getLogger(__name__)


class PendingWait:
    """A single outstanding wait. Resolved exactly once, by a match, a timeout or a cancel."""

    def __init__(self, pattern: str, timeout: float):
        self.pattern = pattern
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout
        self.line: Optional[str] = None
        # position of the matching line in the connection's receive order
        self.seq: Optional[int] = None
        self.error: Optional[Exception] = None
        self._event = threading.Event()
        self._timer: Optional[threading.Timer] = None

    def matches(self, line: str) -> bool:
        return self.pattern in line

    def done(self) -> bool:
        return self._event.is_set()

    def wait(self) -> str:
        """
        Blocks until the wait is resolved.
        :return: the matching line
        :raises CommandTimeoutError: no matching line before the deadline
        :raises DisconnectedError: the connection was closed while waiting
        """
        self._event.wait()
        if self.error is not None:
            raise self.error
        return self.line

    # resolution is driven by the registry while it holds its lock
    def _resolve(self, line: Optional[str] = None, error: Optional[Exception] = None,
                 seq: Optional[int] = None) -> bool:
        if self._event.is_set():
            return False
        if self._timer is not None:
            self._timer.cancel()
        self.line = line
        self.seq = seq
        self.error = error
        self._event.set()
        return True

    def __repr__(self):
        state = "done" if self.done() else "pending"
        return f"PendingWait({self.pattern!r}, timeout={self.timeout}, {state})"


class ResponseWaiterRegistry:

    def __init__(self):
        self._lock = threading.Lock()
        self._waiters: List[PendingWait] = []

    def register(self, pattern: str, timeout: float) -> PendingWait:
        """
        Adds a waiter for the first line containing `pattern`.
        :param pattern: substring to look for
        :param timeout: seconds until the waiter fails with CommandTimeoutError
        :return: the handle to wait on
        """
        wait = PendingWait(pattern, timeout)
        timer = threading.Timer(timeout, self._expire, args=(wait,))
        timer.daemon = True
        wait._timer = timer
        with self._lock:
            self._waiters.append(wait)
        timer.start()
        return wait

    def feed(self, line: str, seq: Optional[int] = None) -> Optional[PendingWait]:
        """
        Resolves the earliest registered waiter matching `line`, if any.
        :param seq: receive-order number of the line, stored on the resolved wait
        """
        with self._lock:
            for wait in self._waiters:
                if wait.matches(line):
                    self._waiters.remove(wait)
                    wait._resolve(line=line, seq=seq)
                    return wait
        return None

    def discard(self, wait: PendingWait) -> None:
        """Drops a waiter without resolving it."""
        with self._lock:
            if wait in self._waiters:
                self._waiters.remove(wait)
            if wait._timer is not None:
                wait._timer.cancel()

    def cancel_all(self, error: Exception) -> int:
        with self._lock:
            waiters, self._waiters = self._waiters, []
            for wait in waiters:
                wait._resolve(error=error)
        if waiters:
            logger.debug(f"Cancelled {len(waiters)} pending wait(s): {error}")
        return len(waiters)

    def _expire(self, wait: PendingWait) -> None:
        with self._lock:
            if wait not in self._waiters:
                return
            self._waiters.remove(wait)
            wait._resolve(error=CommandTimeoutError(
                f"Timeout: '{wait.pattern}' not received within {wait.timeout}s"))

    def __len__(self):
        with self._lock:
            return len(self._waiters)
