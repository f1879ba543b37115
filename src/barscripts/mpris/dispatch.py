import collections
import functools
import logging
import threading

from concurrent import futures
from typing import Any, Callable, Deque, Dict, Optional


_LOGGER = logging.getLogger(__name__)


Job = Callable[[], Any]


class SerialDispatcher(object):
    """
    Runs jobs on an executor, one lane per key.

    Jobs submitted under the same key run one at a time, in the order
    they were submitted.  Jobs under different keys run concurrently, so
    a source that hangs only ever holds up its own lane.
    """

    def __init__(self, executor: futures.Executor) -> None:
        self._executor = executor
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._lanes: Dict[str, Deque[Job]] = dict()
        self._closed = False

    def submit(self, key: str, func: Callable[..., Any], *args: Any) -> bool:
        job = functools.partial(func, *args)
        with self._lock:
            if self._closed:
                _LOGGER.debug("Dispatcher closed, dropping job for %s", key)
                return False
            lane = self._lanes.get(key)
            if lane is not None:
                # A drainer is already working this lane.
                lane.append(job)
                return True
            self._lanes[key] = collections.deque([job])
        try:
            self._executor.submit(self._drain, key)
        except RuntimeError:
            # The executor is shutting down.
            with self._lock:
                self._lanes.pop(key, None)
            _LOGGER.debug("Executor gone, dropping job for %s", key)
            return False
        return True

    def _drain(self, key: str) -> None:
        while True:
            with self._lock:
                lane = self._lanes[key]
                if not lane:
                    del self._lanes[key]
                    if not self._lanes:
                        self._idle.notify_all()
                    return
                job = lane.popleft()
            try:
                job()
            except Exception:
                _LOGGER.exception("Error processing job for %s", key)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no lane has work left.  False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._lanes, timeout)

    def pending(self, key: str) -> int:
        with self._lock:
            return len(self._lanes.get(key, ()))

    def close(self) -> None:
        """Refuse new jobs and drop the queued ones.  Running jobs finish."""
        with self._lock:
            self._closed = True
            for key, lane in self._lanes.items():
                if lane:
                    _LOGGER.debug("Dropping %d jobs for %s", len(lane), key)
                lane.clear()
