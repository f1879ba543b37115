import logging
import threading

from concurrent import futures
from typing import Dict, List, Optional

from barscripts.mpris.errors import (
    MalformedSource,
    SourceNotFound,
    StalePollTarget,
    TransportUnavailable,
)
from barscripts.mpris.properties import (
    PROP_POSITION,
    STATUS_PLAYING,
    Properties,
    decode_properties,
)
from barscripts.mpris.registry import RegistryEntry, SourceRegistry
from barscripts.mpris.transport import Transport


_LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0


class PositionPoller(object):
    """
    Refreshes the position of playing sources.

    Players do not signal position changes while playing (only the Seeked
    signal on jumps), so the position has to be pulled.  Paused and stopped
    sources are left alone; some of them (Firefox) even report a position
    that keeps running while paused.

    on_tick() is meant to be driven by a timer.  A tick that comes due
    while the previous one is still fetching is skipped, not queued.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        transport: Transport,
        executor: futures.Executor,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise ValueError("poll interval must be positive, not %s" % interval)
        self.registry = registry
        self.transport = transport
        self.interval = interval
        self._executor = executor
        # Ticks run here, fetches on executor, so a tick waiting on its
        # fetches never starves them of workers.
        self._ticker = futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="mpris-tick",
        )
        self._busy = threading.Lock()
        self._state = threading.Lock()
        self._stopped = False
        self._current: Optional["futures.Future[None]"] = None

    def on_tick(self) -> bool:
        with self._state:
            if self._stopped:
                return False
            if not self._busy.acquire(blocking=False):
                _LOGGER.debug("Previous position poll still running, skipping")
                return True
            self._current = self._ticker.submit(self._run_tick)
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking and wait up to timeout for a running tick."""
        with self._state:
            self._stopped = True
            current = self._current
        if current is not None:
            futures.wait([current], timeout)
        self._ticker.shutdown(wait=False)

    def _run_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            _LOGGER.exception("Error polling positions")
        finally:
            self._busy.release()

    def _targets(self) -> List[RegistryEntry]:
        targets = []
        for identity in sorted(self.registry.list()):
            try:
                entry = self.registry.get(identity)
            except SourceNotFound:
                continue
            if entry.properties.playback_status == STATUS_PLAYING:
                targets.append(entry)
        return targets

    def tick(self) -> int:
        """Poll every playing source once.  Returns how many changed."""
        targets = self._targets()
        fetches: Dict["futures.Future[Properties]", RegistryEntry] = dict()
        for entry in targets:
            try:
                f = self._executor.submit(self._fetch, entry.identity)
            except RuntimeError:
                # Executor shut down under us.
                break
            fetches[f] = entry
        updated = 0
        for f in futures.as_completed(fetches):
            entry = fetches[f]
            try:
                delta = f.result()
            except (TransportUnavailable, MalformedSource) as e:
                _LOGGER.warning("%s: cannot poll position: %s", entry.identity, e)
                continue
            try:
                if self._apply(entry, delta):
                    updated += 1
            except StalePollTarget:
                _LOGGER.debug(
                    "%s: discarding position for a player no longer playing",
                    entry.identity,
                )
        return updated

    def _fetch(self, identity: str) -> Properties:
        raw = self.transport.get_property(identity, PROP_POSITION)
        delta, warnings = decode_properties({PROP_POSITION: raw}, full=False)
        if PROP_POSITION not in delta:
            raise MalformedSource(str(warnings[0]))
        return delta

    def _apply(self, entry: RegistryEntry, delta: Properties) -> bool:
        try:
            current = self.registry.get(entry.identity)
        except SourceNotFound:
            raise StalePollTarget(entry.identity) from None
        if (
            current.handle is not entry.handle
            or current.properties.playback_status != STATUS_PLAYING
        ):
            raise StalePollTarget(entry.identity)
        return self.registry.apply_delta(
            entry.identity,
            delta,
            (),
            handle=entry.handle,
            require_status=STATUS_PLAYING,
        )
