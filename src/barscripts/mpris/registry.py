import collections
import functools
import logging
import threading
import time

from typing import Callable, Deque, Dict, Iterable, Optional, Set

from barscripts.mpris.errors import SourceNotFound
from barscripts.mpris.properties import Properties
from barscripts.mpris.transport import Subscription


_LOGGER = logging.getLogger(__name__)


UpdatedCallback = Callable[[str, Properties], None]
RemovedCallback = Callable[[str], None]
Notification = Callable[[], None]


class RegistryEntry(object):
    def __init__(
        self,
        identity: str,
        properties: Properties,
        handle: Optional[Subscription],
        updated: float,
    ) -> None:
        self.identity = identity
        self.properties = properties
        self.handle = handle
        self.updated = updated

    def __repr__(self) -> str:
        return "<RegistryEntry %s %s>" % (
            self.identity,
            self.properties.playback_status,
        )


class SourceRegistry(object):
    """
    The sources currently tracked, keyed by bus name.

    Entries are never modified in place; every mutation swaps in a new
    RegistryEntry under the lock, so an entry handed out by get() is a
    consistent snapshot.

    Listeners run after the lock is released.  Notifications are queued
    per source while the lock is held and drained by one thread at a time
    per source, so the updated/removed feed of one source keeps mutation
    order and a slow listener holds up no other source.
    """

    def __init__(
        self,
        on_updated: Optional[UpdatedCallback] = None,
        on_removed: Optional[RemovedCallback] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._entries: Dict[str, RegistryEntry] = dict()
        self._pending: Dict[str, Deque[Notification]] = dict()
        self._draining: Set[str] = set()
        self._on_updated = on_updated
        self._on_removed = on_removed

    def upsert_full(
        self,
        identity: str,
        snapshot: Properties,
        handle: Optional[Subscription],
    ) -> None:
        with self._lock:
            old = self._entries.get(identity)
            if old is not None and old.handle is not None:
                if old.handle is not handle:
                    old.handle.cancel()
            self._entries[identity] = RegistryEntry(
                identity,
                snapshot,
                handle,
                time.time(),
            )
            _LOGGER.info(
                "%s %s (%s)",
                "Replaced" if old else "Added",
                identity,
                snapshot.playback_status,
            )
            self._queue(identity, self._notify_updated, snapshot)
        self._deliver(identity)

    def apply_delta(
        self,
        identity: str,
        partial_snapshot: Properties,
        invalidated_keys: Iterable[str] = (),
        handle: Optional[Subscription] = None,
        require_status: Optional[str] = None,
    ) -> bool:
        """
        Merge a partial snapshot into the entry of identity.

        Returns True if the entry changed.  Nothing happens if there is no
        entry, if handle is given and no longer belongs to the entry, or if
        require_status is given and the entry has a different status.
        """
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                return False
            if handle is not None and entry.handle is not handle:
                return False
            if (
                require_status is not None
                and entry.properties.playback_status != require_status
            ):
                return False
            merged = entry.properties.merge(partial_snapshot, invalidated_keys)
            if merged == entry.properties:
                return False
            self._entries[identity] = RegistryEntry(
                identity,
                merged,
                entry.handle,
                time.time(),
            )
            self._queue(identity, self._notify_updated, merged)
        self._deliver(identity)
        return True

    def remove(
        self,
        identity: str,
        handle: Optional[Subscription] = None,
    ) -> bool:
        """
        Cancel the subscription of identity and forget it.  Safe to call
        for sources that are not tracked.  If handle is given, the entry is
        only removed while it still owns that handle.
        """
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                return False
            if handle is not None and entry.handle is not handle:
                return False
            if entry.handle is not None:
                entry.handle.cancel()
            del self._entries[identity]
            _LOGGER.info("Removed %s", identity)
            self._queue(identity, self._notify_removed)
        self._deliver(identity)
        return True

    def get(self, identity: str) -> RegistryEntry:
        # May raise SourceNotFound.
        with self._lock:
            try:
                return self._entries[identity]
            except KeyError:
                raise SourceNotFound(identity) from None

    def list(self) -> Set[str]:
        with self._lock:
            return set(self._entries)

    def clear(self) -> None:
        for identity in self.list():
            self.remove(identity)

    def _queue(
        self,
        identity: str,
        notify: Callable[..., None],
        *args: Properties,
    ) -> None:
        # Called with the lock held.
        self._pending.setdefault(identity, collections.deque()).append(
            functools.partial(notify, identity, *args)
        )

    def _deliver(self, identity: str) -> None:
        # Called without the lock held.  Only one thread drains the queue of
        # a source at a time; anyone else finding it busy leaves their
        # notifications to that thread.
        with self._lock:
            if identity in self._draining:
                return
            self._draining.add(identity)
        while True:
            with self._lock:
                pending = self._pending.get(identity)
                if not pending:
                    self._pending.pop(identity, None)
                    self._draining.discard(identity)
                    return
                notify = pending.popleft()
            notify()

    def _notify_updated(self, identity: str, snapshot: Properties) -> None:
        if self._on_updated is None:
            return
        try:
            self._on_updated(identity, snapshot)
        except Exception:
            _LOGGER.exception("Error notifying update of %s", identity)

    def _notify_removed(self, identity: str) -> None:
        if self._on_removed is None:
            return
        try:
            self._on_removed(identity)
        except Exception:
            _LOGGER.exception("Error notifying removal of %s", identity)
