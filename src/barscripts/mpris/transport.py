import logging
import threading

from typing import Any, Callable, Dict, List, Set, Tuple

from barscripts.mpris.errors import SubscriptionTerminated


_LOGGER = logging.getLogger(__name__)


OwnerChangedCallback = Callable[[str, str, str], None]
PropertiesChangedCallback = Callable[[Dict[str, Any], List[str]], None]
TerminatedCallback = Callable[[SubscriptionTerminated], None]


class Subscription(object):
    """
    A handle on a signal subscription.

    Cleanups registered with to_cleanup() run in reverse order the first
    time cancel() is called; later calls do nothing.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._cleanuppers: List[Tuple[str, Callable[[], Any]]] = []
        self._active = True

    def __repr__(self) -> str:
        return "<Subscription %s%s>" % (
            self.name,
            "" if self._active else " (cancelled)",
        )

    @property
    def active(self) -> bool:
        return self._active

    def to_cleanup(self, name: str, func: Callable[[], Any]) -> None:
        self._cleanuppers.append((name, func))

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            cleanuppers, self._cleanuppers = self._cleanuppers, []
        while cleanuppers:
            name, cleanupper = cleanuppers.pop()
            _LOGGER.debug("Cleanup %s: %s", self.name, name)
            try:
                cleanupper()
            except Exception:
                _LOGGER.exception("Cleanup error running %s", name)


class Transport(object):
    """
    What the synchronization engine needs from the bus.

    Every method raises TransportUnavailable (or its TransportTimeout
    subclass) when the bus or the source cannot be reached.  Returned
    values are native Python values, never bus-level variants.
    """

    def list_names(self, prefix: str) -> Set[str]:
        raise NotImplementedError

    def get_all_properties(self, identity: str) -> Dict[str, Any]:
        raise NotImplementedError

    def get_property(self, identity: str, name: str) -> Any:
        raise NotImplementedError

    def subscribe_ownership_changes(
        self,
        callback: OwnerChangedCallback,
    ) -> Subscription:
        raise NotImplementedError

    def subscribe_property_changes(
        self,
        identity: str,
        on_changed: PropertiesChangedCallback,
        on_terminated: TerminatedCallback,
    ) -> Subscription:
        raise NotImplementedError
