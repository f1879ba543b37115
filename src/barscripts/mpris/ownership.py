import logging

from typing import Iterable, Optional

from barscripts.mpris.discovery import DEFAULT_PREFIX, is_mpris
from barscripts.mpris.dispatch import SerialDispatcher
from barscripts.mpris.errors import MalformedSource, TransportUnavailable
from barscripts.mpris.properties import decode_properties, log_warnings
from barscripts.mpris.registry import SourceRegistry
from barscripts.mpris.transport import Subscription, Transport
from barscripts.mpris.watcher import PropertyWatcher


_LOGGER = logging.getLogger(__name__)


class OwnershipWatcher(object):
    """
    Follows NameOwnerChanged for player names.

    A name gaining an owner gets subscribed, fully fetched and added to
    the registry; a name losing its owner gets removed.  An owner being
    replaced by another is handled as a loss followed by a gain.  All
    transitions of one name go through the same dispatcher lane, so a
    removal always completes before the next addition starts.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        transport: Transport,
        dispatcher: SerialDispatcher,
        property_watcher: PropertyWatcher,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.dispatcher = dispatcher
        self.property_watcher = property_watcher
        self.prefix = prefix
        self._subscription: Optional[Subscription] = None

    def start(self) -> None:
        # May raise TransportUnavailable.
        if self._subscription is None:
            self._subscription = self.transport.subscribe_ownership_changes(
                self._name_owner_changed,
            )

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def seed(self, names: Iterable[str]) -> None:
        """Queue names already on the bus as if they had just appeared."""
        for name in sorted(names):
            self.dispatcher.submit(name, self._owned, name)

    def _name_owner_changed(
        self,
        bus_name: str,
        old_owner: str,
        new_owner: str,
    ) -> None:
        if not is_mpris(bus_name, self.prefix):
            return
        self.dispatcher.submit(
            bus_name,
            self._owner_changed,
            bus_name,
            old_owner,
            new_owner,
        )

    def _owner_changed(self, name: str, old_owner: str, new_owner: str) -> None:
        if old_owner:
            # is gone
            _LOGGER.debug("%s lost owner %s", name, old_owner)
            self.registry.remove(name)
        if new_owner:
            # is new
            _LOGGER.debug("%s gained owner %s", name, new_owner)
            self._owned(name)

    def _owned(self, name: str) -> None:
        try:
            subscription = self.property_watcher.watch(name)
        except TransportUnavailable as e:
            _LOGGER.warning(
                "Ignoring player %s: cannot watch its properties: %s",
                name,
                e,
            )
            return
        try:
            bag = self.transport.get_all_properties(name)
            snapshot, warnings = decode_properties(bag, full=True)
        except (TransportUnavailable, MalformedSource) as e:
            subscription.cancel()
            _LOGGER.warning(
                "Ignoring player %s until it reappears: %s",
                name,
                e,
            )
            return
        log_warnings(name, warnings)
        self.registry.upsert_full(name, snapshot, subscription)
