import logging

from typing import Any, Dict, List

from barscripts.mpris.dispatch import SerialDispatcher
from barscripts.mpris.errors import MalformedSource, SubscriptionTerminated
from barscripts.mpris.properties import decode_properties, log_warnings
from barscripts.mpris.registry import SourceRegistry
from barscripts.mpris.transport import Subscription, Transport


_LOGGER = logging.getLogger(__name__)


class PropertyWatcher(object):
    """
    Keeps registry entries current by listening to PropertiesChanged.

    watch() must be called from within the dispatcher lane of the source
    being watched.  Notifications are queued on that same lane, so none of
    them is applied before the job that called watch() has finished
    registering the subscription.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        transport: Transport,
        dispatcher: SerialDispatcher,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.dispatcher = dispatcher

    def watch(self, identity: str) -> Subscription:
        # May raise TransportUnavailable.
        box: List[Subscription] = []

        def on_changed(changed: Dict[str, Any], invalidated: List[str]) -> None:
            self.dispatcher.submit(
                identity,
                self._properties_changed,
                identity,
                box,
                changed,
                invalidated,
            )

        def on_terminated(error: SubscriptionTerminated) -> None:
            self.dispatcher.submit(
                identity,
                self._terminated,
                identity,
                box,
                error,
            )

        subscription = self.transport.subscribe_property_changes(
            identity,
            on_changed,
            on_terminated,
        )
        box.append(subscription)
        return subscription

    def _properties_changed(
        self,
        identity: str,
        box: List[Subscription],
        changed: Any,
        invalidated: Any,
    ) -> None:
        if not box or not box[0].active:
            return
        subscription = box[0]
        try:
            if not isinstance(invalidated, (list, tuple, set, frozenset)):
                raise MalformedSource("invalidated properties is not a list")
            delta, warnings = decode_properties(changed, full=False)
        except MalformedSource as e:
            _LOGGER.warning("%s: dropping property change: %s", identity, e)
            return
        log_warnings(identity, warnings)
        keys = [k for k in invalidated if isinstance(k, str)]
        if self.registry.apply_delta(identity, delta, keys, handle=subscription):
            _LOGGER.debug(
                "%s: changed %s, invalidated %s",
                identity,
                delta.keys(),
                keys,
            )

    def _terminated(
        self,
        identity: str,
        box: List[Subscription],
        error: SubscriptionTerminated,
    ) -> None:
        if not box:
            return
        _LOGGER.warning(
            "%s: property subscription terminated, forgetting player: %s",
            identity,
            error,
        )
        self.registry.remove(identity, handle=box[0])
