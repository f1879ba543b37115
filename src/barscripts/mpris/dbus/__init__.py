import logging
import threading

from typing import Any, Dict, List, Optional, Set, cast

from dasbus.client.proxy import InterfaceProxy, disconnect_proxy
from dasbus.connection import SessionMessageBus
from dasbus.error import DBusError
from dasbus.typing import get_native

from barscripts.mpris.dbus.specification import PropertiesObjectHandler
from barscripts.mpris.errors import (
    SubscriptionTerminated,
    TransportTimeout,
    TransportUnavailable,
)
from barscripts.mpris.properties import PLAYER_INTERFACE
from barscripts.mpris.transport import (
    OwnerChangedCallback,
    PropertiesChangedCallback,
    Subscription,
    TerminatedCallback,
    Transport,
)

import gi

gi.require_version("GLib", "2.0")
from gi.repository import GLib  # noqa: E402


_LOGGER = logging.getLogger(__name__)

MPRIS_OBJECT_PATH = "/org/mpris/MediaPlayer2"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

# Milliseconds.
DEFAULT_TIMEOUT = 3000


def unpack(obj: Any) -> Any:
    if isinstance(obj, GLib.Variant):
        obj = get_native(obj)
    if isinstance(obj, dict):
        obj = dict((unpack(k), unpack(v)) for k, v in obj.items())
    elif isinstance(obj, (list, tuple)):
        obj = [unpack(k) for k in obj]
    return obj


def is_timeout(e: Exception) -> bool:
    return (
        isinstance(e, GLib.GError)
        and e.domain == "g-io-error-quark"
        and e.code == 24
    )


def unavailable(what: str, e: Exception) -> TransportUnavailable:
    if is_timeout(e):
        return TransportTimeout("Timed out trying to %s" % what)
    return TransportUnavailable("Cannot %s: %s" % (what, e))


class DBusTransport(Transport):
    """
    The session bus, as seen through dasbus.

    Method calls are synchronous, carry an explicit timeout and may be
    made from any thread.  Signal callbacks are delivered on the thread
    running the default GLib main context, i.e. the dasbus EventLoop.
    """

    def __init__(
        self,
        bus: Optional[SessionMessageBus] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self.bus = bus if bus is not None else SessionMessageBus()
        self.timeout = timeout
        self._live_lock = threading.Lock()
        self._live: Dict[Subscription, TerminatedCallback] = dict()
        self._closed_handler: Optional[int] = None

    def _bus_proxy(self) -> InterfaceProxy:
        return cast(
            InterfaceProxy,
            self.bus.get_proxy(
                "org.freedesktop.DBus",
                "/org/freedesktop/DBus",
                interface_name="org.freedesktop.DBus",
            ),
        )

    def _properties_proxy(self, identity: str) -> InterfaceProxy:
        return cast(
            InterfaceProxy,
            self.bus.get_proxy(
                identity,
                MPRIS_OBJECT_PATH,
                interface_name=PROPERTIES_INTERFACE,
                handler_factory=PropertiesObjectHandler,
            ),
        )

    def list_names(self, prefix: str) -> Set[str]:
        try:
            proxy = self._bus_proxy()
            try:
                names = proxy.ListNames(timeout=self.timeout)
            finally:
                disconnect_proxy(proxy)
        except (DBusError, GLib.GError) as e:
            raise unavailable("list names on the session bus", e) from e
        return set(n for n in names if n.startswith(prefix))

    def get_all_properties(self, identity: str) -> Dict[str, Any]:
        try:
            proxy = self._properties_proxy(identity)
            try:
                props = proxy.GetAll(PLAYER_INTERFACE, timeout=self.timeout)
            finally:
                disconnect_proxy(proxy)
        except (DBusError, GLib.GError) as e:
            raise unavailable("get properties of %s" % identity, e) from e
        return cast(Dict[str, Any], unpack(props))

    def get_property(self, identity: str, name: str) -> Any:
        try:
            proxy = self._properties_proxy(identity)
            try:
                prop = proxy.Get(PLAYER_INTERFACE, name, timeout=self.timeout)
            finally:
                disconnect_proxy(proxy)
        except (DBusError, GLib.GError) as e:
            raise unavailable("get %s of %s" % (name, identity), e) from e
        return unpack(prop)

    def subscribe_ownership_changes(
        self,
        callback: OwnerChangedCallback,
    ) -> Subscription:
        subscription = Subscription("NameOwnerChanged")
        try:
            self._watch_connection()
            proxy = self._bus_proxy()
            subscription.to_cleanup(
                "disconnect bus proxy",
                lambda: disconnect_proxy(proxy),
            )
            proxy.NameOwnerChanged.connect(callback)
        except (DBusError, GLib.GError) as e:
            subscription.cancel()
            raise unavailable("watch name owner changes", e) from e
        subscription.to_cleanup(
            "disconnect NameOwnerChanged",
            lambda: proxy.NameOwnerChanged.disconnect(callback),
        )
        return subscription

    def subscribe_property_changes(
        self,
        identity: str,
        on_changed: PropertiesChangedCallback,
        on_terminated: TerminatedCallback,
    ) -> Subscription:
        def properties_changed(
            interface: str,
            changed: Dict[str, Any],
            invalidated: List[str],
        ) -> None:
            if interface != PLAYER_INTERFACE:
                return
            on_changed(unpack(changed), unpack(invalidated))

        subscription = Subscription("PropertiesChanged of %s" % identity)
        try:
            proxy = self._properties_proxy(identity)
            subscription.to_cleanup(
                "disconnect properties proxy",
                lambda: disconnect_proxy(proxy),
            )
            proxy.PropertiesChanged.connect(properties_changed)
        except (DBusError, GLib.GError) as e:
            subscription.cancel()
            raise unavailable("watch properties of %s" % identity, e) from e
        subscription.to_cleanup(
            "disconnect PropertiesChanged",
            lambda: proxy.PropertiesChanged.disconnect(properties_changed),
        )
        with self._live_lock:
            self._live[subscription] = on_terminated
        subscription.to_cleanup(
            "forget subscription",
            lambda: self._forget(subscription),
        )
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        with self._live_lock:
            self._live.pop(subscription, None)

    def _watch_connection(self) -> None:
        if self._closed_handler is None:
            self._closed_handler = self.bus.connection.connect(
                "closed",
                self._connection_closed,
            )

    def _connection_closed(
        self,
        unused_connection: Any,
        remote_peer_vanished: bool,
        error: Optional[GLib.GError],
    ) -> None:
        _LOGGER.error(
            "Session bus connection closed (peer vanished: %s): %s",
            remote_peer_vanished,
            error,
        )
        with self._live_lock:
            live = list(self._live.items())
            self._live.clear()
        for subscription, on_terminated in live:
            on_terminated(
                SubscriptionTerminated(
                    "%s: bus connection closed" % subscription.name
                )
            )

    def close(self) -> None:
        if self._closed_handler is not None:
            self.bus.connection.disconnect(self._closed_handler)
            self._closed_handler = None
        self.bus.disconnect()
