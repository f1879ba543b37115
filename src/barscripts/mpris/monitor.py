import logging
import threading

from concurrent import futures
from typing import Optional, Set

from dasbus.loop import EventLoop

from barscripts.config import Settings
from barscripts.mpris.dbus import DBusTransport
from barscripts.mpris.discovery import Discovery
from barscripts.mpris.dispatch import SerialDispatcher
from barscripts.mpris.errors import TransportUnavailable
from barscripts.mpris.ownership import OwnershipWatcher
from barscripts.mpris.poller import PositionPoller
from barscripts.mpris.properties import Properties
from barscripts.mpris.registry import SourceRegistry
from barscripts.mpris.transport import Transport
from barscripts.mpris.watcher import PropertyWatcher

import gi

gi.require_version("GLib", "2.0")
from gi.repository import GLib, GObject  # noqa: E402


_LOGGER = logging.getLogger(__name__)


class Monitor(threading.Thread, GObject.GObject):
    """
    Tracks every MPRIS player on the session bus.

    The GLib loop runs in this thread and only ever hands work off: D-Bus
    calls happen on the dispatcher's pool (one lane per player) and on
    the poller's pool, so no player can stall another.
    """

    __gsignals__ = {
        "source-updated": (
            GObject.SignalFlags.RUN_LAST,
            None,
            (str, GObject.TYPE_PYOBJECT),
        ),
        "source-removed": (
            GObject.SignalFlags.RUN_LAST,
            None,
            (str,),
        ),
        "monitor-shutdown": (
            GObject.SignalFlags.RUN_LAST,
            None,
            (),
        ),
    }

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        threading.Thread.__init__(self, name="mpris monitor")
        self.daemon = True
        GObject.GObject.__init__(self)

        self.settings = settings if settings is not None else Settings()
        self.loop = EventLoop()
        self._owns_transport = transport is None
        self.transport = (
            transport
            if transport is not None
            else DBusTransport(timeout=self.settings.call_timeout)
        )
        self.registry = SourceRegistry(
            on_updated=self._source_updated,
            on_removed=self._source_removed,
        )
        self.executor = futures.ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="mpris-event",
        )
        self.dispatcher = SerialDispatcher(self.executor)
        self.discovery = Discovery(self.transport, self.settings.name_prefix)
        self.property_watcher = PropertyWatcher(
            self.registry,
            self.transport,
            self.dispatcher,
        )
        self.ownership_watcher = OwnershipWatcher(
            self.registry,
            self.transport,
            self.dispatcher,
            self.property_watcher,
            self.settings.name_prefix,
        )
        self.poll_executor = futures.ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="mpris-poll",
        )
        self.poller = PositionPoller(
            self.registry,
            self.transport,
            self.poll_executor,
            self.settings.poll_interval,
        )

    def start(self) -> None:
        """
        Discover the players on the bus and start following them.

        Raises TransportUnavailable if the session bus cannot be reached.
        """
        self.ownership_watcher.start()
        try:
            names = self.discovery.list_candidates()
        except TransportUnavailable:
            self.ownership_watcher.stop()
            raise
        _LOGGER.info("Found %d players on the bus", len(names))
        self.ownership_watcher.seed(names)
        threading.Thread.start(self)

    def run(self) -> None:
        GLib.timeout_add(
            int(self.poller.interval * 1000),
            self.poller.on_tick,
        )
        self.loop.run()

    def stop(self) -> None:
        _LOGGER.debug("Stopping ownership watcher")
        self.ownership_watcher.stop()
        self.dispatcher.close()
        self.executor.shutdown(wait=True)
        _LOGGER.debug("Dropping all players")
        self.registry.clear()
        _LOGGER.debug("Stopping position poller")
        # The timer source goes away on its own once the poller is stopped.
        self.poller.stop()
        self.poll_executor.shutdown(wait=True)
        self.emit("monitor-shutdown")
        _LOGGER.debug("Quitting loop")
        # Queued on the loop itself, so a loop that has not started running
        # yet still quits as soon as it does.
        GLib.idle_add(self.loop.quit)
        if self.is_alive():
            self.join()
        if self._owns_transport and isinstance(self.transport, DBusTransport):
            self.transport.close()
        _LOGGER.debug("Monitor stopped")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until all pending bus events have been handled."""
        return self.dispatcher.wait_idle(timeout)

    def list_active_sources(self) -> Set[str]:
        return self.registry.list()

    def get_snapshot(self, identity: str) -> Properties:
        # May raise SourceNotFound.
        return self.registry.get(identity).properties

    def _source_updated(self, identity: str, snapshot: Properties) -> None:
        self.emit("source-updated", identity, snapshot)

    def _source_removed(self, identity: str) -> None:
        self.emit("source-removed", identity)
