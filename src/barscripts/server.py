import argparse
import logging
import signal
import sys
import threading

from queue import Queue
from typing import Any, Dict, List, Optional, TextIO

from barscripts.config import InvalidSettings, load_settings
from barscripts.format import as_json, as_lines
from barscripts.control import BUS_NAME, AlreadyRunning, BarScriptsControl
from barscripts.mpris.errors import SourceNotFound, TransportUnavailable
from barscripts.mpris.monitor import Monitor
from barscripts.mpris.properties import Properties

import gi

gi.require_version("GLib", "2.0")
from gi.repository import GLib  # noqa: E402


_LOGGER = logging.getLogger(__name__)


class Printer(object):
    """Writes the current state of every player to a stream."""

    def __init__(
        self,
        monitor: Monitor,
        json: bool = False,
        separator: str = " ",
        stream: TextIO = sys.stdout,
    ) -> None:
        self.monitor = monitor
        self.json = json
        self.separator = separator
        self.stream = stream
        self._lock = threading.Lock()
        self._handlers: List[int] = []
        self._source: Optional[int] = None
        self._stopped = False

    def snapshot(self) -> Dict[str, Properties]:
        sources = {}
        for identity in self.monitor.list_active_sources():
            try:
                sources[identity] = self.monitor.get_snapshot(identity)
            except SourceNotFound:
                # Went away between listing and fetching.
                continue
        return sources

    def render(self) -> str:
        sources = self.snapshot()
        if self.json:
            return as_json(sources)
        return as_lines(sources, self.separator)

    def print(self, *unused_args: Any) -> None:
        text = self.render()
        with self._lock:
            if self._stopped:
                return
            if text:
                self.stream.write(text + "\n")
            elif not self.json:
                self.stream.write("\n")
            self.stream.flush()

    def watch(self) -> None:
        """Print again every time a player changes or goes away."""
        with self._lock:
            self._handlers = [
                self.monitor.connect("source-updated", self.print),
                self.monitor.connect("source-removed", self.print),
            ]

    def poll(self, interval_ms: int) -> None:
        """Print again every interval_ms from the default main context."""
        with self._lock:
            self._source = GLib.timeout_add(interval_ms, self._on_tick)

    def stop(self) -> None:
        """
        Stop printing.  Nothing is written after this returns, so the
        removals of a shutting down monitor stay off the stream.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            handlers, self._handlers = self._handlers, []
            source, self._source = self._source, None
        for handler in handlers:
            self.monitor.disconnect(handler)
        if source is not None:
            GLib.source_remove(source)

    def _on_tick(self) -> bool:
        if self._stopped:
            return False
        self.print()
        return True


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="barscripts-media",
        description="Print what the media players on the session bus are playing.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-w",
        "--watch",
        action="store_true",
        help="print again every time a player changes",
    )
    mode.add_argument(
        "-p",
        "--poll",
        type=int,
        metavar="MILLISECONDS",
        help="print again every MILLISECONDS",
    )
    output = parser.add_mutually_exclusive_group()
    output.add_argument(
        "-j",
        "--json",
        action="store_true",
        help="print a JSON document instead of lines",
    )
    output.add_argument(
        "-s",
        "--separator",
        default=" ",
        metavar="STRING",
        help="field separator for line output",
    )
    parser.add_argument(
        "--interval",
        type=float,
        metavar="SECONDS",
        help="how often to refresh the position of playing players",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="settings file to use instead of the default one",
    )
    parser.add_argument(
        "--no-control",
        dest="control",
        action="store_false",
        help="do not publish the %s control interface" % BUS_NAME,
    )
    parser.add_argument("--debug", action="store_true", help="log debug messages")
    args = parser.parse_args(argv)
    if args.poll is not None and args.poll <= 0:
        parser.error("--poll must be greater than zero")
    return args


def setup_signal_queue() -> Queue[int]:
    q: Queue[int] = Queue()

    def handler(signum: int, unused_frame: Any) -> None:
        q.put(signum)

    signal.signal(signal.SIGTERM, handler)
    signal.signal(signal.SIGINT, handler)

    return q


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        settings = load_settings(args.config).replace(poll_interval=args.interval)
    except InvalidSettings as e:
        _LOGGER.error("Cannot load settings: %s", e)
        return 2

    _LOGGER.debug("Starting monitor with %s.", settings)
    monitor = Monitor(settings)
    try:
        monitor.start()
    except TransportUnavailable as e:
        _LOGGER.error("Cannot reach the session bus: %s", e)
        return 1

    printer = Printer(monitor, json=args.json, separator=args.separator)
    # Give the initial fetches a chance to land before the first print.
    monitor.wait_idle(settings.call_timeout / 1000 * 2)

    if not args.watch and args.poll is None:
        printer.print()
        monitor.stop()
        return 0

    control: Optional[BarScriptsControl] = None
    if args.control:
        control = BarScriptsControl(monitor)
        try:
            control.start()
        except AlreadyRunning:
            _LOGGER.warning(
                "Another instance owns %s, not publishing the control interface.",
                BUS_NAME,
            )
            control.stop()
            control = None

    q = setup_signal_queue()
    printer.print()
    if args.watch:
        printer.watch()
    else:
        printer.poll(args.poll)

    signum = q.get()
    _LOGGER.info(
        "Shutting down after signal %s.",
        signal.Signals(signum).name,
    )
    printer.stop()
    if control is not None:
        control.stop()
    monitor.stop()
    _LOGGER.info("Monitor shut down, exiting.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
