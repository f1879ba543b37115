import json
import os
import signal

from typing import List

import dasbus.error
from dasbus.connection import SessionMessageBus

from barscripts.mpris.errors import SourceNotFound
from barscripts.mpris.monitor import Monitor


class AlreadyRunning(Exception):
    pass


CMD_QUIT = signal.SIGTERM

BUS_NAME = "org.user.BarScripts"
OBJECT_PATH = "/org/user/BarScripts"


class BarScriptsControl(object):
    """
    The control object published on the session bus.  Calls are served by
    the GLib loop of the monitor, which runs the default main context.
    """

    __dbus_xml__ = """
    <node>
        <interface name="org.user.BarScripts">
            <method name="Ping">
            </method>
            <method name="Quit">
            </method>
            <method name="ListSources">
                <arg direction="out" name="sources" type="as" />
            </method>
            <method name="GetSnapshot">
                <arg direction="in" name="source" type="s" />
                <arg direction="out" name="snapshot" type="s" />
            </method>
        </interface>
    </node>
    """

    def __init__(self, monitor: Monitor) -> None:
        self.monitor = monitor
        self.bus = SessionMessageBus()

    def start(self) -> None:
        self.bus.publish_object(OBJECT_PATH, self)
        try:
            self.bus.register_service(BUS_NAME)
        except dasbus.error.DBusError as e:
            if "Name request has failed" in str(e):
                raise AlreadyRunning()
            raise

    def stop(self) -> None:
        self.bus.disconnect()

    def Ping(self) -> None:
        pass

    def Quit(self) -> None:
        os.kill(os.getpid(), CMD_QUIT)

    def ListSources(self) -> List[str]:
        return sorted(self.monitor.list_active_sources())

    def GetSnapshot(self, source: str) -> str:
        try:
            properties = self.monitor.get_snapshot(source)
        except SourceNotFound:
            return ""
        return json.dumps(properties.as_dict(), sort_keys=True)
