"""
A client handler that never introspects the player.

Introspection is a blocking call without a timeout of ours, and some
players (Chromium) do not implement it at all.  The only interface this
program talks to on a player is org.freedesktop.DBus.Properties, whose
shape is fixed by the D-Bus specification, so it is declared up front.
"""

from typing import Any

from dasbus.client.handler import ClientObjectHandler
from dasbus.specification import DBusSpecification


properties_dbus_interface = """
<!DOCTYPE node PUBLIC "-//freedesktop//DTD D-BUS Object Introspection 1.0//EN"
"http://www.freedesktop.org/standards/dbus/1.0/introspect.dtd">
<node>
  <interface name="org.freedesktop.DBus.Properties">
    <method name="Get">
      <arg direction="in" type="s"/>
      <arg direction="in" type="s"/>
      <arg direction="out" type="v"/>
    </method>
    <method name="GetAll">
      <arg direction="in" type="s"/>
      <arg direction="out" type="a{sv}"/>
    </method>
    <signal name="PropertiesChanged">
      <arg type="s"/>
      <arg type="a{sv}"/>
      <arg type="as"/>
    </signal>
  </interface>
</node>
"""


class PropertiesObjectHandler(ClientObjectHandler):
    def __init__(self, *a: Any, **kw: Any) -> None:
        super().__init__(*a, **kw)
        self._specification = DBusSpecification.from_xml(
            properties_dbus_interface,
        )
