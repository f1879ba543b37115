import logging

from typing import Set

from barscripts.mpris.transport import Transport


_LOGGER = logging.getLogger(__name__)

DEFAULT_PREFIX = "org.mpris.MediaPlayer2."


def is_mpris(bus_name: str, prefix: str = DEFAULT_PREFIX) -> bool:
    return bus_name.startswith(prefix)


class Discovery(object):
    def __init__(self, transport: Transport, prefix: str = DEFAULT_PREFIX):
        self.transport = transport
        self.prefix = prefix

    def list_candidates(self) -> Set[str]:
        """
        Enumerate the player names on the bus right now.  May raise
        TransportUnavailable, which nobody should try to recover from.
        """
        names = set(
            n
            for n in self.transport.list_names(self.prefix)
            if is_mpris(n, self.prefix)
        )
        _LOGGER.debug("Discovered %d players: %s", len(names), sorted(names))
        return names
