class MPRISError(Exception):
    pass


class TransportUnavailable(MPRISError):
    """The bus, or the source being called, cannot be reached."""


class TransportTimeout(TransportUnavailable):
    pass


class MalformedSource(MPRISError):
    """A source sent properties that violate the MPRIS contract."""


class SubscriptionTerminated(MPRISError):
    pass


class StalePollTarget(MPRISError):
    """A poll result arrived for a source that is no longer tracked."""


class SourceNotFound(MPRISError, KeyError):
    pass


class PartialDecodeWarning(UserWarning):
    """
    A non-required property could not be decoded.  These are collected
    and logged, never raised.
    """

    def __init__(self, key: str, value: object, reason: str) -> None:
        UserWarning.__init__(self, key, value, reason)
        self.key = key
        self.value = value
        self.reason = reason

    def __str__(self) -> str:
        return "%s: %s (got %r)" % (self.key, self.reason, self.value)
