class NTPError(Exception):
    """Base class for every failure of an NTP exchange."""


class ResolutionError(NTPError):
    """The server address could not be resolved."""


class TransportError(NTPError):
    """Socket creation, connect, send or receive failed."""


class Timeout(NTPError, TimeoutError):
    """No reply arrived within the allotted time."""


class MalformedPacket(NTPError, ValueError):
    """The reply is shorter than an NTP packet."""
