import time
from typing import NamedTuple

# reference time in seconds since 1900-01-01 00:00:00
# for conversion from NTP time to system time
TIME1970 = 2208988800

NSEC_PER_SEC = 1000000000
NSEC_PER_USEC = 1000
NSEC_PER_MSEC = 1000000
USEC_PER_SEC = 1000000

_UINT32_MASK = 0xFFFFFFFF


class LocalTime(NamedTuple):
    """Wall clock reading relative to the Unix epoch."""
    seconds: int
    nanoseconds: int


class NtpTimestamp(NamedTuple):
    """64-bit NTP timestamp: seconds since 1900 and a 32-bit binary fraction."""
    coarse: int
    fine: int


def read_local_clock() -> LocalTime:
    """Read the host wall clock (not monotonic)."""
    seconds, nanoseconds = divmod(time.time_ns(), NSEC_PER_SEC)
    return LocalTime(seconds, nanoseconds)


def usec_to_fraction(usec: int) -> int:
    """Multiply by 4294.967296 without floating point.

    The result undershoots the exact scaling by at most 12 fraction units,
    well below a microsecond. Adding (2911 * usec) >> 28 would close the gap.
    """
    return 4294 * usec + ((1981 * usec) >> 11)


def fraction_to_usec(fine: int, legacy: bool = False) -> int:
    """Convert a 32-bit NTP fraction to whole microseconds.

    The default is the exact scaling rounded to the nearest microsecond, so
    values produced by usec_to_fraction() come back unchanged.

    With legacy=True the classic ntpclient shift formula is used instead. Its
    correction term moves in steps of 759 microseconds, so it can be off by
    up to about 380 microseconds.
    """
    if legacy:
        return (fine >> 12) - 759 * (((fine >> 10) + 32768) >> 16)
    usec = (fine * USEC_PER_SEC + 0x80000000) >> 32
    return min(usec, USEC_PER_SEC - 1)


def to_ntp(local: LocalTime) -> NtpTimestamp:
    coarse = (local.seconds + TIME1970) & _UINT32_MASK
    fine = usec_to_fraction(local.nanoseconds // NSEC_PER_USEC)
    return NtpTimestamp(coarse, fine)


def from_ntp(timestamp: NtpTimestamp, legacy: bool = False) -> LocalTime:
    seconds = timestamp.coarse - TIME1970
    nanoseconds = fraction_to_usec(timestamp.fine, legacy) * NSEC_PER_USEC
    return LocalTime(seconds, nanoseconds)


def to_milliseconds(local: LocalTime) -> int:
    """Whole milliseconds, sub-millisecond remainder truncated."""
    return local.seconds * 1000 + local.nanoseconds // NSEC_PER_MSEC


def apply_offset(local: LocalTime, offset_ms: int) -> LocalTime:
    """Return local corrected by offset_ms (reference = local + offset)."""
    seconds, nanoseconds = local
    if offset_ms >= 0:
        seconds += offset_ms // 1000
        nanoseconds += offset_ms % 1000 * NSEC_PER_MSEC
        if nanoseconds >= NSEC_PER_SEC:
            nanoseconds -= NSEC_PER_SEC
            seconds += 1
    else:
        magnitude = -offset_ms
        remainder = magnitude % 1000 * NSEC_PER_MSEC
        seconds -= magnitude // 1000
        if nanoseconds < remainder:
            seconds -= 1
            nanoseconds += NSEC_PER_SEC
        nanoseconds -= remainder
    return LocalTime(seconds, nanoseconds)
