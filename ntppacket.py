import struct
from enum import IntEnum

from ntperrors import MalformedPacket
from ntptime import NtpTimestamp, read_local_clock, to_ntp


class NTPmode(IntEnum):
    RESERVE = 0
    ACTIVE = 1
    PASSIVE = 2
    CLIENT = 3
    SERVER = 4
    BROADCAST = 5
    CONTROL = 6
    PRIVATE = 7


# request header fields
LEAP = 0
VERSION = 3
STRATUM = 0
POLL = 4        # log2 seconds
PRECISION = -6  # log2 seconds, signed

ROOT_DELAY_ONE_SECOND = 1 << 16  # 1.0 in Q16.16
LEGACY_ORIGINATE_FRACTION = 1 << 16


def make_header(leap, version, mode, stratum, poll, precision):
    """Pack the sub-byte header fields into the first 32-bit word."""
    return ((leap << 30) | (version << 27) | (mode << 24) |
            (stratum << 16) | ((poll & 0xFF) << 8) | (precision & 0xFF))


def _signed_byte(value):
    return value - 0x100 if value & 0x80 else value


def q16_to_usec(value):
    """Q16.16 seconds (root delay, root dispersion) to microseconds."""
    return value * 15.2587890625


class NtpPacket:
    """NTPv3 packet without authenticator: twelve 32-bit words, 48 bytes.

    Fields hold host-order integers. to_wire() and from_wire() are the only
    places where network byte order appears.

         0   2     5     8               16              24              32
         +---+-----+-----+---------------+---------------+---------------+
         |LI | VN  |Mode |    Stratum    |     Poll      |   Precision   |  header
         +---+-----+-----+---------------+---------------+---------------+
         |                          Root Delay                           |
         |                       Root Dispersion                         |
         |                     Reference Identifier                      |
         |                   Reference Timestamp (64)                    |
         |                   Originate Timestamp (64)                    |  T1
         |                    Receive Timestamp (64)                     |  T2
         |                    Transmit Timestamp (64)                    |  T3
         +---------------------------------------------------------------+
    """
    _FORMAT = "!12I"
    SIZE = struct.calcsize(_FORMAT)
    _FIELDS = (
        'header',
        'root_delay',       # Q16.16 seconds
        'root_dispersion',  # Q16.16 seconds
        'reference_id',     # opaque, IP address or ASCII code
        'reference_coarse',
        'reference_fine',
        'originate_coarse',
        'originate_fine',
        'receive_coarse',
        'receive_fine',
        'transmit_coarse',
        'transmit_fine',
    )

    def __init__(
        self,
        header=0,
        root_delay=0,
        root_dispersion=0,
        reference_id=0,
        reference_coarse=0,
        reference_fine=0,
        originate_coarse=0,
        originate_fine=0,
        receive_coarse=0,
        receive_fine=0,
        transmit_coarse=0,
        transmit_fine=0,
    ):
        # range check
        args = locals()
        args.pop('self')
        for field in self._FIELDS:
            value = args[field]
            if not (0 <= value <= 0xFFFFFFFF):
                raise ValueError(f"{field}: {value} outside valid range (0-0xFFFFFFFF)")
            setattr(self, field, value)

    def to_wire(self) -> bytes:
        return struct.pack(self._FORMAT, *(getattr(self, field) for field in self._FIELDS))

    @classmethod
    def from_wire(cls, data: bytes) -> "NtpPacket":
        """Decode the first SIZE bytes; anything after them is ignored."""
        if len(data) < cls.SIZE:
            raise MalformedPacket(f"Invalid datagram size. Expected at least: {cls.SIZE}, got: {len(data)}")
        unpacked = struct.unpack_from(cls._FORMAT, data)
        return cls(**dict(zip(cls._FIELDS, unpacked)))

    @property
    def leap(self):
        return self.header >> 30

    @property
    def version(self):
        return (self.header >> 27) & 0b111

    @property
    def mode(self):
        return NTPmode((self.header >> 24) & 0b111)

    @property
    def stratum(self):
        return (self.header >> 16) & 0xFF

    @property
    def poll(self):
        return _signed_byte((self.header >> 8) & 0xFF)

    @property
    def precision(self):
        return _signed_byte(self.header & 0xFF)

    @property
    def root_delay_us(self):
        return q16_to_usec(self.root_delay)

    @property
    def root_dispersion_us(self):
        return q16_to_usec(self.root_dispersion)

    @property
    def reference_timestamp(self):
        return NtpTimestamp(self.reference_coarse, self.reference_fine)

    @property
    def originate_timestamp(self):
        return NtpTimestamp(self.originate_coarse, self.originate_fine)

    @property
    def receive_timestamp(self):
        return NtpTimestamp(self.receive_coarse, self.receive_fine)

    @property
    def transmit_timestamp(self):
        return NtpTimestamp(self.transmit_coarse, self.transmit_fine)

    def __eq__(self, other):
        if not isinstance(other, NtpPacket):
            return False
        return vars(self) == vars(other)

    def __repr__(self):
        fields = ", ".join(f"{field}=0x{getattr(self, field):08X}" for field in self._FIELDS)
        return f"NtpPacket({fields})"


def make_request(clock=read_local_clock, legacy_originate=False) -> NtpPacket:
    """Build a client-mode request stamped with the current local time.

    legacy_originate puts 65536 into the originate fraction, matching requests
    sent by older embedded clients. By default the field is zero.
    """
    transmit = to_ntp(clock())
    return NtpPacket(
        header=make_header(LEAP, VERSION, NTPmode.CLIENT, STRATUM, POLL, PRECISION),
        root_delay=ROOT_DELAY_ONE_SECOND,
        originate_fine=LEGACY_ORIGINATE_FRACTION if legacy_originate else 0,
        transmit_coarse=transmit.coarse,
        transmit_fine=transmit.fine,
    )


def decode_reply(data: bytes) -> NtpPacket:
    """Decode a server reply. Header fields are not validated."""
    return NtpPacket.from_wire(data)
