"""One request/reply transaction with an NTPv3 server.

get_time() and get_offset_ms() are the entry points. Both resolve the server,
open a UdpTransport and run perform_exchange() with one of the calculators.
Every failure is raised as an NTPError subclass; nothing is retried here.
"""
import logging
import socket
from abc import ABC, abstractmethod
from typing import NamedTuple

from ntperrors import MalformedPacket, ResolutionError, Timeout, TransportError
from ntppacket import NtpPacket, decode_reply, make_request
from ntptime import LocalTime, from_ntp, read_local_clock, to_milliseconds

NTP_PORT = 123

# the default timeout for waiting on a reply
DEFAULT_TIMEOUT_SECS = 1.0

RECV_BUFFER = 1024

logger = logging.getLogger(__name__)


class Endpoint(NamedTuple):
    family: int
    address: tuple


def resolve(host, port=NTP_PORT, family=socket.AF_INET) -> Endpoint:
    try:
        addrinfo = socket.getaddrinfo(host, port, family, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as err:
        logger.error('unable to resolve host=%s, port=%s, error=%s', host, port, err)
        raise ResolutionError(f"cannot resolve {host}:{port}: {err}") from err
    if not addrinfo:
        raise ResolutionError(f"no address for {host}:{port}")
    family, _, _, _, sockaddr = addrinfo[0]
    return Endpoint(family, sockaddr)


class UdpTransport:
    """Datagram socket with a bounded receive."""

    def __init__(self, family=socket.AF_INET):
        try:
            self.sock = socket.socket(family, socket.SOCK_DGRAM)
        except OSError as err:
            logger.error('unable to create socket, error=%s', err)
            raise TransportError(f"socket creation failed: {err}") from err

    def connect(self, address):
        try:
            self.sock.connect(address)
        except OSError as err:
            logger.error('unable to connect to %s, error=%s', address, err)
            raise TransportError(f"connect to {address} failed: {err}") from err

    def send(self, data: bytes) -> int:
        try:
            return self.sock.send(data)
        except OSError as err:
            logger.error('send failed, error=%s', err)
            raise TransportError(f"send failed: {err}") from err

    def receive_within(self, timeout):
        """Return the next datagram, or None if nothing arrives in time."""
        try:
            self.sock.settimeout(timeout)
            return self.sock.recv(RECV_BUFFER)
        except (socket.timeout, BlockingIOError):
            # a zero timeout puts the socket in non-blocking mode
            return None
        except OSError as err:
            logger.error('receive failed, error=%s', err)
            raise TransportError(f"receive failed: {err}") from err

    def close(self):
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class Calculator(ABC):
    @abstractmethod
    def calculate(self, reply: NtpPacket, arrival: LocalTime):
        """derive the result of an exchange from the decoded reply"""
        pass


class AbsoluteTimeCalculator(Calculator):
    def calculate(self, reply: NtpPacket, arrival: LocalTime) -> LocalTime:
        """server transmit time, ignoring the one-way network delay"""
        return from_ntp(reply.transmit_timestamp)


class OffsetCalculator(Calculator):
    def calculate(self, reply: NtpPacket, arrival: LocalTime) -> int:
        """clock offset in ms: ((T2 - T1) + (T3 - T4)) / 2"""
        t1 = to_milliseconds(from_ntp(reply.originate_timestamp))
        t2 = to_milliseconds(from_ntp(reply.receive_timestamp))
        t3 = to_milliseconds(from_ntp(reply.transmit_timestamp))
        t4 = to_milliseconds(arrival)
        offset = _truncate_half((t2 - t1) + (t3 - t4))
        logger.debug('T1=%sms T2=%sms T3=%sms T4=%sms offset=%sms', t1, t2, t3, t4, offset)
        return offset


def _truncate_half(value):
    # integer halving that rounds toward zero, not toward -inf
    half = abs(value) // 2
    return half if value >= 0 else -half


def perform_exchange(transport, endpoint, calculator, timeout=DEFAULT_TIMEOUT_SECS, clock=read_local_clock):
    """Run one request/reply over transport and return calculator's result.

    The transport is closed when this returns or raises. A negative timeout
    raises ValueError before anything is sent.
    """
    try:
        if timeout < 0:
            raise ValueError(f"timeout must be zero or positive, got {timeout}")
        transport.connect(endpoint.address)
        request = make_request(clock).to_wire()
        sent = transport.send(request)
        if sent != len(request):
            raise TransportError(f"short send: {sent} of {len(request)} bytes")

        data = transport.receive_within(timeout)
        if data is None:
            raise Timeout(f"no reply from {endpoint.address} within {timeout} seconds")
        # T4 is taken before any decoding work
        arrival = clock()
        if len(data) < NtpPacket.SIZE:
            raise MalformedPacket(f"reply of {len(data)} bytes from {endpoint.address}, expected {NtpPacket.SIZE}")
        return calculator.calculate(decode_reply(data), arrival)
    finally:
        transport.close()


def query(server_address, calculator, port=NTP_PORT, timeout=DEFAULT_TIMEOUT_SECS, transport_factory=UdpTransport):
    endpoint = resolve(server_address, port)
    transport = transport_factory(endpoint.family)
    logger.debug('querying %s with %s', endpoint.address, type(calculator).__name__)
    return perform_exchange(transport, endpoint, calculator, timeout)


def get_time(server_address, port=NTP_PORT, timeout=DEFAULT_TIMEOUT_SECS) -> LocalTime:
    """Server transmit time as a LocalTime relative to the Unix epoch."""
    return query(server_address, AbsoluteTimeCalculator(), port, timeout)


def get_offset_ms(server_address, port=NTP_PORT, timeout=DEFAULT_TIMEOUT_SECS) -> int:
    """Milliseconds to add to the local clock to match the server."""
    return query(server_address, OffsetCalculator(), port, timeout)
