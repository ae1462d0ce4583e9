"""
UDP transport for the punch server.

One non-blocking UDP socket. poll_events() drains whatever datagrams are
currently buffered and turns them into typed events for the poll loop;
introduce() is the facilitation primitive the facilitator calls.
"""

import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .codec import MsgType, NatAddressType, PunchMessageCodec
from .errors import CodecError, TransportError
from .facilitator import Introducer
from .registry import Endpoint, format_endpoint

logger = logging.getLogger("natpunch.transport")

RECV_BUFFER_SIZE = 65535
MAX_EVENTS_PER_POLL = 1024


# ============================================================
# EVENTS
# ============================================================

@dataclass
class IntroductionRequest:
    """A peer asking to be introduced to the others in its room"""
    local_endpoint: Endpoint
    remote_endpoint: Endpoint
    token: str


@dataclass
class ConnectionRequest:
    remote_endpoint: Endpoint


@dataclass
class PayloadReceived:
    remote_endpoint: Endpoint
    size: int


@dataclass
class IntroductionSucceeded:
    """Peer report that hole punching to target worked"""
    remote_endpoint: Endpoint
    target_endpoint: Endpoint
    address_type: NatAddressType
    token: str


@dataclass
class NetworkError:
    remote_endpoint: Optional[Endpoint]
    error: str


@dataclass
class MalformedDatagram:
    remote_endpoint: Endpoint
    reason: str


TransportEvent = Union[IntroductionRequest, ConnectionRequest, PayloadReceived,
                       IntroductionSucceeded, NetworkError, MalformedDatagram]


def _normalize(addr: Tuple) -> Endpoint:
    # IPv6 sockets return (host, port, flowinfo, scope_id)
    return (addr[0], addr[1])


# ============================================================
# TRANSPORT
# ============================================================

class PunchTransport(Introducer):
    """Non-blocking UDP socket speaking the natpunch wire format"""

    def __init__(self, bind_address: str = "0.0.0.0", port: int = 50000):
        self.bind_address = bind_address
        self.port = port
        self.sock: Optional[socket.socket] = None

        self.datagrams_received = 0
        self.datagrams_sent = 0

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        if not self.sock:
            return None
        return _normalize(self.sock.getsockname())

    def start(self):
        """
        Bind the listening socket.

        Raises:
            TransportError: the socket could not be created or bound
        """
        family = socket.AF_INET6 if ":" in self.bind_address else socket.AF_INET
        try:
            sock = socket.socket(family, socket.SOCK_DGRAM)
        except OSError as e:
            raise TransportError(f"Cannot create UDP socket: {e}")

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_address, self.port))
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise TransportError(f"Cannot bind UDP {self.bind_address}:{self.port}: {e}")

        self.sock = sock
        self.port = self.local_endpoint[1]
        logger.info(f"[UDP] Listening on {self.bind_address}:{self.port}")

    def close(self):
        if self.sock:
            self.sock.close()
            self.sock = None
            logger.info("[UDP] Socket closed")

    # --- inbound ---

    def poll_events(self, max_events: Optional[int] = None) -> List[TransportEvent]:
        """
        Read buffered datagrams without blocking.

        With max_events=None the socket is drained until it would block;
        otherwise at most max_events events are returned and the rest stay
        queued for the next call.
        """
        if not self.sock:
            raise TransportError("Transport not started")

        events: List[TransportEvent] = []
        while max_events is None or len(events) < max_events:
            try:
                data, addr = self.sock.recvfrom(RECV_BUFFER_SIZE)
            except BlockingIOError:
                break
            except ConnectionResetError as e:
                # ICMP port unreachable from an earlier send
                events.append(NetworkError(None, str(e)))
                continue
            except OSError as e:
                events.append(NetworkError(None, str(e)))
                break

            self.datagrams_received += 1
            events.append(self._to_event(data, _normalize(addr)))

        return events

    def _to_event(self, data: bytes, remote: Endpoint) -> TransportEvent:
        try:
            msg_type, payload = PunchMessageCodec.decode(data)

            if msg_type == MsgType.INTRODUCTION_REQUEST:
                internal, token = PunchMessageCodec.decode_introduction_request(payload)
                return IntroductionRequest(internal, remote, token)
            elif msg_type == MsgType.CONNECT_REQUEST:
                return ConnectionRequest(remote)
            elif msg_type == MsgType.PAYLOAD:
                return PayloadReceived(remote, len(payload))
            elif msg_type == MsgType.INTRODUCTION_SUCCESS:
                address_type, target, token = PunchMessageCodec.decode_introduction_success(payload)
                return IntroductionSucceeded(remote, target, address_type, token)

            return MalformedDatagram(remote, f"unexpected message type {msg_type.name}")

        except CodecError as e:
            return MalformedDatagram(remote, e.message)

    # --- outbound ---

    def _send(self, data: bytes, endpoint: Endpoint):
        if not self.sock:
            raise TransportError("Transport not started")
        try:
            self.sock.sendto(data, endpoint)
            self.datagrams_sent += 1
        except OSError as e:
            raise TransportError(f"Send to {format_endpoint(endpoint)} failed: {e}")

    def reject(self, remote: Endpoint):
        """Refuse a connection attempt"""
        self._send(PunchMessageCodec.encode(MsgType.REJECT), remote)

    def introduce(self, host_internal: Endpoint, host_external: Endpoint,
                  client_internal: Endpoint, client_external: Endpoint,
                  token: str):
        """
        Tell host about client and client about host.

        Both sends are attempted even if the first fails.

        Raises:
            TransportError: one or both sends failed
        """
        to_host = PunchMessageCodec.encode_introduction(True, client_internal, client_external, token)
        to_client = PunchMessageCodec.encode_introduction(False, host_internal, host_external, token)

        failures = []
        for data, endpoint in ((to_host, host_external), (to_client, client_external)):
            try:
                self._send(data, endpoint)
            except TransportError as e:
                failures.append(e.message)

        if failures:
            raise TransportError("; ".join(failures))
        logger.debug(f"[UDP] Sent introduction {format_endpoint(host_external)} <-> "
                     f"{format_endpoint(client_external)} token={token}")
