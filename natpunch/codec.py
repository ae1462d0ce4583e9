"""
natpunch wire codec.

Message format (big-endian):
[magic:2][version:1][type:1][length:2][payload:length]

Endpoints are [family:1][port:2][addr:4|16], tokens are [len:2][utf-8].
"""

import socket
import struct
from enum import IntEnum
from typing import Tuple

from .errors import CodecError
from .registry import Endpoint

# ============================================================
# CONSTANTS
# ============================================================

MAGIC = 0x4E50  # "NP"
PROTOCOL_VERSION = 1

MAX_TOKEN_LENGTH = 256

FAMILY_IPV4 = 4
FAMILY_IPV6 = 6


class MsgType(IntEnum):
    # Rendezvous
    INTRODUCTION_REQUEST = 0x01
    INTRODUCTION = 0x02
    INTRODUCTION_SUCCESS = 0x03

    # Connection attempts (always rejected)
    CONNECT_REQUEST = 0x10
    REJECT = 0x11

    # Data on a connection (never expected)
    PAYLOAD = 0x20


class NatAddressType(IntEnum):
    """Which of the introduced addresses a peer reached the other one on"""
    INTERNAL = 0
    EXTERNAL = 1


# ============================================================
# CODEC
# ============================================================

class PunchMessageCodec:
    """Encoder/decoder for broker datagrams"""

    HEADER = struct.Struct(">HBBH")
    HEADER_SIZE = HEADER.size

    @staticmethod
    def encode(msg_type: MsgType, payload: bytes = b"") -> bytes:
        if len(payload) > 0xFFFF:
            raise CodecError(f"Payload too large: {len(payload)} bytes")
        header = PunchMessageCodec.HEADER.pack(MAGIC, PROTOCOL_VERSION, msg_type, len(payload))
        return header + payload

    @staticmethod
    def decode(data: bytes) -> Tuple[MsgType, bytes]:
        """
        Decode a datagram.

        Returns:
            (msg_type, payload)
        """
        if len(data) < PunchMessageCodec.HEADER_SIZE:
            raise CodecError("Message too short")

        magic, version, msg_type, length = PunchMessageCodec.HEADER.unpack_from(data)
        if magic != MAGIC:
            raise CodecError(f"Bad magic 0x{magic:04x}")
        if version != PROTOCOL_VERSION:
            raise CodecError(f"Unsupported protocol version {version}")

        payload = data[PunchMessageCodec.HEADER_SIZE:PunchMessageCodec.HEADER_SIZE + length]
        if len(payload) != length:
            raise CodecError(f"Truncated payload: expected {length}, got {len(payload)}")

        try:
            return MsgType(msg_type), payload
        except ValueError:
            raise CodecError(f"Unknown message type 0x{msg_type:02x}")

    # --- field helpers ---

    @staticmethod
    def encode_endpoint(endpoint: Endpoint) -> bytes:
        host, port = endpoint[0], endpoint[1]
        if not 0 <= port <= 0xFFFF:
            raise CodecError(f"Port out of range: {port}")
        try:
            if ":" in host:
                return struct.pack(">BH", FAMILY_IPV6, port) + socket.inet_pton(socket.AF_INET6, host)
            return struct.pack(">BH", FAMILY_IPV4, port) + socket.inet_pton(socket.AF_INET, host)
        except OSError:
            raise CodecError(f"Invalid address: {host}")

    @staticmethod
    def decode_endpoint(payload: bytes, pos: int = 0) -> Tuple[Endpoint, int]:
        """Returns (endpoint, next_pos)"""
        if len(payload) < pos + 3:
            raise CodecError("Truncated endpoint")
        family, port = struct.unpack_from(">BH", payload, pos)
        pos += 3

        if family == FAMILY_IPV4:
            size, af = 4, socket.AF_INET
        elif family == FAMILY_IPV6:
            size, af = 16, socket.AF_INET6
        else:
            raise CodecError(f"Unknown address family {family}")

        raw = payload[pos:pos + size]
        if len(raw) != size:
            raise CodecError("Truncated address")
        return (socket.inet_ntop(af, raw), port), pos + size

    @staticmethod
    def encode_token(token: str) -> bytes:
        raw = token.encode("utf-8")
        if len(raw) > MAX_TOKEN_LENGTH:
            raise CodecError(f"Token too long: {len(raw)} bytes")
        return struct.pack(">H", len(raw)) + raw

    @staticmethod
    def decode_token(payload: bytes, pos: int = 0) -> Tuple[str, int]:
        """Returns (token, next_pos)"""
        if len(payload) < pos + 2:
            raise CodecError("Truncated token length")
        (length,) = struct.unpack_from(">H", payload, pos)
        pos += 2
        if length > MAX_TOKEN_LENGTH:
            raise CodecError(f"Token too long: {length} bytes")
        raw = payload[pos:pos + length]
        if len(raw) != length:
            raise CodecError("Truncated token")
        try:
            return raw.decode("utf-8"), pos + length
        except UnicodeDecodeError:
            raise CodecError("Token is not valid UTF-8")

    # --- messages ---

    @staticmethod
    def encode_introduction_request(internal: Endpoint, token: str) -> bytes:
        """INTRODUCTION_REQUEST: peer -> broker"""
        payload = PunchMessageCodec.encode_endpoint(internal) + PunchMessageCodec.encode_token(token)
        return PunchMessageCodec.encode(MsgType.INTRODUCTION_REQUEST, payload)

    @staticmethod
    def decode_introduction_request(payload: bytes) -> Tuple[Endpoint, str]:
        """Returns (internal_endpoint, token)"""
        internal, pos = PunchMessageCodec.decode_endpoint(payload)
        token, _ = PunchMessageCodec.decode_token(payload, pos)
        return internal, token

    @staticmethod
    def encode_introduction(is_host: bool, internal: Endpoint, external: Endpoint,
                            token: str) -> bytes:
        """
        INTRODUCTION: broker -> peer, carrying the other side's addresses.

        is_host tells the recipient whether it is the room host.
        """
        payload = (
            struct.pack(">B", 1 if is_host else 0)
            + PunchMessageCodec.encode_endpoint(internal)
            + PunchMessageCodec.encode_endpoint(external)
            + PunchMessageCodec.encode_token(token)
        )
        return PunchMessageCodec.encode(MsgType.INTRODUCTION, payload)

    @staticmethod
    def decode_introduction(payload: bytes) -> Tuple[bool, Endpoint, Endpoint, str]:
        """Returns (is_host, internal, external, token)"""
        if not payload:
            raise CodecError("Empty introduction")
        is_host = bool(payload[0])
        internal, pos = PunchMessageCodec.decode_endpoint(payload, 1)
        external, pos = PunchMessageCodec.decode_endpoint(payload, pos)
        token, _ = PunchMessageCodec.decode_token(payload, pos)
        return is_host, internal, external, token

    @staticmethod
    def encode_introduction_success(address_type: NatAddressType, target: Endpoint,
                                    token: str) -> bytes:
        """INTRODUCTION_SUCCESS: peer -> broker, informational"""
        payload = (
            struct.pack(">B", address_type)
            + PunchMessageCodec.encode_endpoint(target)
            + PunchMessageCodec.encode_token(token)
        )
        return PunchMessageCodec.encode(MsgType.INTRODUCTION_SUCCESS, payload)

    @staticmethod
    def decode_introduction_success(payload: bytes) -> Tuple[NatAddressType, Endpoint, str]:
        """Returns (address_type, target, token)"""
        if not payload:
            raise CodecError("Empty introduction outcome")
        try:
            address_type = NatAddressType(payload[0])
        except ValueError:
            raise CodecError(f"Unknown address type {payload[0]}")
        target, pos = PunchMessageCodec.decode_endpoint(payload, 1)
        token, _ = PunchMessageCodec.decode_token(payload, pos)
        return address_type, target, token
