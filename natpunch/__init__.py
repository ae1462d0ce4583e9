"""
natpunch - NAT Introduction Rendezvous Broker

Peers behind NATs send periodic introduction requests tagged with a room
token. The broker groups them by token, makes the first peer in each room
its host, and introduces the host to every other peer in the room so they
can hole-punch a direct connection:

- registry: token -> room membership with stale eviction
- admission: new member vs. refresh, first-come host assignment
- facilitator: (host, client) introductions for ready rooms
- server: the single-threaded poll/cleanup loop
- transport / codec: the UDP socket and its wire format
"""

from .admission import AdmissionResult, admit
from .config import BrokerConfig
from .errors import (
    AdmissionError,
    CodecError,
    ConfigError,
    InvalidTokenError,
    NatPunchError,
    TransportError,
)
from .facilitator import IntroductionFacilitator, Introducer
from .registry import Member, Room, RoomRegistry
from .server import PunchServer
from .transport import PunchTransport

__all__ = [
    # Registry
    'Member',
    'Room',
    'RoomRegistry',
    # Admission
    'AdmissionResult',
    'admit',
    # Facilitation
    'Introducer',
    'IntroductionFacilitator',
    # Server
    'BrokerConfig',
    'PunchServer',
    'PunchTransport',
    # Errors
    'NatPunchError',
    'ConfigError',
    'AdmissionError',
    'InvalidTokenError',
    'TransportError',
    'CodecError',
]

__version__ = '1.0.0'
