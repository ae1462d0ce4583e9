"""
Room Registry

Maps room tokens to the peers that have asked to be introduced under them.
Pure in-memory state with time-based eviction; no networking.

The registry is owned by the poll loop and is only ever touched from that
loop's thread, so nothing here takes a lock.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger("natpunch.registry")

Endpoint = Tuple[str, int]


def format_endpoint(endpoint: Endpoint) -> str:
    """Render an endpoint as ip:port ([ip]:port for IPv6)"""
    host, port = endpoint[0], endpoint[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class Member:
    """One peer observed under a room token"""
    endpoint: Endpoint
    is_host: bool
    last_seen: float

    @property
    def role(self) -> str:
        return "HOST" if self.is_host else "CLIENT"

    def __str__(self) -> str:
        return f"{format_endpoint(self.endpoint)} ({self.role})"


class Room:
    """
    All members sharing one token.

    Members are kept in admission order, keyed by endpoint. The host flag
    is assigned by the caller when a member is added and never revisited.
    """

    def __init__(self, token: str):
        self.token = token
        self._members: Dict[Endpoint, Member] = {}

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[Member]:
        return iter(list(self._members.values()))

    def __contains__(self, endpoint: Endpoint) -> bool:
        return endpoint in self._members

    def __repr__(self) -> str:
        return f"Room({self.token!r}, members={len(self._members)})"

    @property
    def members(self) -> List[Member]:
        return list(self._members.values())

    def is_empty(self) -> bool:
        return not self._members

    def find(self, endpoint: Endpoint) -> Optional[Member]:
        return self._members.get(endpoint)

    def add(self, endpoint: Endpoint, is_host: bool, now: float) -> Member:
        """Insert a new member. The endpoint must not already be present."""
        if endpoint in self._members:
            raise KeyError(f"{format_endpoint(endpoint)} already in room {self.token!r}")
        member = Member(endpoint=endpoint, is_host=is_host, last_seen=now)
        self._members[endpoint] = member
        return member

    def hosts(self) -> List[Member]:
        return [m for m in self._members.values() if m.is_host]

    def clients(self) -> List[Member]:
        return [m for m in self._members.values() if not m.is_host]

    def remove_stale(self, cutoff: float) -> List[Member]:
        """Remove and return every member last seen strictly before cutoff"""
        stale = [m for m in self._members.values() if m.last_seen < cutoff]
        for member in stale:
            del self._members[member.endpoint]
        return stale


# ============================================================
# REGISTRY
# ============================================================

class RoomRegistry:
    """Token -> Room mapping for the whole process"""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, token: str) -> bool:
        return token in self._rooms

    def get_room(self, token: str) -> Optional[Room]:
        return self._rooms.get(token)

    def get_or_create_room(self, token: str) -> Room:
        """Return the room for token, creating an empty one if absent"""
        room = self._rooms.get(token)
        if room is None:
            room = Room(token)
            self._rooms[token] = room
            logger.info(f"[ROOM] Created new room: {token}")
        return room

    def remove_if_empty(self, token: str) -> bool:
        """Drop the room for token if it has no members. Returns True if removed."""
        room = self._rooms.get(token)
        if room is None or not room.is_empty():
            return False
        del self._rooms[token]
        logger.info(f"[ROOM] Cleaned up empty room: {token}")
        return True

    def all_rooms(self) -> List[Tuple[str, Room]]:
        """Snapshot of (token, room) pairs, safe to iterate while mutating"""
        return list(self._rooms.items())

    def member_count(self) -> int:
        return sum(len(room) for room in self._rooms.values())

    def evict_stale(self, now: float, stale_timeout: float) -> List[Tuple[str, Member]]:
        """
        Remove members not seen within stale_timeout, then empty rooms.

        Args:
            now: Current time (same clock as Member.last_seen)
            stale_timeout: Maximum age in seconds

        Returns:
            List of (token, member) pairs that were evicted
        """
        cutoff = now - stale_timeout
        evicted = []

        for token, room in self.all_rooms():
            for member in room.remove_stale(cutoff):
                logger.debug(f"[ROOM] Evicted stale member {member} from room '{token}'")
                evicted.append((token, member))
            self.remove_if_empty(token)

        return evicted
