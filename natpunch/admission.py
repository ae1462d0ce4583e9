"""
Membership admission.

Turns an observed (token, endpoint) pair into a registry update: either a
refresh of a known member or the insertion of a new one. The first member
ever admitted to a room becomes its host; that choice is permanent, and an
evicted host is not replaced.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidTokenError
from .registry import Endpoint, Room, RoomRegistry, format_endpoint

logger = logging.getLogger("natpunch.admission")


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of admitting one introduction request"""
    is_new_member: bool
    is_host: bool
    room: Room


def admit(registry: RoomRegistry, token: Optional[str], endpoint: Endpoint,
          now: float) -> AdmissionResult:
    """
    Admit or refresh endpoint in the room identified by token.

    Raises:
        InvalidTokenError: token is empty or None. Nothing is created.
    """
    if not token:
        raise InvalidTokenError(endpoint)

    room = registry.get_or_create_room(token)
    member = room.find(endpoint)

    if member is not None:
        member.last_seen = now
        logger.info(f"[ADMIT] Updated existing member: {format_endpoint(endpoint)}")
        result = AdmissionResult(is_new_member=False, is_host=member.is_host, room=room)
    else:
        member = room.add(endpoint, is_host=room.is_empty(), now=now)
        logger.info(f"[ADMIT] Added new member: {format_endpoint(endpoint)} (Role: {member.role})")
        result = AdmissionResult(is_new_member=True, is_host=member.is_host, room=room)

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"[ADMIT] Room '{token}' members ({len(room)} total):")
        for m in room:
            logger.debug(f"[ADMIT]   - {m}")

    return result
