"""
Introduction Facilitator

Once a room holds a host and at least one client, every (host, client)
pair is handed to the introducer, which tells both peers about each
other's NAT mapping so they can punch through. This runs after every
successful admission, refreshes included; re-introducing a pair that is
already connected is harmless.

The broker does not track private vs. public addresses separately, so the
member's observed endpoint is passed as both the internal and the
external address.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from .registry import Endpoint, Room, format_endpoint

logger = logging.getLogger("natpunch.facilitator")

PairKey = Tuple[str, Endpoint, Endpoint]


class Introducer(ABC):
    """The facilitation primitive provided by the transport"""

    @abstractmethod
    def introduce(self, host_internal: Endpoint, host_external: Endpoint,
                  client_internal: Endpoint, client_external: Endpoint,
                  token: str):
        """Exchange the two peers' endpoints, tagged with token"""
        pass


class IntroductionFacilitator:
    """
    Decides when a room is ready and issues introductions for it.

    min_reintroduce_interval > 0 turns on per-pair debouncing: a pair
    introduced less than that many seconds ago is skipped.
    """

    def __init__(self, introducer: Introducer, min_reintroduce_interval: float = 0.0,
                 clock: Callable[[], float] = time.time):
        self.introducer = introducer
        self.min_reintroduce_interval = min_reintroduce_interval
        self._clock = clock
        self._last_introduced: Dict[PairKey, float] = {}

        self.introductions_sent = 0
        self.introductions_failed = 0

    def maybe_facilitate(self, token: str, room: Room, now: Optional[float] = None) -> int:
        """
        Introduce every host in room to every client.

        Returns:
            Number of introductions issued successfully
        """
        hosts = room.hosts()
        clients = room.clients()

        if not hosts or not clients:
            logger.debug(f"[INTRO] Room '{token}' waiting for more members "
                         f"(hosts={len(hosts)}, clients={len(clients)})")
            return 0

        if now is None:
            now = self._clock()

        logger.info(f"[INTRO] Facilitating introductions for room '{token}'")
        issued = 0

        for host in hosts:
            for client in clients:
                key = (token, host.endpoint, client.endpoint)
                if self._debounced(key, now):
                    logger.debug(f"[INTRO] Skipping recently introduced pair "
                                 f"{format_endpoint(client.endpoint)} -> {format_endpoint(host.endpoint)}")
                    continue

                logger.info(f"[INTRO] Introducing CLIENT {format_endpoint(client.endpoint)} "
                            f"to HOST {format_endpoint(host.endpoint)}")
                try:
                    self.introducer.introduce(
                        host.endpoint,
                        host.endpoint,
                        client.endpoint,
                        client.endpoint,
                        token,
                    )
                except Exception:
                    self.introductions_failed += 1
                    logger.exception(f"[INTRO] Introduction failed for room '{token}' "
                                     f"({format_endpoint(host.endpoint)} <-> "
                                     f"{format_endpoint(client.endpoint)})")
                    continue

                self.introductions_sent += 1
                issued += 1
                if self.min_reintroduce_interval > 0:
                    self._last_introduced[key] = now

        return issued

    def _debounced(self, key: PairKey, now: float) -> bool:
        if self.min_reintroduce_interval <= 0:
            return False
        last = self._last_introduced.get(key)
        return last is not None and now - last < self.min_reintroduce_interval

    def on_introduction_success(self, target: Endpoint, address_type: str, token: str):
        """Outcome report from a peer. Logged only."""
        logger.info(f"[INTRO] NAT introduction SUCCESS: target={format_endpoint(target)} "
                    f"type={address_type} token={token}")

    def forget_room(self, token: str):
        """Drop debounce entries for a room that no longer exists"""
        for key in [k for k in self._last_introduced if k[0] == token]:
            del self._last_introduced[key]

    def prune(self, now: float):
        """Drop debounce entries that have aged past the interval"""
        expired = [
            key for key, ts in self._last_introduced.items()
            if now - ts >= self.min_reintroduce_interval
        ]
        for key in expired:
            del self._last_introduced[key]

    @property
    def pending_pairs(self) -> int:
        return len(self._last_introduced)
