"""
natpunch Rendezvous Server
"Meet Me Behind the NAT"

Single-threaded poll loop that groups peers by room token and introduces
each room's host to its clients so they can hole-punch a direct path:

1. Drain every datagram currently buffered on the UDP socket
2. Admit introduction requests and facilitate ready rooms
3. Evict members not seen for five minutes, drop empty rooms
4. Sleep 15ms and repeat

The room registry is only touched from this loop. The optional health
listener runs on its own thread and shares no state with it.

Usage:
    python -m natpunch [--port 50000] [--health-port 8080] [--log-level INFO]
"""

import argparse
import logging
import signal
import sys
import time
from typing import Callable, List, Optional, Tuple

from .admission import admit
from .config import BrokerConfig
from .errors import ConfigError, InvalidTokenError, TransportError
from .facilitator import IntroductionFacilitator
from .health import start_health_server
from .registry import Member, RoomRegistry, format_endpoint
from .transport import (
    MAX_EVENTS_PER_POLL,
    ConnectionRequest,
    IntroductionRequest,
    IntroductionSucceeded,
    MalformedDatagram,
    NetworkError,
    PayloadReceived,
    PunchTransport,
    TransportEvent,
)

logger = logging.getLogger("natpunch.server")


class PunchServer:
    """
    NAT punch rendezvous server.

    The transport, clock and sleep function are injectable so the loop can
    be driven one iteration at a time against a fake socket and a virtual
    clock.
    """

    def __init__(self, config: Optional[BrokerConfig] = None,
                 transport: Optional[PunchTransport] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or BrokerConfig()
        self.transport = transport or PunchTransport(self.config.bind_address, self.config.port)
        self.registry = RoomRegistry()
        self.facilitator = IntroductionFacilitator(
            self.transport,
            min_reintroduce_interval=self.config.min_reintroduce_interval,
            clock=clock,
        )

        self._clock = clock
        self._sleep = sleep
        self.batch_size = MAX_EVENTS_PER_POLL

        # State
        self.running = False
        self.iterations = 0
        self._last_status = clock()

        # Stats
        self.requests_admitted = 0
        self.requests_rejected = 0
        self.members_evicted = 0

    # --- lifecycle ---

    def start(self):
        """
        Bind the transport.

        Raises:
            TransportError: the listening socket could not be bound
        """
        self.transport.start()
        logger.info(f"[SERVER] NAT punch server started on port {self.transport.port}")

    def stop(self):
        """Ask run() to return after the current iteration"""
        self.running = False

    def close(self):
        self.transport.close()
        logger.info("[SERVER] Stopped")

    def run(self, max_iterations: Optional[int] = None):
        """Poll until stop() is called (or max_iterations is reached)"""
        self.running = True
        done = 0

        while self.running:
            try:
                self.poll_once()
            except Exception:
                logger.exception("[SERVER] Error during poll iteration")

            done += 1
            if max_iterations is not None and done >= max_iterations:
                break
            self._sleep(self.config.poll_interval)

        self.running = False

    def poll_once(self):
        """One iteration: drain all buffered events, then sweep stale members"""
        now = self._clock()

        # A full batch means more may be queued; the sweep must not run
        # until the socket is empty.
        while True:
            events = self.transport.poll_events(self.batch_size)
            for event in events:
                try:
                    self.handle_event(event, now)
                except Exception:
                    logger.exception(f"[SERVER] Failed to handle {type(event).__name__}")
            if len(events) < self.batch_size:
                break

        self.cleanup()
        self.iterations += 1
        self._maybe_log_status()

    # --- event dispatch ---

    def handle_event(self, event: TransportEvent, now: float):
        if isinstance(event, IntroductionRequest):
            self.on_introduction_request(event, now)
        elif isinstance(event, ConnectionRequest):
            self.on_connection_request(event)
        elif isinstance(event, PayloadReceived):
            logger.warning(f"[SERVER] Unexpected data received from "
                           f"{format_endpoint(event.remote_endpoint)} ({event.size} bytes), discarding")
        elif isinstance(event, IntroductionSucceeded):
            self.facilitator.on_introduction_success(
                event.target_endpoint, event.address_type.name, event.token)
        elif isinstance(event, NetworkError):
            source = format_endpoint(event.remote_endpoint) if event.remote_endpoint else "socket"
            logger.warning(f"[SERVER] Network error from {source}: {event.error}")
        elif isinstance(event, MalformedDatagram):
            logger.debug(f"[SERVER] Dropping datagram from "
                         f"{format_endpoint(event.remote_endpoint)}: {event.reason}")
        else:
            logger.warning(f"[SERVER] Unknown event type {type(event).__name__}")

    def on_introduction_request(self, event: IntroductionRequest, now: float):
        logger.info(f"[SERVER] NAT introduction request: local={format_endpoint(event.local_endpoint)} "
                    f"remote={format_endpoint(event.remote_endpoint)} token={event.token}")
        try:
            result = admit(self.registry, event.token, event.remote_endpoint, now)
        except InvalidTokenError as e:
            self.requests_rejected += 1
            logger.warning(f"[SERVER] {e.message}")
            return

        self.requests_admitted += 1
        self.facilitator.maybe_facilitate(event.token, result.room, now)

    def on_connection_request(self, event: ConnectionRequest):
        logger.info(f"[SERVER] Connection request from {format_endpoint(event.remote_endpoint)} "
                    f"- rejecting (punch server only)")
        try:
            self.transport.reject(event.remote_endpoint)
        except TransportError as e:
            logger.warning(f"[SERVER] {e.message}")

    # --- maintenance ---

    def cleanup(self, now: Optional[float] = None) -> List[Tuple[str, Member]]:
        """Evict stale members and empty rooms"""
        if now is None:
            now = self._clock()

        evicted = self.registry.evict_stale(now, self.config.stale_timeout)
        self.members_evicted += len(evicted)

        for token in {token for token, _ in evicted}:
            if token not in self.registry:
                self.facilitator.forget_room(token)

        if self.config.min_reintroduce_interval > 0:
            self.facilitator.prune(now)

        return evicted

    def _maybe_log_status(self):
        now = self._clock()
        if now - self._last_status < self.config.status_interval:
            return
        self._last_status = now
        logger.info(f"[SERVER] Status: rooms={len(self.registry)} "
                    f"members={self.registry.member_count()} "
                    f"admitted={self.requests_admitted} rejected={self.requests_rejected} "
                    f"introductions={self.facilitator.introductions_sent} "
                    f"evicted={self.members_evicted}")


# ============================================================
# ENTRY POINT
# ============================================================

def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_config(args: argparse.Namespace) -> BrokerConfig:
    config = BrokerConfig.from_env()
    if args.port is not None:
        config.port = args.port
    if args.health_port is not None:
        config.health_port = args.health_port
    if args.log_level is not None:
        config.log_level = args.log_level
    config.validate()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="natpunch NAT introduction rendezvous server")
    parser.add_argument("--port", type=int, default=None, help="UDP port (default: $PORT or 50000)")
    parser.add_argument("--health-port", type=int, default=None,
                        help="TCP port for the /health endpoint (default: $HEALTH_PORT, disabled)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        setup_logging()
        logger.error(f"[SERVER] {e.message}")
        return 1

    setup_logging(config.log_level)
    logger.info("[SERVER] Starting NAT punch server...")

    server = PunchServer(config)
    try:
        server.start()
    except TransportError as e:
        logger.error(f"[SERVER] Server error: {e.message}")
        return 1

    if config.health_port:
        start_health_server(config.bind_address, config.health_port)

    def signal_handler(signum, frame):
        logger.info(f"[SERVER] Received signal {signum}, shutting down...")
        server.stop()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        server.run()
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
