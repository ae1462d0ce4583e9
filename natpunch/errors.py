"""
natpunch Custom Exceptions

Exceptions raised by the rendezvous broker. Steady-state errors are caught
by the poll loop; only ConfigError and TransportError at startup are fatal.
"""

from typing import Optional, Tuple


class NatPunchError(Exception):
    """Base exception for broker errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or 'natpunch_error'
        super().__init__(self.message)


class ConfigError(NatPunchError):
    """Raised when configuration is missing or invalid."""

    def __init__(self, message: str = "Invalid broker configuration"):
        super().__init__(message, "config_error")


class AdmissionError(NatPunchError):
    """Raised when an introduction request cannot be admitted."""

    def __init__(self, message: str = "Introduction request rejected", code: str = "admission_error"):
        super().__init__(message, code)


class InvalidTokenError(AdmissionError):
    """Raised when an introduction request carries an empty or missing token."""

    def __init__(self, endpoint: Optional[Tuple[str, int]] = None):
        self.endpoint = endpoint
        source = f" from {endpoint[0]}:{endpoint[1]}" if endpoint else ""
        super().__init__(f"Empty token{source} - rejecting request", "invalid_token")


class TransportError(NatPunchError):
    """Raised when the UDP transport cannot bind or send."""

    def __init__(self, message: str = "Transport failure"):
        super().__init__(message, "transport_error")


class CodecError(NatPunchError, ValueError):
    """Raised when a datagram cannot be encoded or decoded."""

    def __init__(self, message: str = "Malformed message"):
        super().__init__(message, "codec_error")
