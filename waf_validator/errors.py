"""Exception hierarchy for the WAF validation engine."""

from typing import Any, Dict, Optional


class WAFValidatorError(Exception):
    """Base exception for engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(WAFValidatorError):
    """Raised when a run cannot start: non-runnable target, empty pattern set, bad settings."""


class CatalogUnavailable(WAFValidatorError):
    """Raised when the pattern source could not be loaded."""


class PatternNotFound(WAFValidatorError):
    """Raised when a pattern id is not in the catalog."""

    def __init__(self, pattern_id: str):
        super().__init__(f"Unknown attack pattern: {pattern_id}", details={"pattern_id": pattern_id})
        self.pattern_id = pattern_id


class HostNotFound(WAFValidatorError):
    """Raised when a host id is not in the host directory."""

    def __init__(self, host_id: str):
        super().__init__(f"Unknown host: {host_id}", details={"host_id": host_id})
        self.host_id = host_id


class TransportError(WAFValidatorError):
    """
    Network-level failure of a single probe.

    Raised by the HTTP engines and contained by the probe executor, which
    turns it into an error result instead of letting it escape.
    """

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    DNS = "dns"
    TRANSPORT = "transport"

    def __init__(self, kind: str, message: str):
        super().__init__(message, details={"kind": kind})
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"
