"""Configuration module for the WAF validator."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import ConfigurationError


DEFAULT_BLOCKED_STATUS_CODES: Tuple[int, ...] = (403, 406, 429)
DEFAULT_SIGNAL_STATUS_CODES: Tuple[int, ...] = (503,)
DEFAULT_SIGNAL_MARKERS: Tuple[str, ...] = (
    "blocked",
    "access denied",
    "forbidden",
    "attention required",
    "request rejected",
    "modsecurity",
    "ray id",
)


@dataclass(frozen=True)
class BlockPolicy:
    """
    Status-code based classification of a filtering layer's answer.

    Codes in ``status_codes`` always mean the request was rejected. Codes in
    ``signal_status_codes`` only count when the body carries one of the
    ``signal_markers``, since a 503 is also what an overloaded backend says.
    """
    status_codes: FrozenSet[int] = frozenset(DEFAULT_BLOCKED_STATUS_CODES)
    signal_status_codes: FrozenSet[int] = frozenset(DEFAULT_SIGNAL_STATUS_CODES)
    signal_markers: Tuple[str, ...] = DEFAULT_SIGNAL_MARKERS

    def is_blocked(self, status_code: int, body: str = "") -> bool:
        if status_code in self.status_codes:
            return True
        if status_code in self.signal_status_codes and body:
            body_lower = body.lower()
            return any(marker in body_lower for marker in self.signal_markers)
        return False


@dataclass
class Config:
    """Configuration for the WAF validator."""

    base_url: str = "https://localhost"
    http_engine: str = "aiohttp"
    concurrency: int = 5
    timeout: float = 10.0

    blocked_status_codes: Tuple[int, ...] = DEFAULT_BLOCKED_STATUS_CODES
    signal_status_codes: Tuple[int, ...] = DEFAULT_SIGNAL_STATUS_CODES
    signal_markers: Tuple[str, ...] = DEFAULT_SIGNAL_MARKERS
    max_body_bytes: int = 4096

    # proxy endpoints commonly sit behind self-signed certificates
    ssl_verify: bool = False
    follow_redirects: bool = False
    custom_headers: Dict[str, str] = field(default_factory=dict)

    patterns_file: Optional[str] = None
    hosts_file: Optional[str] = None
    output_file: Optional[str] = None
    verbose: bool = False

    def validate(self) -> bool:
        """Validate the configuration."""
        if self.concurrency < 1:
            raise ConfigurationError("Concurrency must be at least 1")

        if self.timeout <= 0:
            raise ConfigurationError("Timeout must be positive")

        if self.max_body_bytes < 0:
            raise ConfigurationError("max_body_bytes cannot be negative")

        if not self.blocked_status_codes and not self.signal_status_codes:
            raise ConfigurationError("At least one blocking status code must be configured")

        return True

    def block_policy(self) -> BlockPolicy:
        """Build the classification policy from the configured status codes."""
        return BlockPolicy(
            status_codes=frozenset(self.blocked_status_codes),
            signal_status_codes=frozenset(self.signal_status_codes),
            signal_markers=tuple(m.lower() for m in self.signal_markers),
        )

    def get_base_url(self) -> str:
        """Get a properly formatted base URL."""
        base_url = self.base_url.strip()
        if base_url and not base_url.startswith(("http://", "https://")):
            base_url = f"https://{base_url}"
        return base_url.rstrip("/")
