"""Attack pattern catalog: the fixed set of probes replayed against a target."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlencode
import logging

from .errors import CatalogUnavailable, PatternNotFound
from .http_engine import HTTPMethod

logger = logging.getLogger(__name__)


class AttackCategory(str, Enum):
    SQL_INJECTION = "SQL Injection"
    XSS = "XSS"
    PATH_TRAVERSAL = "Path Traversal"
    COMMAND_INJECTION = "Command Injection"
    SCANNER_DETECTION = "Scanner Detection"
    RCE = "RCE"
    PROTOCOL_ATTACK = "Protocol Attack"

    @classmethod
    def parse(cls, value: Union[str, "AttackCategory"]) -> "AttackCategory":
        """Accept either the display value ("SQL Injection") or the member name."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            try:
                return cls[str(value).upper().replace(" ", "_")]
            except KeyError:
                raise ValueError(f"Unknown attack category: {value!r}") from None


Pairs = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class PayloadTemplate:
    """How to build the request for a pattern."""
    method: HTTPMethod = HTTPMethod.GET
    path: str = "/"
    query: Pairs = ()
    headers: Pairs = ()
    body: Optional[str] = None

    def build_url(self, base_url: str) -> str:
        """Append the raw path and the encoded query to ``base_url``."""
        path = self.path or "/"
        if not path.startswith("/"):
            path = "/" + path
        url = base_url.rstrip("/") + path
        if self.query:
            url += "?" + urlencode(self.query, quote_via=quote)
        return url

    def header_dict(self) -> Dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class AttackPattern:
    """A named, categorized attack request."""
    id: str
    category: AttackCategory
    description: str
    template: PayloadTemplate = field(default_factory=PayloadTemplate)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "description": self.description,
            "method": self.template.method.value,
            "path": self.template.path,
            "query": dict(self.template.query),
            "headers": dict(self.template.headers),
            "body": self.template.body,
        }


def _pairs(value: Union[None, Mapping[str, str], Iterable[Iterable[str]]]) -> Pairs:
    if not value:
        return ()
    if isinstance(value, Mapping):
        return tuple((str(k), str(v)) for k, v in value.items())
    pairs = []
    for item in value:
        key, val = item
        pairs.append((str(key), str(val)))
    return tuple(pairs)


def pattern_from_dict(data: Mapping[str, Any]) -> AttackPattern:
    """Build an AttackPattern from its JSON representation."""
    pattern_id = data["id"]
    if not isinstance(pattern_id, str) or not pattern_id.strip():
        raise ValueError(f"Invalid pattern id: {pattern_id!r}")

    template = PayloadTemplate(
        method=HTTPMethod(str(data.get("method", "GET")).upper()),
        path=data.get("path") or "/",
        query=_pairs(data.get("query")),
        headers=_pairs(data.get("headers")),
        body=data.get("body"),
    )
    return AttackPattern(
        id=pattern_id,
        category=AttackCategory.parse(data["category"]),
        description=data.get("description", ""),
        template=template,
    )


class PatternSource(ABC):
    """External provider of the catalog contents."""

    @abstractmethod
    def load(self) -> Iterable[AttackPattern]:
        """Return every pattern definition."""


class BuiltinPatternSource(PatternSource):
    """The stock patterns shipped with the validator."""

    PATTERNS = (
        AttackPattern(
            "sql_injection", AttackCategory.SQL_INJECTION, "Classic OR-based bypass",
            PayloadTemplate(query=(("id", "1' OR '1'='1"),)),
        ),
        AttackPattern(
            "sql_injection_union", AttackCategory.SQL_INJECTION, "UNION-based attack",
            PayloadTemplate(query=(("id", "1 UNION SELECT * FROM users--"),)),
        ),
        AttackPattern(
            "xss_script", AttackCategory.XSS, "Script tag injection",
            PayloadTemplate(query=(("q", "<script>alert('XSS')</script>"),)),
        ),
        AttackPattern(
            "xss_event", AttackCategory.XSS, "Event handler injection",
            PayloadTemplate(query=(("q", "<img src=x onerror=alert(1)>"),)),
        ),
        AttackPattern(
            "path_traversal", AttackCategory.PATH_TRAVERSAL, "Directory traversal attack",
            PayloadTemplate(path="/../../etc/passwd"),
        ),
        AttackPattern(
            "path_traversal_encoded", AttackCategory.PATH_TRAVERSAL, "URL encoded traversal",
            PayloadTemplate(path="/%2e%2e/%2e%2e/etc/passwd"),
        ),
        AttackPattern(
            "command_injection", AttackCategory.COMMAND_INJECTION, "Shell command injection",
            PayloadTemplate(query=(("cmd", ";cat /etc/passwd"),)),
        ),
        AttackPattern(
            "command_injection_pipe", AttackCategory.COMMAND_INJECTION, "Pipe command injection",
            PayloadTemplate(query=(("cmd", "|ls -la"),)),
        ),
        AttackPattern(
            "scanner_sqlmap", AttackCategory.SCANNER_DETECTION, "SQLMap user agent",
            PayloadTemplate(headers=(("User-Agent", "sqlmap/1.0-dev"),)),
        ),
        AttackPattern(
            "scanner_nikto", AttackCategory.SCANNER_DETECTION, "Nikto user agent",
            PayloadTemplate(headers=(("User-Agent", "Nikto/2.1.6"),)),
        ),
        AttackPattern(
            "rce_php", AttackCategory.RCE, "PHP wrapper attack",
            PayloadTemplate(query=(("file", "php://filter/convert.base64-encode/resource=index.php"),)),
        ),
        AttackPattern(
            "protocol_attack", AttackCategory.PROTOCOL_ATTACK, "Host header injection",
            PayloadTemplate(headers=(("X-Forwarded-Host", "evil.com"),)),
        ),
    )

    def load(self) -> Iterable[AttackPattern]:
        return self.PATTERNS


class StaticPatternSource(PatternSource):
    """Patterns handed over in memory."""

    def __init__(self, patterns: Iterable[AttackPattern]):
        self.patterns = tuple(patterns)

    def load(self) -> Iterable[AttackPattern]:
        return self.patterns


class JsonPatternSource(PatternSource):
    """
    Patterns read from a JSON file.

    The file holds a list of objects (or ``{"patterns": [...]}``) with the keys
    ``id``, ``category``, ``description`` and optionally ``method``, ``path``,
    ``query``, ``headers`` and ``body``.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Iterable[AttackPattern]:
        with self.path.open(encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("patterns", [])
        if not isinstance(data, list):
            raise ValueError(f"{self.path}: expected a list of patterns")

        return [pattern_from_dict(item) for item in data]


class PatternCatalog:
    """
    Read-only, session-cached view of a PatternSource.

    The source is loaded on first use. A failed load is not cached, so the
    caller may retry after fixing the source.
    """

    def __init__(self, source: Optional[PatternSource] = None):
        self.source = source or BuiltinPatternSource()
        self._patterns: Optional[Tuple[AttackPattern, ...]] = None
        self._by_id: Dict[str, AttackPattern] = {}

    def _load(self):
        try:
            patterns = tuple(self.source.load())
        except CatalogUnavailable:
            raise
        except Exception as e:
            logger.error(f"Failed to load attack patterns from {type(self.source).__name__}: {e}")
            raise CatalogUnavailable(f"Attack pattern catalog unavailable: {e}") from e

        by_id: Dict[str, AttackPattern] = {}
        for pattern in patterns:
            if not isinstance(pattern, AttackPattern):
                raise CatalogUnavailable(f"Pattern source returned {type(pattern).__name__}, not AttackPattern")
            if pattern.id in by_id:
                raise CatalogUnavailable(f"Duplicate attack pattern id: {pattern.id}",
                                         details={"pattern_id": pattern.id})
            by_id[pattern.id] = pattern

        self._patterns = patterns
        self._by_id = by_id
        logger.debug(f"Loaded {len(patterns)} attack patterns")

    @property
    def loaded(self) -> bool:
        return self._patterns is not None

    def list(self) -> Tuple[AttackPattern, ...]:
        """All patterns, in catalog order."""
        if self._patterns is None:
            self._load()
        return self._patterns

    def get(self, pattern_id: str) -> AttackPattern:
        """Look up one pattern; raises PatternNotFound."""
        self.list()
        try:
            return self._by_id[pattern_id]
        except KeyError:
            raise PatternNotFound(pattern_id) from None

    def select(self, pattern_ids: Iterable[str]) -> List[AttackPattern]:
        """Resolve ids to patterns, keeping the requested order."""
        return [self.get(pattern_id) for pattern_id in pattern_ids]

    def categories(self) -> List[AttackCategory]:
        seen: List[AttackCategory] = []
        for pattern in self.list():
            if pattern.category not in seen:
                seen.append(pattern.category)
        return seen

    def __len__(self) -> int:
        return len(self.list())

    def __contains__(self, pattern_id: str) -> bool:
        self.list()
        return pattern_id in self._by_id
