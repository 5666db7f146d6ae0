"""Target resolution: which endpoint a probe is sent to and which virtual host it claims."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit
import logging

from .errors import ConfigurationError, HostNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestTarget:
    """Where probes go (``base_url``) and which host they impersonate (``host_header``)."""
    __test__ = False

    base_url: str
    host_header: str

    @property
    def is_runnable(self) -> bool:
        return is_valid_base_url(self.base_url) and bool(self.host_header.strip())


def is_valid_base_url(base_url: str) -> bool:
    """An absolute http(s) URL with a host."""
    try:
        parts = urlsplit(base_url.strip())
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def require_runnable(target: TestTarget) -> TestTarget:
    """Raise ConfigurationError unless the base URL is a usable http(s) URL and the host header is set."""
    missing = []
    invalid = []
    if not target.base_url.strip():
        missing.append("base_url")
    elif not is_valid_base_url(target.base_url):
        invalid.append("base_url")
    if not target.host_header.strip():
        missing.append("host_header")

    if missing or invalid:
        problems = [f"missing: {', '.join(missing)}"] if missing else []
        if invalid:
            problems.append(f"invalid base_url {target.base_url!r} (expected http:// or https:// with a host)")
        raise ConfigurationError(
            f"Target is not runnable, {'; '.join(problems)}",
            details={"missing": missing, "invalid": invalid},
        )
    return target


@dataclass(frozen=True)
class ProxyHost:
    """A protected host as described by the host directory."""
    id: str
    domain_names: Tuple[str, ...] = ()
    enabled: bool = True
    filtering_enabled: bool = False
    filtering_mode: str = "detection"

    @property
    def primary_domain(self) -> str:
        return self.domain_names[0] if self.domain_names else ""

    @property
    def label(self) -> str:
        if not self.filtering_enabled:
            mode = "No WAF"
        elif self.filtering_mode == "blocking":
            mode = "Blocking"
        else:
            mode = "Detection"
        return f"{self.primary_domain or self.id} ({mode})"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProxyHost":
        return cls(
            id=str(data["id"]),
            domain_names=tuple(data.get("domain_names") or ()),
            enabled=bool(data.get("enabled", True)),
            filtering_enabled=bool(data.get("filtering_enabled", data.get("waf_enabled", False))),
            filtering_mode=data.get("filtering_mode", data.get("waf_mode", "detection")) or "detection",
        )


class HostDirectory(ABC):
    """External provider of protected host records."""

    @abstractmethod
    def list_hosts(self) -> List[ProxyHost]:
        """Return all known hosts."""


class StaticHostDirectory(HostDirectory):
    """Host records held in memory."""

    def __init__(self, hosts: Iterable[ProxyHost] = ()):
        self.hosts = list(hosts)

    def list_hosts(self) -> List[ProxyHost]:
        return list(self.hosts)


class JsonHostDirectory(HostDirectory):
    """Host records read from a JSON file: a list of objects or ``{"data": [...]}``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def list_hosts(self) -> List[ProxyHost]:
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                data = data.get("data", [])
            return [ProxyHost.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigurationError(f"Cannot read host list {self.path}: {e}", details={"path": str(self.path)}) from e


def find_host(host_id: str, hosts: Sequence[ProxyHost]) -> ProxyHost:
    for host in hosts:
        if host.id == host_id:
            return host
    raise HostNotFound(host_id)


def resolve_target(host_id: str, hosts: Sequence[ProxyHost], base_url: str) -> TestTarget:
    """Pure lookup: the selected host's first domain becomes the host header."""
    host = find_host(host_id, hosts)
    return TestTarget(base_url=base_url, host_header=host.primary_domain)


@dataclass
class HostGroups:
    filtering_enabled: List[ProxyHost] = field(default_factory=list)
    filtering_disabled: List[ProxyHost] = field(default_factory=list)


class TargetResolver:
    """
    Holds the current target selection.

    Choosing a host and typing a host header are mutually exclusive: selecting
    a host always overwrites the header, and setting a header by hand clears
    the selection.
    """

    def __init__(self, directory: Optional[HostDirectory] = None, base_url: str = ""):
        self.directory = directory or StaticHostDirectory()
        self.base_url = base_url
        self.host_header = ""
        self.selected_host_id: Optional[str] = None

    def hosts(self) -> List[ProxyHost]:
        return self.directory.list_hosts()

    def selectable_hosts(self) -> HostGroups:
        """Enabled hosts, split by whether filtering is switched on."""
        groups = HostGroups()
        for host in self.hosts():
            if not host.enabled:
                continue
            if host.filtering_enabled:
                groups.filtering_enabled.append(host)
            else:
                groups.filtering_disabled.append(host)
        return groups

    def select_host(self, host_id: str) -> TestTarget:
        target = resolve_target(host_id, self.hosts(), self.base_url)
        if not target.host_header:
            logger.warning(f"Host {host_id} declares no domain names")
        self.selected_host_id = host_id
        self.host_header = target.host_header
        return self.target

    def set_host_header(self, host_header: str) -> TestTarget:
        self.host_header = host_header.strip()
        self.selected_host_id = None
        return self.target

    def set_base_url(self, base_url: str) -> TestTarget:
        self.base_url = base_url.strip()
        return self.target

    def selected_host(self) -> Optional[ProxyHost]:
        if self.selected_host_id is None:
            return None
        return find_host(self.selected_host_id, self.hosts())

    @property
    def target(self) -> TestTarget:
        return TestTarget(base_url=self.base_url, host_header=self.host_header)
