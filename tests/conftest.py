"""
Shared fixtures: a scripted in-memory transport and small pattern catalogs.

pytest tests/ -v
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

import pytest

from waf_validator.catalog import AttackCategory, AttackPattern, PatternCatalog, PayloadTemplate, StaticPatternSource
from waf_validator.errors import TransportError
from waf_validator.http_engine import HTTPMethod, HTTPResponse, split_target
from waf_validator.targets import TestTarget


@dataclass
class Reply:
    status: int = 200
    body: str = ""
    delay: float = 0.0


HANG = object()

Behaviour = Union[int, Reply, TransportError, object]


class FakeEngine:
    """
    Transport double keyed by request path.

    A behaviour is a status code, a Reply, a TransportError to raise, or HANG
    to never answer. Every dispatch is recorded in ``calls``.
    """

    def __init__(self, script: Optional[Dict[str, Behaviour]] = None, default: Behaviour = 200):
        self.script = script or {}
        self.default = default
        self.calls: List[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        self._never = asyncio.Event()

    @property
    def dispatched(self) -> List[str]:
        return [call["path"] for call in self.calls]

    async def request(self, url, method=HTTPMethod.GET, headers=None, data=None,
                      host_header=None, timeout=10.0) -> HTTPResponse:
        path = split_target(url)[1].split("?")[0]
        self.calls.append({
            "url": url,
            "path": path,
            "method": method,
            "headers": dict(headers or {}),
            "data": data,
            "host_header": host_header,
            "timeout": timeout,
        })
        behaviour = self.script.get(path, self.default)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if behaviour is HANG:
                await self._never.wait()
            if isinstance(behaviour, TransportError):
                await asyncio.sleep(0)
                raise behaviour
            reply = behaviour if isinstance(behaviour, Reply) else Reply(status=behaviour)
            await asyncio.sleep(reply.delay)
            return HTTPResponse(status_code=reply.status, body=reply.body, elapsed_time=reply.delay, request_url=url)
        finally:
            self.in_flight -= 1

    async def close(self):
        self.closed = True


def make_pattern(pattern_id: str, category: AttackCategory = AttackCategory.SQL_INJECTION,
                 description: str = "", **template) -> AttackPattern:
    """A pattern whose request path is ``/<id>``, so FakeEngine can key on it."""
    template.setdefault("path", f"/{pattern_id}")
    return AttackPattern(pattern_id, category, description or pattern_id, PayloadTemplate(**template))


@pytest.fixture
def target():
    return TestTarget(base_url="https://proxy.internal", host_header="shop.example.com")


@pytest.fixture
def scenario_patterns():
    return [
        make_pattern("sqli-1", AttackCategory.SQL_INJECTION),
        make_pattern("xss-1", AttackCategory.XSS),
    ]


@pytest.fixture
def scenario_catalog(scenario_patterns):
    return PatternCatalog(StaticPatternSource(scenario_patterns))


@pytest.fixture
def many_patterns():
    categories = list(AttackCategory)
    return [make_pattern(f"p{i}", categories[i % len(categories)]) for i in range(10)]
