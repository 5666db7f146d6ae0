"""Single-probe execution and classification."""

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
import logging

from .catalog import AttackPattern
from .config import BlockPolicy
from .errors import TransportError
from .targets import TestTarget

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "internal"


@dataclass(frozen=True)
class WAFTestResult:
    """Outcome of one probe. Created once per attempt and never modified."""
    attack_id: str
    category: str
    blocked: bool
    status_code: int
    response_time_ms: int
    description: str = ""
    test_url: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def errored(self) -> bool:
        return self.error is not None

    @property
    def passed(self) -> bool:
        """Delivered, answered and let through."""
        return not self.blocked and not self.errored

    @property
    def outcome(self) -> str:
        if self.errored:
            return "error"
        return "blocked" if self.blocked else "passed"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome
        return data


def error_result(pattern: AttackPattern, test_url: str, elapsed_ms: int,
                 error: str, error_kind: str) -> WAFTestResult:
    """A result standing in for a probe that never got an answer."""
    return WAFTestResult(
        attack_id=pattern.id,
        category=pattern.category.value,
        blocked=False,
        status_code=0,
        response_time_ms=max(0, elapsed_ms),
        description=pattern.description,
        test_url=test_url,
        error=error,
        error_kind=error_kind,
    )


class ProbeExecutor:
    """
    Sends one pattern at one target and classifies the answer.

    Transport failures never escape ``execute``; they come back as results
    with ``error`` set. The executor keeps no state between calls, so it is
    safe to share across concurrent probes.
    """

    def __init__(self, engine, policy: Optional[BlockPolicy] = None, timeout: float = 10.0):
        self.engine = engine
        self.policy = policy or BlockPolicy()
        self.timeout = timeout

    async def execute(self, pattern: AttackPattern, target: TestTarget,
                      timeout: Optional[float] = None) -> WAFTestResult:
        timeout = self.timeout if timeout is None else timeout
        template = pattern.template
        test_url = template.build_url(target.base_url)

        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self.engine.request(
                    test_url,
                    template.method,
                    headers=template.header_dict(),
                    data=template.body,
                    host_header=target.host_header,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning(f"{pattern.id}: no response within {timeout}s")
            return error_result(pattern, test_url, elapsed_ms,
                                f"timeout: no response within {timeout}s", TransportError.TIMEOUT)
        except TransportError as e:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning(f"{pattern.id}: transport error ({e.kind}): {e.message}")
            return error_result(pattern, test_url, elapsed_ms, str(e), e.kind)

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        blocked = self.policy.is_blocked(response.status_code, response.body)

        result = WAFTestResult(
            attack_id=pattern.id,
            category=pattern.category.value,
            blocked=blocked,
            status_code=response.status_code,
            response_time_ms=max(0, elapsed_ms),
            description=pattern.description,
            test_url=test_url,
        )
        logger.debug(f"{pattern.id}: {result.outcome} (status {result.status_code}, {result.response_time_ms}ms)")
        return result
