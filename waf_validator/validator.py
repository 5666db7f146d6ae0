"""Engine facade used by presentation layers."""

from typing import Iterable, Optional, Tuple
import logging

from .catalog import AttackPattern, BuiltinPatternSource, JsonPatternSource, PatternCatalog
from .config import Config
from .http_engine import HTTPEngine
from .orchestrator import BatchOrchestrator, BatchRun, ResultCallback
from .probe import ProbeExecutor, WAFTestResult
from .targets import TestTarget, require_runnable

logger = logging.getLogger(__name__)


class WAFValidator:
    """
    Validates that a filtering layer blocks the attack patterns of a catalog.

    Wires the catalog, the HTTP transport, the probe executor and the batch
    orchestrator together from a Config. Any of the collaborators can be
    injected instead.
    """

    def __init__(self, config: Optional[Config] = None, catalog: Optional[PatternCatalog] = None,
                 engine=None):
        self.config = config or Config()
        self.config.validate()

        if catalog is None:
            if self.config.patterns_file:
                logger.info(f"Loading attack patterns from {self.config.patterns_file}")
                source = JsonPatternSource(self.config.patterns_file)
            else:
                source = BuiltinPatternSource()
            catalog = PatternCatalog(source)
        self.catalog = catalog

        self.engine = engine if engine is not None else HTTPEngine.from_config(self.config)
        self.executor = ProbeExecutor(self.engine, self.config.block_policy(), self.config.timeout)
        self.orchestrator = BatchOrchestrator(self.executor)

    async def __aenter__(self) -> "WAFValidator":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def list_patterns(self) -> Tuple[AttackPattern, ...]:
        """Raises CatalogUnavailable if the pattern source cannot be loaded."""
        return self.catalog.list()

    async def run_one(self, pattern_id: str, target: TestTarget) -> WAFTestResult:
        """Probe a single pattern. Transport failures come back as error results."""
        require_runnable(target)
        pattern = self.catalog.get(pattern_id)
        return await self.executor.execute(pattern, target)

    def run_batch(self, target: TestTarget, concurrency: Optional[int] = None,
                  pattern_ids: Optional[Iterable[str]] = None,
                  on_result: Optional[ResultCallback] = None) -> BatchRun:
        """
        Start probing every catalog pattern (or ``pattern_ids``) against ``target``.

        Returns the running BatchRun at once; iterate ``run.stream()`` for
        results and ``await run.wait()`` for the final summary.
        """
        require_runnable(target)
        if pattern_ids is None:
            patterns = self.catalog.list()
        else:
            patterns = self.catalog.select(pattern_ids)

        if concurrency is None:
            concurrency = self.config.concurrency
        return self.orchestrator.start(patterns, target, concurrency, on_result)

    def cancel_batch(self, run: BatchRun) -> bool:
        return self.orchestrator.cancel(run)

    async def close(self):
        await self.engine.close()
