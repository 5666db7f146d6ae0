"""WAF Validator Modules"""

from .aggregator import CategoryStats, ResultSummary, summarize
from .catalog import (
    AttackCategory,
    AttackPattern,
    BuiltinPatternSource,
    JsonPatternSource,
    PatternCatalog,
    PatternSource,
    PayloadTemplate,
    StaticPatternSource,
)
from .config import BlockPolicy, Config
from .errors import (
    CatalogUnavailable,
    ConfigurationError,
    HostNotFound,
    PatternNotFound,
    TransportError,
    WAFValidatorError,
)
from .http_engine import HTTPEngine, HTTPMethod, HTTPResponse
from .orchestrator import BatchOrchestrator, BatchRun, RunState
from .probe import ProbeExecutor, WAFTestResult
from .reporter import Reporter
from .targets import (
    HostDirectory,
    JsonHostDirectory,
    ProxyHost,
    StaticHostDirectory,
    TargetResolver,
    TestTarget,
    resolve_target,
)
from .validator import WAFValidator

__version__ = "1.0.0"

__all__ = [
    "AttackCategory",
    "AttackPattern",
    "BatchOrchestrator",
    "BatchRun",
    "BlockPolicy",
    "BuiltinPatternSource",
    "CatalogUnavailable",
    "CategoryStats",
    "Config",
    "ConfigurationError",
    "HTTPEngine",
    "HTTPMethod",
    "HTTPResponse",
    "HostDirectory",
    "HostNotFound",
    "JsonHostDirectory",
    "JsonPatternSource",
    "PatternCatalog",
    "PatternNotFound",
    "PatternSource",
    "PayloadTemplate",
    "ProbeExecutor",
    "ProxyHost",
    "Reporter",
    "ResultSummary",
    "RunState",
    "StaticHostDirectory",
    "StaticPatternSource",
    "TargetResolver",
    "TestTarget",
    "TransportError",
    "WAFTestResult",
    "WAFValidator",
    "WAFValidatorError",
    "resolve_target",
    "summarize",
]
