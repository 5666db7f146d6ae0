"""Folding probe results into summary statistics."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Union

from .probe import WAFTestResult


@dataclass
class CategoryStats:
    total: int = 0
    blocked: int = 0
    passed: int = 0
    errored: int = 0

    def add(self, result: WAFTestResult):
        self.total += 1
        if result.errored:
            self.errored += 1
        elif result.blocked:
            self.blocked += 1
        else:
            self.passed += 1


@dataclass
class ResultSummary:
    """Counts over a set of results: ``total == blocked + passed + errored``."""
    total: int = 0
    blocked: int = 0
    passed: int = 0
    errored: int = 0
    by_category: Dict[str, CategoryStats] = field(default_factory=dict)

    @property
    def block_rate(self) -> float:
        """Percentage of answered probes that were blocked."""
        delivered = self.blocked + self.passed
        return self.blocked / delivered * 100 if delivered > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "blocked": self.blocked,
            "passed": self.passed,
            "errored": self.errored,
            "block_rate": round(self.block_rate, 1),
            "by_category": {
                cat: {
                    "total": stats.total,
                    "blocked": stats.blocked,
                    "passed": stats.passed,
                    "errored": stats.errored,
                }
                for cat, stats in self.by_category.items()
            },
        }


def summarize(results: Union[Iterable[WAFTestResult], Mapping[str, WAFTestResult]]) -> ResultSummary:
    """
    Summarize results. Accepts a sequence or an ``attack_id -> result`` mapping.

    The computation depends only on the set of results, not on the order in
    which they arrived, so it can be rerun at any point of a running batch.
    An errored result is never counted as blocked, even if a buggy transport
    flagged it so.
    """
    if isinstance(results, Mapping):
        results = results.values()

    summary = ResultSummary()
    for result in results:
        summary.total += 1
        if result.errored:
            summary.errored += 1
        elif result.blocked:
            summary.blocked += 1
        else:
            summary.passed += 1

        stats = summary.by_category.setdefault(result.category, CategoryStats())
        stats.add(result)

    return summary
