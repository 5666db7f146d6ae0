"""Report generation module for WAF validation results."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import logging

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .aggregator import ResultSummary, summarize
from .orchestrator import RunState
from .probe import WAFTestResult
from .targets import TestTarget

logger = logging.getLogger(__name__)


def _rating(block_rate: float):
    if block_rate >= 90:
        return "bold green", "EXCELLENT"
    if block_rate >= 70:
        return "bold yellow", "GOOD"
    if block_rate >= 50:
        return "bold orange3", "FAIR"
    return "bold red", "POOR"


class Reporter:
    """Render results to the console and optionally save them to a file."""

    def __init__(self, output_file: Optional[str] = None, console: Optional[Console] = None):
        self.output_file = output_file
        self.console = console or Console()
        self.target: Optional[TestTarget] = None
        self.state: Optional[RunState] = None
        self.results: List[WAFTestResult] = []
        self.start_time = datetime.now()

    def add_results(self, target: TestTarget,
                    results: Union[Iterable[WAFTestResult], Mapping[str, WAFTestResult]],
                    state: Optional[RunState] = None):
        """Add results for a target, in the order they should be listed."""
        if isinstance(results, Mapping):
            results = results.values()
        self.target = target
        self.state = state
        self.results.extend(results)

    def summary(self) -> ResultSummary:
        return summarize(self.results)

    def generate_report(self):
        """Display the full report and save it if an output file is set."""
        end_time = datetime.now()
        duration = (end_time - self.start_time).total_seconds()

        self.console.print("\n")
        self.console.print(Panel("WAF VALIDATION REPORT", style="bold green"))

        if self.target:
            self.console.print(f"\n[bold]Target:[/] {self.target.base_url} (Host: {self.target.host_header})")
        if self.state:
            self.console.print(f"[bold]Run State:[/] {self.state.value}")
        self.console.print(f"[bold]Duration:[/] {duration:.2f} seconds")

        if self.results:
            self._display_results()
            self._display_categories()

        self._display_summary()

        if self.output_file:
            self.save_report(self.output_file)

    def _display_results(self):
        table = Table(title="Results by Pattern", show_header=True, header_style="bold magenta")
        table.add_column("Pattern", style="cyan")
        table.add_column("Category", style="yellow")
        table.add_column("Description", style="white")
        table.add_column("Status", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Result", style="bold")

        for result in self.results:
            if result.errored:
                outcome = f"[yellow]ERROR ({result.error_kind})[/]"
            elif result.blocked:
                outcome = "[green]BLOCKED[/]"
            else:
                outcome = "[red]PASSED[/]"

            table.add_row(
                result.attack_id,
                result.category,
                result.description[:40],
                str(result.status_code) if result.status_code else "-",
                f"{result.response_time_ms}ms",
                outcome,
            )

        self.console.print(table)

        errors = [r for r in self.results if r.errored]
        for result in errors:
            self.console.print(f"[yellow]  {result.attack_id}:[/] {result.error}")

    def _display_categories(self):
        summary = self.summary()

        cat_table = Table(title="Results by Category", show_header=True, header_style="bold magenta")
        cat_table.add_column("Category", style="cyan")
        cat_table.add_column("Total", justify="right")
        cat_table.add_column("Blocked", justify="right", style="green")
        cat_table.add_column("Passed", justify="right", style="red")
        cat_table.add_column("Errors", justify="right", style="yellow")

        for cat, stats in sorted(summary.by_category.items()):
            cat_table.add_row(cat, str(stats.total), str(stats.blocked), str(stats.passed), str(stats.errored))

        self.console.print(cat_table)

    def _display_summary(self):
        summary = self.summary()

        self.console.print("\n")
        self.console.print(Panel("SUMMARY", style="bold green"))
        self.console.print(f"[bold]Total:[/] {summary.total}")
        self.console.print(f"[bold green]Blocked:[/] {summary.blocked}")
        self.console.print(f"[bold red]Passed (not blocked):[/] {summary.passed}")
        self.console.print(f"[bold yellow]Errors:[/] {summary.errored}")

        if summary.blocked + summary.passed == 0:
            return

        style, rating = _rating(summary.block_rate)
        self.console.print(f"\n[{style}]Block Rate: {summary.block_rate:.1f}% ({rating})[/]")

        not_blocked = sorted(
            ((cat, stats.passed) for cat, stats in summary.by_category.items() if stats.passed),
            key=lambda x: -x[1],
        )
        for cat, count in not_blocked[:5]:
            self.console.print(f"• Strengthen protection for {cat} attacks ({count} not blocked)")

    def build_report_data(self) -> Dict[str, Any]:
        end_time = datetime.now()
        return {
            "metadata": {
                "start_time": self.start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "duration_seconds": (end_time - self.start_time).total_seconds(),
            },
            "target": {
                "base_url": self.target.base_url,
                "host_header": self.target.host_header,
            } if self.target else None,
            "state": self.state.value if self.state else None,
            "summary": self.summary().to_dict(),
            "results": [r.to_dict() for r in self.results],
        }

    def save_report(self, output_file: str):
        """Save the report as JSON, or as plain text for any other suffix."""
        report_data = self.build_report_data()
        output_path = Path(output_file)

        with open(output_path, "w", encoding="utf-8") as f:
            if output_path.suffix == ".json":
                json.dump(report_data, f, indent=2)
            else:
                f.write(self._generate_text_report(report_data))

        logger.info(f"Report written to {output_path}")
        self.console.print(f"\n[bold green]Report saved to {output_file}[/]")

    def _generate_text_report(self, report_data: Dict) -> str:
        summary = report_data["summary"]
        lines = [
            "=" * 60,
            "WAF VALIDATION REPORT",
            "=" * 60,
            "",
            f"Duration: {report_data['metadata']['duration_seconds']:.2f} seconds",
            f"State: {report_data['state']}",
            "",
            f"Total: {summary['total']}",
            f"Blocked: {summary['blocked']}",
            f"Passed: {summary['passed']}",
            f"Errors: {summary['errored']}",
            f"Block Rate: {summary['block_rate']}%",
            "",
            "-" * 60,
        ]
        for r in report_data["results"]:
            lines.append(f"{r['outcome'].upper():8} {r['attack_id']:28} {r['status_code']:>4} {r['response_time_ms']}ms")
        return "\n".join(lines)
