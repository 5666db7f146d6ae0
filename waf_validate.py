#!/usr/bin/env python3
"""
WAF Validation Tool

Replays a fixed catalog of attack requests at a protected host through its
filtering proxy and reports which of them were blocked.

WARNING: This tool is intended for authorized security testing only.
Only use against systems you own or have explicit permission to test.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from waf_validator import (
    Config,
    JsonHostDirectory,
    Reporter,
    StaticHostDirectory,
    TargetResolver,
    TestTarget,
    WAFValidator,
    WAFValidatorError,
)
from waf_validator.http_engine import HTTPEngine

console = Console()
logger = logging.getLogger("waf_validate")

BANNER = """
╔═══════════════════════════════════════════════════════════════════╗
║                 WAF Attack Pattern Validator                      ║
║                                                                   ║
║  ⚠️  FOR AUTHORIZED SECURITY TESTING ONLY                         ║
║  Only test systems you own or have explicit permission to test    ║
╚═══════════════════════════════════════════════════════════════════╝
"""


def display_banner():
    console.print(Panel(BANNER, style="bold red"))


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def get_patterns_table(validator: WAFValidator) -> Table:
    table = Table(title="Attack Patterns", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Category", style="green")
    table.add_column("Description", style="white")
    table.add_column("Request", style="dim")

    for pattern in validator.list_patterns():
        template = pattern.template
        request = f"{template.method.value} {template.build_url('')}"
        if template.headers:
            request += " " + ", ".join(f"{k}: {v}" for k, v in template.headers)
        table.add_row(pattern.id, pattern.category.value, pattern.description, request)

    return table


def get_hosts_table(resolver: TargetResolver) -> Table:
    table = Table(title="Protected Hosts", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Host", style="green")
    table.add_column("Domains", style="white")

    groups = resolver.selectable_hosts()
    for host in groups.filtering_enabled + groups.filtering_disabled:
        table.add_row(host.id, host.label, ", ".join(host.domain_names))

    return table


def build_config(args) -> Config:
    config = Config(
        base_url=args.base_url,
        http_engine=args.engine,
        concurrency=args.concurrency,
        timeout=args.timeout,
        patterns_file=args.patterns_file,
        hosts_file=args.hosts_file,
        output_file=args.output,
        verbose=args.verbose,
        ssl_verify=args.ssl_verify,
        follow_redirects=args.follow_redirects,
    )
    if args.blocked_status:
        config.blocked_status_codes = tuple(args.blocked_status)
    return config


def build_resolver(config: Config, args) -> TargetResolver:
    directory = JsonHostDirectory(config.hosts_file) if config.hosts_file else StaticHostDirectory()
    resolver = TargetResolver(directory, base_url=config.get_base_url())

    if args.host_id:
        resolver.select_host(args.host_id)
    elif args.host_header:
        resolver.set_host_header(args.host_header)

    return resolver


async def run_single(validator: WAFValidator, target: TestTarget, pattern_ids: List[str], reporter: Reporter):
    """Run the given patterns one at a time."""
    for pattern_id in pattern_ids:
        console.print(f"[bold cyan]Testing:[/] {pattern_id}")
        result = await validator.run_one(pattern_id, target)
        reporter.add_results(target, [result])


async def run_batch(validator: WAFValidator, target: TestTarget, config: Config, reporter: Reporter) -> bool:
    """Run the whole catalog with a live progress bar. Returns False if interrupted."""
    total = len(validator.list_patterns())
    counts = {"blocked": 0, "passed": 0, "errors": 0}

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=40),
        TaskProgressColumn(),
        TextColumn("|"),
        TextColumn("[green]Blocked:{task.fields[blocked]}"),
        TextColumn("[red]Passed:{task.fields[passed]}"),
        TextColumn("[yellow]Errors:{task.fields[errors]}"),
        TextColumn("|"),
        TimeElapsedColumn(),
        console=console,
        refresh_per_second=10
    ) as progress:
        task = progress.add_task("WAF Validation", total=total, **counts)

        def on_result(attack_id, result):
            if result.errored:
                counts["errors"] += 1
            elif result.blocked:
                counts["blocked"] += 1
            else:
                counts["passed"] += 1
            progress.update(task, advance=1, **counts)

        run = validator.run_batch(target, config.concurrency, on_result=on_result)
        interrupted = False
        try:
            await run.wait()
        except asyncio.CancelledError:
            # Ctrl-C: asyncio.run cancels this task, keep going to report partial results
            asyncio.current_task().uncancel()
            validator.cancel_batch(run)
            interrupted = True

        await run.join()

    # list in catalog order, not completion order
    results = run.results
    reporter.add_results(target, [results[pid] for pid in run.pattern_ids if pid in results], run.state)

    if interrupted:
        console.print(f"\n[bold yellow]Interrupted:[/] {len(results)}/{len(run.pattern_ids)} patterns reported")
    return not interrupted


async def run_validation(config: Config, target: TestTarget, pattern_ids: Optional[List[str]]) -> int:
    reporter = Reporter(config.output_file, console=console)

    console.print(f"\n[bold cyan]Target:[/] {target.base_url}")
    console.print(f"[bold cyan]Host Header:[/] {target.host_header}")
    console.print(f"[bold cyan]Engine:[/] {config.http_engine}")
    console.print(f"[bold cyan]Concurrency:[/] {config.concurrency}\n")

    completed = True
    async with WAFValidator(config) as validator:
        if pattern_ids:
            await run_single(validator, target, pattern_ids, reporter)
        else:
            completed = await run_batch(validator, target, config, reporter)

    reporter.generate_report()
    return 0 if completed else 130


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Validate that a WAF blocks a catalog of known attack requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List the attack patterns
  python waf_validate.py --list-patterns

  # Run every pattern through the proxy for one virtual host
  python waf_validate.py --base-url https://proxy.internal --host-header shop.example.com --accept-responsibility

  # Pick the host from an exported host list and save a JSON report
  python waf_validate.py --hosts-file hosts.json --host-id 3 -o report.json --accept-responsibility

  # Probe two patterns only
  python waf_validate.py --host-header shop.example.com -p sql_injection -p xss_script --accept-responsibility
        """
    )

    parser.add_argument("-u", "--base-url", default=Config.base_url,
                        help=f"Endpoint probes are sent to (default: {Config.base_url})")
    host_group = parser.add_mutually_exclusive_group()
    host_group.add_argument("-H", "--host-header", help="Virtual host to impersonate")
    host_group.add_argument("--host-id", help="Take the host header from this host in --hosts-file")
    parser.add_argument("--hosts-file", help="JSON file with protected host records")
    parser.add_argument("--list-hosts", action="store_true", help="List selectable hosts and exit")

    parser.add_argument("--patterns-file", help="JSON file with attack patterns (default: built-in catalog)")
    parser.add_argument("--list-patterns", action="store_true", help="List attack patterns and exit")
    parser.add_argument("-p", "--pattern", action="append", dest="patterns",
                        help="Run only this pattern id (repeatable)")

    parser.add_argument("-e", "--engine", choices=sorted(HTTPEngine.ENGINES), default=Config.http_engine,
                        help="HTTP request engine to use")
    parser.add_argument("-c", "--concurrency", type=int, default=Config.concurrency,
                        help=f"Probes in flight at once (default: {Config.concurrency})")
    parser.add_argument("-t", "--timeout", type=float, default=Config.timeout,
                        help=f"Per-probe timeout in seconds (default: {Config.timeout})")
    parser.add_argument("--blocked-status", type=int, action="append",
                        help="Status code that means blocked (repeatable, replaces the defaults)")
    parser.add_argument("--ssl-verify", action="store_true", help="Verify TLS certificates")
    parser.add_argument("--follow-redirects", action="store_true", help="Follow redirects")

    parser.add_argument("--accept-responsibility", action="store_true",
                        help="Acknowledge that you have authorization to test the target")
    parser.add_argument("-o", "--output", help="Output report file path (.json or text)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)

        if args.list_patterns:
            console.print(get_patterns_table(WAFValidator(config)))
            return 0

        resolver = build_resolver(config, args)
        if args.list_hosts:
            console.print(get_hosts_table(resolver))
            return 0

        display_banner()

        if not args.accept_responsibility:
            console.print("[bold red]You must accept responsibility with --accept-responsibility flag[/]")
            return 1

        return asyncio.run(run_validation(config, resolver.target, args.patterns))

    except KeyboardInterrupt:
        console.print("\n[bold yellow]Interrupted[/]")
        return 130

    except WAFValidatorError as e:
        console.print(f"[bold red]Error:[/] {e.message}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
