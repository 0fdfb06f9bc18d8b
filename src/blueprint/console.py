"""CLI formatting helpers: dbt-style layout, colors, and run summaries."""
from __future__ import annotations

import os
import sys

from rich.console import Console
from rich.table import Table

from blueprint.context.changes import HashCache
from blueprint.context.profiler import ProfileSummary

_CONSOLE = Console()
_CONSOLE_ERR = Console(stderr=True)
_CHECK_WIDTH = 50

_STATUS_STYLES = {"PASS": "green", "OK": "green", "FAIL": "red", "WARN": "yellow", "SKIP": "dim"}


def _use_color() -> bool:
    """Return False if NO_COLOR is set or stdout is not a TTY."""
    if os.environ.get("NO_COLOR"):
        return False
    return sys.stdout.isatty()


def _format_check(name: str, status: str, width: int = _CHECK_WIDTH) -> str:
    """Build padded line like 'summary.md...................... [OK]'."""
    status_str = f" [{status}]"
    padding_len = max(0, width - len(name) - len(status_str))
    return f"{name}{'.' * padding_len}{status_str}"


def _print(line: str, style: str | None = None, *, err: bool = False) -> None:
    console = _CONSOLE_ERR if err else _CONSOLE
    if style and _use_color():
        console.print(line, style=style, highlight=False, markup=False, soft_wrap=True)
    else:
        console.print(line, highlight=False, markup=False, soft_wrap=True)


def print_check(name: str, status: str) -> None:
    """Emit one padded status line."""
    _print(_format_check(name, status), _STATUS_STYLES.get(status))


def print_section(title: str) -> None:
    """Print a section header."""
    _CONSOLE.print(f"\n=== {title} ===", highlight=False, markup=False, soft_wrap=True)


def print_info(msg: str) -> None:
    """Print an info line (plain or dim)."""
    _print(msg, "dim")


def print_status(status: str, message: str, *, err: bool = False) -> None:
    """Print a status line (for non-check contexts, e.g. errors)."""
    _print(f"[{status}] {message}", _STATUS_STYLES.get(status), err=err)


def print_summary(summary: ProfileSummary) -> None:
    """Print the profiling run summary and any errors."""
    print_section("Profiling summary")
    print_check("Enriched", str(summary.successful))
    print_check("Fallback", str(summary.fallback))
    print_check("Failed", str(summary.failed))
    print_check("Skipped", str(summary.skipped))
    print_info(f"Total cost: ${summary.total_cost:.4f}, total time: {summary.total_time_s:.1f}s")

    if summary.errors:
        print_section("Errors")
        for error in summary.errors:
            suffix = " (fallback written)" if error.fallback_used else ""
            print_status("WARN" if error.fallback_used else "FAIL", f"{error.model_name} [{error.error_type}] {error.error}{suffix}")

    line = f"{summary.profiled}/{summary.total} tables profiled"
    _print(line, "red" if summary.failed else "green")


def print_cache(cache: HashCache) -> None:
    """Render the hash cache as a table."""
    print_info(f"Last sync: {cache.last_sync or 'never'}")
    if not cache.models:
        print_info("No models recorded yet.")
        return
    table = Table(show_header=True, header_style="bold" if _use_color() else None)
    table.add_column("Model")
    table.add_column("Warehouse table")
    table.add_column("Last profiled")
    table.add_column("Profile")
    for name in sorted(cache.models):
        record = cache.models[name]
        table.add_row(name, record.warehouse_table, record.last_profiled, record.profile_path)
    _CONSOLE.print(table)
