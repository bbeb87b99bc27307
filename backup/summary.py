"""Render a finished run into human readable text."""
from __future__ import annotations

import logging
import socket
from typing import Iterable, List, Optional

from .logs import RunEvent
from .types import RunReport, RunStatus

DETAIL_LEVELS = ("minimal", "standard", "verbose")

_TITLE = "ZFS Rclone Stream Backup"


def _hostname() -> str:
    try:
        return socket.getfqdn() or socket.gethostname()
    except OSError:
        return "localhost"


def format_bytes(value: Optional[int]) -> str:
    if value is None:
        return "N/A"
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(size) < 1024 or unit == "TiB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{value} B"


def headline(report: RunReport, host: Optional[str] = None) -> str:
    return f"{_TITLE} ({report.action.value}) status: {report.status.value} on {host or _hostname()}."


def subject_for(report: RunReport) -> str:
    if report.status is RunStatus.INIT_FAILURE:
        return f"Script Init FAILED - {report.status.value}"
    if report.status is RunStatus.SKIPPED_COOLDOWN:
        return f"Run Skipped - {report.status.value}"
    return f"Run Finished - {report.status.value}"


def _event_lines(events: Iterable[RunEvent], detail_level: str) -> List[str]:
    lines: List[str] = []
    for event in events:
        if detail_level == "minimal" and event.level < logging.WARNING:
            continue
        lines.append(event.render())
    return lines


def render_summary(
    report: RunReport,
    events: Iterable[RunEvent],
    *,
    detail_level: str = "standard",
    log_file: Optional[str] = None,
    host: Optional[str] = None,
) -> str:
    """Return the summary text for *report*.

    ``minimal`` keeps the headline and warning/error events, ``standard`` adds
    every summarized event and ``verbose`` also lists per-dataset status and
    verification results.
    """

    if detail_level not in DETAIL_LEVELS:
        detail_level = "standard"
    parts: List[str] = [headline(report, host), "", "Summary:"]
    parts.extend(_event_lines(events, detail_level))
    if detail_level == "verbose":
        if report.datasets:
            parts.append("")
            parts.append("Datasets:")
            for name, outcome in report.datasets.items():
                parts.append(f"  {name}: {outcome.status_line()}")
        if report.verification is not None:
            parts.append("")
            parts.append("Verification:")
            for result in report.verification.results:
                state = "OK" if result.ok else "FAILED"
                parts.append(f"  {result.dataset} set {result.set_id or '-'}: {state} ({len(result.files_checked)} file(s))")
                parts.extend(f"    {error}" for error in result.errors)
    if detail_level != "minimal" and report.total_remote_size is not None:
        parts.append(f"Total remote backup size: {format_bytes(report.total_remote_size)}")
    if report.duration_seconds is not None:
        parts.append(f"Total script execution time: {int(report.duration_seconds)} seconds.")
    if log_file:
        parts.append(f"Full log: {log_file}")
    return "\n".join(parts)


__all__ = ["DETAIL_LEVELS", "format_bytes", "headline", "render_summary", "subject_for"]
