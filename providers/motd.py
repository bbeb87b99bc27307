"""Plain-text status file for login banners (MOTD)."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from backup.summary import format_bytes
from backup.types import RunReport

LOGGER = logging.getLogger("zfsbackup.motd")


def render_status(
    report: RunReport,
    *,
    size_limit: Optional[int] = None,
    summary_lines: int = 15,
) -> str:
    ended = report.finished or report.started
    lines: List[str] = [
        f"ZFS Rclone Stream Backup Status (Run Ended: {ended:%Y-%m-%d %H:%M:%S})",
        f"Overall Status: {report.status.value}",
        f"Script Action: {report.action.value}",
    ]
    size = format_bytes(report.total_remote_size)
    if size_limit:
        size = f"{size} / {format_bytes(size_limit)}"
    lines.append(f"Total Remote Backup Size: {size}")
    for name, outcome in report.datasets.items():
        lines.append("")
        lines.append(f"Dataset: {name}")
        lines.append(f"  {outcome.status_line()}")
    tail = [line for line in report.summary.splitlines() if line.strip()]
    if summary_lines > 0:
        tail = tail[-summary_lines:]
    lines.append("")
    lines.append(f"Summary (last {summary_lines} lines):")
    lines.extend(tail)
    return "\n".join(lines) + "\n"


class MotdStatusPublisher:
    def __init__(self, path: Path, *, size_limit: Optional[int] = None, summary_lines: int = 15) -> None:
        self._path = Path(path)
        self._size_limit = size_limit
        self._summary_lines = summary_lines

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, report: RunReport) -> None:
        """Write the status document atomically; raise ``OSError`` when it cannot be written."""

        content = render_status(report, size_limit=self._size_limit, summary_lines=self._summary_lines)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp, self._path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        LOGGER.info("Status file updated: %s", self._path)


__all__ = ["MotdStatusPublisher", "render_status"]
