"""Subprocess helpers shared by the command-line backed providers."""
from __future__ import annotations

import logging
import shlex
import subprocess
from typing import BinaryIO, Callable, Optional, Sequence

LOGGER = logging.getLogger("zfsbackup.commands")


class CommandError(Exception):
    """Raised when a command cannot be started or exits non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command {shlex.join(self.argv)!r} exited {returncode}: {stderr.strip()}")


def run_command(
    argv: Sequence[str],
    *,
    input: Optional[bytes] = None,
    stdin: Optional[BinaryIO] = None,
    timeout: Optional[float] = None,
) -> bytes:
    """Run *argv* to completion and return its stdout; raise :class:`CommandError` on failure."""

    LOGGER.debug("exec %s", shlex.join(argv))
    try:
        result = subprocess.run(
            list(argv),
            input=input,
            stdin=stdin if input is None else None,
            capture_output=True,
            check=False,
            timeout=timeout,
        )
    except OSError as exc:
        raise CommandError(argv, 127, str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandError(argv, 124, f"timed out after {timeout}s") from exc
    if result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stderr.decode("utf-8", errors="replace"))
    return result.stdout


Runner = Callable[..., bytes]


class ProcessStage:
    """A running pipeline stage backed by :class:`subprocess.Popen`."""

    def __init__(self, name: str, process: subprocess.Popen) -> None:
        self.name = name
        self._process = process

    @property
    def stdout(self) -> BinaryIO:
        return self._process.stdout  # type: ignore[return-value]

    @property
    def pid(self) -> int:
        return self._process.pid

    def wait(self) -> int:
        return self._process.wait()

    def terminate(self) -> None:
        if self._process.poll() is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass


def spawn_stage(name: str, argv: Sequence[str], *, stdin: Optional[BinaryIO] = None) -> ProcessStage:
    """Start *argv* with its stdout piped; raise ``OSError`` if it cannot start."""

    LOGGER.debug("spawn %s: %s", name, shlex.join(argv))
    process = subprocess.Popen(list(argv), stdin=stdin, stdout=subprocess.PIPE)
    return ProcessStage(name, process)


Spawner = Callable[..., ProcessStage]

__all__ = ["CommandError", "ProcessStage", "Runner", "Spawner", "run_command", "spawn_stage"]
