"""Compression stage of the transfer pipeline."""
from __future__ import annotations

from typing import BinaryIO, List, Optional, Sequence

from .commands import ProcessStage, Spawner, spawn_stage


class PigzCompressor:
    """Run ``pigz`` (or any gzip compatible filter) between send and upload."""

    def __init__(
        self,
        command: str = "pigz",
        options: Optional[Sequence[str]] = None,
        *,
        spawner: Spawner = spawn_stage,
    ) -> None:
        self._command = command
        self._options: List[str] = list(options) if options is not None else ["-6"]
        self._spawn = spawner

    @property
    def argv(self) -> List[str]:
        return [self._command, *self._options]

    def attach(self, upstream: BinaryIO) -> ProcessStage:
        stage = self._spawn("compress", self.argv, stdin=upstream)
        # drop our copy so the sender sees SIGPIPE if the compressor dies
        upstream.close()
        return stage


__all__ = ["PigzCompressor"]
