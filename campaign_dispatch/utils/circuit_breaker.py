"""Per-chunk failure breaker for the dispatch loop (process-local)."""
from __future__ import annotations

from dataclasses import dataclass

from campaign_dispatch.config import DISPATCH_SETTINGS


@dataclass
class ChunkBreaker:
    """Tracks outcomes inside one chunk and trips on a failure storm.

    The breaker trips once failures reach ``ratio`` of the chunk size; a
    tripped chunk aborts the remaining chunks of the current pass.
    """
    chunk_size: int
    ratio: float = float(DISPATCH_SETTINGS["failure_abort_ratio"])
    failures: int = 0
    successes: int = 0

    @property
    def threshold(self) -> float:
        return self.chunk_size * self.ratio

    @property
    def tripped(self) -> bool:
        return self.chunk_size > 0 and self.failures >= self.threshold

    def record_success(self) -> None:
        self.successes += 1

    def record_failure(self) -> None:
        self.failures += 1

    def snapshot(self) -> dict[str, object]:
        return {
            "chunk_size": self.chunk_size,
            "failures": self.failures,
            "successes": self.successes,
            "threshold": self.threshold,
            "tripped": self.tripped,
        }


__all__ = ["ChunkBreaker"]
