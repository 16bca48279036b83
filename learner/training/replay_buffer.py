"""
Replay Buffer for Streamed Targets

This module implements the bounded in-memory buffers that sit between the
target streams and the batch composer. There is one buffer per stream
(exploitation and reanalyze).

Purpose: Hold recent targets and hand them out for a limited number of uses

Key Features:
    - Reuse accounting (each target may be drawn a fixed number of times)
    - Freshness-first truncation when over capacity
    - Destructive sampling without replacement within a batch

Design:
    - Storage: List of BufferedTarget (unordered)
    - Truncation: Sort by (model_steps, uses_available) descending and keep
      the first `capacity` records; newer ingestion wins, then less-used
    - Sampling: Full uniform shuffle, then take `count` records from the end.
      O(n) per draw, acceptable for configured capacities
    - Persistence: None (buffers are rebuilt from the streams after restart)

Buffered Target Structure:
    BufferedTarget(
        target=Target,          # Immutable training target
        uses_available=int,     # Draws left before the target is discarded
        model_steps=int,        # Training steps when the target was ingested
    )

Operations:
    - extend(targets, uses_available, model_steps): Ingest new targets
    - truncate(): Enforce capacity
    - draw(count, rng): Remove `count` random records
    - reinsert(drawn): Return records that still have uses left
    - __len__(): Current size
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from learner.training.target import Target

logger = logging.getLogger(__name__)


@dataclass
class BufferedTarget:
    """A target together with its reuse and recency metadata."""

    target: Target
    uses_available: int
    model_steps: int

    def reuse(self) -> Optional["BufferedTarget"]:
        """
        Consume one use after the target was drawn into a batch.

        Returns:
            Self with one use fewer if uses remain, otherwise None
        """
        if self.uses_available > 1:
            self.uses_available -= 1
            return self
        return None


class ReplayBuffer:
    """
    Capacity-bounded buffer of targets from one stream.

    Owns eviction (truncate) and sampling (draw/reinsert). A target seeded
    with U uses takes part in exactly U batches unless truncation evicts it
    first.
    """

    def __init__(self, name: str, capacity: int):
        """
        Initialize replay buffer.

        Args:
            name: Stream name used in log messages ('exploitation', 'reanalyze')
            capacity: Maximum number of targets kept after truncate()
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")

        self.name = name
        self.capacity = capacity
        self.buffer: List[BufferedTarget] = []

    def extend(
        self,
        targets: Iterable[Target],
        uses_available: int,
        model_steps: int,
    ) -> int:
        """
        Add newly read targets to the buffer.

        Capacity is not enforced here; call truncate() after ingestion.

        Args:
            targets: Targets to add
            uses_available: Number of draws each target is allowed
            model_steps: Current training step count (recency key)

        Returns:
            Number of targets added
        """
        if uses_available <= 0:
            raise ValueError(f"uses_available must be positive, got {uses_available}")

        before = len(self.buffer)
        self.buffer.extend(
            BufferedTarget(target, uses_available, model_steps) for target in targets
        )
        return len(self.buffer) - before

    def truncate(self) -> int:
        """
        Discard the lowest-priority targets if over capacity.

        Priority is (model_steps, uses_available), highest first.

        Returns:
            Number of targets discarded
        """
        if len(self.buffer) <= self.capacity:
            return 0

        logger.info(
            f"Truncating {self.name} buffer because it is too big. {len(self.buffer)}"
        )
        self.buffer.sort(key=lambda t: (t.model_steps, t.uses_available), reverse=True)
        discarded = len(self.buffer) - self.capacity
        del self.buffer[self.capacity:]
        return discarded

    def draw(self, count: int, rng: np.random.Generator) -> List[BufferedTarget]:
        """
        Remove `count` uniformly random targets from the buffer.

        The whole buffer is shuffled first, so no target appears twice in a
        draw and insertion order does not bias the result.

        Args:
            count: Number of targets to draw
            rng: Random generator

        Returns:
            Drawn targets (no longer in the buffer)

        Raises:
            ValueError: If count is negative or larger than the buffer
        """
        if count < 0 or count > len(self.buffer):
            raise ValueError(
                f"Cannot draw {count} targets from {self.name} buffer with "
                f"{len(self.buffer)} targets"
            )

        rng.shuffle(self.buffer)
        split = len(self.buffer) - count
        drawn = self.buffer[split:]
        del self.buffer[split:]
        return drawn

    def reinsert(self, drawn: Iterable[BufferedTarget]) -> int:
        """
        Return drawn targets that still have uses left.

        Args:
            drawn: Targets previously returned by draw()

        Returns:
            Number of targets reinserted
        """
        before = len(self.buffer)
        for buffered in drawn:
            reused = buffered.reuse()
            if reused is not None:
                self.buffer.append(reused)
        return len(self.buffer) - before

    def is_ready(self, min_targets: int) -> bool:
        """
        Check if buffer has enough targets.

        Args:
            min_targets: Minimum targets required

        Returns:
            True if at least min_targets are buffered
        """
        return len(self.buffer) >= min_targets

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get statistics about buffer contents.

        Returns:
            Dictionary with:
            - size: Current number of targets
            - capacity: Maximum capacity
            - utilization: Percentage full (0-100)
            - mean_uses_available: Average remaining uses
            - min_model_steps / max_model_steps: Ingestion step range
        """
        if len(self.buffer) == 0:
            return {
                "size": 0,
                "capacity": self.capacity,
                "utilization": 0.0,
                "mean_uses_available": 0.0,
                "min_model_steps": None,
                "max_model_steps": None,
            }

        uses = np.array([t.uses_available for t in self.buffer])
        steps = [t.model_steps for t in self.buffer]

        return {
            "size": len(self.buffer),
            "capacity": self.capacity,
            "utilization": 100.0 * len(self.buffer) / self.capacity,
            "mean_uses_available": float(uses.mean()),
            "min_model_steps": min(steps),
            "max_model_steps": max(steps),
        }

    def __len__(self) -> int:
        """Get current number of targets in buffer."""
        return len(self.buffer)
