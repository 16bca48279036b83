"""
Batch composition from the exploitation and reanalyze buffers.

Phases:
    BOOTSTRAPPING - synthetic pre-training, no buffers involved
    EXPLOITATION  - full batch from the exploitation buffer
    MIXED         - half exploitation, half reanalyze (exploitation first)

A batch is only formed when every buffer the phase needs holds its minimum;
otherwise nothing is drawn and the caller waits. Every drawn target goes back
through its buffer's reuse accounting once the batch is formed.
"""

import logging
from enum import Enum
from typing import List, Optional

import numpy as np

from learner.training.replay_buffer import ReplayBuffer
from learner.training.target import Target

logger = logging.getLogger(__name__)


class TrainingPhase(Enum):
    """Training phase of the scheduler."""

    BOOTSTRAPPING = "bootstrapping"
    EXPLOITATION = "exploitation"
    MIXED = "mixed"


class BatchComposer:
    """
    Draws fixed-size training batches from one or two replay buffers.
    """

    def __init__(
        self,
        exploitation: ReplayBuffer,
        reanalyze: ReplayBuffer,
        batch_size: int,
        min_exploitation_len: int,
        min_reanalyze_len: int,
    ):
        """
        Args:
            exploitation: Buffer fed by the self-play stream
            reanalyze: Buffer fed by the reanalyze stream
            batch_size: Targets per batch (must be even for the mixed phase)
            min_exploitation_len: Exploitation targets required before drawing
            min_reanalyze_len: Reanalyze targets required before drawing (mixed)
        """
        if batch_size <= 0 or batch_size % 2 != 0:
            raise ValueError(f"batch_size must be positive and even, got {batch_size}")
        if min_exploitation_len < batch_size:
            raise ValueError(
                f"min_exploitation_len ({min_exploitation_len}) must be at least "
                f"batch_size ({batch_size})"
            )
        if min_reanalyze_len < batch_size // 2:
            raise ValueError(
                f"min_reanalyze_len ({min_reanalyze_len}) must be at least "
                f"half the batch size ({batch_size // 2})"
            )

        self.exploitation = exploitation
        self.reanalyze = reanalyze
        self.batch_size = batch_size
        self.min_exploitation_len = min_exploitation_len
        self.min_reanalyze_len = min_reanalyze_len

    def is_ready(self, phase: TrainingPhase) -> bool:
        """
        Check whether a batch can be composed in the given phase.

        The reanalyze buffer is only consulted in the mixed phase.
        """
        if phase == TrainingPhase.BOOTSTRAPPING:
            raise ValueError("Batches are not composed from buffers while bootstrapping")

        if not self.exploitation.is_ready(self.min_exploitation_len):
            return False
        if phase == TrainingPhase.MIXED:
            return self.reanalyze.is_ready(self.min_reanalyze_len)
        return True

    def compose(
        self,
        phase: TrainingPhase,
        rng: np.random.Generator,
    ) -> Optional[List[Target]]:
        """
        Draw one training batch.

        Args:
            phase: EXPLOITATION or MIXED
            rng: Random generator used for shuffling

        Returns:
            Exactly batch_size targets, or None if the required buffers do not
            hold enough targets (nothing is drawn in that case)
        """
        if not self.is_ready(phase):
            return None

        if phase == TrainingPhase.MIXED:
            half = self.batch_size // 2
            exploitation_drawn = self.exploitation.draw(half, rng)
            reanalyze_drawn = self.reanalyze.draw(half, rng)
        else:
            exploitation_drawn = self.exploitation.draw(self.batch_size, rng)
            reanalyze_drawn = []

        batch = [t.target for t in exploitation_drawn]
        batch.extend(t.target for t in reanalyze_drawn)

        # Reuse accounting happens once the batch is formed
        self.exploitation.reinsert(exploitation_drawn)
        self.reanalyze.reinsert(reanalyze_drawn)

        return batch
