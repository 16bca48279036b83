"""
Training package for the learner.

This package contains the offline training loop:
- Target records and their stream encoding
- Incremental readers for the self-play and reanalyze streams
- Replay buffers with reuse accounting and freshness-first truncation
- Batch composition per training phase
- Bootstrap pre-training from random games
- Checkpoint discovery and persistence
- The scheduler tying them together

Main Components:
    - TargetStream: Returns targets appended since the previous poll
    - ReplayBuffer: Stores targets and hands them out a fixed number of times
    - BatchComposer: Draws exploitation-only or half/half mixed batches
    - Bootstrapper: Pre-trains a fresh model on random-play targets
    - CheckpointManager: Finds, loads and atomically writes checkpoints
    - TrainingScheduler: Resumes, then trains forever
"""

from learner.training.target import Target, TargetParseError, parse_target, target_to_line
from learner.training.stream import TargetStream
from learner.training.replay_buffer import BufferedTarget, ReplayBuffer
from learner.training.batching import BatchComposer, TrainingPhase
from learner.training.bootstrap import Bootstrapper
from learner.training.checkpoint import CheckpointManager
from learner.training.scheduler import TrainingScheduler

__all__ = [
    "Target",
    "TargetParseError",
    "parse_target",
    "target_to_line",
    "TargetStream",
    "BufferedTarget",
    "ReplayBuffer",
    "BatchComposer",
    "TrainingPhase",
    "Bootstrapper",
    "CheckpointManager",
    "TrainingScheduler",
]
