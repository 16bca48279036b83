"""
Training Scheduler

This module implements the TrainingScheduler, the top-level control loop of
the learner. It owns every piece of mutable training state (step count,
stream cursors, buffers) so the loop can be driven step by step in tests with
fake models, streams and sleep functions.

States:
    BOOTSTRAPPING  only when resuming from step 0 (no prior training)
    EXPLOITATION   model_steps < reanalyze_activation_steps
    MIXED          model_steps >= reanalyze_activation_steps (irreversible)

Training Loop:
    resume()                        load latest checkpoint or bootstrap
    while True:                     no terminal state; stopped externally
        1. Ingest new targets from both streams, truncate buffers
        2. Compose a batch for the current phase
        3a. Enough targets: train one step, advance model_steps,
            save latest / numbered checkpoints on their cadences
        3b. Not enough: sleep wait_seconds and try again (no step taken)

Checkpoint cadence (after the step counter is advanced):
    model_steps % steps_per_save == 0        -> model_latest.pt
    model_steps % steps_per_checkpoint == 0  -> model_XXXXXX.pt + optimizer reset
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional, TYPE_CHECKING

import numpy as np

from learner.config import LearnerConfig
from learner.game.base import Environment
from learner.training.batching import BatchComposer, TrainingPhase
from learner.training.bootstrap import Bootstrapper
from learner.training.checkpoint import CheckpointManager
from learner.training.replay_buffer import ReplayBuffer
from learner.training.stream import TargetStream

if TYPE_CHECKING:
    from learner.network.model import Model

logger = logging.getLogger(__name__)


class TrainingScheduler:
    """
    Drives ingestion, batching, training and checkpointing.
    """

    def __init__(
        self,
        model: "Model",
        env: Environment,
        config: LearnerConfig,
        rng: Optional[np.random.Generator] = None,
        checkpoints: Optional[CheckpointManager] = None,
        bootstrapper: Optional[Bootstrapper] = None,
        exploitation_stream: Optional[TargetStream] = None,
        reanalyze_stream: Optional[TargetStream] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the scheduler.

        Components not passed in are built from config, reading and writing
        inside config.directory.

        Args:
            model: Model to train
            env: Environment (used to parse streams and for bootstrap games)
            config: Learner configuration
            rng: Random generator for sampling and bootstrap games
            checkpoints: Checkpoint manager
            bootstrapper: Bootstrap phase runner
            exploitation_stream: Self-play target stream
            reanalyze_stream: Reanalyze target stream
            sleep: Function used to wait when targets are insufficient
        """
        self.model = model
        self.env = env
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.sleep = sleep

        directory = Path(config.directory)

        self.checkpoints = checkpoints or CheckpointManager(
            directory, model, prefix=config.checkpoint_prefix
        )
        self.bootstrapper = bootstrapper or Bootstrapper(
            env=env,
            model=model,
            num_targets=config.bootstrap_targets,
            num_steps=config.bootstrap_steps,
            batch_size=config.batch_size,
            output_path=directory / config.bootstrap_file,
        )
        self.exploitation_stream = exploitation_stream or TargetStream(
            directory / config.exploitation_file, env
        )
        self.reanalyze_stream = reanalyze_stream or TargetStream(
            directory / config.reanalyze_file, env
        )

        self.exploitation_buffer = ReplayBuffer(
            "exploitation", config.max_exploitation_buffer_len
        )
        self.reanalyze_buffer = ReplayBuffer(
            "reanalyze", config.max_reanalyze_buffer_len
        )
        self.composer = BatchComposer(
            exploitation=self.exploitation_buffer,
            reanalyze=self.reanalyze_buffer,
            batch_size=config.batch_size,
            min_exploitation_len=config.min_exploitation_buffer_len,
            min_reanalyze_len=config.min_reanalyze_buffer_len,
        )

        # Training state
        self.model_steps = 0
        self.bootstrapping = False
        self.last_metrics: Dict[str, float] = {}
        self._logged_mixed = False

    @property
    def phase(self) -> TrainingPhase:
        """Current training phase (derived from model_steps)."""
        if self.bootstrapping:
            return TrainingPhase.BOOTSTRAPPING
        if self.model_steps >= self.config.reanalyze_activation_steps:
            return TrainingPhase.MIXED
        return TrainingPhase.EXPLOITATION

    def resume(self) -> int:
        """
        Restore the most advanced checkpoint, or start and bootstrap a new model.

        Returns:
            model_steps to continue from
        """
        latest = self.checkpoints.find_latest()
        if latest is not None:
            steps, path = latest
            logger.info(f"Resuming at {steps} steps with {path}")
            self.model_steps = self.checkpoints.load(path)
        else:
            logger.info("Creating new model")
            self.model_steps = 0
            self.checkpoints.save(self.model_steps)

        if self.model_steps == 0:
            self.bootstrap()

        return self.model_steps

    def bootstrap(self):
        """Run the bootstrap phase and checkpoint its result."""
        logger.info("No prior training found, bootstrapping from random games")
        self.bootstrapping = True
        try:
            self.model_steps += self.bootstrapper.run(self.rng)
        finally:
            self.bootstrapping = False
        self.checkpoints.save(self.model_steps)

    def _ingest(
        self,
        stream: TargetStream,
        buffer: ReplayBuffer,
        uses_available: int,
        label: str,
        error_level: int = logging.ERROR,
    ):
        try:
            targets = stream.read_new()
        except OSError as e:
            logger.log(error_level, f"Cannot read {label} targets: {e}")
            targets = []

        added = buffer.extend(targets, uses_available, self.model_steps)
        if added:
            logger.debug(f"Added {added} {label} targets")
        buffer.truncate()

    def fill_buffers(self):
        """
        Read new targets into both buffers and enforce their capacities.

        Reanalyze targets are buffered in every phase but only drawn from in
        the mixed phase. Before that, an unreadable reanalyze stream is normal
        (no reanalyze workers yet) and only logged at debug level.
        """
        start = time.time()
        mixed = self.phase == TrainingPhase.MIXED

        self._ingest(
            self.exploitation_stream,
            self.exploitation_buffer,
            self.config.exploitation_uses_available,
            "selfplay",
        )
        self._ingest(
            self.reanalyze_stream,
            self.reanalyze_buffer,
            self.config.reanalyze_uses_available,
            "reanalyze",
            error_level=logging.ERROR if mixed else logging.DEBUG,
        )

        logger.debug(f"It took {time.time() - start:.3f}s to add targets to buffers")

    def buffer_summary(self) -> str:
        """Buffer sizes and fill levels for log lines."""
        parts = []
        for buffer in (self.exploitation_buffer, self.reanalyze_buffer):
            stats = buffer.get_statistics()
            parts.append(
                f"{buffer.name.capitalize()} buffer size: {stats['size']} "
                f"({stats['utilization']:.0f}% full)"
            )
        return ", ".join(parts)

    def step(self) -> bool:
        """
        Run one scheduler iteration.

        Returns:
            True if a training step was taken, False if it waited for targets
        """
        phase = self.phase
        if phase == TrainingPhase.MIXED and not self._logged_mixed:
            logger.info(f"Reanalyze targets enabled at {self.model_steps} steps")
            self._logged_mixed = True

        self.fill_buffers()

        batch = self.composer.compose(phase, self.rng)
        if batch is None:
            logger.info(
                f"Not enough targets. Waiting {self.config.wait_seconds}s. "
                f"Training steps: {self.model_steps}, {self.buffer_summary()}"
            )
            self.sleep(self.config.wait_seconds)
            return False

        self.last_metrics = self.model.train_step(batch)
        self.model_steps += 1

        if self.model_steps % self.config.steps_per_save == 0:
            logger.info(
                f"Saving model. Training steps: {self.model_steps}, {self.buffer_summary()}"
            )
            self.checkpoints.save_latest(self.model_steps)

        if self.model_steps % self.config.steps_per_checkpoint == 0:
            self.checkpoints.save(self.model_steps)
            self.model.reset_optimizer_state()

        return True

    def run(self):
        """
        Resume, then train forever.

        There is no terminal state; the loop ends only when the process is
        stopped (or a checkpoint write fails).
        """
        self.resume()
        logger.info(f"Starting training loop at {self.model_steps} steps ({self.phase.value})")
        while True:
            self.step()
