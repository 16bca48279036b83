"""
Bootstrap phase: synthetic targets from random self-play.

Runs once, before any external target exists (no checkpoint beyond step 0).

Process:
    1. Play full games choosing uniformly random legal actions
    2. Walk each finished game backward from the terminal state:
       - policy: uniform over the state's legal actions
       - value: terminal outcome, negated once per ply
       - ube: fixed at 1.0
    3. Shuffle the whole pool once
    4. Write the pool to the diagnostic file (targets-initial.txt)
    5. Train on consecutive, non-overlapping chunks of batch_size

Value back-propagation example (player to move at terminal loses, -1):
    terminal  -1  (not a target)
    ply n     +1  (the winning move was made here)
    ply n-1   -1
    ...
"""

import logging
import time
from pathlib import Path
from typing import List, Union, TYPE_CHECKING

import numpy as np

from learner.game.base import Environment
from learner.training.target import Target, target_to_line

if TYPE_CHECKING:
    from learner.network.model import Model

logger = logging.getLogger(__name__)

# Uncertainty assigned to every synthetic target
BOOTSTRAP_UBE = 1.0


class Bootstrapper:
    """
    Generates random-play targets and pre-trains the model on them.
    """

    def __init__(
        self,
        env: Environment,
        model: "Model",
        num_targets: int,
        num_steps: int,
        batch_size: int,
        output_path: Union[str, Path],
    ):
        """
        Args:
            env: Environment to play
            model: Model to pre-train
            num_targets: Minimum number of synthetic targets to generate
            num_steps: Training steps to take on the pool
            batch_size: Targets per training step
            output_path: Diagnostic file receiving the whole pool
        """
        if num_targets < num_steps * batch_size:
            raise ValueError(
                f"num_targets ({num_targets}) must cover num_steps * batch_size "
                f"({num_steps * batch_size})"
            )

        self.env = env
        self.model = model
        self.num_targets = num_targets
        self.num_steps = num_steps
        self.batch_size = batch_size
        self.output_path = Path(output_path)

    def play_game(self, rng: np.random.Generator) -> List[Target]:
        """
        Play one uniformly random game and label its states.

        Returns:
            Targets in reverse play order (last ply first)
        """
        state = self.env.initial_state(rng)
        states = []
        outcome = self.env.terminal(state)
        while outcome is None:
            states.append(state)
            actions = self.env.legal_actions(state)
            action = actions[int(rng.integers(len(actions)))]
            state = self.env.step(state, action)
            outcome = self.env.terminal(state)

        targets = []
        value = outcome
        for state in reversed(states):
            actions = self.env.legal_actions(state)
            prob = 1.0 / len(actions)
            value = -value
            targets.append(Target(
                state=state,
                policy=tuple((action, prob) for action in actions),
                value=float(value),
                ube=BOOTSTRAP_UBE,
            ))
        return targets

    def generate_targets(self, rng: np.random.Generator) -> List[Target]:
        """
        Play random games until at least num_targets targets exist.

        Returns:
            Shuffled pool of targets
        """
        targets = []
        num_games = 0
        while len(targets) < self.num_targets:
            targets.extend(self.play_game(rng))
            num_games += 1

        rng.shuffle(targets)
        logger.info(f"Generated {len(targets):,} bootstrap targets from {num_games:,} games")
        return targets

    def write_targets(self, targets: List[Target]):
        """Write the pool to the diagnostic file (overwriting it)."""
        with open(self.output_path, "w", encoding="utf-8") as f:
            for target in targets:
                f.write(target_to_line(target, self.env) + "\n")
        logger.info(f"Wrote bootstrap targets to {self.output_path}")

    def run(self, rng: np.random.Generator) -> int:
        """
        Generate, persist and train on the bootstrap pool.

        Returns:
            Number of training steps taken
        """
        start = time.time()
        targets = self.generate_targets(rng)
        self.write_targets(targets)

        for step in range(self.num_steps):
            begin = step * self.batch_size
            self.model.train_step(targets[begin:begin + self.batch_size])

        logger.info(
            f"Bootstrap finished: {self.num_steps} steps in {time.time() - start:.1f}s"
        )
        return self.num_steps
