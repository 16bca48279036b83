"""
Target encoding for neural network training.

This module turns environment states and training targets into the tensors
the network consumes. All game knowledge comes from the Environment:

    input          (batch, state_size)         env.encode_state(state)
    mask           (batch, action_space_size)  True for actions in the policy
    target_policy  (batch, action_space_size)  policy probabilities by index
    target_value   (batch, 1)                  target.value
    target_ube     (batch, 1)                  target.ube

Each target is passed through env.augment() before encoding, so games with
symmetries see a random symmetric copy every time a target is used.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import torch

from learner.game.base import Environment
from learner.training.target import Target


@dataclass
class TargetTensors:
    """Network inputs and training targets for one batch."""

    input: torch.Tensor
    mask: torch.Tensor
    target_policy: torch.Tensor
    target_value: torch.Tensor
    target_ube: torch.Tensor

    def __len__(self) -> int:
        return self.input.shape[0]


class TargetEncoder:
    """
    Encodes states and targets into tensors for one environment.
    """

    def __init__(self, env: Environment, device: str = "cpu"):
        """
        Args:
            env: Environment providing feature encoding and action indices
            device: Device to place tensors on ('cpu' or 'cuda')
        """
        self.env = env
        self.device = device

    def encode_states(self, states: Sequence) -> torch.Tensor:
        """
        Encode a batch of states.

        Returns:
            (batch_size, state_size) float tensor
        """
        features = np.stack([self.env.encode_state(state) for state in states])
        return torch.from_numpy(features).float().to(self.device)

    def legal_mask(self, states: Sequence) -> torch.Tensor:
        """
        Build legal action masks for a batch of states.

        Returns:
            (batch_size, action_space_size) bool tensor, True = legal
        """
        mask = np.zeros((len(states), self.env.action_space_size), dtype=bool)
        for row, state in enumerate(states):
            for action in self.env.legal_actions(state):
                mask[row, self.env.action_index(action)] = True
        return torch.from_numpy(mask).to(self.device)

    def encode_targets(
        self,
        targets: Sequence[Target],
        rng: np.random.Generator,
    ) -> TargetTensors:
        """
        Encode a batch of targets (augmenting each one).

        Args:
            targets: Training targets
            rng: Random generator for augmentation

        Returns:
            TargetTensors for the batch
        """
        batch_size = len(targets)
        action_size = self.env.action_space_size

        inputs = np.zeros((batch_size, self.env.state_size), dtype=np.float32)
        masks = np.zeros((batch_size, action_size), dtype=bool)
        policies = np.zeros((batch_size, action_size), dtype=np.float32)
        values = np.zeros((batch_size, 1), dtype=np.float32)
        ubes = np.zeros((batch_size, 1), dtype=np.float32)

        for row, target in enumerate(targets):
            target = self.env.augment(target, rng)
            inputs[row] = self.env.encode_state(target.state)
            for action, prob in target.policy:
                index = self.env.action_index(action)
                masks[row, index] = True
                policies[row, index] = prob
            values[row, 0] = target.value
            ubes[row, 0] = target.ube

        return TargetTensors(
            input=torch.from_numpy(inputs).to(self.device),
            mask=torch.from_numpy(masks).to(self.device),
            target_policy=torch.from_numpy(policies).to(self.device),
            target_value=torch.from_numpy(values).to(self.device),
            target_ube=torch.from_numpy(ubes).to(self.device),
        )
