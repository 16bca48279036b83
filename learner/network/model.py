"""
Neural network model for the learner.

The training loop only sees the Model interface:
- predict(states): batched inference -> (policy, value, ube)
- train_step(targets): one optimizer update on a batch of targets
- save(path, model_steps) / load(path): checkpoint persistence
- reset_optimizer_state(): clear accumulated gradients

TorchModel implements it with TargetNet, a small Transformer-based network
with three heads:
    - Policy head: Logits over the action space (illegal actions masked)
    - Value head: Tanh activation for [-1, 1] value estimate
    - UBE head: Squared output for a non-negative uncertainty estimate
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from learner.game.base import Environment
from learner.network.encode import TargetEncoder, TargetTensors
from learner.training.target import Target

logger = logging.getLogger(__name__)


class Model(ABC):
    """Opaque model capability used by the scheduler and bootstrapper."""

    @abstractmethod
    def predict(self, states: Sequence) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Batched inference.

        Returns:
            (policy, value, ube) arrays of shapes (batch, actions), (batch,), (batch,)
        """

    @abstractmethod
    def train_step(self, targets: Sequence[Target]) -> Dict[str, float]:
        """Take one optimizer step on a batch. Returns loss metrics."""

    @abstractmethod
    def reset_optimizer_state(self):
        """Clear accumulated optimizer gradients."""

    @abstractmethod
    def save(self, path: Union[str, Path], model_steps: int):
        """Write a checkpoint to path."""

    @abstractmethod
    def load(self, path: Union[str, Path]) -> Optional[int]:
        """Restore a checkpoint. Returns the stored step count, if any."""


class TargetNet(nn.Module):
    """
    Transformer-based policy/value/uncertainty network.

    Architecture:
        Input (state_size) → Embedding → Transformer → Three Heads
        - Policy head: Logits over action space
        - Value head: Tanh for [-1, 1]
        - UBE head: Square for [0, inf)
    """

    def __init__(
        self,
        state_dim: int,
        action_dim: int,
        embedding_dim: int = 128,
        num_layers: int = 2,
        num_heads: int = 4,
        feedforward_dim: int = 512,
        dropout: float = 0.1,
    ):
        """
        Initialize TargetNet.

        Args:
            state_dim: Dimension of input state vector
            action_dim: Number of action indices
            embedding_dim: Dimension of embedding space
            num_layers: Number of Transformer encoder layers
            num_heads: Number of attention heads
            feedforward_dim: Dimension of feedforward network
            dropout: Dropout rate
        """
        super().__init__()

        self.state_dim = state_dim
        self.action_dim = action_dim
        self.embedding_dim = embedding_dim

        self.input_embedding = nn.Linear(state_dim, embedding_dim)
        self.input_norm = nn.LayerNorm(embedding_dim)

        # Learned positional encoding for the single state token
        self.positional_encoding = nn.Parameter(
            torch.randn(1, 1, embedding_dim) * 0.02
        )

        encoder_layer = nn.TransformerEncoderLayer(
            d_model=embedding_dim,
            nhead=num_heads,
            dim_feedforward=feedforward_dim,
            dropout=dropout,
            batch_first=True,
            activation='relu',
        )
        self.transformer = nn.TransformerEncoder(
            encoder_layer,
            num_layers=num_layers,
        )

        self.policy_fc = nn.Sequential(
            nn.Linear(embedding_dim, embedding_dim),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(embedding_dim, action_dim),
        )

        self.value_fc = nn.Sequential(
            nn.Linear(embedding_dim, 64),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(64, 1),
            nn.Tanh(),
        )

        self.ube_fc = nn.Sequential(
            nn.Linear(embedding_dim, 64),
            nn.ReLU(),
            nn.Linear(64, 1),
        )

        self._init_weights()

    def _init_weights(self):
        """Initialize weights with Xavier initialization."""
        for module in self.modules():
            if isinstance(module, nn.Linear):
                nn.init.xavier_uniform_(module.weight)
                if module.bias is not None:
                    nn.init.zeros_(module.bias)

    def forward(
        self,
        state: torch.Tensor,
        legal_actions_mask: Optional[torch.Tensor] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Forward pass through the network.

        Args:
            state: (batch_size, state_dim) encoded states
            legal_actions_mask: (batch_size, action_dim) bool, True = legal.
                Illegal logits are set to the most negative float.

        Returns:
            policy_logits: (batch_size, action_dim)
            value: (batch_size, 1) in [-1, 1]
            ube: (batch_size, 1) in [0, inf)
        """
        x = self.input_embedding(state)
        x = self.input_norm(x)

        x = x.unsqueeze(1) + self.positional_encoding
        x = self.transformer(x)
        x = x.squeeze(1)

        policy_logits = self.policy_fc(x)
        if legal_actions_mask is not None:
            policy_logits = policy_logits.masked_fill(
                ~legal_actions_mask,
                torch.finfo(policy_logits.dtype).min,
            )

        value = self.value_fc(x)
        ube = self.ube_fc(x).square()

        return policy_logits, value, ube

    def get_num_parameters(self) -> int:
        """Get total number of trainable parameters."""
        return sum(p.numel() for p in self.parameters() if p.requires_grad)


class TorchModel(Model):
    """
    Model implementation backed by TargetNet and Adam.

    Loss Function:
        total_loss = policy_loss + value_loss + ube_loss_weight * ube_loss

        Policy Loss: Cross-entropy between target policy and network policy
        Value Loss: MSE between predicted and target value
        UBE Loss: MSE between predicted and target uncertainty
    """

    def __init__(
        self,
        network: TargetNet,
        env: Environment,
        learning_rate: float = 1e-4,
        weight_decay: float = 0.0,
        ube_loss_weight: float = 0.0,
        device: str = "cpu",
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Args:
            network: Network to train
            env: Environment used to encode targets
            learning_rate: Learning rate for Adam
            weight_decay: L2 regularization weight
            ube_loss_weight: Weight of the uncertainty loss (0 disables it)
            device: Training device ('cpu' or 'cuda')
            rng: Random generator for target augmentation
        """
        self.network = network
        self.device = device
        self.network.to(device)
        self.encoder = TargetEncoder(env, device=device)
        self.ube_loss_weight = ube_loss_weight
        self.rng = rng if rng is not None else np.random.default_rng()

        self.optimizer = torch.optim.Adam(
            self.network.parameters(),
            lr=learning_rate,
            weight_decay=weight_decay,
        )

    def compute_loss(
        self,
        tensors: TargetTensors,
    ) -> Tuple[torch.Tensor, Dict[str, float]]:
        """
        Compute combined loss for an encoded batch.

        Returns:
            total_loss: Combined weighted loss tensor
            loss_dict: Individual loss components as floats
        """
        policy_logits, value, ube = self.network(tensors.input, tensors.mask)

        log_policy = F.log_softmax(policy_logits, dim=1)
        policy_loss = -(tensors.target_policy * log_policy).sum(dim=1).mean()
        value_loss = F.mse_loss(value, tensors.target_value)
        ube_loss = F.mse_loss(ube, tensors.target_ube)

        total_loss = policy_loss + value_loss + self.ube_loss_weight * ube_loss

        loss_dict = {
            'total_loss': total_loss.item(),
            'policy_loss': policy_loss.item(),
            'value_loss': value_loss.item(),
            'ube_loss': ube_loss.item(),
        }

        return total_loss, loss_dict

    def train_step(self, targets: Sequence[Target]) -> Dict[str, float]:
        """
        Perform a single training step.

        Steps:
            1. Encode (and augment) targets
            2. Zero gradients
            3. Compute loss
            4. Backward pass
            5. Gradient clipping (max_norm=1.0)
            6. Optimizer step
        """
        tensors = self.encoder.encode_targets(targets, self.rng)

        self.network.train()
        self.optimizer.zero_grad()

        loss, loss_dict = self.compute_loss(tensors)
        loss.backward()
        torch.nn.utils.clip_grad_norm_(self.network.parameters(), max_norm=1.0)
        self.optimizer.step()

        logger.info(
            f"loss = {loss_dict['total_loss']:.4f}, "
            f"loss_policy = {loss_dict['policy_loss']:.4f}, "
            f"loss_value = {loss_dict['value_loss']:.4f}"
        )

        return loss_dict

    @torch.no_grad()
    def predict(self, states: Sequence) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Batched inference with legal action masking.

        Returns:
            policy: (batch, action_dim) probabilities (0 for illegal actions)
            value: (batch,)
            ube: (batch,)
        """
        self.network.eval()
        inputs = self.encoder.encode_states(states)
        mask = self.encoder.legal_mask(states)

        policy_logits, value, ube = self.network(inputs, mask)
        policy = F.softmax(policy_logits, dim=1)

        return (
            policy.cpu().numpy(),
            value.squeeze(1).cpu().numpy(),
            ube.squeeze(1).cpu().numpy(),
        )

    def reset_optimizer_state(self):
        """Clear accumulated gradients."""
        self.optimizer.zero_grad(set_to_none=True)

    def save(self, path: Union[str, Path], model_steps: int):
        """
        Save model checkpoint.

        Checkpoint contains:
            - model_steps: Training steps completed
            - model_state_dict: Model weights
            - optimizer_state_dict: Optimizer state
        """
        checkpoint = {
            'model_steps': model_steps,
            'model_state_dict': self.network.state_dict(),
            'optimizer_state_dict': self.optimizer.state_dict(),
        }
        torch.save(checkpoint, path)

    def load(self, path: Union[str, Path]) -> Optional[int]:
        """
        Load model checkpoint.

        Returns:
            Training steps stored in the checkpoint (None if absent)

        Raises:
            FileNotFoundError: If checkpoint file doesn't exist
        """
        if not Path(path).exists():
            raise FileNotFoundError(f"Checkpoint not found: {path}")

        checkpoint = torch.load(path, map_location=self.device)

        self.network.load_state_dict(checkpoint['model_state_dict'])
        if 'optimizer_state_dict' in checkpoint:
            self.optimizer.load_state_dict(checkpoint['optimizer_state_dict'])

        return checkpoint.get('model_steps')


def create_model(
    env: Environment,
    learning_rate: float = 1e-4,
    weight_decay: float = 0.0,
    ube_loss_weight: float = 0.0,
    device: str = "cpu",
    seed: Optional[int] = None,
    **kwargs
) -> TorchModel:
    """
    Factory function to create a TorchModel for an environment.

    Args:
        env: Environment whose state/action sizes define the network shape
        learning_rate: Learning rate
        weight_decay: L2 regularization weight
        ube_loss_weight: Weight of the uncertainty loss
        device: Device to place model on
        seed: Seed for weight initialization and augmentation
        **kwargs: Additional arguments passed to TargetNet

    Example:
        >>> model = create_model(TicTacToe(), num_layers=1)
        >>> print(f"Model has {model.network.get_num_parameters():,} parameters")
    """
    if seed is not None:
        torch.manual_seed(seed)

    network = TargetNet(
        state_dim=env.state_size,
        action_dim=env.action_space_size,
        **kwargs
    )
    return TorchModel(
        network=network,
        env=env,
        learning_rate=learning_rate,
        weight_decay=weight_decay,
        ube_loss_weight=ube_loss_weight,
        device=device,
        rng=np.random.default_rng(seed),
    )
