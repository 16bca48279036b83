"""
Learner Configuration System

Centralized configuration for the offline training loop.
"""

import json
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional


@dataclass
class LearnerConfig:
    """Configuration for the learner."""

    # Directory holding target streams and checkpoints
    directory: str = "."
    environment: str = "tictactoe"

    # Hardware settings
    device: str = 'cuda'

    # Random seed (None = draw one at startup and log it)
    seed: Optional[int] = None

    # Training settings
    batch_size: int = 128
    learning_rate: float = 1e-4
    weight_decay: float = 0.0
    ube_loss_weight: float = 0.0  # Uncertainty head is not trained by default

    # Checkpointing
    steps_per_save: int = 10  # Rolling "latest" checkpoint
    steps_per_checkpoint: int = 1000  # Numbered checkpoint + optimizer reset
    checkpoint_prefix: str = "model"

    # Bootstrap (random self-play pre-training)
    bootstrap_targets: int = 128 * 2_000
    bootstrap_steps: int = 1_000

    # Buffers
    reanalyze_activation_steps: int = 5_000
    min_exploitation_buffer_len: int = 2_000
    min_reanalyze_buffer_len: int = 64
    max_exploitation_buffer_len: int = 10_000
    max_reanalyze_buffer_len: int = 10_000
    exploitation_uses_available: int = 1
    reanalyze_uses_available: int = 1

    # Seconds to wait when buffers hold too few targets
    wait_seconds: float = 30.0

    # Stream and diagnostic files (relative to directory)
    exploitation_file: str = "targets-selfplay.txt"
    reanalyze_file: str = "targets-reanalyze.txt"
    bootstrap_file: str = "targets-initial.txt"

    # Network settings
    embedding_dim: int = 128
    num_layers: int = 2
    num_heads: int = 4
    dropout: float = 0.1

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert config to dictionary.

        Returns:
            Dictionary representation of config
        """
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'LearnerConfig':
        """
        Create config from dictionary.

        Args:
            config_dict: Dictionary of configuration values

        Returns:
            LearnerConfig instance
        """
        # Filter out keys that aren't valid config fields
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}
        filtered_dict = {k: v for k, v in config_dict.items() if k in valid_keys}
        return cls(**filtered_dict)

    @classmethod
    def from_file(cls, filepath: str) -> 'LearnerConfig':
        """
        Load config from JSON file.

        Args:
            filepath: Path to JSON config file

        Returns:
            LearnerConfig instance
        """
        with open(filepath, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def save(self, filepath: str):
        """
        Save config to JSON file.

        Args:
            filepath: Path to save config to
        """
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def validate(self) -> bool:
        """
        Validate configuration values.

        Returns:
            True if config is valid

        Raises:
            ValueError: If config values are invalid
        """
        positive_fields = (
            'batch_size', 'steps_per_save', 'steps_per_checkpoint',
            'max_exploitation_buffer_len', 'max_reanalyze_buffer_len',
            'exploitation_uses_available', 'reanalyze_uses_available',
            'embedding_dim', 'num_layers', 'num_heads',
        )
        for name in positive_fields:
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if self.batch_size % 2 != 0:
            raise ValueError(
                f"batch_size must be even (mixed batches are split in half), got {self.batch_size}"
            )

        if self.learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )

        if self.weight_decay < 0 or self.ube_loss_weight < 0:
            raise ValueError("weight_decay and ube_loss_weight must be non-negative")

        if self.bootstrap_steps < 0 or self.reanalyze_activation_steps < 0:
            raise ValueError(
                "bootstrap_steps and reanalyze_activation_steps must be non-negative"
            )

        if self.bootstrap_targets < self.bootstrap_steps * self.batch_size:
            raise ValueError(
                f"bootstrap_targets ({self.bootstrap_targets}) must be at least "
                f"bootstrap_steps * batch_size ({self.bootstrap_steps * self.batch_size})"
            )

        if self.min_exploitation_buffer_len < self.batch_size:
            raise ValueError(
                f"min_exploitation_buffer_len ({self.min_exploitation_buffer_len}) "
                f"must be at least batch_size ({self.batch_size})"
            )

        if self.min_reanalyze_buffer_len < self.batch_size // 2:
            raise ValueError(
                f"min_reanalyze_buffer_len ({self.min_reanalyze_buffer_len}) "
                f"must be at least half the batch size ({self.batch_size // 2})"
            )

        if self.max_exploitation_buffer_len < self.min_exploitation_buffer_len:
            raise ValueError(
                "max_exploitation_buffer_len must be at least min_exploitation_buffer_len"
            )

        if self.max_reanalyze_buffer_len < self.min_reanalyze_buffer_len:
            raise ValueError(
                "max_reanalyze_buffer_len must be at least min_reanalyze_buffer_len"
            )

        if self.wait_seconds < 0:
            raise ValueError(f"wait_seconds must be non-negative, got {self.wait_seconds}")

        if self.embedding_dim % self.num_heads != 0:
            raise ValueError(
                f"embedding_dim ({self.embedding_dim}) must be divisible by "
                f"num_heads ({self.num_heads})"
            )

        if not 0 <= self.dropout < 1:
            raise ValueError(f"dropout must be in [0, 1), got {self.dropout}")

        if self.device not in ('cuda', 'cpu'):
            raise ValueError(f"device must be 'cuda' or 'cpu', got {self.device}")

        return True

    def __str__(self) -> str:
        """String representation of config."""
        lines = ["Learner Configuration:"]
        lines.append(f"  Directory: {self.directory}, environment={self.environment}")
        lines.append(f"  Training: batch={self.batch_size}, lr={self.learning_rate}, seed={self.seed}")
        lines.append(f"  Saving: latest every {self.steps_per_save} steps, checkpoint every {self.steps_per_checkpoint} steps")
        lines.append(f"  Bootstrap: {self.bootstrap_targets} targets, {self.bootstrap_steps} steps")
        lines.append(
            f"  Exploitation buffer: min={self.min_exploitation_buffer_len}, "
            f"max={self.max_exploitation_buffer_len}, uses={self.exploitation_uses_available}"
        )
        lines.append(
            f"  Reanalyze buffer: min={self.min_reanalyze_buffer_len}, "
            f"max={self.max_reanalyze_buffer_len}, uses={self.reanalyze_uses_available}, "
            f"from step {self.reanalyze_activation_steps}"
        )
        lines.append(f"  Network: {self.num_layers} layers, {self.num_heads} heads, dim={self.embedding_dim}")
        lines.append(f"  Device: {self.device}")
        return "\n".join(lines)


def get_fast_config() -> LearnerConfig:
    """
    Get a fast config for testing/debugging.

    Returns:
        LearnerConfig with reduced computational requirements
    """
    return LearnerConfig(
        device='cpu',
        batch_size=16,
        steps_per_save=5,
        steps_per_checkpoint=50,
        bootstrap_targets=16 * 20,
        bootstrap_steps=20,
        reanalyze_activation_steps=100,
        min_exploitation_buffer_len=64,
        min_reanalyze_buffer_len=8,
        max_exploitation_buffer_len=1_000,
        max_reanalyze_buffer_len=1_000,
        wait_seconds=1.0,
        embedding_dim=32,
        num_layers=1,
        num_heads=2,
    )


def get_production_config() -> LearnerConfig:
    """
    Get the full production config.

    Returns:
        LearnerConfig with full computational requirements
    """
    return LearnerConfig()  # Uses defaults
