"""
Neural network module for the learner.

This module contains:
- Target encoding: Convert targets into input, mask and label tensors
- Model interface: What the training loop needs from a model
- Neural network: Transformer-based policy/value/uncertainty network
- Training utilities: Loss, optimization, checkpoint payloads
"""

from learner.network.encode import TargetEncoder, TargetTensors
from learner.network.model import (
    Model,
    TargetNet,
    TorchModel,
    create_model,
)

__all__ = [
    "TargetEncoder",
    "TargetTensors",
    "Model",
    "TargetNet",
    "TorchModel",
    "create_model",
]
