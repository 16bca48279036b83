"""
Tests for neural network target encoding and model.

Tests:
- TargetEncoder: Converts targets into input, mask and label tensors
- TargetNet: Transformer network for policy, value and uncertainty
- TorchModel: Training step, inference and checkpoint persistence
"""

import numpy as np
import pytest
import torch

from learner.game import TicTacToe
from learner.network.encode import TargetEncoder, TargetTensors
from learner.network.model import TargetNet, TorchModel, create_model
from learner.training.target import Target


SMALL_NETWORK = dict(
    embedding_dim=16,
    num_layers=1,
    num_heads=2,
    feedforward_dim=32,
    dropout=0.0,
)


@pytest.fixture
def env():
    return TicTacToe()


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def targets(env):
    """A few targets from positions with different numbers of legal moves."""
    result = []
    for text, value in ((".........", 0.0), ("x........", -0.5), ("xo.......", 1.0)):
        state = env.state_from_str(text)
        actions = env.legal_actions(state)
        result.append(Target(
            state=state,
            policy=tuple((action, 1.0 / len(actions)) for action in actions),
            value=value,
            ube=0.5,
        ))
    return result


@pytest.fixture
def model(env):
    return create_model(env, learning_rate=1e-3, seed=0, **SMALL_NETWORK)


class TestTargetEncoder:
    """Test suite for TargetEncoder class."""

    def test_encode_states_shape(self, env, targets):
        """Test states encode to (batch, state_size) floats."""
        encoder = TargetEncoder(env)
        inputs = encoder.encode_states([t.state for t in targets])

        assert inputs.shape == (3, env.state_size)
        assert inputs.dtype == torch.float32

    def test_legal_mask(self, env, targets):
        """Test masks are True exactly for legal actions."""
        encoder = TargetEncoder(env)
        mask = encoder.legal_mask([t.state for t in targets])

        assert mask.dtype == torch.bool
        assert mask.sum(dim=1).tolist() == [9, 8, 7]
        assert not mask[2, 0] and not mask[2, 1]

    def test_encode_targets(self, env, targets, rng):
        """Test encoded targets carry policy, value and uncertainty labels."""
        encoder = TargetEncoder(env)
        tensors = encoder.encode_targets(targets, rng)

        assert isinstance(tensors, TargetTensors)
        assert len(tensors) == 3
        assert tensors.input.shape == (3, env.state_size)
        assert tensors.mask.shape == (3, env.action_space_size)
        assert tensors.target_policy.shape == (3, env.action_space_size)
        assert tensors.target_value.squeeze(1).tolist() == [0.0, -0.5, 1.0]
        assert tensors.target_ube.squeeze(1).tolist() == [0.5, 0.5, 0.5]

        assert torch.allclose(tensors.target_policy.sum(dim=1), torch.ones(3))
        assert tensors.mask.sum(dim=1).tolist() == [9, 8, 7]
        # Policy mass only on masked-in actions
        assert (tensors.target_policy[~tensors.mask] == 0).all()

    def test_augmentation_keeps_mask_consistent(self, env, targets):
        """Test occupied cells stay masked out under every symmetry."""
        encoder = TargetEncoder(env)
        for seed in range(16):
            tensors = encoder.encode_targets(targets, np.random.default_rng(seed))
            empty_plane = tensors.input[:, 2 * 9:]
            assert torch.equal(empty_plane.bool(), tensors.mask)


class TestTargetNet:
    """Test suite for TargetNet class."""

    def test_forward_shapes(self, env):
        """Test forward() returns logits, value and uncertainty per state."""
        network = TargetNet(env.state_size, env.action_space_size, **SMALL_NETWORK)
        state = torch.randn(5, env.state_size)

        policy_logits, value, ube = network(state)

        assert policy_logits.shape == (5, env.action_space_size)
        assert value.shape == (5, 1)
        assert ube.shape == (5, 1)

    def test_output_ranges(self, env):
        """Test value lies in [-1, 1] and uncertainty is non-negative."""
        network = TargetNet(env.state_size, env.action_space_size, **SMALL_NETWORK)
        network.eval()

        _, value, ube = network(torch.randn(32, env.state_size) * 10)

        assert (value >= -1).all() and (value <= 1).all()
        assert (ube >= 0).all()

    def test_masking(self, env):
        """Test illegal logits are pushed to the most negative float."""
        network = TargetNet(env.state_size, env.action_space_size, **SMALL_NETWORK)
        mask = torch.ones(2, env.action_space_size, dtype=torch.bool)
        mask[0, 4] = False

        policy_logits, _, _ = network(torch.randn(2, env.state_size), mask)

        assert policy_logits[0, 4] == torch.finfo(policy_logits.dtype).min
        assert torch.isfinite(policy_logits).all()

    def test_num_parameters(self, env):
        """Test parameter counting."""
        network = TargetNet(env.state_size, env.action_space_size, **SMALL_NETWORK)
        assert network.get_num_parameters() > 0


class TestTorchModel:
    """Test suite for TorchModel class."""

    def test_create_model(self, env, model):
        """Test the factory sizes the network from the environment."""
        assert isinstance(model, TorchModel)
        assert model.network.state_dim == env.state_size
        assert model.network.action_dim == env.action_space_size

    def test_train_step_updates_parameters(self, model, targets):
        """Test one training step changes weights and reports losses."""
        before = [p.detach().clone() for p in model.network.parameters()]

        metrics = model.train_step(targets)

        assert set(metrics) == {"total_loss", "policy_loss", "value_loss", "ube_loss"}
        assert all(np.isfinite(value) for value in metrics.values())
        after = list(model.network.parameters())
        assert any(not torch.equal(b, a) for b, a in zip(before, after))

    def test_ube_weight_zero_ignores_uncertainty(self, model, targets):
        """Test the total loss excludes the uncertainty term by default."""
        tensors = model.encoder.encode_targets(targets, np.random.default_rng(0))
        model.network.eval()
        _, losses = model.compute_loss(tensors)

        assert losses["total_loss"] == pytest.approx(
            losses["policy_loss"] + losses["value_loss"], rel=1e-5
        )

    def test_loss_decreases(self, model, targets):
        """Test repeated steps on one batch reduce the loss."""
        first = model.train_step(targets)["total_loss"]
        for _ in range(50):
            last = model.train_step(targets)["total_loss"]
        assert last < first

    def test_predict(self, env, model, targets):
        """Test predictions are distributions over legal actions."""
        states = [t.state for t in targets]
        policy, value, ube = model.predict(states)

        assert policy.shape == (3, 9)
        assert value.shape == (3,)
        assert ube.shape == (3,)
        np.testing.assert_allclose(policy.sum(axis=1), np.ones(3), rtol=1e-5)
        assert policy[2, 0] == 0.0 and policy[2, 1] == 0.0

    def test_reset_optimizer_state(self, model, targets):
        """Test gradients are cleared."""
        model.train_step(targets)
        model.reset_optimizer_state()

        assert all(p.grad is None for p in model.network.parameters())

    def test_save_load_round_trip(self, tmp_path, env, model, targets):
        """Test a checkpoint restores weights and the step count."""
        model.train_step(targets)
        path = tmp_path / "model_000001.pt"
        model.save(path, model_steps=1)

        restored = create_model(env, seed=1, **SMALL_NETWORK)
        assert restored.load(path) == 1

        for original, loaded in zip(model.network.parameters(), restored.network.parameters()):
            assert torch.equal(original, loaded)
        assert restored.optimizer.state_dict()["state"]

    def test_load_missing(self, tmp_path, model):
        """Test loading a missing checkpoint raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            model.load(tmp_path / "model_000001.pt")
