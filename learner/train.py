"""
Main Training Script

Entry point for running the offline learner.

Usage:
    # Start (or resume) training in a directory shared with the workers
    zero-learner --directory runs/tictactoe

    # Use custom config
    zero-learner --directory runs/tictactoe --config configs/my_config.json

    # Fast test run
    zero-learner --directory /tmp/run --fast --seed 1

    # Override individual options
    zero-learner --directory runs/tictactoe --batch-size 256 --reanalyze-activation-steps 10000

Training resumes from the most advanced numbered checkpoint found in the
directory. A directory without checkpoints starts a new model and bootstraps
it on random games before reading any worker targets.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np
import torch

from learner.config import LearnerConfig, get_fast_config, get_production_config
from learner.game import get_environment
from learner.network.model import create_model
from learner.training.scheduler import TrainingScheduler

# Command line options that override the config field of the same name
CONFIG_OVERRIDES = (
    'environment',
    'batch_size',
    'learning_rate',
    'min_exploitation_buffer_len',
    'min_reanalyze_buffer_len',
    'max_exploitation_buffer_len',
    'max_reanalyze_buffer_len',
    'exploitation_uses_available',
    'reanalyze_uses_available',
    'reanalyze_activation_steps',
    'steps_per_save',
    'steps_per_checkpoint',
    'bootstrap_targets',
    'bootstrap_steps',
    'wait_seconds',
)


def build_parser() -> argparse.ArgumentParser:
    """
    Build the command line parser.

    Returns:
        Argument parser
    """
    parser = argparse.ArgumentParser(
        description="Train a self-play agent from streamed targets",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        '--directory',
        type=str,
        required=True,
        help='Directory holding target streams and checkpoints (must exist)',
    )

    # Configuration
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to JSON config file (overrides defaults)',
    )
    parser.add_argument(
        '--fast',
        action='store_true',
        help='Use fast config for testing/debugging',
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed (drawn at random and logged if omitted)',
    )

    # Hardware
    parser.add_argument(
        '--device',
        type=str,
        choices=['cuda', 'cpu', 'auto'],
        default=None,
        help='Device to train on (config file or preset device if omitted)',
    )

    # Logging
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Logging level',
    )

    # Config overrides
    overrides = parser.add_argument_group('config overrides')
    overrides.add_argument('--environment', type=str, default=None,
                           help='Registered environment name')
    overrides.add_argument('--batch-size', type=int, default=None,
                           help='Targets per training step (even)')
    overrides.add_argument('--learning-rate', type=float, default=None,
                           help='Optimizer learning rate')
    overrides.add_argument('--min-exploitation-buffer-len', type=int, default=None,
                           help='Self-play targets required before training')
    overrides.add_argument('--min-reanalyze-buffer-len', type=int, default=None,
                           help='Reanalyze targets required in the mixed phase')
    overrides.add_argument('--max-exploitation-buffer-len', type=int, default=None,
                           help='Self-play buffer capacity')
    overrides.add_argument('--max-reanalyze-buffer-len', type=int, default=None,
                           help='Reanalyze buffer capacity')
    overrides.add_argument('--exploitation-uses', dest='exploitation_uses_available',
                           type=int, default=None,
                           help='Batches each self-play target may appear in')
    overrides.add_argument('--reanalyze-uses', dest='reanalyze_uses_available',
                           type=int, default=None,
                           help='Batches each reanalyze target may appear in')
    overrides.add_argument('--reanalyze-activation-steps', type=int, default=None,
                           help='Training steps before reanalyze targets are mixed in')
    overrides.add_argument('--steps-per-save', type=int, default=None,
                           help='Save the latest checkpoint every N steps')
    overrides.add_argument('--steps-per-checkpoint', type=int, default=None,
                           help='Save a numbered checkpoint every N steps')
    overrides.add_argument('--bootstrap-targets', type=int, default=None,
                           help='Random-play targets generated for bootstrapping')
    overrides.add_argument('--bootstrap-steps', type=int, default=None,
                           help='Training steps taken on the bootstrap targets')
    overrides.add_argument('--wait-seconds', type=float, default=None,
                           help='Seconds to wait when buffers are too small')

    return parser


def load_config(args: argparse.Namespace) -> LearnerConfig:
    """
    Build the effective config from defaults, config file and overrides.

    Args:
        args: Parsed command line arguments

    Returns:
        Config (not yet validated)
    """
    if args.config:
        config = LearnerConfig.from_file(args.config)
    elif args.fast:
        config = get_fast_config()
    else:
        config = get_production_config()

    config.directory = args.directory
    for name in CONFIG_OVERRIDES:
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)

    if args.device is not None:
        config.device = args.device
    if args.seed is not None:
        config.seed = args.seed
    if config.seed is None:
        config.seed = int(np.random.default_rng().integers(2**31))

    return config


def setup_logging(directory: str, log_level: str = 'INFO'):
    """
    Setup logging (file logging and console).

    Args:
        directory: Training directory receiving training.log
        log_level: Logging level
    """
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'

    log_file = Path(directory) / 'training.log'
    logging.basicConfig(
        level=getattr(logging, log_level),
        format=log_format,
        datefmt=date_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout),
        ],
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized. Log file: {log_file}")
    logger.info(f"Python version: {sys.version}")
    logger.info(f"PyTorch version: {torch.__version__}")
    logger.info(f"CUDA available: {torch.cuda.is_available()}")
    if torch.cuda.is_available():
        logger.info(f"CUDA device: {torch.cuda.get_device_name(0)}")


def determine_device(device_arg: str) -> str:
    """
    Determine which device to use for training.

    Args:
        device_arg: Requested device (cuda, cpu or auto)

    Returns:
        Device string ('cuda' or 'cpu')
    """
    if device_arg == 'auto':
        device = 'cuda' if torch.cuda.is_available() else 'cpu'
    else:
        device = device_arg

    if device == 'cuda' and not torch.cuda.is_available():
        logging.warning("CUDA requested but not available, falling back to CPU")
        device = 'cpu'

    return device


def create_scheduler(config: LearnerConfig) -> TrainingScheduler:
    """
    Create the environment, model and scheduler described by config.

    Args:
        config: Validated configuration

    Returns:
        Scheduler ready to run
    """
    logger = logging.getLogger(__name__)

    env = get_environment(config.environment)
    model = create_model(
        env,
        learning_rate=config.learning_rate,
        weight_decay=config.weight_decay,
        ube_loss_weight=config.ube_loss_weight,
        device=config.device,
        seed=config.seed,
        embedding_dim=config.embedding_dim,
        num_layers=config.num_layers,
        num_heads=config.num_heads,
        feedforward_dim=config.embedding_dim * 4,  # Standard transformer ratio
        dropout=config.dropout,
    )

    logger.info(f"Environment: {config.environment}")
    logger.info(f"Network created: {model.network.get_num_parameters():,} trainable parameters")
    logger.info(f"Network device: {config.device}")

    return TrainingScheduler(
        model=model,
        env=env,
        config=config,
        rng=np.random.default_rng(config.seed),
    )


def run_training(config: LearnerConfig):
    """
    Run the learner until interrupted.

    Args:
        config: Validated configuration
    """
    logger = logging.getLogger(__name__)
    logger.info(f"\n{config}")

    scheduler = create_scheduler(config)

    try:
        scheduler.run()

    except KeyboardInterrupt:
        logger.info("Training interrupted by user")
        logger.info(
            f"Stopped at {scheduler.model_steps} steps. "
            f"Training resumes from the latest numbered checkpoint in {config.directory}"
        )

    except Exception as e:
        logger.error(f"Training failed with error: {e}", exc_info=True)
        raise


def main(argv: Optional[List[str]] = None):
    """Main training entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not Path(args.directory).is_dir():
        parser.error(f"Directory does not exist: {args.directory}")

    try:
        config = load_config(args)
    except (OSError, ValueError, TypeError) as e:
        parser.error(f"Cannot load config: {e}")

    config.device = determine_device(config.device)

    try:
        config.validate()
        get_environment(config.environment)
    except ValueError as e:
        parser.error(f"Invalid configuration: {e}")

    setup_logging(config.directory, args.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("Offline learner - training from streamed self-play targets")
    logger.info("=" * 80)
    logger.info(f"Seed: {config.seed}")

    config_save_path = Path(config.directory) / 'config.json'
    config.save(str(config_save_path))
    logger.info(f"Config saved to {config_save_path}")

    run_training(config)


if __name__ == '__main__':
    main()
