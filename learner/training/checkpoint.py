"""
Checkpoint discovery and persistence.

File naming (inside the training directory):
    model_000000.pt, model_001000.pt, ...   numbered snapshots (6-digit steps)
    model_latest.pt                         rolling snapshot, overwritten

Resume point: the numbered file with the highest embedded step count. Files
whose suffix is not purely ASCII digits (model_latest.pt, model_12a.pt,
model_.pt, ...) are ignored.

Writes go to a temporary sibling first and are then renamed over the
destination, so a crash never leaves a truncated checkpoint behind. Any save
or load error propagates: continuing without a resumable checkpoint is
worse than stopping.
"""

import logging
import re
import time
from pathlib import Path
from typing import Optional, Tuple, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from learner.network.model import Model

logger = logging.getLogger(__name__)

CHECKPOINT_EXTENSION = ".pt"
LATEST_SUFFIX = "latest"


class CheckpointManager:
    """
    Finds, loads and writes model checkpoints in one directory.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        model: "Model",
        prefix: str = "model",
    ):
        """
        Args:
            directory: Directory holding checkpoints
            model: Model to save and restore
            prefix: Filename prefix ('model' -> model_001000.pt)
        """
        self.directory = Path(directory)
        self.model = model
        self.prefix = prefix
        self._numbered_pattern = re.compile(rf"{re.escape(prefix)}_([0-9]+)")

    def checkpoint_path(self, model_steps: int) -> Path:
        """Path of the numbered checkpoint for a step count."""
        return self.directory / f"{self.prefix}_{model_steps:06d}{CHECKPOINT_EXTENSION}"

    @property
    def latest_path(self) -> Path:
        """Path of the rolling 'latest' checkpoint."""
        return self.directory / f"{self.prefix}_{LATEST_SUFFIX}{CHECKPOINT_EXTENSION}"

    def parse_steps(self, path: Path) -> Optional[int]:
        """
        Extract the step count from a numbered checkpoint filename.

        Returns:
            Step count, or None if path is not a numbered checkpoint
        """
        if path.suffix != CHECKPOINT_EXTENSION:
            return None
        match = self._numbered_pattern.fullmatch(path.stem)
        if match is None:
            return None
        return int(match.group(1))

    def find_latest(self) -> Optional[Tuple[int, Path]]:
        """
        Find the numbered checkpoint with the most steps.

        Returns:
            (steps, path) or None if the directory holds no checkpoint

        Raises:
            FileNotFoundError: If the directory does not exist
        """
        best = None
        for path in self.directory.iterdir():
            if not path.is_file():
                continue
            steps = self.parse_steps(path)
            if steps is None:
                continue
            if best is None or steps > best[0]:
                best = (steps, path)
        return best

    def _write(self, path: Path, model_steps: int):
        """Save atomically: write a temporary file, then rename over path."""
        start = time.time()
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.model.save(tmp_path, model_steps)
            tmp_path.replace(path)
        except Exception as e:
            logger.error(f"Failed to save checkpoint {path}: {e}")
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        logger.debug(f"It took {time.time() - start:.3f}s to save {path.name}")

    def save(self, model_steps: int) -> Path:
        """
        Save a numbered checkpoint.

        Returns:
            Path of the written checkpoint
        """
        path = self.checkpoint_path(model_steps)
        self._write(path, model_steps)
        logger.info(f"Saved checkpoint {path.name}")
        return path

    def save_latest(self, model_steps: int) -> Path:
        """
        Overwrite the rolling 'latest' checkpoint.

        Returns:
            Path of the written checkpoint
        """
        path = self.latest_path
        self._write(path, model_steps)
        return path

    def load(self, path: Union[str, Path]) -> int:
        """
        Restore the model from a checkpoint.

        Returns:
            Step count stored in the checkpoint, falling back to the filename
        """
        path = Path(path)
        stored_steps = self.model.load(path)
        if stored_steps is not None:
            return stored_steps

        steps = self.parse_steps(path)
        if steps is None:
            raise ValueError(f"Cannot determine step count of checkpoint {path}")
        return steps
