"""
Reader for append-only target stream files.

Self-play and reanalyze workers append one serialized target per line to a
shared file. The learner tails that file: each poll returns only the lines
appended since the previous poll.

Concurrency:
    - The file is owned by the workers; the reader never writes or locks it
    - A worker may be mid-write of the final line; such a line fails to parse
      and is dropped (it is still counted as read)
    - Undecodable bytes are replaced so they only invalidate their own line

The cursor (lines_read) lives in memory only. After a restart the whole file
is read again; the replay buffer's eviction policy bounds the duplicates.
"""

import itertools
import logging
from pathlib import Path
from typing import List, Union

from learner.game.base import Environment
from learner.training.target import Target, TargetParseError, parse_target

logger = logging.getLogger(__name__)


class TargetStream:
    """
    Incremental reader for one target stream file.

    Tracks how many lines have been consumed so repeated polls only return
    new records.
    """

    def __init__(self, path: Union[str, Path], env: Environment):
        """
        Args:
            path: Stream file path (may not exist yet)
            env: Environment used to parse states and actions
        """
        self.path = Path(path)
        self.env = env
        self.lines_read = 0

    def read_new(self) -> List[Target]:
        """
        Read and parse all lines appended since the last successful read.

        Returns:
            Targets parsed from the new lines (malformed lines are dropped)

        Raises:
            OSError: If the file is missing or cannot be read. The cursor is
                left unchanged so the next poll retries from the same line.
        """
        targets = []
        consumed = 0
        dropped = 0

        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for line in itertools.islice(f, self.lines_read, None):
                consumed += 1
                try:
                    targets.append(parse_target(line, self.env))
                except TargetParseError:
                    dropped += 1

        self.lines_read += consumed

        if dropped:
            logger.debug(f"Dropped {dropped} unparsable lines from {self.path.name}")

        return targets

    def __repr__(self) -> str:
        return f"TargetStream(path={str(self.path)!r}, lines_read={self.lines_read})"
