"""
Tic-tac-toe rules engine.

Small, fully-specified two-player zero-sum game used as the default
environment. It keeps bootstrap and integration runs fast while exercising
every part of the Environment interface, including symmetry augmentation.

Board layout (action indices):
    0 | 1 | 2
    3 | 4 | 5
    6 | 7 | 8

Text format: nine characters, row-major, 'x' / 'o' / '.'.
Example: "x.o.x...." (x to move is implied by the piece counts).
"""

import dataclasses
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from learner.game.base import Environment

X = 1
O = -1
EMPTY = 0

SIZE = 3
NUM_CELLS = SIZE * SIZE

LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),  # diagonals
)

_CHARS = {X: "x", O: "o", EMPTY: "."}
_VALUES = {char: value for value, char in _CHARS.items()}


def _build_symmetries() -> Tuple[Tuple[int, ...], ...]:
    """
    Build the eight board symmetries as index maps (old index -> new index).
    """
    last = SIZE - 1
    transforms = (
        lambda r, c: (r, c),
        lambda r, c: (c, last - r),
        lambda r, c: (last - r, last - c),
        lambda r, c: (last - c, r),
        lambda r, c: (r, last - c),
        lambda r, c: (last - r, c),
        lambda r, c: (c, r),
        lambda r, c: (last - c, last - r),
    )
    symmetries = []
    for transform in transforms:
        mapping = []
        for index in range(NUM_CELLS):
            row, col = divmod(index, SIZE)
            new_row, new_col = transform(row, col)
            mapping.append(new_row * SIZE + new_col)
        symmetries.append(tuple(mapping))
    return tuple(symmetries)


SYMMETRIES = _build_symmetries()


@dataclass(frozen=True)
class TicTacToeState:
    """Immutable board position. cells[i] is X, O or EMPTY."""

    cells: Tuple[int, ...] = (EMPTY,) * NUM_CELLS

    @property
    def to_move(self) -> int:
        """X moves first, so X is to move whenever the counts are equal."""
        return X if self.cells.count(X) == self.cells.count(O) else O

    def winner(self) -> Optional[int]:
        """Return the player owning a complete line, if any."""
        for a, b, c in LINES:
            if self.cells[a] != EMPTY and self.cells[a] == self.cells[b] == self.cells[c]:
                return self.cells[a]
        return None


class TicTacToe(Environment):
    """Environment implementation for tic-tac-toe."""

    name = "tictactoe"

    @property
    def state_size(self) -> int:
        # Three planes (own pieces, opponent pieces, empty cells)
        return 3 * NUM_CELLS

    @property
    def action_space_size(self) -> int:
        return NUM_CELLS

    def initial_state(self, rng: np.random.Generator) -> TicTacToeState:
        return TicTacToeState()

    def legal_actions(self, state: TicTacToeState) -> List[int]:
        return [i for i, cell in enumerate(state.cells) if cell == EMPTY]

    def step(self, state: TicTacToeState, action: int) -> TicTacToeState:
        if not 0 <= action < NUM_CELLS or state.cells[action] != EMPTY:
            raise ValueError(f"Illegal action {action} in state {self.state_to_str(state)}")
        cells = list(state.cells)
        cells[action] = state.to_move
        return TicTacToeState(tuple(cells))

    def terminal(self, state: TicTacToeState) -> Optional[float]:
        if state.winner() is not None:
            # Only the player who just moved can have completed a line
            return -1.0
        if EMPTY not in state.cells:
            return 0.0
        return None

    def state_to_str(self, state: TicTacToeState) -> str:
        return "".join(_CHARS[cell] for cell in state.cells)

    def state_from_str(self, text: str) -> TicTacToeState:
        if len(text) != NUM_CELLS or any(char not in _VALUES for char in text):
            raise ValueError(f"Invalid tic-tac-toe state: {text!r}")

        cells = tuple(_VALUES[char] for char in text)
        difference = cells.count(X) - cells.count(O)
        if difference not in (0, 1):
            raise ValueError(f"Impossible piece counts in state: {text!r}")

        return TicTacToeState(cells)

    def action_to_str(self, action: int) -> str:
        return str(action)

    def action_from_str(self, text: str) -> int:
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"Invalid tic-tac-toe action: {text!r}")
        action = int(text)
        if action >= NUM_CELLS:
            raise ValueError(f"Action out of range: {action}")
        return action

    def encode_state(self, state: TicTacToeState) -> np.ndarray:
        cells = np.array(state.cells, dtype=np.int8)
        player = state.to_move
        features = np.concatenate([
            cells == player,
            cells == -player,
            cells == EMPTY,
        ])
        return features.astype(np.float32)

    def action_index(self, action: int) -> int:
        return action

    def augment(self, target, rng: np.random.Generator):
        """Map the target through one of the eight board symmetries."""
        mapping = SYMMETRIES[int(rng.integers(len(SYMMETRIES)))]

        cells = [EMPTY] * NUM_CELLS
        for old_index, new_index in enumerate(mapping):
            cells[new_index] = target.state.cells[old_index]

        return dataclasses.replace(
            target,
            state=TicTacToeState(tuple(cells)),
            policy=tuple((mapping[action], prob) for action, prob in target.policy),
        )
