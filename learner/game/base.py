"""
Environment interface consumed by the learner.

The learner never knows the concrete game. It only needs to:
- Produce an initial state (possibly randomized, e.g. a random opening)
- Enumerate legal actions and apply them
- Detect terminal states and report the outcome
- Convert states and actions to and from text (for the target stream format)
- Encode states into fixed-size feature vectors and actions into indices

Outcome convention:
    terminal(state) returns the outcome from the perspective of the player to
    move in that state: 1.0 = win, 0.0 = draw, -1.0 = loss. A state where the
    previous player just completed a line is therefore a loss (-1.0).
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from learner.training.target import Target


class Environment(ABC):
    """
    Rules engine for a two-player zero-sum game.

    States and actions are opaque to the learner; they only need to be
    hashable, immutable values that round-trip through the text methods.
    """

    name: str = "environment"

    @property
    @abstractmethod
    def state_size(self) -> int:
        """Length of the vector returned by encode_state()."""

    @property
    @abstractmethod
    def action_space_size(self) -> int:
        """Number of distinct action indices."""

    @abstractmethod
    def initial_state(self, rng: np.random.Generator) -> Any:
        """Create a new starting state."""

    @abstractmethod
    def legal_actions(self, state: Any) -> List[Any]:
        """List legal actions in a non-terminal state."""

    @abstractmethod
    def step(self, state: Any, action: Any) -> Any:
        """Return the state reached by applying action to state."""

    @abstractmethod
    def terminal(self, state: Any) -> Optional[float]:
        """Outcome for the player to move, or None if the game continues."""

    @abstractmethod
    def state_to_str(self, state: Any) -> str:
        """Serialize a state to a single-line string."""

    @abstractmethod
    def state_from_str(self, text: str) -> Any:
        """
        Parse a state produced by state_to_str().

        Raises:
            ValueError: If text is not a valid state
        """

    @abstractmethod
    def action_to_str(self, action: Any) -> str:
        """Serialize an action to a string."""

    @abstractmethod
    def action_from_str(self, text: str) -> Any:
        """
        Parse an action produced by action_to_str().

        Raises:
            ValueError: If text is not a valid action
        """

    @abstractmethod
    def encode_state(self, state: Any) -> np.ndarray:
        """Encode state as a float32 vector of length state_size."""

    @abstractmethod
    def action_index(self, action: Any) -> int:
        """Map an action to an index in [0, action_space_size)."""

    def augment(self, target: "Target", rng: np.random.Generator) -> "Target":
        """
        Apply a random symmetry to a training target.

        Games without symmetries keep the default, which returns the target
        unchanged.
        """
        return target
