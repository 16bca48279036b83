"""
Game environments for the learner.

The learner consumes games only through the Environment interface; concrete
rules engines are registered here by name so the CLI can select one.
"""

from learner.game.base import Environment
from learner.game.tictactoe import TicTacToe, TicTacToeState

ENVIRONMENTS = {
    TicTacToe.name: TicTacToe,
}


def get_environment(name: str) -> Environment:
    """
    Create an environment by registered name.

    Raises:
        ValueError: If no environment is registered under name
    """
    try:
        return ENVIRONMENTS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown environment {name!r}, expected one of {sorted(ENVIRONMENTS)}"
        ) from None


__all__ = [
    "Environment",
    "TicTacToe",
    "TicTacToeState",
    "ENVIRONMENTS",
    "get_environment",
]
