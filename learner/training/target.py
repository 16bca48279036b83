"""
Training targets and their line-oriented text encoding.

A target is one labeled training example produced by self-play, reanalysis
or the bootstrap phase:

    {
        'state': environment state,
        'policy': ((action, probability), ...),   # sums to 1
        'value': float,                           # outcome estimate
        'ube': float,                             # uncertainty estimate
    }

Stream format (one JSON object per line, UTF-8):

    {"state": "x...o....", "policy": [["1", 0.5], ["2", 0.5]], "value": 0.0, "ube": 1.0}

States and actions are written with the environment's own text encoding, so
parse_target(target_to_line(t, env), env) == t.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Tuple

from learner.game.base import Environment

# Allowed deviation of the policy sum from 1 (workers write rounded floats)
POLICY_SUM_TOLERANCE = 1e-3


class TargetParseError(ValueError):
    """Raised when a stream line cannot be parsed into a Target."""

    pass


@dataclass(frozen=True)
class Target:
    """Immutable training target."""

    state: Any
    policy: Tuple[Tuple[Any, float], ...]
    value: float
    ube: float


def target_to_line(target: Target, env: Environment) -> str:
    """
    Serialize a target to a single line of text (without trailing newline).

    Args:
        target: Target to serialize
        env: Environment providing state/action text encoding

    Returns:
        JSON line
    """
    return json.dumps({
        "state": env.state_to_str(target.state),
        "policy": [[env.action_to_str(action), prob] for action, prob in target.policy],
        "value": target.value,
        "ube": target.ube,
    })


def _finite_float(raw: Any, field: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise TargetParseError(f"{field} must be a number, got {raw!r}")
    try:
        value = float(raw)
    except OverflowError:
        raise TargetParseError(f"{field} is out of range") from None
    if not math.isfinite(value):
        raise TargetParseError(f"{field} must be finite, got {value}")
    return value


def parse_target(line: str, env: Environment) -> Target:
    """
    Parse a line written by target_to_line().

    Args:
        line: One line of the target stream (trailing newline allowed)
        env: Environment providing state/action text encoding

    Returns:
        Parsed Target

    Raises:
        TargetParseError: If the line is truncated, malformed, or describes an
            invalid target (bad state/action, empty or unnormalized policy,
            non-finite numbers)
    """
    try:
        record = json.loads(line)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, oversized integer literals, deep nesting
        raise TargetParseError(f"Invalid JSON: {e}") from e

    if not isinstance(record, dict):
        raise TargetParseError(f"Expected a JSON object, got {type(record).__name__}")

    missing = {"state", "policy", "value", "ube"} - record.keys()
    if missing:
        raise TargetParseError(f"Missing fields: {sorted(missing)}")

    if not isinstance(record["state"], str):
        raise TargetParseError("state must be a string")
    try:
        state = env.state_from_str(record["state"])
    except ValueError as e:
        raise TargetParseError(f"Invalid state: {e}") from e

    raw_policy = record["policy"]
    if not isinstance(raw_policy, list) or not raw_policy:
        raise TargetParseError("policy must be a non-empty list")

    policy = []
    for entry in raw_policy:
        if not isinstance(entry, list) or len(entry) != 2 or not isinstance(entry[0], str):
            raise TargetParseError(f"Invalid policy entry: {entry!r}")
        try:
            action = env.action_from_str(entry[0])
        except ValueError as e:
            raise TargetParseError(f"Invalid action: {e}") from e
        prob = _finite_float(entry[1], "probability")
        if prob < 0.0:
            raise TargetParseError(f"Negative probability: {prob}")
        policy.append((action, prob))

    total = sum(prob for _, prob in policy)
    if abs(total - 1.0) > POLICY_SUM_TOLERANCE:
        raise TargetParseError(f"Policy sums to {total}, expected 1")

    return Target(
        state=state,
        policy=tuple(policy),
        value=_finite_float(record["value"], "value"),
        ube=_finite_float(record["ube"], "ube"),
    )
