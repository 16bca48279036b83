"""
Tests for training module (targets, streams, replay buffer, batching).

This test suite covers:
- Target codec: Line encoding, parsing and rejection of malformed lines
- TargetStream: Incremental reads with an in-memory cursor
- ReplayBuffer: Truncation, destructive draws and reuse accounting
- BatchComposer: Readiness and composition per training phase
"""

import json
from collections import Counter

import numpy as np
import pytest

from learner.game import TicTacToe
from learner.training.batching import BatchComposer, TrainingPhase
from learner.training.replay_buffer import BufferedTarget, ReplayBuffer
from learner.training.stream import TargetStream
from learner.training.target import (
    Target,
    TargetParseError,
    parse_target,
    target_to_line,
)


@pytest.fixture
def env():
    return TicTacToe()


@pytest.fixture
def rng():
    return np.random.default_rng(42)


def make_target(env, text=".........", value=0.0, ube=1.0):
    """Target with a uniform policy over the legal actions of a state."""
    state = env.state_from_str(text)
    actions = env.legal_actions(state)
    return Target(
        state=state,
        policy=tuple((action, 1.0 / len(actions)) for action in actions),
        value=value,
        ube=ube,
    )


def make_targets(env, count, value=0.0):
    return [make_target(env, value=value, ube=float(i)) for i in range(count)]


def write_lines(path, lines):
    with open(path, "a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


HUGE_NUMBER_LINES = [
    '{"state": ".........", "policy": [["0", 1.0]], "value": 1%s, "ube": 0.0}' % ("0" * 400),
    '{"state": ".........", "policy": [["0", 1.0]], "value": 1%s, "ube": 0.0}' % ("0" * 5000),
    '{"state": ".........", "policy": [["0", 1.0]], "value": 0.0, "ube": 1%s}' % ("0" * 400),
    '{"state": ".........", "policy": [["0", 1%s]], "value": 0.0, "ube": 0.0}' % ("0" * 400),
    '{"state": ".........", "policy": [["0", 1%s]], "value": 0.0, "ube": 0.0}' % ("0" * 5000),
    '{"state": ".........", "policy": [["1%s", 1.0]], "value": 0.0, "ube": 0.0}' % ("0" * 5000),
]


class TestTargetCodec:
    """Tests for target_to_line() and parse_target()."""

    def test_round_trip(self, env):
        """Test a serialized target parses back to an equal target."""
        target = make_target(env, "xo.......", value=-0.5, ube=0.25)
        line = target_to_line(target, env)

        assert "\n" not in line
        assert parse_target(line, env) == target

    def test_trailing_newline_allowed(self, env):
        """Test lines read from a file (with newline) parse."""
        target = make_target(env)
        assert parse_target(target_to_line(target, env) + "\n", env) == target

    def test_line_format(self, env):
        """Test the stream encoding uses text states and actions."""
        target = make_target(env, "xo.......")
        record = json.loads(target_to_line(target, env))

        assert record["state"] == "xo......."
        assert record["policy"][0] == ["2", pytest.approx(1 / 7)]
        assert record["value"] == 0.0
        assert record["ube"] == 1.0

    def test_policy_sum_tolerance(self, env):
        """Test rounded policies written by workers are accepted."""
        line = json.dumps({
            "state": ".........",
            "policy": [["0", 0.3333], ["1", 0.3333], ["2", 0.3333]],
            "value": 0.0,
            "ube": 0.0,
        })
        target = parse_target(line, env)
        assert len(target.policy) == 3

    @pytest.mark.parametrize("line", [
        "",
        "not json",
        '{"state": ".........", "policy": [["0", 1.0]], "value": 0.0',
        "[1, 2, 3]",
        '{"policy": [["0", 1.0]], "value": 0.0, "ube": 0.0}',
        '{"state": 5, "policy": [["0", 1.0]], "value": 0.0, "ube": 0.0}',
        '{"state": "xxx", "policy": [["0", 1.0]], "value": 0.0, "ube": 0.0}',
        '{"state": "xx.......", "policy": [["2", 1.0]], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [["0", 0.5]], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [["0", 1.5], ["1", -0.5]], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [["9", 1.0]], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [[0, 1.0]], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [["0", "1"]], "value": 0.0, "ube": 0.0}',
        '{"state": ".........", "policy": [["0", 1.0]], "value": NaN, "ube": 0.0}',
        '{"state": ".........", "policy": [["0", 1.0]], "value": 0.0, "ube": Infinity}',
        '{"state": ".........", "policy": [["0", 1.0]], "value": true, "ube": 0.0}',
    ])
    def test_rejects_malformed_lines(self, env, line):
        """Test truncated or invalid lines raise TargetParseError."""
        with pytest.raises(TargetParseError):
            parse_target(line, env)

    def test_parse_error_is_value_error(self):
        """Test callers catching ValueError also catch parse errors."""
        assert issubclass(TargetParseError, ValueError)

    @pytest.mark.parametrize("line", HUGE_NUMBER_LINES)
    def test_rejects_huge_numbers(self, env, line):
        """Test integer literals too large for a float are parse errors."""
        with pytest.raises(TargetParseError):
            parse_target(line, env)

    def test_rejects_deep_nesting(self, env):
        """Test pathologically nested JSON is a parse error."""
        line = "[" * 100_000 + "]" * 100_000
        with pytest.raises(TargetParseError):
            parse_target(line, env)


class TestTargetStream:
    """Tests for TargetStream incremental reads."""

    def test_missing_file_raises(self, tmp_path, env):
        """Test a missing stream raises OSError and keeps the cursor."""
        stream = TargetStream(tmp_path / "missing.txt", env)

        with pytest.raises(OSError):
            stream.read_new()
        assert stream.lines_read == 0

    def test_reads_only_new_lines(self, tmp_path, env):
        """Test each read returns the lines appended since the last one."""
        path = tmp_path / "targets.txt"
        targets = make_targets(env, 5)
        stream = TargetStream(path, env)

        write_lines(path, [target_to_line(t, env) for t in targets[:3]])
        assert stream.read_new() == targets[:3]
        assert stream.lines_read == 3

        write_lines(path, [target_to_line(t, env) for t in targets[3:]])
        assert stream.read_new() == targets[3:]
        assert stream.lines_read == 5

        assert stream.read_new() == []
        assert stream.lines_read == 5

    def test_reads_concatenate_to_whole_file(self, tmp_path, env):
        """Test polling in chunks yields the same targets as one full read."""
        path = tmp_path / "targets.txt"
        targets = make_targets(env, 10)
        stream = TargetStream(path, env)

        polled = []
        for begin in range(0, 10, 3):
            write_lines(path, [target_to_line(t, env) for t in targets[begin:begin + 3]])
            polled.extend(stream.read_new())

        assert polled == TargetStream(path, env).read_new()
        assert polled == targets

    def test_malformed_lines_dropped_but_counted(self, tmp_path, env):
        """Test unparsable lines are skipped and never re-read."""
        path = tmp_path / "targets.txt"
        good = make_targets(env, 2)
        write_lines(path, [
            target_to_line(good[0], env),
            "garbage",
            '{"state": ".........", "policy": [], "value": 0.0, "ube": 0.0}',
            target_to_line(good[1], env),
        ])

        stream = TargetStream(path, env)
        assert stream.read_new() == good
        assert stream.lines_read == 4
        assert stream.read_new() == []

    def test_partial_final_line(self, tmp_path, env):
        """Test a line caught mid-write is dropped, later lines are read."""
        path = tmp_path / "targets.txt"
        first, second, third = make_targets(env, 3)
        partial = target_to_line(second, env)

        write_lines(path, [target_to_line(first, env)])
        with open(path, "a", encoding="utf-8") as f:
            f.write(partial[:10])

        stream = TargetStream(path, env)
        assert stream.read_new() == [first]
        assert stream.lines_read == 2

        # The writer finishes the line, then appends another one
        with open(path, "a", encoding="utf-8") as f:
            f.write(partial[10:] + "\n")
        write_lines(path, [target_to_line(third, env)])

        assert stream.read_new() == [third]
        assert stream.lines_read == 3

    def test_undecodable_bytes(self, tmp_path, env):
        """Test invalid UTF-8 only invalidates its own line."""
        path = tmp_path / "targets.txt"
        target = make_target(env)
        path.write_bytes(b"\xff\xfe\x00\n" + (target_to_line(target, env) + "\n").encode())

        stream = TargetStream(path, env)
        assert stream.read_new() == [target]
        assert stream.lines_read == 2

    @pytest.mark.parametrize("line", HUGE_NUMBER_LINES)
    def test_huge_number_line_dropped(self, tmp_path, env, line):
        """Test a line with an out-of-range number is skipped, not raised."""
        path = tmp_path / "targets.txt"
        first, second = make_targets(env, 2)
        write_lines(path, [target_to_line(first, env), line, target_to_line(second, env)])

        stream = TargetStream(path, env)
        assert stream.read_new() == [first, second]
        assert stream.lines_read == 3


class TestReplayBuffer:
    """Tests for ReplayBuffer class."""

    def test_buffer_initialization(self):
        """Test ReplayBuffer initializes empty."""
        buffer = ReplayBuffer("exploitation", capacity=10)

        assert len(buffer) == 0
        assert buffer.capacity == 10
        assert buffer.name == "exploitation"

    def test_invalid_capacity(self):
        """Test non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            ReplayBuffer("exploitation", capacity=0)

    def test_extend(self, env):
        """Test extend() records uses and ingestion steps."""
        buffer = ReplayBuffer("exploitation", capacity=10)

        added = buffer.extend(make_targets(env, 3), uses_available=2, model_steps=7)

        assert added == 3
        assert len(buffer) == 3
        assert all(t.uses_available == 2 for t in buffer.buffer)
        assert all(t.model_steps == 7 for t in buffer.buffer)

    def test_extend_rejects_zero_uses(self, env):
        """Test targets must be usable at least once."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        with pytest.raises(ValueError):
            buffer.extend(make_targets(env, 1), uses_available=0, model_steps=0)

    def test_extend_does_not_truncate(self, env):
        """Test capacity is only enforced by truncate()."""
        buffer = ReplayBuffer("exploitation", capacity=2)
        buffer.extend(make_targets(env, 5), uses_available=1, model_steps=0)

        assert len(buffer) == 5

    def test_truncate_under_capacity(self, env):
        """Test truncate() is a no-op within capacity."""
        buffer = ReplayBuffer("exploitation", capacity=5)
        buffer.extend(make_targets(env, 5), uses_available=1, model_steps=0)

        assert buffer.truncate() == 0
        assert len(buffer) == 5

    def test_truncate_keeps_newest(self, env):
        """Test targets ingested at higher step counts survive truncation."""
        buffer = ReplayBuffer("exploitation", capacity=4)
        old = make_targets(env, 3, value=-1.0)
        new = make_targets(env, 3, value=1.0)
        buffer.extend(old, uses_available=1, model_steps=0)
        buffer.extend(new, uses_available=1, model_steps=5)

        assert buffer.truncate() == 2
        assert len(buffer) == 4

        values = Counter(t.target.value for t in buffer.buffer)
        assert values == {1.0: 3, -1.0: 1}

    def test_truncate_prefers_more_uses(self, env):
        """Test ties on step count keep the targets with more uses left."""
        buffer = ReplayBuffer("exploitation", capacity=2)
        buffer.extend(make_targets(env, 2), uses_available=1, model_steps=3)
        buffer.extend(make_targets(env, 2), uses_available=3, model_steps=3)

        buffer.truncate()

        assert [t.uses_available for t in buffer.buffer] == [3, 3]

    def test_draw_removes_targets(self, env, rng):
        """Test draw() returns distinct targets and removes them."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        buffer.extend(make_targets(env, 5), uses_available=1, model_steps=0)

        drawn = buffer.draw(3, rng)

        assert len(drawn) == 3
        assert len(buffer) == 2
        assert len({id(t) for t in drawn}) == 3
        assert not {id(t) for t in drawn} & {id(t) for t in buffer.buffer}

    def test_draw_zero(self, env, rng):
        """Test drawing nothing leaves the buffer intact."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        buffer.extend(make_targets(env, 3), uses_available=1, model_steps=0)

        assert buffer.draw(0, rng) == []
        assert len(buffer) == 3

    @pytest.mark.parametrize("count", [-1, 4])
    def test_draw_invalid_count(self, env, rng, count):
        """Test drawing more than is buffered (or a negative count) fails."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        buffer.extend(make_targets(env, 3), uses_available=1, model_steps=0)

        with pytest.raises(ValueError):
            buffer.draw(count, rng)
        assert len(buffer) == 3

    def test_draw_is_uniform(self, env, rng):
        """Test every position can be drawn, not just recent insertions."""
        drawn_ube = set()
        for _ in range(200):
            buffer = ReplayBuffer("exploitation", capacity=10)
            buffer.extend(make_targets(env, 10), uses_available=1, model_steps=0)
            drawn_ube.add(buffer.draw(1, rng)[0].target.ube)

        assert drawn_ube == {float(i) for i in range(10)}

    def test_reuse(self, env):
        """Test reuse() counts down and expires at the last use."""
        buffered = BufferedTarget(make_target(env), uses_available=2, model_steps=0)

        assert buffered.reuse() is buffered
        assert buffered.uses_available == 1
        assert buffered.reuse() is None

    def test_reinsert(self, env, rng):
        """Test only targets with uses left return to the buffer."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        buffer.extend(make_targets(env, 2), uses_available=1, model_steps=0)
        buffer.extend(make_targets(env, 2), uses_available=2, model_steps=0)

        drawn = buffer.draw(4, rng)
        assert buffer.reinsert(drawn) == 2
        assert len(buffer) == 2
        assert all(t.uses_available == 1 for t in buffer.buffer)

    def test_each_target_used_exactly_its_uses(self, env, rng):
        """Test targets seeded with 1, 2 and 3 uses appear 1, 2 and 3 times."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        for uses in (1, 2, 3):
            buffer.extend([make_target(env, ube=float(uses))], uses, model_steps=0)

        appearances = Counter()
        while len(buffer) > 0:
            drawn = buffer.draw(len(buffer), rng)
            appearances.update(t.target.ube for t in drawn)
            buffer.reinsert(drawn)

        assert appearances == {1.0: 1, 2.0: 2, 3.0: 3}

    def test_buffer_statistics(self, env):
        """Test statistics computation."""
        buffer = ReplayBuffer("exploitation", capacity=10)
        assert buffer.get_statistics()["size"] == 0

        buffer.extend(make_targets(env, 2), uses_available=1, model_steps=1)
        buffer.extend(make_targets(env, 3), uses_available=3, model_steps=4)
        stats = buffer.get_statistics()

        assert stats["size"] == 5
        assert stats["utilization"] == 50.0
        assert stats["mean_uses_available"] == pytest.approx(11 / 5)
        assert stats["min_model_steps"] == 1
        assert stats["max_model_steps"] == 4


class TestBatchComposer:
    """Tests for BatchComposer class."""

    @pytest.fixture
    def exploitation(self):
        return ReplayBuffer("exploitation", capacity=100)

    @pytest.fixture
    def reanalyze(self):
        return ReplayBuffer("reanalyze", capacity=100)

    @pytest.fixture
    def composer(self, exploitation, reanalyze):
        return BatchComposer(
            exploitation,
            reanalyze,
            batch_size=4,
            min_exploitation_len=6,
            min_reanalyze_len=3,
        )

    @pytest.mark.parametrize("batch_size,min_expl,min_rean", [
        (3, 6, 3),
        (0, 6, 3),
        (4, 3, 3),
        (4, 6, 1),
    ])
    def test_invalid_settings(self, exploitation, reanalyze, batch_size, min_expl, min_rean):
        """Test odd batches and minimums below the draw size are rejected."""
        with pytest.raises(ValueError):
            BatchComposer(exploitation, reanalyze, batch_size, min_expl, min_rean)

    def test_not_ready_draws_nothing(self, env, rng, composer, exploitation):
        """Test an insufficient buffer yields no batch and is left intact."""
        exploitation.extend(make_targets(env, 5), uses_available=1, model_steps=0)

        assert not composer.is_ready(TrainingPhase.EXPLOITATION)
        assert composer.compose(TrainingPhase.EXPLOITATION, rng) is None
        assert len(exploitation) == 5

    def test_exploitation_batch(self, env, rng, composer, exploitation, reanalyze):
        """Test the exploitation phase fills the batch from one buffer."""
        exploitation.extend(make_targets(env, 6, value=1.0), uses_available=1, model_steps=0)

        batch = composer.compose(TrainingPhase.EXPLOITATION, rng)

        assert len(batch) == 4
        assert all(t.value == 1.0 for t in batch)
        assert len(exploitation) == 2
        assert len(reanalyze) == 0

    def test_exploitation_ignores_reanalyze(self, env, rng, composer, exploitation, reanalyze):
        """Test the reanalyze buffer is neither required nor drawn from."""
        exploitation.extend(make_targets(env, 6, value=1.0), uses_available=1, model_steps=0)
        reanalyze.extend(make_targets(env, 6, value=-1.0), uses_available=1, model_steps=0)

        batch = composer.compose(TrainingPhase.EXPLOITATION, rng)

        assert all(t.value == 1.0 for t in batch)
        assert len(reanalyze) == 6

    def test_mixed_requires_both(self, env, rng, composer, exploitation, reanalyze):
        """Test the mixed phase waits for the reanalyze minimum."""
        exploitation.extend(make_targets(env, 6), uses_available=1, model_steps=0)
        reanalyze.extend(make_targets(env, 2), uses_available=1, model_steps=0)

        assert composer.is_ready(TrainingPhase.EXPLOITATION)
        assert not composer.is_ready(TrainingPhase.MIXED)
        assert composer.compose(TrainingPhase.MIXED, rng) is None
        assert len(exploitation) == 6
        assert len(reanalyze) == 2

    def test_mixed_batch(self, env, rng, composer, exploitation, reanalyze):
        """Test a mixed batch is exploitation half first, reanalyze half last."""
        exploitation.extend(make_targets(env, 6, value=1.0), uses_available=1, model_steps=0)
        reanalyze.extend(make_targets(env, 3, value=-1.0), uses_available=1, model_steps=0)

        batch = composer.compose(TrainingPhase.MIXED, rng)

        assert [t.value for t in batch] == [1.0, 1.0, -1.0, -1.0]
        assert len(exploitation) == 4
        assert len(reanalyze) == 1

    def test_reuse_returns_targets(self, env, rng, composer, exploitation):
        """Test targets with uses left go back to their buffer."""
        exploitation.extend(make_targets(env, 6), uses_available=2, model_steps=0)

        composer.compose(TrainingPhase.EXPLOITATION, rng)

        assert len(exploitation) == 6
        assert sorted(t.uses_available for t in exploitation.buffer) == [1, 1, 1, 1, 2, 2]

    def test_bootstrapping_not_composed(self, rng, composer):
        """Test buffers are never drawn from while bootstrapping."""
        with pytest.raises(ValueError):
            composer.compose(TrainingPhase.BOOTSTRAPPING, rng)
