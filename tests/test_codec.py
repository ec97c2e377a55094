"""
test_codec.py
~~~~~~~~~~~~~

Tests for binary persistence and comparison of learners.
"""

import io
import struct
import pytest
import os
import sys

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from stacknet import binary_io
from stacknet.codec import (
    dumps_learner,
    loads_learner,
    save_learner,
    load_learner,
    save_learner_file,
    load_learner_file
)
from stacknet.compare import compare_learners, CompareResult
from stacknet.learner import Learner, TrainingState

SEED = 123


def set_pattern(learner):
    n_in = learner.network.no_of_inputs
    n_out = learner.network.no_of_outputs
    for i in range(n_in):
        learner.set_input(i, 0.25 + i * 0.5 / n_in)
    for i in range(n_out):
        learner.set_output(i, 0.9 - i * 0.5 / n_out)


def train(learner, steps):
    for _ in range(steps):
        set_pattern(learner)
        learner.advance()
    return learner


@pytest.fixture
def pretraining_learner():
    """A learner part way through pretraining its first layer."""
    return train(Learner(10, 4, 2, 2, [0.01, 0.01, 0.01], seed=SEED), 50)


@pytest.fixture
def fine_tuning_learner():
    """A learner that has promoted its only hidden layer but never completes."""
    learner = Learner(6, 4, 1, 2, [0.5, 0.0], seed=SEED)
    for _ in range(5000):
        set_pattern(learner)
        learner.advance()
        if learner.state == TrainingState.FINE_TUNING:
            break
    return train(learner, 20)


@pytest.fixture
def complete_learner():
    """A learner whose training has finished."""
    return train(Learner(6, 4, 0, 2, [1.0], seed=SEED), 3)


def round_trip(learner, **kwargs):
    return loads_learner(dumps_learner(learner), SEED, **kwargs)


@pytest.mark.unit
class TestRoundTrip:
    """Test that save then load reproduces a learner exactly."""

    def test_new_learner(self):
        """Test a learner that has not been trained."""
        learner = Learner(10, 4, 3, 3, [0.01] * 4, seed=SEED)
        loaded = round_trip(learner)

        assert loaded is not None
        assert loaded.current_error is None
        assert compare_learners(learner, loaded) == CompareResult.SAME

    def test_pretraining(self, pretraining_learner):
        """Test a learner with an active autocoder."""
        loaded = round_trip(pretraining_learner)

        assert loaded.state == TrainingState.PRETRAINING
        assert loaded.autocoder is not None
        assert compare_learners(pretraining_learner, loaded) == CompareResult.SAME

    def test_fine_tuning(self, fine_tuning_learner):
        """Test a learner in the fine-tuning phase."""
        assert fine_tuning_learner.state == TrainingState.FINE_TUNING
        loaded = round_trip(fine_tuning_learner)

        assert loaded.autocoder is None
        assert loaded.state == TrainingState.FINE_TUNING
        assert compare_learners(fine_tuning_learner, loaded) == CompareResult.SAME

    def test_complete(self, complete_learner):
        """Test a learner whose training is complete."""
        assert complete_learner.training_complete
        loaded = round_trip(complete_learner)

        assert loaded.training_complete
        assert compare_learners(complete_learner, loaded) == CompareResult.SAME

    def test_compacted_history(self):
        """Test a learner whose history has been compacted."""
        learner = train(Learner(4, 3, 1, 1, [0.0, 0.0], seed=SEED,
                                history_capacity=16), 301)
        assert learner.history.step > 1
        assert learner.history.counter > 0

        loaded = round_trip(learner, history_capacity=16)
        assert compare_learners(learner, loaded) == CompareResult.SAME

    def test_loaded_learner_keeps_training(self, pretraining_learner):
        """Test that a loaded learner trains exactly like the original."""
        loaded = round_trip(pretraining_learner)
        train(pretraining_learner, 25)
        train(loaded, 25)
        assert compare_learners(pretraining_learner, loaded) == CompareResult.SAME

    def test_file_round_trip(self, pretraining_learner, tmp_path):
        """Test saving to and loading from a file."""
        path = str(tmp_path / "learner.dat")

        assert save_learner_file(pretraining_learner, path) is True
        loaded = load_learner_file(path, SEED)

        assert compare_learners(pretraining_learner, loaded) == CompareResult.SAME

    def test_stream_round_trip(self, complete_learner):
        """Test saving to and loading from an open stream."""
        buffer = io.BytesIO()
        assert save_learner(complete_learner, buffer) is True
        buffer.seek(0)
        loaded = load_learner(buffer, SEED)
        assert compare_learners(complete_learner, loaded) == CompareResult.SAME


@pytest.mark.unit
class TestLayout:
    """Test the field order of the binary format."""

    def test_header_fields(self, pretraining_learner):
        """Test the leading scalar fields."""
        data = dumps_learner(pretraining_learner)
        complete, iterations, layer, error = struct.unpack_from('=iIid', data, 0)

        assert complete == 0
        assert iterations == 50
        assert layer == 0
        assert error == pretraining_learner.current_error

    def test_unknown_error_sentinel(self):
        """Test that an unmeasured error is written as the sentinel value."""
        data = dumps_learner(Learner(4, 3, 1, 1, [0.1, 0.1], seed=SEED))
        assert struct.unpack_from('=d', data, 12)[0] == binary_io.UNKNOWN_ERROR

    def test_trailing_fields(self, pretraining_learner):
        """Test autocoder flag, thresholds and history after the network."""
        net_buffer = io.BytesIO()
        pretraining_learner.network.save(net_buffer)
        auto_buffer = io.BytesIO()
        pretraining_learner.autocoder.save(auto_buffer)

        data = dumps_learner(pretraining_learner)
        offset = 20 + len(net_buffer.getvalue())
        assert struct.unpack_from('=i', data, offset)[0] == 1

        offset += 4 + len(auto_buffer.getvalue())
        thresholds = struct.unpack_from('=3d', data, offset)
        assert list(thresholds) == pretraining_learner.error_thresholds

        offset += 3 * 8
        history = pretraining_learner.history
        assert struct.unpack_from('=3i', data, offset) == (
            history.index, history.counter, history.step)

        offset += 3 * 4
        samples = struct.unpack_from(f'={history.index}d', data, offset)
        assert list(samples) == list(history.samples())
        assert len(data) == offset + history.index * 8

    def test_no_autocoder_flag(self, complete_learner):
        """Test that the autocoder flag is zero once pretraining is over."""
        net_buffer = io.BytesIO()
        complete_learner.network.save(net_buffer)
        data = dumps_learner(complete_learner)
        offset = 20 + len(net_buffer.getvalue())
        assert struct.unpack_from('=i', data, offset)[0] == 0


@pytest.mark.unit
class TestLoadFailures:
    """Test that bad data is reported as a failed load."""

    def test_truncated(self, pretraining_learner):
        """Test that truncated data does not load."""
        data = dumps_learner(pretraining_learner)
        assert loads_learner(data[:-3], SEED) is None
        assert loads_learner(data[:10], SEED) is None
        assert loads_learner(b'', SEED) is None

    def test_layer_out_of_range(self, pretraining_learner):
        """Test that a current layer beyond the hidden layers does not load."""
        data = bytearray(dumps_learner(pretraining_learner))
        struct.pack_into('=i', data, 8, 7)
        assert loads_learner(bytes(data), SEED) is None

    def test_complete_with_autocoder(self, pretraining_learner):
        """Test that a complete learner holding an autocoder does not load."""
        data = bytearray(dumps_learner(pretraining_learner))
        struct.pack_into('=i', data, 0, 1)
        assert loads_learner(bytes(data), SEED) is None

    def test_history_too_large_for_capacity(self):
        """Test that a history which would fill the smaller log does not load."""
        learner = train(Learner(4, 3, 1, 1, [0.1, 0.1], seed=SEED,
                                history_capacity=64), 20)
        data = dumps_learner(learner)

        assert loads_learner(data, SEED, history_capacity=20) is None
        assert loads_learner(data, SEED, history_capacity=10) is None

        loaded = loads_learner(data, SEED, history_capacity=21)
        assert loaded is not None
        loaded.advance()
        assert loaded.history.index == 10
        assert loaded.history.step == 2

    def test_missing_file(self, tmp_path):
        """Test that a missing file does not load."""
        assert load_learner_file(str(tmp_path / "missing.dat"), SEED) is None

    def test_unwritable_path(self, complete_learner, tmp_path):
        """Test that saving into a missing directory fails."""
        path = str(tmp_path / "no_such_dir" / "learner.dat")
        assert save_learner_file(complete_learner, path) is False


@pytest.mark.unit
class TestCompare:
    """Test the mismatch codes of the comparator."""

    @pytest.fixture
    def pair(self):
        """Two identically constructed and trained learners."""
        first = train(Learner(6, 4, 2, 2, [0.01] * 3, seed=SEED), 10)
        second = train(Learner(6, 4, 2, 2, [0.01] * 3, seed=SEED), 10)
        return first, second

    def test_identical(self, pair):
        """Test that identical learners compare as the same."""
        assert compare_learners(*pair) == CompareResult.SAME
        assert CompareResult.SAME > 0

    def test_layer(self, pair):
        first, second = pair
        second.current_layer = 1
        assert compare_learners(first, second) == CompareResult.LAYER

    def test_error(self, pair):
        first, second = pair
        second.current_error = None
        assert compare_learners(first, second) == CompareResult.ERROR

    def test_network(self, pair):
        first, second = pair
        second.network.weights[0][0, 0] += 1.0
        assert compare_learners(first, second) == CompareResult.NETWORK

    def test_autocoder_presence(self, pair):
        first, second = pair
        second.autocoder = None
        assert compare_learners(first, second) == CompareResult.AUTOCODER

    def test_history(self, pair):
        first, second = pair
        second.history.buffer[3] += 0.5
        assert compare_learners(first, second) == CompareResult.HISTORY_SAMPLE

        second.history.step = 2
        assert compare_learners(first, second) == CompareResult.HISTORY_STEP

        second.history.counter = 1
        assert compare_learners(first, second) == CompareResult.HISTORY_COUNTER

        second.history.index = 9
        assert compare_learners(first, second) == CompareResult.HISTORY_INDEX

    def test_iterations(self, pair):
        first, second = pair
        second.iteration_count += 1
        assert compare_learners(first, second) == CompareResult.ITERATIONS

    def test_thresholds(self, pair):
        first, second = pair
        second.error_thresholds[2] = 0.02
        assert compare_learners(first, second) == CompareResult.THRESHOLDS

    def test_training_complete(self, pair):
        first, second = pair
        second.training_complete = True
        assert compare_learners(first, second) == CompareResult.TRAINING_COMPLETE

    def test_autocoder_state(self, pair):
        first, second = pair
        second.autocoder.biases[0][0, 0] += 1.0
        assert compare_learners(first, second) == CompareResult.AUTOCODER_STATE
