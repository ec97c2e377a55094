"""
compare.py
~~~~~~~~~~

Field-by-field equality check between two learners, mainly used to verify
that a save and load round trip reproduced a learner exactly.
"""

import enum

from stacknet.learner import Learner


class CompareResult(enum.IntEnum):
    """Outcome of :func:`compare_learners`; negative values name the first mismatch."""
    SAME = 1
    LAYER = -1
    ERROR = -2
    NETWORK = -3
    AUTOCODER = -4
    HISTORY_INDEX = -5
    HISTORY_COUNTER = -6
    HISTORY_STEP = -7
    HISTORY_SAMPLE = -8
    ITERATIONS = -9
    THRESHOLDS = -10
    TRAINING_COMPLETE = -11
    AUTOCODER_STATE = -12


def compare_learners(learner1: Learner, learner2: Learner) -> CompareResult:
    """
    Compare two learners.

    Real-valued fields must match exactly. Networks are compared with the
    network's own ``compare`` method.

    Returns:
        CompareResult.SAME if the learners are identical, otherwise the
        code of the first field that differs
    """
    if learner1.current_layer != learner2.current_layer:
        return CompareResult.LAYER
    if learner1.current_error != learner2.current_error:
        return CompareResult.ERROR
    if learner1.network.compare(learner2.network) < 1:
        return CompareResult.NETWORK
    if (learner1.autocoder is None) != (learner2.autocoder is None):
        return CompareResult.AUTOCODER

    history1, history2 = learner1.history, learner2.history
    if history1.index != history2.index:
        return CompareResult.HISTORY_INDEX
    if history1.counter != history2.counter:
        return CompareResult.HISTORY_COUNTER
    if history1.step != history2.step:
        return CompareResult.HISTORY_STEP
    for i in range(history1.index):
        if history1.buffer[i] != history2.buffer[i]:
            return CompareResult.HISTORY_SAMPLE

    if learner1.iteration_count != learner2.iteration_count:
        return CompareResult.ITERATIONS
    if learner1.error_thresholds != learner2.error_thresholds:
        return CompareResult.THRESHOLDS
    if learner1.training_complete != learner2.training_complete:
        return CompareResult.TRAINING_COMPLETE
    if (learner1.autocoder is not None and
            learner1.autocoder.compare(learner2.autocoder) < 1):
        return CompareResult.AUTOCODER_STATE
    return CompareResult.SAME
