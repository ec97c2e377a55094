"""
history.py
~~~~~~~~~~

Fixed-capacity log of sampled training error values.

The log records one sample every ``step`` updates. When it fills up, the
even-numbered samples are discarded, keeping samples 1, 3, 5 and so on, and
the sampling stride doubles, so the whole training run always fits in the
buffer at progressively coarser resolution.
"""

import logging
from typing import List, Optional

import numpy as np

from stacknet import settings

# Configure module logger
logger = logging.getLogger(__name__)


class ErrorHistory:
    """
    Adaptive-resolution error history.

    Attributes:
        capacity: Maximum number of samples held
        buffer: Sample storage; only the first ``index`` entries are valid
        index: Number of samples currently stored
        counter: Updates seen since the last sample was taken
        step: Number of updates per sample
    """

    def __init__(self, capacity: Optional[int] = None):
        if capacity is None:
            capacity = settings.HISTORY_SIZE
        if capacity < 2:
            raise ValueError(f"History capacity must be at least 2, got {capacity}")

        self.capacity = capacity
        self.buffer = np.zeros(capacity)
        self.index = 0
        self.counter = 0
        self.step = 1

    def __len__(self) -> int:
        return self.index

    def update(self, error: Optional[float]) -> None:
        """
        Count one training update, sampling the error when the stride is reached.

        An unknown error (None) is recorded as zero.
        """
        self.counter += 1
        if self.counter < self.step:
            return

        self.buffer[self.index] = 0.0 if error is None else error
        self.index += 1
        self.counter = 0

        if self.index >= self.capacity:
            self.compact()

    def compact(self) -> None:
        """Halve the resolution of the log and double the sampling stride."""
        # slot k is written last from sample 2k+1, so odd-numbered samples
        # survive; write position i // 2 never passes read position i
        for i in range(self.index):
            self.buffer[i // 2] = self.buffer[i]
        self.index //= 2
        self.step *= 2
        logger.debug(f"History compacted to {self.index} samples, step {self.step}")

    def samples(self) -> np.ndarray:
        """Return a copy of the stored samples."""
        return self.buffer[:self.index].copy()

    def time_steps(self) -> List[int]:
        """Logical time coordinate of each stored sample."""
        return [i * self.step for i in range(self.index)]

    def restore(self, index: int, counter: int, step: int, samples) -> None:
        """
        Replace the log's state with previously saved values.

        Raises:
            ValueError: If the values cannot describe a valid log
        """
        # a full log is always compacted, so index == capacity is never valid
        if not 0 <= index < self.capacity:
            raise ValueError(
                f"History index {index} outside capacity {self.capacity}"
            )
        if step < 1 or counter < 0:
            raise ValueError(f"Invalid history stride {step} or counter {counter}")
        if len(samples) != index:
            raise ValueError(f"Expected {index} history samples, got {len(samples)}")

        self.buffer = np.zeros(self.capacity)
        self.buffer[:index] = samples
        self.index = index
        self.counter = counter
        self.step = step
