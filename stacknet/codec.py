"""
codec.py
~~~~~~~~

Binary save and load of a complete :class:`~stacknet.learner.Learner`.

Fields are written in a fixed order with native widths:

1. training complete flag (int)
2. iteration count (unsigned int)
3. current layer (int)
4. current error (double, -9999.0 when unknown)
5. main network (the network's own format)
6. autocoder present flag (int, 1 or 0)
7. autocoder (the network's own format), only if present
8. error thresholds, one double per hidden layer plus one
9. history index, counter and step (ints)
10. the stored history samples (doubles)

The random seed is not saved; loading needs the seed the learner was
created with.
"""

import io
import struct
import logging
from typing import BinaryIO, Optional

from stacknet import binary_io
from stacknet.history import ErrorHistory
from stacknet.learner import Learner
from stacknet.network import Network

# Configure module logger
logger = logging.getLogger(__name__)


def write_learner(learner: Learner, fp: BinaryIO) -> None:
    """
    Write a learner to a binary stream.

    Raises:
        OSError: If the stream cannot be written
    """
    binary_io.write_int(fp, 1 if learner.training_complete else 0)
    binary_io.write_uint(fp, learner.iteration_count)
    binary_io.write_int(fp, learner.current_layer)
    binary_io.write_real(fp, binary_io.encode_error(learner.current_error))

    learner.network.save(fp)
    if learner.autocoder is not None:
        binary_io.write_int(fp, 1)
        learner.autocoder.save(fp)
    else:
        binary_io.write_int(fp, 0)

    for threshold in learner.error_thresholds:
        binary_io.write_real(fp, threshold)

    history = learner.history
    binary_io.write_int(fp, history.index)
    binary_io.write_int(fp, history.counter)
    binary_io.write_int(fp, history.step)
    binary_io.write_array(fp, history.buffer[:history.index])


def read_learner(
    fp: BinaryIO,
    seed: int = 0,
    history_capacity: Optional[int] = None,
    network_class=Network
) -> Learner:
    """
    Read a learner written by :func:`write_learner`.

    Raises:
        ValueError: If the data is truncated or inconsistent
        struct.error: If a field cannot be decoded
        OSError: If the stream cannot be read
    """
    training_complete = binary_io.read_int(fp) != 0
    iteration_count = binary_io.read_uint(fp)
    current_layer = binary_io.read_int(fp)
    current_error = binary_io.decode_error(binary_io.read_real(fp))

    network = network_class.load(fp, seed)
    autocoder = None
    if binary_io.read_int(fp) == 1:
        # autocoders are seeded per layer, as in Network.create_autocoder
        autocoder = network_class.load(fp, seed + current_layer + 1)

    error_thresholds = [
        binary_io.read_real(fp) for _ in range(network.hidden_layers + 1)
    ]

    index = binary_io.read_int(fp)
    counter = binary_io.read_int(fp)
    step = binary_io.read_int(fp)
    if index < 0:
        raise ValueError(f"Negative history index {index}")
    history = ErrorHistory(history_capacity)
    history.restore(index, counter, step, binary_io.read_array(fp, (index,)))

    return Learner.restore(
        network=network,
        autocoder=autocoder,
        error_thresholds=error_thresholds,
        current_layer=current_layer,
        training_complete=training_complete,
        current_error=current_error,
        iteration_count=iteration_count,
        history=history
    )


def save_learner(learner: Learner, fp: BinaryIO) -> bool:
    """
    Save a learner to an open binary file.

    Returns:
        bool: True if successful, False otherwise
    """
    try:
        write_learner(learner, fp)
        return True
    except (OSError, struct.error) as e:
        logger.error(f"Error saving learner: {e}")
        return False


def load_learner(
    fp: BinaryIO,
    seed: int = 0,
    history_capacity: Optional[int] = None,
    network_class=Network
) -> Optional[Learner]:
    """
    Load a learner from an open binary file.

    Args:
        fp: File opened for binary reading
        seed: The random seed the learner was originally created with
        history_capacity: Capacity of the restored error history
        network_class: Network implementation used to decode the networks

    Returns:
        The loaded learner, or None if the data could not be read
    """
    try:
        return read_learner(fp, seed, history_capacity, network_class)
    except (ValueError, struct.error) as e:
        logger.error(f"Invalid learner data: {e}")
        return None
    except OSError as e:
        logger.error(f"Error reading learner: {e}")
        return None


def dumps_learner(learner: Learner) -> bytes:
    """Serialise a learner to bytes."""
    buffer = io.BytesIO()
    write_learner(learner, buffer)
    return buffer.getvalue()


def loads_learner(data: bytes, seed: int = 0, **kwargs) -> Optional[Learner]:
    """Deserialise a learner from bytes, returning None if the data is invalid."""
    return load_learner(io.BytesIO(data), seed, **kwargs)


def save_learner_file(learner: Learner, path: str) -> bool:
    """
    Save a learner to the given path.

    Returns:
        bool: True if successful, False if the file could not be written
    """
    try:
        with open(path, 'wb') as fp:
            return save_learner(learner, fp)
    except OSError as e:
        logger.error(f"Could not open '{path}' for writing: {e}")
        return False


def load_learner_file(path: str, seed: int = 0, **kwargs) -> Optional[Learner]:
    """Load a learner from the given path, returning None on failure."""
    try:
        with open(path, 'rb') as fp:
            return load_learner(fp, seed, **kwargs)
    except OSError as e:
        logger.error(f"Could not open '{path}' for reading: {e}")
        return None
