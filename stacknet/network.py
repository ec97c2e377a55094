"""
network.py
~~~~~~~~~~

A dense feed-forward network of sigmoid units, trained one example at a
time with backpropagation.

Besides ordinary supervised training the network can build an autocoder
for any of its hidden layers, train it to reproduce the activations that
enter that layer, and copy the learned weights back in. This is what the
layer-wise learner in :mod:`stacknet.learner` uses for pretraining.

Vectors are numpy column vectors of shape (n, 1).
"""

import math
import logging
from typing import BinaryIO, List

import numpy as np

from stacknet import binary_io

# Configure module logger
logger = logging.getLogger(__name__)

# Weight given to each new error measurement in the running average
ERROR_SMOOTHING = 0.01

DEFAULT_LEARNING_RATE = 0.2


def sigmoid(z: np.ndarray) -> np.ndarray:
    """The sigmoid function."""
    return 1.0 / (1.0 + np.exp(-z))


class Network:
    """
    Dense sigmoid network with a fixed number of equally sized hidden layers.

    Attributes:
        learning_rate: Step size used by every training update
        dropout_percent: Percentage (0 to 100) of hidden units switched off
            on each training step
        error_average: Running average of the mean absolute output error,
            or None before the first training step
        iterations: Number of training steps performed, saturating at the
            largest unsigned 32-bit value
    """

    def __init__(
        self,
        no_of_inputs: int,
        no_of_hiddens: int,
        hidden_layers: int,
        no_of_outputs: int,
        seed: int = 0
    ):
        """
        Create a network with randomly initialised weights.

        Args:
            no_of_inputs: Number of input units
            no_of_hiddens: Number of units within each hidden layer
            hidden_layers: Number of hidden layers (may be zero)
            no_of_outputs: Number of output units
            seed: Random number generator seed

        Raises:
            ValueError: If the topology is not valid
        """
        if no_of_inputs < 1 or no_of_outputs < 1:
            raise ValueError("A network needs at least one input and one output")
        if hidden_layers < 0:
            raise ValueError(f"hidden_layers must be non-negative, got {hidden_layers}")
        if hidden_layers > 0 and no_of_hiddens < 1:
            raise ValueError(f"no_of_hiddens must be positive, got {no_of_hiddens}")

        self.no_of_inputs = no_of_inputs
        self.no_of_hiddens = no_of_hiddens
        self.hidden_layers = hidden_layers
        self.no_of_outputs = no_of_outputs
        self.seed = seed
        self.rng = np.random.default_rng(seed)

        sizes = self.sizes
        self.weights = [
            self.rng.standard_normal((y, x)) / np.sqrt(x)
            for x, y in zip(sizes[:-1], sizes[1:])
        ]
        self.biases = [self.rng.standard_normal((y, 1)) * 0.1 for y in sizes[1:]]

        self.learning_rate = DEFAULT_LEARNING_RATE
        self.dropout_percent = 0.0
        self.error_average = None
        self.iterations = 0

        self.inputs = np.zeros((no_of_inputs, 1))
        self.targets = np.zeros((no_of_outputs, 1))
        self.activations: List[np.ndarray] = []
        self.feed_forward()

    @property
    def sizes(self) -> List[int]:
        """Number of units in each layer, inputs first."""
        return ([self.no_of_inputs] +
                [self.no_of_hiddens] * self.hidden_layers +
                [self.no_of_outputs])

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes}, iterations={self.iterations})"

    # ------------------------------------------------------------------
    # Inputs and outputs
    # ------------------------------------------------------------------

    def set_input(self, index: int, value: float) -> None:
        self.inputs[index, 0] = value

    def set_output(self, index: int, value: float) -> None:
        """Set the desired value of an output unit."""
        self.targets[index, 0] = value

    def get_output(self, index: int) -> float:
        """Return the value of an output unit after the last forward pass."""
        return float(self.activations[-1][index, 0])

    def inputs_from_image(self, img: np.ndarray) -> None:
        """
        Set the inputs from a greyscale image, one byte per pixel.

        The input units are treated as a square grid and the image is
        sampled onto it with nearest-neighbour lookup.

        Raises:
            ValueError: If the image is not two dimensional or the number
                of inputs is not a perfect square
        """
        img = np.asarray(img)
        side = self._input_grid_side()
        if img.ndim != 2:
            raise ValueError(f"Expected a 2D greyscale image, got shape {img.shape}")

        height, width = img.shape
        rows = np.arange(side) * height // side
        cols = np.arange(side) * width // side
        sampled = img[np.ix_(rows, cols)]
        self.inputs = (sampled.astype(np.float64) / 255.0).reshape(-1, 1)

    def inputs_from_image_patch(self, img: np.ndarray, tx: int, ty: int) -> None:
        """
        Set the inputs from a square patch of a larger greyscale image.

        Args:
            img: 2D array of pixel values in the range 0 to 255
            tx: Left coordinate of the patch
            ty: Top coordinate of the patch

        Raises:
            ValueError: If the patch does not fit inside the image
        """
        img = np.asarray(img)
        side = self._input_grid_side()
        if img.ndim != 2:
            raise ValueError(f"Expected a 2D greyscale image, got shape {img.shape}")

        patch = img[ty:ty + side, tx:tx + side]
        if tx < 0 or ty < 0 or patch.shape != (side, side):
            raise ValueError(
                f"Patch at ({tx}, {ty}) of size {side} does not fit "
                f"inside image of shape {img.shape}"
            )
        self.inputs = (patch.astype(np.float64) / 255.0).reshape(-1, 1)

    def _input_grid_side(self) -> int:
        side = math.isqrt(self.no_of_inputs)
        if side * side != self.no_of_inputs:
            raise ValueError(
                f"{self.no_of_inputs} inputs cannot be arranged as a square grid"
            )
        return side

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def feed_forward(self, training: bool = False) -> np.ndarray:
        """
        Propagate the current inputs through the network.

        Dropout is only applied to hidden units, and only when training.

        Returns:
            The output layer activations
        """
        a = self.inputs
        activations = [a]
        last = len(self.weights) - 1
        for layer, (w, b) in enumerate(zip(self.weights, self.biases)):
            a = sigmoid(np.dot(w, a) + b)
            if training and layer < last and self.dropout_percent > 0:
                keep = self.rng.random(a.shape) >= self.dropout_percent / 100.0
                a = a * keep
            activations.append(a)
        self.activations = activations
        return a

    def update(self) -> None:
        """
        Perform one backpropagation step towards the current targets.

        The mean absolute output error measured on the forward pass is
        folded into ``error_average``.
        """
        output = self.feed_forward(training=True)
        error = float(np.mean(np.abs(self.targets - output)))

        delta = (output - self.targets) * output * (1.0 - output)
        for layer in reversed(range(len(self.weights))):
            a_prev = self.activations[layer]
            if layer > 0:
                next_delta = np.dot(self.weights[layer].T, delta) * a_prev * (1.0 - a_prev)
            self.weights[layer] -= self.learning_rate * np.dot(delta, a_prev.T)
            self.biases[layer] -= self.learning_rate * delta
            if layer > 0:
                delta = next_delta

        self._record_error(error)

    def _record_error(self, error: float) -> None:
        if self.error_average is None:
            self.error_average = error
        else:
            self.error_average += ERROR_SMOOTHING * (error - self.error_average)

        if self.iterations < binary_io.UINT_MAX:
            self.iterations += 1

    # ------------------------------------------------------------------
    # Autocoders
    # ------------------------------------------------------------------

    def create_autocoder(self, layer: int) -> 'Network':
        """
        Build an autocoder for the given hidden layer.

        The autocoder maps the activations entering ``layer`` through a
        hidden layer of the same width back onto themselves. Its encoder
        starts out as a copy of the layer's current weights.

        Raises:
            ValueError: If ``layer`` is not a hidden layer index
        """
        if not 0 <= layer < self.hidden_layers:
            raise ValueError(
                f"Layer {layer} out of range for {self.hidden_layers} hidden layers"
            )

        width = self.sizes[layer]
        autocoder = Network(width, self.sizes[layer + 1], 1, width,
                            seed=self.seed + layer + 1)
        autocoder.weights[0] = self.weights[layer].copy()
        autocoder.biases[0] = self.biases[layer].copy()
        autocoder.learning_rate = self.learning_rate
        autocoder.dropout_percent = self.dropout_percent
        logger.debug(f"Created autocoder for layer {layer}: {autocoder.sizes}")
        return autocoder

    def pretrain(self, autocoder: 'Network', layer: int) -> None:
        """Train the autocoder for one step on the activations entering ``layer``."""
        self.feed_forward()
        layer_inputs = self.activations[layer]
        autocoder.inputs = layer_inputs.copy()
        autocoder.targets = layer_inputs.copy()
        autocoder.update()

    def update_from_autocoder(self, autocoder: 'Network', layer: int) -> None:
        """Copy the autocoder's learned encoder into hidden layer ``layer``."""
        self.weights[layer] = autocoder.weights[0].copy()
        self.biases[layer] = autocoder.biases[0].copy()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, fp: BinaryIO) -> None:
        """Write the network's topology, settings and parameters."""
        binary_io.write_int(fp, self.no_of_inputs)
        binary_io.write_int(fp, self.no_of_hiddens)
        binary_io.write_int(fp, self.hidden_layers)
        binary_io.write_int(fp, self.no_of_outputs)
        binary_io.write_real(fp, self.learning_rate)
        binary_io.write_real(fp, self.dropout_percent)
        binary_io.write_real(fp, binary_io.encode_error(self.error_average))
        binary_io.write_uint(fp, self.iterations)
        for w, b in zip(self.weights, self.biases):
            binary_io.write_array(fp, w)
            binary_io.write_array(fp, b)

    @classmethod
    def load(cls, fp: BinaryIO, seed: int = 0) -> 'Network':
        """
        Read a network written by :meth:`save`.

        The seed initialises the random number generator used for dropout
        and for anything the saved data does not cover.

        Raises:
            ValueError: If the data is truncated or describes an invalid
                topology
            struct.error: If a field cannot be decoded
        """
        no_of_inputs = binary_io.read_int(fp)
        no_of_hiddens = binary_io.read_int(fp)
        hidden_layers = binary_io.read_int(fp)
        no_of_outputs = binary_io.read_int(fp)
        net = cls(no_of_inputs, no_of_hiddens, hidden_layers, no_of_outputs, seed)

        net.learning_rate = binary_io.read_real(fp)
        net.dropout_percent = binary_io.read_real(fp)
        net.error_average = binary_io.decode_error(binary_io.read_real(fp))
        net.iterations = binary_io.read_uint(fp)
        for layer, (w, b) in enumerate(zip(net.weights, net.biases)):
            net.weights[layer] = binary_io.read_array(fp, w.shape)
            net.biases[layer] = binary_io.read_array(fp, b.shape)

        net.feed_forward()
        return net

    def compare(self, other: 'Network') -> int:
        """
        Compare two networks field by field.

        Returns:
            1 if they are identical, otherwise a negative code for the
            first field that differs
        """
        if self.sizes != other.sizes:
            return -1
        if self.learning_rate != other.learning_rate:
            return -2
        if self.dropout_percent != other.dropout_percent:
            return -3
        for w1, w2 in zip(self.weights, other.weights):
            if not np.array_equal(w1, w2):
                return -4
        for b1, b2 in zip(self.biases, other.biases):
            if not np.array_equal(b1, b2):
                return -5
        if self.error_average != other.error_average:
            return -6
        if self.iterations != other.iterations:
            return -7
        return 1
