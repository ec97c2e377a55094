"""
learner.py
~~~~~~~~~~

Greedy layer-wise training of a deep feed-forward network.

Each hidden layer is first pretrained as an autocoder. Once the autocoder's
running error drops below that layer's threshold, its weights are promoted
into the main network and pretraining moves on to the next layer. After the
last hidden layer the whole network is fine-tuned against the supervised
targets until the final threshold is met.

The caller drives training: set the inputs (and, for fine-tuning, the
outputs), then call :meth:`Learner.advance` once per training example.

Example:
    >>> learner = Learner(4, 3, 2, 1, [0.1, 0.1, 0.1], seed=123)
    >>> while not learner.training_complete:
    ...     learner.set_inputs([0.2, 0.4, 0.6, 0.8])
    ...     learner.set_outputs([0.7])
    ...     learner.advance()
"""

import enum
import logging
from typing import Optional, Sequence, List

from stacknet import binary_io
from stacknet.history import ErrorHistory
from stacknet.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

# Autocoder training steps required before its running error is trusted
WARM_UP_ITERATIONS = 100


class TrainingState(enum.Enum):
    PRETRAINING = 'pretraining'
    FINE_TUNING = 'fine_tuning'
    COMPLETE = 'complete'


class Learner:
    """
    A deep network together with its layer-wise training progress.

    Attributes:
        network: The main network
        autocoder: Autocoder for the layer being pretrained, or None once
            every hidden layer has been promoted
        error_thresholds: Convergence threshold for each hidden layer,
            followed by the threshold for fine-tuning
        current_layer: Hidden layer being pretrained; equals the number of
            hidden layers once fine-tuning has begun
        training_complete: True once fine-tuning has converged
        current_error: Latest running error, or None when not yet measured
        iteration_count: Number of training steps taken, saturating at the
            largest unsigned 32-bit value
        history: Sampled error history
    """

    def __init__(
        self,
        no_of_inputs: int,
        no_of_hiddens: int,
        hidden_layers: int,
        no_of_outputs: int,
        error_thresholds: Sequence[float],
        seed: int = 0,
        history_capacity: Optional[int] = None,
        network_class=Network
    ):
        """
        Create a learner with an untrained network.

        Args:
            no_of_inputs: Number of input units
            no_of_hiddens: Number of units within each hidden layer
            hidden_layers: Number of hidden layers
            no_of_outputs: Number of output units
            error_thresholds: One threshold per hidden layer plus one for
                fine-tuning
            seed: Random number generator seed for the network
            history_capacity: Number of error samples kept
            network_class: Network implementation to train

        Raises:
            ValueError: If the thresholds do not match the topology
        """
        if len(error_thresholds) != hidden_layers + 1:
            raise ValueError(
                f"Expected {hidden_layers + 1} error thresholds, "
                f"got {len(error_thresholds)}"
            )

        network = network_class(no_of_inputs, no_of_hiddens, hidden_layers,
                                no_of_outputs, seed)
        autocoder = network.create_autocoder(0) if hidden_layers > 0 else None

        self._assign(
            network=network,
            autocoder=autocoder,
            error_thresholds=error_thresholds,
            current_layer=0,
            training_complete=False,
            current_error=None,
            iteration_count=0,
            history=ErrorHistory(history_capacity)
        )
        logger.info(
            f"Created learner with architecture {network.sizes}, "
            f"thresholds {self.error_thresholds}"
        )

    @classmethod
    def restore(
        cls,
        network,
        autocoder,
        error_thresholds: Sequence[float],
        current_layer: int,
        training_complete: bool,
        current_error: Optional[float],
        iteration_count: int,
        history: ErrorHistory
    ) -> 'Learner':
        """
        Assemble a learner from previously saved parts.

        Raises:
            ValueError: If the parts do not form a consistent learner
        """
        learner = cls.__new__(cls)
        learner._assign(network, autocoder, error_thresholds, current_layer,
                        training_complete, current_error, iteration_count,
                        history)
        learner.check_invariants()
        return learner

    def _assign(self, network, autocoder, error_thresholds, current_layer,
                training_complete, current_error, iteration_count, history):
        self.network = network
        self.autocoder = autocoder
        self.error_thresholds = [float(t) for t in error_thresholds]
        self.current_layer = current_layer
        self.training_complete = training_complete
        self.current_error = current_error
        self.iteration_count = iteration_count
        self.history = history

    def check_invariants(self) -> None:
        """
        Raises:
            ValueError: If the learner's fields contradict each other
        """
        hidden_layers = self.hidden_layers
        if not 0 <= self.current_layer <= hidden_layers:
            raise ValueError(
                f"Current layer {self.current_layer} outside "
                f"[0, {hidden_layers}]"
            )
        pretraining = self.current_layer < hidden_layers and not self.training_complete
        if (self.autocoder is not None) != pretraining:
            raise ValueError(
                f"Autocoder presence does not match layer {self.current_layer}"
            )
        if self.training_complete and self.current_layer != hidden_layers:
            raise ValueError("Training marked complete before fine-tuning")
        if len(self.error_thresholds) != hidden_layers + 1:
            raise ValueError(
                f"Expected {hidden_layers + 1} error thresholds, "
                f"got {len(self.error_thresholds)}"
            )
        if not 0 <= self.iteration_count <= binary_io.UINT_MAX:
            raise ValueError(f"Iteration count {self.iteration_count} out of range")

    @property
    def hidden_layers(self) -> int:
        return self.network.hidden_layers

    @property
    def state(self) -> TrainingState:
        if self.training_complete:
            return TrainingState.COMPLETE
        if self.current_layer < self.hidden_layers:
            return TrainingState.PRETRAINING
        return TrainingState.FINE_TUNING

    def __repr__(self) -> str:
        return (f"Learner(state={self.state.value}, layer={self.current_layer}, "
                f"error={self.current_error}, iterations={self.iteration_count})")

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def advance(self) -> None:
        """
        Perform one training step.

        Does nothing once training is complete.
        """
        if self.training_complete:
            return

        threshold = self.error_thresholds[self.current_layer]

        if self.current_layer < self.hidden_layers:
            self._pretrain_step(threshold)
        else:
            self._fine_tune_step(threshold)

        self.history.update(self.current_error)

        if self.iteration_count < binary_io.UINT_MAX:
            self.iteration_count += 1

    def _pretrain_step(self, threshold: float) -> None:
        layer = self.current_layer
        self.network.pretrain(self.autocoder, layer)
        self.current_error = self.autocoder.error_average

        # the running average is only trusted after the warm-up period
        if (self.current_error is not None and
                self.current_error < threshold and
                self.autocoder.iterations > WARM_UP_ITERATIONS):
            self.network.update_from_autocoder(self.autocoder, layer)
            self.autocoder = None
            self.current_layer += 1

            if self.current_layer < self.hidden_layers:
                self.autocoder = self.network.create_autocoder(self.current_layer)

            logger.info(
                f"Promoted hidden layer {layer} after {self.iteration_count + 1} "
                f"iterations (error {self.current_error:.6f} < {threshold})"
            )
            self.current_error = None
        else:
            logger.debug(f"Pretraining layer {layer}: error {self.current_error}")

    def _fine_tune_step(self, threshold: float) -> None:
        self.network.update()
        self.current_error = self.network.error_average

        if self.current_error is not None and self.current_error < threshold:
            self.training_complete = True
            logger.info(
                f"Training complete after {self.iteration_count + 1} iterations "
                f"(error {self.current_error:.6f} < {threshold})"
            )

    # ------------------------------------------------------------------
    # Network access
    # ------------------------------------------------------------------

    def feed_forward(self) -> None:
        self.network.feed_forward()

    def set_input(self, index: int, value: float) -> None:
        self.network.set_input(index, value)

    def set_output(self, index: int, value: float) -> None:
        self.network.set_output(index, value)

    def get_output(self, index: int) -> float:
        return self.network.get_output(index)

    def set_inputs(self, values: Sequence[float]) -> None:
        for index, value in enumerate(values):
            self.network.set_input(index, value)

    def set_outputs(self, values: Sequence[float]) -> None:
        for index, value in enumerate(values):
            self.network.set_output(index, value)

    def get_outputs(self) -> List[float]:
        return [self.network.get_output(i) for i in range(self.network.no_of_outputs)]

    def inputs_from_image(self, img) -> None:
        self.network.inputs_from_image(img)

    def inputs_from_image_patch(self, img, tx: int, ty: int) -> None:
        self.network.inputs_from_image_patch(img, tx, ty)

    def set_learning_rate(self, rate: float) -> None:
        """Set the learning rate of the network and of any active autocoder."""
        self.network.learning_rate = rate
        if self.autocoder is not None:
            self.autocoder.learning_rate = rate

    def set_dropouts(self, dropout_percent: float) -> None:
        """Set the dropout percentage of the network and of any active autocoder."""
        self.network.dropout_percent = dropout_percent
        if self.autocoder is not None:
            self.autocoder.dropout_percent = dropout_percent

    def close(self) -> None:
        """Release the network and any active autocoder."""
        self.autocoder = None
        self.network = None
