"""
export.py
~~~~~~~~~

Export of a learner's trained network for use outside stacknet.

The format is chosen from the file extension:

- ``.json``: topology and parameters as a JSON document
- ``.npz``: compressed numpy archive with one array per weight matrix and
  bias vector
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict

import numpy as np

from stacknet.learner import Learner

# Configure module logger
logger = logging.getLogger(__name__)

EXPORT_OK = 0
EXPORT_UNSUPPORTED = -1
EXPORT_IO_ERROR = -2


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays."""

    def default(self, obj: Any) -> Any:
        """
        Convert numpy arrays to lists for JSON serialization.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        return super().default(obj)


def network_document(learner: Learner) -> Dict[str, Any]:
    """Describe the learner's main network as a plain dictionary."""
    net = learner.network
    return {
        'architecture': net.sizes,
        'training_complete': learner.training_complete,
        'current_layer': learner.current_layer,
        'iterations': learner.iteration_count,
        'learning_rate': net.learning_rate,
        'weights': net.weights,
        'biases': net.biases
    }


def export_learner(learner: Learner, path: str) -> int:
    """
    Export the learner's network to a file.

    Args:
        learner: Learner whose network is exported
        path: Destination; the extension selects the format

    Returns:
        int: EXPORT_OK on success, EXPORT_UNSUPPORTED for an unknown
        extension, EXPORT_IO_ERROR if the file could not be written
    """
    suffix = Path(path).suffix.lower()

    try:
        if suffix == '.json':
            with open(path, 'w') as fp:
                json.dump(network_document(learner), fp, cls=NetworkEncoder)
        elif suffix == '.npz':
            arrays = {}
            for layer, (w, b) in enumerate(zip(learner.network.weights,
                                               learner.network.biases)):
                arrays[f'weights_{layer}'] = w
                arrays[f'biases_{layer}'] = b
            np.savez_compressed(
                path,
                architecture=np.array(learner.network.sizes),
                **arrays
            )
        else:
            logger.error(f"Unsupported export format '{suffix}' for '{path}'")
            return EXPORT_UNSUPPORTED

    except OSError as e:
        logger.error(f"Error exporting learner to '{path}': {e}")
        return EXPORT_IO_ERROR

    logger.info(f"Exported network {learner.network.sizes} to '{path}'")
    return EXPORT_OK
