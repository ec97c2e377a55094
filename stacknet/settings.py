"""
settings.py
~~~~~~~~~~~

Runtime configuration for stacknet, read from environment variables.

Every value has a sensible default so the library works without any
environment set up. Values are read once at import time; callers that need
per-instance values (for example a private plotting directory per learner)
pass them explicitly to the functions that accept them.
"""

import os
import logging
import tempfile


# Directory used for the plotting side-tool's scratch files
TEMP_DIRECTORY = os.getenv('STACKNET_TEMP_DIR', tempfile.gettempdir())

# Executable used to render the error history plot
PLOT_RENDERER = os.getenv('STACKNET_PLOT_RENDERER', 'gnuplot')

# Directory holding the SQLite learner catalogue
MODEL_DIR = os.getenv('STACKNET_MODEL_DIR', 'models')

# Default number of samples kept by the error history log
HISTORY_SIZE = int(os.getenv('STACKNET_HISTORY_SIZE', '1280'))

# HTTP port for the API server
PORT = int(os.getenv('PORT', '8000'))


def is_production() -> bool:
    """Return True when running with FLASK_ENV=production."""
    return os.getenv('FLASK_ENV') == 'production'


def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production():
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('stacknet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
