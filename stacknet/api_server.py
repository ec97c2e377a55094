"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for layer-wise training.

This module provides endpoints for:
- Creating and inspecting learners
- Training learners with real-time progress updates via WebSockets
- Querying learner outputs and error history plots
- Persisting learners to/from the SQLite catalogue

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for learner persistence
"""

import sys
import uuid
import logging
from typing import Dict, Any, List, Optional

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from stacknet import settings
from stacknet.learner import Learner
from stacknet.plotting import render_history_png
from stacknet.model_persistence import (
    save_learner,
    load_learner,
    list_saved_learners,
    delete_learner,
    delete_old_learners
)

settings.configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not settings.is_production(),
    engineio_logger=not settings.is_production(),
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Learners currently loaded in memory: {learner_id: {'learner': ..., 'seed': ...}}
active_learners: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# Upper bound on training steps per request
MAX_TRAINING_STEPS = 1_000_000

_initialized = False
_cleanup_task_started = False


def reload_saved_learners() -> None:
    """
    Reload all saved learners from the catalogue into memory.

    Keeps active_learners in sync with the database after a restart.
    """
    saved_learners = list_saved_learners()

    if not saved_learners:
        logger.info("No saved learners to reload")
        return

    loaded_count = 0
    for info in saved_learners:
        learner_id = info['learner_id']
        learner = load_learner(learner_id)
        if learner is not None:
            active_learners[learner_id] = {
                'learner': learner,
                'seed': info['seed']
            }
            loaded_count += 1
        else:
            logger.warning(f"Failed to load learner {learner_id}")

    logger.info(f"Reloaded {loaded_count} learner(s) from database")


@app.before_request
def initialize() -> None:
    """Restore saved learners and start background tasks on first use."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    reload_saved_learners()

    # Training jobs can't continue after a restart, so start fresh
    training_jobs.clear()
    start_cleanup_task()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

def cleanup_old_learners_task() -> None:
    """
    Background task that runs immediately, then every 24 hours, to delete
    learners older than 2 days and drop them from memory.
    """
    while True:
        try:
            logger.info("Starting automatic cleanup of old learners...")
            deleted_count = delete_old_learners(days=2)

            if deleted_count > 0:
                saved_ids = {info['learner_id'] for info in list_saved_learners()}
                for learner_id in [lid for lid in active_learners if lid not in saved_ids]:
                    del active_learners[learner_id]
                    logger.info(f"Removed learner {learner_id} from memory")
            elif deleted_count < 0:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except ValueError as e:
            logger.exception(f"Error during learner cleanup: {e}")
            gevent.sleep(3600)


def cleanup_finished_training_jobs() -> None:
    """Remove completed or failed training jobs from memory."""
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """Start the background cleanup task once."""
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    gevent.spawn(cleanup_old_learners_task)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def describe_learner(learner_id: str, learner: Learner) -> Dict[str, Any]:
    """Summarise a learner's training progress for JSON responses."""
    return {
        'learner_id': learner_id,
        'architecture': learner.network.sizes,
        'state': learner.state.value,
        'current_layer': learner.current_layer,
        'current_error': learner.current_error,
        'training_complete': learner.training_complete,
        'iterations': learner.iteration_count,
        'error_thresholds': learner.error_thresholds,
        'history_length': len(learner.history),
        'history_step': learner.history.step
    }


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_vector(value: Any, length: int) -> bool:
    return (isinstance(value, list) and len(value) == length and
            all(isinstance(v, (int, float)) for v in value))


def _validate_samples(samples: Any, learner: Learner) -> Optional[str]:
    """Return an error message if the training samples don't fit the learner."""
    if not isinstance(samples, list) or not samples:
        return 'samples must be a non-empty list'

    for sample in samples:
        if not isinstance(sample, dict):
            return 'each sample must be an object with inputs and outputs'
        if not _is_vector(sample.get('inputs'), learner.network.no_of_inputs):
            return f'inputs must be a list of {learner.network.no_of_inputs} numbers'
        outputs = sample.get('outputs', [])
        if outputs and not _is_vector(outputs, learner.network.no_of_outputs):
            return f'outputs must be a list of {learner.network.no_of_outputs} numbers'
    return None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return counts of loaded learners and active training jobs."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_learners': len(active_learners),
        'training_jobs': active_training
    }), 200


@app.route('/api/learners', methods=['POST'])
def create_learner():
    """
    Create a new learner.

    Request body:
        {
            'no_of_inputs': 10,
            'no_of_hiddens': 4,
            'hidden_layers': 2,
            'no_of_outputs': 2,
            'error_thresholds': [0.1, 0.1, 0.1],
            'seed': 123,              # optional
            'learning_rate': 0.2,     # optional
            'dropout_percent': 0      # optional
        }

    Returns:
        JSON description of the new learner
    """
    data = request.get_json(silent=True) or {}

    for key in ('no_of_inputs', 'no_of_hiddens', 'no_of_outputs'):
        if not _is_positive_int(data.get(key)):
            return jsonify({'error': f'{key} must be a positive integer'}), 400

    hidden_layers = data.get('hidden_layers')
    if not isinstance(hidden_layers, int) or isinstance(hidden_layers, bool) or hidden_layers < 0:
        return jsonify({'error': 'hidden_layers must be a non-negative integer'}), 400

    error_thresholds = data.get('error_thresholds')
    if not _is_vector(error_thresholds, hidden_layers + 1):
        return jsonify({
            'error': f'error_thresholds must be a list of {hidden_layers + 1} numbers'
        }), 400

    seed = data.get('seed', 0)
    if not isinstance(seed, int) or seed < 0:
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    learner = Learner(
        data['no_of_inputs'],
        data['no_of_hiddens'],
        hidden_layers,
        data['no_of_outputs'],
        error_thresholds,
        seed=seed
    )

    if 'learning_rate' in data:
        rate = data['learning_rate']
        if not isinstance(rate, (int, float)) or rate <= 0:
            return jsonify({'error': 'learning_rate must be a positive number'}), 400
        learner.set_learning_rate(float(rate))

    if 'dropout_percent' in data:
        dropout = data['dropout_percent']
        if not isinstance(dropout, (int, float)) or not 0 <= dropout < 100:
            return jsonify({'error': 'dropout_percent must be in the range 0 to 100'}), 400
        learner.set_dropouts(float(dropout))

    learner_id = str(uuid.uuid4())
    active_learners[learner_id] = {'learner': learner, 'seed': seed}
    logger.info(f"Created learner {learner_id} with architecture {learner.network.sizes}")

    return jsonify(describe_learner(learner_id, learner)), 201


@app.route('/api/learners', methods=['GET'])
def list_learners():
    """List all learners, both in memory and saved to the catalogue."""
    in_memory = []
    for learner_id, info in active_learners.items():
        summary = describe_learner(learner_id, info['learner'])
        summary['status'] = 'in_memory'
        in_memory.append(summary)

    saved_only = []
    for info in list_saved_learners():
        if info['learner_id'] not in active_learners:
            info['status'] = 'saved'
            saved_only.append(info)

    return jsonify({'learners': in_memory + saved_only}), 200


@app.route('/api/learners/<learner_id>', methods=['GET'])
def get_learner(learner_id: str):
    """Return the training progress of a learner."""
    if learner_id not in active_learners:
        return jsonify({'error': 'Learner not found'}), 404

    return jsonify(describe_learner(learner_id, active_learners[learner_id]['learner'])), 200


@app.route('/api/learners/<learner_id>/train', methods=['POST'])
def train_learner(learner_id: str):
    """
    Start training a learner in the background.

    The samples are presented in turn, one per training step, until the
    step limit is reached or training completes.

    Request body:
        {
            'samples': [{'inputs': [...], 'outputs': [...]}, ...],
            'steps': 10000,          # optional
            'report_every': 500      # optional
        }

    Returns:
        JSON with job_id, learner_id, and status
    """
    if learner_id not in active_learners:
        logger.warning(f"Training requested for non-existent learner: {learner_id}")
        return jsonify({'error': 'Learner not found'}), 404

    learner = active_learners[learner_id]['learner']
    data = request.get_json(silent=True) or {}
    samples = data.get('samples')
    steps = data.get('steps', 10000)
    report_every = data.get('report_every', 500)

    error = _validate_samples(samples, learner)
    if error:
        return jsonify({'error': error}), 400
    if not _is_positive_int(steps) or steps > MAX_TRAINING_STEPS:
        return jsonify({
            'error': f'steps must be a positive integer up to {MAX_TRAINING_STEPS}'
        }), 400
    if not _is_positive_int(report_every):
        return jsonify({'error': 'report_every must be a positive integer'}), 400

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'learner_id': learner_id,
        'status': 'pending',
        'progress': 0,
        'steps': steps
    }

    logger.info(f"Created training job {job_id} for learner {learner_id}: steps={steps}")

    socketio.start_background_task(
        train_learner_task,
        learner_id, job_id, samples, steps, report_every
    )

    return jsonify({
        'job_id': job_id,
        'learner_id': learner_id,
        'status': 'training_started'
    }), 202


def train_learner_task(
    learner_id: str,
    job_id: str,
    samples: List[Dict[str, List[float]]],
    steps: int,
    report_every: int
) -> None:
    """
    Background task that advances a learner over the given samples.

    Sends progress updates via WebSocket as training progresses and saves
    the learner to the catalogue when done.
    """
    info = active_learners[learner_id]
    learner = info['learner']
    job = training_jobs[job_id]
    job['status'] = 'training'

    try:
        for step in range(steps):
            sample = samples[step % len(samples)]
            learner.set_inputs(sample['inputs'])
            learner.set_outputs(sample.get('outputs', []))
            learner.advance()

            if learner.training_complete:
                break

            if (step + 1) % report_every == 0:
                job['progress'] = (step + 1) / steps * 100
                socketio.emit('training_update', {
                    'job_id': job_id,
                    'progress': job['progress'],
                    **describe_learner(learner_id, learner)
                })
                # Let gevent send the message and serve other requests
                gevent.sleep(0)

        if not save_learner(learner, learner_id, info['seed']):
            raise ValueError(f"Could not save learner {learner_id} to the catalogue")

        job['status'] = 'completed'
        job['progress'] = 100
        job['training_complete'] = learner.training_complete
        logger.info(
            f"Training job {job_id} finished: layer {learner.current_layer}, "
            f"complete={learner.training_complete}"
        )

        socketio.emit('training_complete', {
            'job_id': job_id,
            'status': 'completed',
            **describe_learner(learner_id, learner)
        })
        gevent.sleep(0)

    except (ValueError, IndexError) as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'learner_id': learner_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/learners/<learner_id>/predict', methods=['POST'])
def predict(learner_id: str):
    """
    Feed inputs through a learner's network.

    Request body:
        {'inputs': [...]}

    Returns:
        JSON with the output unit values
    """
    if learner_id not in active_learners:
        return jsonify({'error': 'Learner not found'}), 404

    learner = active_learners[learner_id]['learner']
    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')
    if not _is_vector(inputs, learner.network.no_of_inputs):
        return jsonify({
            'error': f'inputs must be a list of {learner.network.no_of_inputs} numbers'
        }), 400

    learner.set_inputs(inputs)
    learner.feed_forward()

    return jsonify({
        'learner_id': learner_id,
        'outputs': learner.get_outputs()
    }), 200


@app.route('/api/learners/<learner_id>/history', methods=['GET'])
def get_history(learner_id: str):
    """Return the learner's error history as samples and a PNG plot."""
    if learner_id not in active_learners:
        return jsonify({'error': 'Learner not found'}), 404

    history = active_learners[learner_id]['learner'].history
    return jsonify({
        'learner_id': learner_id,
        'step': history.step,
        'time_steps': history.time_steps(),
        'errors': [float(v) for v in history.samples()],
        'image_data': render_history_png(history)
    }), 200


@app.route('/api/learners/<learner_id>', methods=['DELETE'])
def delete_learner_endpoint(learner_id: str):
    """Delete a learner from both memory and the catalogue."""
    deleted_from_memory = active_learners.pop(learner_id, None) is not None
    deleted_from_disk = delete_learner(learner_id)

    if not deleted_from_memory and not deleted_from_disk:
        return jsonify({'error': 'Learner not found'}), 404

    logger.info(
        f"Deleted learner {learner_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )

    return jsonify({
        'learner_id': learner_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/learners/cleanup', methods=['POST'])
def cleanup_old_learners_endpoint():
    """
    Manually trigger cleanup of learners older than the given number of days.

    Request body (optional):
        {'days': 2}  # defaults to 2
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_learners(days=int(days))
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Deleted {deleted_count} learner(s) older than {days} day(s)'
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = settings.PORT
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not settings.is_production(),
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
