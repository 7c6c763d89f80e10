"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the tutorial models.

This module provides endpoints for:
- Creating Fashion MNIST classifiers and Boston housing regressors
- Training models with real-time progress updates via WebSockets
- Evaluating models and rendering example predictions and training curves
- Persisting models to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for model persistence
"""

import sys
import uuid
import logging
from typing import Any, Dict, Optional, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from basicnets import config, plotting, tutorials
from basicnets.callbacks import LambdaCallback
from basicnets.datasets import DatasetError, fashion_mnist
from basicnets.logging_config import configure_logging
from basicnets.model_persistence import (
    save_model,
    load_model,
    list_saved_models,
    delete_model,
    delete_old_models
)

configure_logging()
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
    logger=not config.IS_PRODUCTION,
    engineio_logger=not config.IS_PRODUCTION,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

MODEL_DIR = config.MODEL_DIR
DATA_DIR = config.DATA_DIR

# Models currently loaded in memory: {model_id: model_info}
active_models: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# Preprocessed datasets, loaded on first use:
# {kind: ((x_train, y_train), (x_test, y_test))}
datasets: Dict[str, Tuple] = {}

# Default epochs per tutorial when the request does not say
DEFAULT_EPOCHS = {
    tutorials.FASHION_MNIST: 5,
    tutorials.BOSTON_HOUSING: 100,
}


# ============================================================================
# DATA LOADING
# ============================================================================

def get_dataset(kind: str) -> Tuple:
    """
    Return the preprocessed dataset for a tutorial, loading it once.

    Raises:
        DatasetError: If the dataset cannot be downloaded or parsed
    """
    if kind not in datasets:
        logger.info(f"Loading {kind} data...")
        if kind == tutorials.FASHION_MNIST:
            datasets[kind] = tutorials.prepare_fashion_mnist(data_dir=DATA_DIR)
        else:
            datasets[kind], _ = tutorials.prepare_boston_housing(data_dir=DATA_DIR)
        (x_train, _), (x_test, _) = datasets[kind]
        logger.info(f"Data loaded: {len(x_train)} training, {len(x_test)} test")
    return datasets[kind]


def register_model(model_id: str, model, kind: str, trained: bool = False,
                   metric_name: Optional[str] = None,
                   metric_value: Optional[float] = None) -> Dict[str, Any]:
    """Put a model into the in-memory registry."""
    info = {
        'model': model,
        'kind': kind,
        'architecture': model.sizes,
        'trained': trained,
        'metric_name': metric_name or tutorials.HEADLINE_METRIC[kind],
        'metric_value': metric_value,
        'history': None
    }
    active_models[model_id] = info
    return info


def reload_saved_models() -> None:
    """
    Reload all saved models from the database into memory.

    Called at startup to restore models that were saved before the
    application was restarted.
    """
    saved_models = list_saved_models(MODEL_DIR)

    if not saved_models:
        logger.info("No saved models to reload")
        return

    loaded_count = 0
    for info in saved_models:
        model_id = info['model_id']
        model = load_model(model_id, MODEL_DIR)
        if model is None:
            logger.warning(f"Failed to load model {model_id}")
            continue
        register_model(
            model_id, model, info['kind'],
            trained=info['trained'],
            metric_name=info['metric_name'],
            metric_value=info['metric_value']
        )
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} model(s) from database")


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_old_models_once(days: float = config.CLEANUP_DAYS) -> int:
    """
    Delete models older than ``days`` from the database, drop them from
    memory, and forget finished training jobs.

    Returns:
        Number of models deleted from the database (-1 on database error)
    """
    logger.info(f"Active models in memory before cleanup: {len(active_models)}")
    deleted_count = delete_old_models(days=days, model_dir=MODEL_DIR)

    if deleted_count > 0:
        # Remove any models from memory that no longer exist in database
        saved_ids = {info['model_id'] for info in list_saved_models(MODEL_DIR)}
        for model_id in [mid for mid in active_models if mid not in saved_ids]:
            if active_models[model_id]['trained']:
                del active_models[model_id]
                logger.info(f"Removed model {model_id} from memory (deleted from database)")
        logger.info(f"Cleanup completed: deleted {deleted_count} model(s)")
    elif deleted_count == 0:
        logger.info("Cleanup completed: no old models found to delete")
    else:
        logger.error("Cleanup returned error code")

    cleanup_finished_training_jobs()
    return deleted_count


def cleanup_old_models_task() -> None:
    """
    Background task that runs immediately on startup, then every 24 hours.
    """
    while True:
        try:
            cleanup_old_models_once()
            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during model cleanup: {e}")
            # Wait a bit before retrying on error (don't spam)
            gevent.sleep(3600)


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    Only removes jobs that are no longer active (completed or failed).
    """
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
    """
    Start the background cleanup task.

    Uses gevent.spawn() directly so it also runs under gunicorn.
    Calling it more than once has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_models_task)


if config.BACKGROUND_TASKS:
    reload_saved_models()
    start_cleanup_task()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _error(message: str, status: int):
    return jsonify({'error': message}), status


def _model_summary(model_id: str, info: Dict[str, Any], status: str) -> Dict[str, Any]:
    return {
        'model_id': model_id,
        'kind': info['kind'],
        'architecture': info['architecture'],
        'trained': info['trained'],
        'metric_name': info['metric_name'],
        'metric_value': info['metric_value'],
        'status': status
    }


def array_to_float_list(array: np.ndarray) -> list:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Counts only training jobs that are pending or in progress.
    """
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_models': len(active_models),
        'training_jobs': active_training,
        'kinds': list(tutorials.KINDS)
    }), 200


@app.route('/api/models', methods=['POST'])
def create_model():
    """
    Create a new tutorial model.

    Request body:
        {'kind': 'fashion_mnist' | 'boston_housing', 'seed': 42}

    Returns:
        JSON with model_id, kind, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    kind = data.get('kind', tutorials.FASHION_MNIST)
    seed = data.get('seed')

    if kind not in tutorials.KINDS:
        logger.warning(f"Invalid model kind requested: {kind}")
        return _error(f'Invalid kind. Must be one of: {list(tutorials.KINDS)}', 400)
    if seed is not None and (not isinstance(seed, int) or isinstance(seed, bool) or seed < 0):
        return _error('seed must be a non-negative integer', 400)

    model_id = str(uuid.uuid4())
    try:
        model = tutorials.build_model(kind, seed=seed)
    except Exception as e:
        logger.exception(f"Error creating model: {e}")
        return _error(f'Failed to create model: {str(e)}', 500)

    register_model(model_id, model, kind)
    logger.info(f"Created {kind} model {model_id} with architecture {model.sizes}")

    return jsonify({
        'model_id': model_id,
        'kind': kind,
        'architecture': model.sizes,
        'parameters': model.count_params(),
        'status': 'created'
    }), 201


@app.route('/api/models/<model_id>/train', methods=['POST'])
def train_model(model_id: str):
    """
    Start training a model in the background.

    Request body (all optional):
        {
            'epochs': 5,
            'batch_size': 32,
            'learning_rate': 0.001
        }

    Returns:
        JSON with job_id, model_id, and status
    """
    if model_id not in active_models:
        logger.warning(f"Training requested for non-existent model: {model_id}")
        return _error('Model not found', 404)

    kind = active_models[model_id]['kind']
    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', DEFAULT_EPOCHS[kind])
    batch_size = data.get('batch_size', 32)
    learning_rate = data.get('learning_rate')

    if not isinstance(epochs, int) or isinstance(epochs, bool) or epochs < 1:
        return _error('epochs must be a positive integer', 400)
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size < 1:
        return _error('batch_size must be a positive integer', 400)
    if learning_rate is not None and (
            not isinstance(learning_rate, (int, float)) or learning_rate <= 0):
        return _error('learning_rate must be a positive number', 400)

    busy = any(
        job['model_id'] == model_id and job['status'] in ('pending', 'training')
        for job in training_jobs.values()
    )
    if busy:
        return _error('Model is already training', 409)

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'model_id': model_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for model {model_id}: "
        f"epochs={epochs}, batch_size={batch_size}, lr={learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_model_task,
        model_id, job_id, epochs, batch_size, learning_rate
    )

    return jsonify({
        'job_id': job_id,
        'model_id': model_id,
        'status': 'training_started'
    }), 202


def train_model_task(
    model_id: str,
    job_id: str,
    epochs: int,
    batch_size: int,
    learning_rate: Optional[float] = None
) -> None:
    """
    Background task that trains a model.

    Sends progress updates via WebSocket after every epoch. The job fails
    if the model is deleted before or during training; a deleted model is
    never written back to the database.
    """
    job = training_jobs[job_id]

    def on_epoch_end(epoch: int, logs: Dict[str, float]) -> None:
        """Called after each training epoch to send progress updates."""
        if model_id not in active_models:
            model.stop_training = True

        progress = ((epoch + 1) / epochs) * 100
        job['status'] = 'training'
        job['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'model_id': model_id,
            'epoch': epoch + 1,
            'total_epochs': epochs,
            'progress': progress,
            'logs': {k: float(v) for k, v in logs.items()}
        })
        # Let gevent send the message immediately
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        info = active_models.get(model_id)
        if info is None:
            raise RuntimeError(f"Model {model_id} was deleted before training started")
        model = info['model']
        kind = info['kind']

        (x_train, y_train), (x_test, y_test) = get_dataset(kind)

        if learning_rate is not None:
            model.optimizer.learning_rate = float(learning_rate)

        history = model.fit(
            x_train, y_train,
            epochs=epochs,
            batch_size=batch_size,
            validation_split=0.2 if kind == tutorials.BOSTON_HOUSING else 0.0,
            callbacks=[LambdaCallback(on_epoch_end=on_epoch_end)],
            # Cooperative multitasking: serve HTTP requests between batches
            yield_func=lambda: gevent.sleep(0)
        )

        results = model.evaluate(x_test, y_test)
        test_metrics = dict(zip(['loss'] + model.metric_names, results))
        metric_name = tutorials.HEADLINE_METRIC[kind]
        metric_value = float(test_metrics[metric_name])

        if active_models.get(model_id) is not info:
            raise RuntimeError(f"Model {model_id} was deleted during training")

        info['trained'] = True
        info['metric_name'] = metric_name
        info['metric_value'] = metric_value
        info['history'] = history.history

        job['status'] = 'completed'
        job['progress'] = 100
        job['test_metrics'] = {k: float(v) for k, v in test_metrics.items()}

        save_model(model, model_id, kind, model_dir=MODEL_DIR, trained=True,
                   metric_name=metric_name, metric_value=metric_value)

        logger.info(f"Training completed for job {job_id}: {metric_name}={metric_value:.4f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'model_id': model_id,
            'status': 'completed',
            'metric_name': metric_name,
            'metric_value': metric_value,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'model_id': model_id,
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
    return _error('Training job not found', 404)


@app.route('/api/models', methods=['GET'])
def list_models():
    """List all available models (both in-memory and saved to disk)."""
    kind = request.args.get('kind')
    in_memory = [
        _model_summary(mid, info, 'in_memory')
        for mid, info in active_models.items()
        if kind is None or info['kind'] == kind
    ]

    saved_only = []
    for saved in list_saved_models(MODEL_DIR, kind=kind):
        if saved['model_id'] not in active_models:
            saved['status'] = 'saved'
            saved_only.append(saved)

    logger.debug(f"Listing models: {len(in_memory)} in memory, {len(saved_only)} saved")
    return jsonify({'models': in_memory + saved_only}), 200


@app.route('/api/models/<model_id>', methods=['DELETE'])
def delete_model_endpoint(model_id: str):
    """Delete a model from both memory and disk."""
    deleted_from_memory = active_models.pop(model_id, None) is not None
    deleted_from_disk = delete_model(model_id, MODEL_DIR)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent model: {model_id}")
        return _error('Model not found', 404)

    logger.info(
        f"Deleted model {model_id}: memory={deleted_from_memory}, disk={deleted_from_disk}"
    )
    return jsonify({
        'model_id': model_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/models', methods=['DELETE'])
def delete_all_models():
    """Delete all models from both memory and disk."""
    saved_ids = [info['model_id'] for info in list_saved_models(MODEL_DIR)]
    all_model_ids = set(active_models) | set(saved_ids)

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0
    for model_id in all_model_ids:
        if active_models.pop(model_id, None) is not None:
            deleted_from_memory_count += 1
        if model_id in saved_ids and delete_model(model_id, MODEL_DIR):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all models: {len(all_model_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )
    return jsonify({
        'deleted_count': len(all_model_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_model_ids)} model(s)'
    }), 200


@app.route('/api/models/cleanup', methods=['POST'])
def cleanup_old_models_endpoint():
    """
    Manually trigger cleanup of models older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to BASICNETS_CLEANUP_DAYS
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', config.CLEANUP_DAYS)

    if not isinstance(days, (int, float)) or isinstance(days, bool) or days < 0:
        return _error('days must be a non-negative number', 400)

    deleted_count = cleanup_old_models_once(days=days)
    if deleted_count == -1:
        return _error('Error occurred during cleanup', 500)

    logger.info(f"Manual cleanup: deleted {deleted_count} model(s) older than {days} day(s)")
    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} model(s) older than {days} day(s)'
    }), 200


@app.route('/api/models/<model_id>/evaluate', methods=['GET'])
def evaluate_model(model_id: str):
    """Evaluate a model on its tutorial's test set."""
    if model_id not in active_models:
        return _error('Model not found', 404)

    info = active_models[model_id]
    try:
        _, (x_test, y_test) = get_dataset(info['kind'])
    except DatasetError as e:
        logger.error(f"Test data not available: {e}")
        return _error('Test data not available', 503)

    model = info['model']
    results = model.evaluate(x_test, y_test)
    metrics = dict(zip(['loss'] + model.metric_names, results))
    return jsonify({
        'model_id': model_id,
        'kind': info['kind'],
        'samples': len(x_test),
        'test_metrics': {k: float(v) for k, v in metrics.items()}
    }), 200


def _find_example(model_id: str, want_correct: bool, max_attempts: int):
    """
    Find and return a random test image the classifier got right (or wrong).
    """
    if model_id not in active_models:
        logger.warning(f"Example requested for non-existent model: {model_id}")
        return _error('Model not found', 404)

    info = active_models[model_id]
    if info['kind'] != tutorials.FASHION_MNIST:
        return _error('Examples are only available for classification models', 400)

    try:
        _, (x_test, y_test) = get_dataset(info['kind'])
    except DatasetError as e:
        logger.error(f"Test data not available: {e}")
        return _error('Test data not available', 503)

    model = info['model']
    for attempt in range(max_attempts):
        index = int(np.random.randint(0, len(x_test)))
        image = x_test[index]
        output = model.predict(image[np.newaxis])[0]
        predicted = int(np.argmax(output))
        actual = int(y_test[index])

        if (predicted == actual) == want_correct:
            logger.debug(f"Found example on attempt {attempt + 1}")
            fig = plotting.plot_prediction(
                output, actual, image, fashion_mnist.CLASS_NAMES
            )
            return jsonify({
                'model_id': model_id,
                'example_index': index,
                'predicted_label': predicted,
                'predicted_class': fashion_mnist.CLASS_NAMES[predicted],
                'actual_label': actual,
                'actual_class': fashion_mnist.CLASS_NAMES[actual],
                'image_data': plotting.figure_to_base64(fig),
                'network_output': array_to_float_list(output)
            }), 200

    kind_word = 'successful' if want_correct else 'unsuccessful'
    logger.warning(f"No {kind_word} example found after {max_attempts} attempts")
    return _error(f'No {kind_word} example found after {max_attempts} attempts', 404)


@app.route('/api/models/<model_id>/successful_example', methods=['GET'])
def get_successful_example(model_id: str):
    """Return a random test image the model classified correctly."""
    return _find_example(model_id, want_correct=True, max_attempts=100)


@app.route('/api/models/<model_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(model_id: str):
    """Return a random test image the model classified incorrectly."""
    return _find_example(model_id, want_correct=False, max_attempts=200)


@app.route('/api/models/<model_id>/history_plot', methods=['GET'])
def get_history_plot(model_id: str):
    """
    Render the training curve of the model's last training run.

    Query parameters:
        metric: History key to plot (defaults to the headline metric)
    """
    if model_id not in active_models:
        return _error('Model not found', 404)

    info = active_models[model_id]
    history = info.get('history')
    if not history:
        return _error('No training history for this model', 404)

    metric = request.args.get('metric', info['metric_name'])
    try:
        fig = plotting.plot_history(history, metric)
    except ValueError as e:
        return _error(str(e), 400)

    return jsonify({
        'model_id': model_id,
        'metric': metric,
        'image_data': plotting.figure_to_base64(fig)
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = config.PORT
    logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not config.IS_PRODUCTION,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
