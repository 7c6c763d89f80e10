"""
metrics.py
~~~~~~~~~~

Metrics reported during ``fit`` and ``evaluate``. Unlike losses they are
never differentiated.
"""

from typing import Callable, Dict

import numpy as np

MetricFn = Callable[[np.ndarray, np.ndarray], float]


def accuracy(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Fraction of correct predictions.

    The flavour is picked from the shapes, the same way the loss would be:
    integer labels against class scores, one-hot targets against class
    scores, or a single sigmoid output thresholded at 0.5.
    """
    y_true = np.asarray(y_true)
    if y_pred.ndim == 2 and y_pred.shape[1] > 1:
        if y_true.ndim == 2 and y_true.shape[1] == y_pred.shape[1]:
            y_true = np.argmax(y_true, axis=1)
        predicted = np.argmax(y_pred, axis=1)
        return float(np.mean(predicted == y_true.reshape(-1).astype(np.int64)))

    predicted = (y_pred.reshape(-1) > 0.5).astype(np.int64)
    return float(np.mean(predicted == y_true.reshape(-1).astype(np.int64)))


def mean_absolute_error(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    y_true = np.asarray(y_true, dtype=np.float64).reshape(y_pred.shape)
    return float(np.mean(np.abs(y_pred - y_true)))


def mean_squared_error(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    y_true = np.asarray(y_true, dtype=np.float64).reshape(y_pred.shape)
    return float(np.mean((y_pred - y_true) ** 2))


_METRICS: Dict[str, MetricFn] = {
    'accuracy': accuracy,
    'acc': accuracy,
    'mae': mean_absolute_error,
    'mean_absolute_error': mean_absolute_error,
    'mse': mean_squared_error,
    'mean_squared_error': mean_squared_error,
}


def get(name: str) -> MetricFn:
    """
    Resolve a metric function by name.

    Raises:
        ValueError: If the name is not known
    """
    try:
        return _METRICS[name]
    except (KeyError, TypeError):
        raise ValueError(
            f"Unknown metric '{name}'. Choose one of: {sorted(_METRICS)}"
        ) from None
