"""
losses.py
~~~~~~~~~

Loss functions. Each loss is callable as ``loss(y_true, y_pred)`` returning
the batch mean, and ``loss.gradient(y_true, y_pred)`` returns the gradient
of that mean with respect to ``y_pred``.
"""

from typing import Dict, Type, Union

import numpy as np

EPSILON = 1e-7


def _as_column(y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
    """Reshape ``(N,)`` targets to match ``(N, 1)`` predictions."""
    y_true = np.asarray(y_true, dtype=np.float64)
    if y_true.shape != y_pred.shape:
        if y_true.size != y_pred.size:
            raise ValueError(
                f"Targets of shape {y_true.shape} do not match "
                f"predictions of shape {y_pred.shape}"
            )
        y_true = y_true.reshape(y_pred.shape)
    return y_true


class Loss:
    name = 'loss'

    def __call__(self, y_true: np.ndarray, y_pred: np.ndarray) -> float:
        raise NotImplementedError

    def gradient(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class MeanSquaredError(Loss):
    name = 'mean_squared_error'

    def __call__(self, y_true, y_pred):
        y_true = _as_column(y_true, y_pred)
        return float(np.mean((y_pred - y_true) ** 2))

    def gradient(self, y_true, y_pred):
        y_true = _as_column(y_true, y_pred)
        return 2.0 * (y_pred - y_true) / y_pred.size


class MeanAbsoluteError(Loss):
    name = 'mean_absolute_error'

    def __call__(self, y_true, y_pred):
        y_true = _as_column(y_true, y_pred)
        return float(np.mean(np.abs(y_pred - y_true)))

    def gradient(self, y_true, y_pred):
        y_true = _as_column(y_true, y_pred)
        return np.sign(y_pred - y_true) / y_pred.size


class CategoricalCrossentropy(Loss):
    """Cross-entropy against one-hot targets."""

    name = 'categorical_crossentropy'

    def __call__(self, y_true, y_pred):
        y_true = np.asarray(y_true, dtype=np.float64)
        if y_true.shape != y_pred.shape:
            raise ValueError(
                f"One-hot targets of shape {y_true.shape} do not match "
                f"predictions of shape {y_pred.shape}"
            )
        probs = np.clip(y_pred, EPSILON, 1.0 - EPSILON)
        return float(-np.mean(np.sum(y_true * np.log(probs), axis=-1)))

    def gradient(self, y_true, y_pred):
        y_true = np.asarray(y_true, dtype=np.float64)
        probs = np.clip(y_pred, EPSILON, 1.0 - EPSILON)
        return -y_true / probs / y_pred.shape[0]


class SparseCategoricalCrossentropy(Loss):
    """Cross-entropy against integer class labels."""

    name = 'sparse_categorical_crossentropy'

    def _labels(self, y_true, y_pred):
        labels = np.asarray(y_true).reshape(-1).astype(np.int64)
        if labels.shape[0] != y_pred.shape[0]:
            raise ValueError(
                f"Got {labels.shape[0]} labels for {y_pred.shape[0]} predictions"
            )
        if labels.size and (labels.min() < 0 or labels.max() >= y_pred.shape[-1]):
            raise ValueError(
                f"Labels must be in [0, {y_pred.shape[-1] - 1}], "
                f"got range [{labels.min()}, {labels.max()}]"
            )
        return labels

    def __call__(self, y_true, y_pred):
        labels = self._labels(y_true, y_pred)
        probs = np.clip(y_pred[np.arange(len(labels)), labels], EPSILON, 1.0 - EPSILON)
        return float(-np.mean(np.log(probs)))

    def gradient(self, y_true, y_pred):
        labels = self._labels(y_true, y_pred)
        rows = np.arange(len(labels))
        grad = np.zeros_like(y_pred, dtype=np.float64)
        probs = np.clip(y_pred[rows, labels], EPSILON, 1.0 - EPSILON)
        grad[rows, labels] = -1.0 / probs / len(labels)
        return grad


_LOSSES: Dict[str, Type[Loss]] = {
    'mean_squared_error': MeanSquaredError,
    'mse': MeanSquaredError,
    'mean_absolute_error': MeanAbsoluteError,
    'mae': MeanAbsoluteError,
    'categorical_crossentropy': CategoricalCrossentropy,
    'sparse_categorical_crossentropy': SparseCategoricalCrossentropy,
}


def get(identifier: Union[str, Loss]) -> Loss:
    """
    Resolve a loss by name.

    Raises:
        ValueError: If the name is not known
    """
    if isinstance(identifier, Loss):
        return identifier
    try:
        return _LOSSES[identifier]()
    except (KeyError, TypeError):
        raise ValueError(
            f"Unknown loss '{identifier}'. Choose one of: {sorted(_LOSSES)}"
        ) from None
