"""
preprocessing.py
~~~~~~~~~~~~~~~~

Array preparation applied before training: pixel scaling, feature
standardization, one-hot encoding and paired shuffling.
"""

import logging
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def scale_pixels(images: np.ndarray) -> np.ndarray:
    """
    Scale 8-bit pixel intensities from [0, 255] to [0, 1].

    Args:
        images: Array of pixel values, any shape

    Returns:
        float32 array of the same shape

    Raises:
        ValueError: If any value falls outside [0, 255]
    """
    images = np.asarray(images)
    if images.size and (images.min() < 0 or images.max() > 255):
        raise ValueError(
            f"Pixel values must be in [0, 255], got range "
            f"[{images.min()}, {images.max()}]"
        )
    return images.astype(np.float32) / 255.0


def standardize(
    train: np.ndarray,
    *others: np.ndarray
) -> Tuple[Tuple[np.ndarray, ...], Tuple[np.ndarray, np.ndarray]]:
    """
    Standardize features to zero mean and unit variance.

    Statistics come from ``train`` only and are applied unchanged to every
    array in ``others`` (e.g. the test set), so nothing about the held-out
    data leaks into training.

    Args:
        train: Training features, shape ``(samples, features)``
        others: Further arrays with the same feature layout

    Returns:
        ``((train_norm, *others_norm), (mean, std))``
    """
    train = np.asarray(train, dtype=np.float64)
    mean = train.mean(axis=0)
    std = train.std(axis=0)
    # Constant columns stay centred but unscaled
    safe_std = np.where(std == 0, 1.0, std)
    if np.any(std == 0):
        logger.warning(
            f"{int(np.sum(std == 0))} constant feature column(s) left unscaled"
        )

    normalized = tuple(
        (np.asarray(a, dtype=np.float64) - mean) / safe_std
        for a in (train,) + others
    )
    return normalized, (mean, std)


def to_categorical(labels: np.ndarray, num_classes: Optional[int] = None) -> np.ndarray:
    """
    Convert integer class labels to one-hot rows.

    Raises:
        ValueError: If labels are negative or not below ``num_classes``
    """
    labels = np.asarray(labels).reshape(-1).astype(np.int64)
    if num_classes is None:
        num_classes = int(labels.max()) + 1 if labels.size else 0
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(
            f"Labels must be in [0, {num_classes - 1}], got range "
            f"[{labels.min()}, {labels.max()}]"
        )
    one_hot = np.zeros((labels.size, num_classes), dtype=np.float32)
    one_hot[np.arange(labels.size), labels] = 1.0
    return one_hot


def shuffle_arrays(
    x: np.ndarray,
    y: np.ndarray,
    seed: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Shuffle two arrays with the same random permutation."""
    if len(x) != len(y):
        raise ValueError(f"Cannot shuffle arrays of lengths {len(x)} and {len(y)}")
    order = np.random.default_rng(seed).permutation(len(x))
    return x[order], y[order]
