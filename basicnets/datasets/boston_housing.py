"""
boston_housing.py
~~~~~~~~~~~~~~~~~

Boston housing prices: 506 samples of 13 numeric features describing a
neighbourhood, with the median home value in thousands of dollars as the
target.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from basicnets.datasets.utils import ORIGIN_BASE, DatasetError, get_file

logger = logging.getLogger(__name__)

FILE_NAME = 'boston_housing.npz'

COLUMN_NAMES = ['CRIM', 'ZN', 'INDUS', 'CHAS', 'NOX', 'RM', 'AGE',
                'DIS', 'RAD', 'TAX', 'PTRATIO', 'B', 'LSTAT']

ArrayPair = Tuple[np.ndarray, np.ndarray]


def load_data(
    data_dir: Optional[str] = None,
    test_split: float = 0.2,
    seed: int = 113
) -> Tuple[ArrayPair, ArrayPair]:
    """
    Load the Boston housing dataset.

    Samples are shuffled with ``numpy.random.RandomState(seed)`` before the
    split, so the default arguments always give the same 404/102 partition.

    Args:
        data_dir: Cache directory (defaults to ``BASICNETS_DATA_DIR``)
        test_split: Fraction of samples reserved for the test set
        seed: Shuffle seed

    Returns:
        ``((x_train, y_train), (x_test, y_test))`` with ``x`` of shape
        ``(n, 13)`` and ``y`` of shape ``(n,)``

    Raises:
        ValueError: If ``test_split`` is not in [0, 1)
        DatasetError: If the file cannot be downloaded or parsed
    """
    if not 0.0 <= test_split < 1.0:
        raise ValueError(f"test_split must be in [0, 1), got {test_split}")

    path = get_file(FILE_NAME, ORIGIN_BASE + FILE_NAME, data_dir)
    try:
        with np.load(path) as f:
            x = f['x']
            y = f['y']
    except (OSError, KeyError, ValueError) as e:
        raise DatasetError(f"Could not load {path}: {e}") from e

    if len(x) != len(y):
        raise DatasetError(f"{path} has {len(x)} samples but {len(y)} targets")

    rng = np.random.RandomState(seed)
    indices = np.arange(len(x))
    rng.shuffle(indices)
    x = x[indices]
    y = y[indices]

    split_at = int(len(x) * (1 - test_split))
    x_train, y_train = np.array(x[:split_at]), np.array(y[:split_at])
    x_test, y_test = np.array(x[split_at:]), np.array(y[split_at:])

    logger.info(
        f"Boston housing loaded: {len(x_train)} training, {len(x_test)} test samples"
    )
    return (x_train, y_train), (x_test, y_test)
