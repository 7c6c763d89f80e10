"""
fashion_mnist.py
~~~~~~~~~~~~~~~~

Fashion MNIST: 70,000 grayscale 28x28 images of clothing in 10 classes,
split into 60,000 training and 10,000 test images.

The raw IDX files are downloaded on first use. If a converted
``fashion_mnist.npz`` exists in the data directory (see
``scripts/convert_fashion_mnist_to_npz.py``) it is loaded instead.
"""

import logging
import os
from typing import Optional, Tuple

import numpy as np

from basicnets.datasets.utils import (
    IDX_IMAGES_MAGIC,
    IDX_LABELS_MAGIC,
    ORIGIN_BASE,
    DatasetError,
    get_file,
    read_idx,
    resolve_data_dir,
)

logger = logging.getLogger(__name__)

ORIGIN = ORIGIN_BASE

FILES = {
    'train_labels': 'train-labels-idx1-ubyte.gz',
    'train_images': 'train-images-idx3-ubyte.gz',
    'test_labels': 't10k-labels-idx1-ubyte.gz',
    'test_images': 't10k-images-idx3-ubyte.gz',
}

NPZ_NAME = 'fashion_mnist.npz'

CLASS_NAMES = ['T-shirt/top', 'Trouser', 'Pullover', 'Dress', 'Coat',
               'Sandal', 'Shirt', 'Sneaker', 'Bag', 'Ankle boot']

IMAGE_SHAPE = (28, 28)

ArrayPair = Tuple[np.ndarray, np.ndarray]


def load_idx_files(data_dir: Optional[str] = None) -> Tuple[ArrayPair, ArrayPair]:
    """Download (if needed) and parse the four IDX files."""
    data_dir = resolve_data_dir(data_dir)
    paths = {
        key: get_file(fname, ORIGIN + fname, data_dir)
        for key, fname in FILES.items()
    }

    y_train = read_idx(paths['train_labels'], IDX_LABELS_MAGIC)
    x_train = read_idx(paths['train_images'], IDX_IMAGES_MAGIC)
    y_test = read_idx(paths['test_labels'], IDX_LABELS_MAGIC)
    x_test = read_idx(paths['test_images'], IDX_IMAGES_MAGIC)

    for split, x, y in (('train', x_train, y_train), ('test', x_test, y_test)):
        if len(x) != len(y):
            raise DatasetError(
                f"Fashion MNIST {split} split has {len(x)} images "
                f"but {len(y)} labels"
            )
    return (x_train, y_train), (x_test, y_test)


def load_npz(path: str) -> Tuple[ArrayPair, ArrayPair]:
    """Load the four arrays from a converted ``.npz`` file."""
    try:
        with np.load(path) as data:
            return ((data['x_train'], data['y_train']),
                    (data['x_test'], data['y_test']))
    except (OSError, KeyError, ValueError) as e:
        raise DatasetError(f"Could not load {path}: {e}") from e


def save_npz(data: Tuple[ArrayPair, ArrayPair], path: str) -> None:
    """Save ``((x_train, y_train), (x_test, y_test))`` as a compressed ``.npz``."""
    (x_train, y_train), (x_test, y_test) = data
    np.savez_compressed(
        path,
        x_train=x_train,
        y_train=y_train,
        x_test=x_test,
        y_test=y_test
    )


def load_data(data_dir: Optional[str] = None) -> Tuple[ArrayPair, ArrayPair]:
    """
    Load the Fashion MNIST dataset.

    Args:
        data_dir: Cache directory (defaults to ``BASICNETS_DATA_DIR``)

    Returns:
        ``((x_train, y_train), (x_test, y_test))`` where images are uint8
        ``(n, 28, 28)`` arrays with values 0-255 and labels are uint8
        class indices into ``CLASS_NAMES``

    Raises:
        DatasetError: If the files cannot be downloaded or parsed
    """
    data_dir = resolve_data_dir(data_dir)
    npz_path = os.path.join(data_dir, NPZ_NAME)

    if os.path.exists(npz_path):
        logger.info(f"Loading Fashion MNIST from {npz_path}")
        (x_train, y_train), (x_test, y_test) = load_npz(npz_path)
    else:
        (x_train, y_train), (x_test, y_test) = load_idx_files(data_dir)

    logger.info(
        f"Fashion MNIST loaded: {len(x_train)} training, {len(x_test)} test images"
    )
    return (x_train, y_train), (x_test, y_test)
