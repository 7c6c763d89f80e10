"""
conftest.py
~~~~~~~~~~~

Shared fixtures. All data here is synthetic; no test touches the network.
"""

import os
import sys

# Keep the API server from reloading models or spawning its cleanup task
os.environ.setdefault('BASICNETS_BACKGROUND_TASKS', '0')

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np  # noqa: E402
import pytest  # noqa: E402


def make_image_data(n_train=120, n_test=40, shape=(28, 28), num_classes=10, seed=0):
    """
    Images whose class is encoded by which horizontal band is bright.

    Returns raw uint8 arrays in the same layout as ``fashion_mnist.load_data``.
    """
    rng = np.random.default_rng(seed)
    band = shape[0] // num_classes

    def make(n):
        labels = np.arange(n) % num_classes
        images = rng.integers(0, 40, size=(n,) + shape)
        for i, label in enumerate(labels):
            images[i, label * band:(label + 1) * band, :] = 255
        return images.astype(np.uint8), labels.astype(np.uint8)

    return make(n_train), make(n_test)


def make_housing_data(n_train=80, n_test=20, features=13, seed=0):
    """Targets are a noisy linear function of the features, in the 5-50 range."""
    rng = np.random.default_rng(seed)
    weights = rng.normal(size=features)

    def make(n):
        x = rng.normal(loc=10.0, scale=3.0, size=(n, features))
        y = 22.0 + 2.0 * ((x - 10.0) / 3.0) @ weights / np.sqrt(features)
        y += rng.normal(scale=0.5, size=n)
        return x, np.clip(y, 5.0, 50.0)

    return make(n_train), make(n_test)


@pytest.fixture
def image_data():
    return make_image_data()


@pytest.fixture
def housing_data():
    return make_housing_data()


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)
