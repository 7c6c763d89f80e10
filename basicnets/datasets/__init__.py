"""
datasets package
~~~~~~~~~~~~~~~~

Loaders for the bundled example datasets. Each module exposes
``load_data()`` returning ``((x_train, y_train), (x_test, y_test))``.
"""

from basicnets.datasets import boston_housing, fashion_mnist
from basicnets.datasets.utils import DatasetError, get_file

__all__ = ['boston_housing', 'fashion_mnist', 'DatasetError', 'get_file']
