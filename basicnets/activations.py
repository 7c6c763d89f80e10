"""
activations.py
~~~~~~~~~~~~~~

Element-wise and row-wise activation functions with their backward passes.

Each activation exposes ``forward(z)`` and ``backward(z, a, grad)`` where
``a`` is the cached output of ``forward(z)`` and ``grad`` is the gradient of
the loss with respect to ``a``. ``backward`` returns the gradient with respect
to ``z``.
"""

from typing import Callable, Dict, Optional, Union

import numpy as np


class Activation:
    """Base class for activation functions."""

    name = 'activation'

    def forward(self, z: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def backward(self, z: np.ndarray, a: np.ndarray, grad: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return self.name


class Linear(Activation):
    name = 'linear'

    def forward(self, z):
        return z

    def backward(self, z, a, grad):
        return grad


class ReLU(Activation):
    name = 'relu'

    def forward(self, z):
        return np.maximum(z, 0.0)

    def backward(self, z, a, grad):
        return grad * (z > 0)


class Sigmoid(Activation):
    name = 'sigmoid'

    def forward(self, z):
        # Clip to keep np.exp from overflowing on large negative inputs
        return 1.0 / (1.0 + np.exp(-np.clip(z, -500, 500)))

    def backward(self, z, a, grad):
        return grad * a * (1.0 - a)


class Tanh(Activation):
    name = 'tanh'

    def forward(self, z):
        return np.tanh(z)

    def backward(self, z, a, grad):
        return grad * (1.0 - a ** 2)


class Softmax(Activation):
    """Row-wise softmax over the last axis."""

    name = 'softmax'

    def forward(self, z):
        shifted = z - np.max(z, axis=-1, keepdims=True)
        exp = np.exp(shifted)
        return exp / np.sum(exp, axis=-1, keepdims=True)

    def backward(self, z, a, grad):
        # Jacobian-vector product of softmax, one row at a time
        return a * (grad - np.sum(grad * a, axis=-1, keepdims=True))


_ACTIVATIONS: Dict[str, Callable[[], Activation]] = {
    'linear': Linear,
    'relu': ReLU,
    'sigmoid': Sigmoid,
    'tanh': Tanh,
    'softmax': Softmax,
}


def get(identifier: Optional[Union[str, Activation]]) -> Activation:
    """
    Resolve an activation by name.

    Args:
        identifier: Activation name, an ``Activation`` instance, or None
            for the identity

    Returns:
        Activation instance

    Raises:
        ValueError: If the name is not known
    """
    if identifier is None:
        return Linear()
    if isinstance(identifier, Activation):
        return identifier
    try:
        return _ACTIVATIONS[identifier]()
    except KeyError:
        raise ValueError(
            f"Unknown activation '{identifier}'. "
            f"Choose one of: {sorted(_ACTIVATIONS)}"
        ) from None
