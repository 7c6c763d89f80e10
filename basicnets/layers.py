"""
layers.py
~~~~~~~~~

Layers that can be stacked inside a ``Sequential`` model.

A layer is built once its input shape is known. After ``build`` it exposes
``params`` (list of arrays updated in place by the optimizer) and, after a
``backward`` call, ``grads`` in the same order.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from basicnets import activations

logger = logging.getLogger(__name__)


class Layer:
    """Base class for all layers."""

    def __init__(self, input_shape: Optional[Sequence[int]] = None,
                 name: Optional[str] = None):
        self.input_shape: Optional[Tuple[int, ...]] = (
            tuple(input_shape) if input_shape is not None else None
        )
        self.name = name or type(self).__name__.lower()
        self.built = False
        self.params: List[np.ndarray] = []
        self.grads: List[np.ndarray] = []

    def build(self, input_shape: Tuple[int, ...],
              rng: np.random.Generator) -> None:
        """Create the layer's parameters for inputs of ``input_shape``."""
        self.input_shape = tuple(input_shape)
        self.built = True

    def compute_output_shape(self, input_shape: Tuple[int, ...]) -> Tuple[int, ...]:
        raise NotImplementedError

    @property
    def output_shape(self) -> Tuple[int, ...]:
        if self.input_shape is None:
            raise RuntimeError(f"Layer '{self.name}' has not been built")
        return self.compute_output_shape(self.input_shape)

    def forward(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def backward(self, grad: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def count_params(self) -> int:
        return int(sum(p.size for p in self.params))

    def get_config(self) -> dict:
        return {'class_name': type(self).__name__, 'name': self.name}

    def __getstate__(self) -> dict:
        # Forward-pass caches are not part of a saved model
        return {k: v for k, v in self.__dict__.items() if not k.startswith('_')}


class Flatten(Layer):
    """Flattens each sample to one dimension: ``(N, 28, 28) -> (N, 784)``."""

    def compute_output_shape(self, input_shape):
        return (int(np.prod(input_shape)),)

    def forward(self, x):
        self._batch_shape = x.shape
        return x.reshape(x.shape[0], -1)

    def backward(self, grad):
        return grad.reshape(self._batch_shape)


class Dense(Layer):
    """
    Fully connected layer computing ``activation(x @ W + b)``.

    Args:
        units: Number of output neurons
        activation: Activation name (``relu``, ``softmax``, ...) or None
        input_shape: Shape of one sample when this is the first layer
        kernel_initializer: ``glorot_uniform``, ``he_normal`` or ``zeros``
    """

    def __init__(
        self,
        units: int,
        activation: Optional[Union[str, activations.Activation]] = None,
        input_shape: Optional[Sequence[int]] = None,
        kernel_initializer: str = 'glorot_uniform',
        name: Optional[str] = None
    ):
        super().__init__(input_shape=input_shape, name=name)
        if not isinstance(units, (int, np.integer)) or units < 1:
            raise ValueError(f"units must be a positive integer, got {units}")
        if kernel_initializer not in ('glorot_uniform', 'he_normal', 'zeros'):
            raise ValueError(f"Unknown initializer '{kernel_initializer}'")
        self.units = int(units)
        self.activation = activations.get(activation)
        self.kernel_initializer = kernel_initializer

    def build(self, input_shape, rng):
        if len(input_shape) != 1:
            raise ValueError(
                f"Dense layer '{self.name}' expects flat inputs, got shape "
                f"{tuple(input_shape)}. Add a Flatten layer first."
            )
        fan_in, fan_out = int(input_shape[0]), self.units

        if self.kernel_initializer == 'glorot_uniform':
            limit = np.sqrt(6.0 / (fan_in + fan_out))
            kernel = rng.uniform(-limit, limit, size=(fan_in, fan_out))
        elif self.kernel_initializer == 'he_normal':
            kernel = rng.normal(0.0, np.sqrt(2.0 / fan_in), size=(fan_in, fan_out))
        else:
            kernel = np.zeros((fan_in, fan_out))

        self.kernel = kernel.astype(np.float64)
        self.bias = np.zeros(fan_out, dtype=np.float64)
        self.params = [self.kernel, self.bias]
        self.grads = [np.zeros_like(self.kernel), np.zeros_like(self.bias)]
        super().build(input_shape, rng)

    def compute_output_shape(self, input_shape):
        return (self.units,)

    def forward(self, x):
        self._x = x
        self._z = x @ self.kernel + self.bias
        self._a = self.activation.forward(self._z)
        return self._a

    def backward(self, grad):
        dz = self.activation.backward(self._z, self._a, grad)
        self.grads[0][...] = self._x.T @ dz
        self.grads[1][...] = dz.sum(axis=0)
        return dz @ self.kernel.T

    def get_config(self):
        config = super().get_config()
        config.update({
            'units': self.units,
            'activation': self.activation.name,
        })
        return config
