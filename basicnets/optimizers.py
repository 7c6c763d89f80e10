"""
optimizers.py
~~~~~~~~~~~~~

Gradient-descent optimizers. ``apply(params, grads)`` updates every
parameter array in place. Per-parameter state (velocities, moment
estimates) is kept in lists indexed by the parameter's position, so the
same optimizer must always be given parameters in the same order.
"""

from typing import Dict, List, Type, Union

import numpy as np


class Optimizer:
    name = 'optimizer'

    def __init__(self, learning_rate: float = 0.01):
        if learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be positive, got {learning_rate}"
            )
        self.learning_rate = float(learning_rate)
        self.iterations = 0

    def apply(self, params: List[np.ndarray], grads: List[np.ndarray]) -> None:
        if len(params) != len(grads):
            raise ValueError(
                f"Got {len(grads)} gradients for {len(params)} parameters"
            )
        self.iterations += 1
        self._update(params, grads)

    def _update(self, params, grads):
        raise NotImplementedError

    def get_config(self) -> dict:
        return {'name': self.name, 'learning_rate': self.learning_rate}


class SGD(Optimizer):
    """Plain stochastic gradient descent with optional momentum."""

    name = 'sgd'

    def __init__(self, learning_rate: float = 0.01, momentum: float = 0.0):
        super().__init__(learning_rate)
        if not 0.0 <= momentum < 1.0:
            raise ValueError(f"momentum must be in [0, 1), got {momentum}")
        self.momentum = momentum
        self._velocities: List[np.ndarray] = []

    def _update(self, params, grads):
        if self.momentum == 0.0:
            for p, g in zip(params, grads):
                p -= self.learning_rate * g
            return

        if not self._velocities:
            self._velocities = [np.zeros_like(p) for p in params]
        for p, g, v in zip(params, grads, self._velocities):
            v *= self.momentum
            v -= self.learning_rate * g
            p += v


class RMSprop(Optimizer):
    name = 'rmsprop'

    def __init__(self, learning_rate: float = 0.001, rho: float = 0.9,
                 epsilon: float = 1e-7):
        super().__init__(learning_rate)
        self.rho = rho
        self.epsilon = epsilon
        self._mean_squares: List[np.ndarray] = []

    def _update(self, params, grads):
        if not self._mean_squares:
            self._mean_squares = [np.zeros_like(p) for p in params]
        for p, g, ms in zip(params, grads, self._mean_squares):
            ms *= self.rho
            ms += (1.0 - self.rho) * g ** 2
            p -= self.learning_rate * g / (np.sqrt(ms) + self.epsilon)


class Adam(Optimizer):
    name = 'adam'

    def __init__(self, learning_rate: float = 0.001, beta_1: float = 0.9,
                 beta_2: float = 0.999, epsilon: float = 1e-7):
        super().__init__(learning_rate)
        self.beta_1 = beta_1
        self.beta_2 = beta_2
        self.epsilon = epsilon
        self._m: List[np.ndarray] = []
        self._v: List[np.ndarray] = []

    def _update(self, params, grads):
        if not self._m:
            self._m = [np.zeros_like(p) for p in params]
            self._v = [np.zeros_like(p) for p in params]

        t = self.iterations
        lr_t = (self.learning_rate * np.sqrt(1.0 - self.beta_2 ** t)
                / (1.0 - self.beta_1 ** t))
        for p, g, m, v in zip(params, grads, self._m, self._v):
            m *= self.beta_1
            m += (1.0 - self.beta_1) * g
            v *= self.beta_2
            v += (1.0 - self.beta_2) * g ** 2
            p -= lr_t * m / (np.sqrt(v) + self.epsilon)


_OPTIMIZERS: Dict[str, Type[Optimizer]] = {
    'sgd': SGD,
    'rmsprop': RMSprop,
    'adam': Adam,
}


def get(identifier: Union[str, Optimizer]) -> Optimizer:
    """
    Resolve an optimizer by name (with default hyperparameters).

    Raises:
        ValueError: If the name is not known
    """
    if isinstance(identifier, Optimizer):
        return identifier
    try:
        return _OPTIMIZERS[str(identifier).lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown optimizer '{identifier}'. "
            f"Choose one of: {sorted(_OPTIMIZERS)}"
        ) from None
