"""
callbacks.py
~~~~~~~~~~~~

Hooks invoked by ``Sequential.fit`` around epochs and batches.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

Logs = Dict[str, float]


class Callback:
    """Base class; subclasses override the hooks they need."""

    def __init__(self):
        self.model = None
        self.params: Dict[str, Any] = {}

    def set_model(self, model) -> None:
        self.model = model

    def set_params(self, params: Dict[str, Any]) -> None:
        self.params = params

    def on_train_begin(self, logs: Optional[Logs] = None) -> None:
        pass

    def on_train_end(self, logs: Optional[Logs] = None) -> None:
        pass

    def on_epoch_begin(self, epoch: int, logs: Optional[Logs] = None) -> None:
        pass

    def on_epoch_end(self, epoch: int, logs: Optional[Logs] = None) -> None:
        pass

    def on_batch_end(self, batch: int, logs: Optional[Logs] = None) -> None:
        pass


class CallbackList:
    """Fans each hook out to a list of callbacks."""

    def __init__(self, callbacks: List[Callback], model, params: Dict[str, Any]):
        self.callbacks = callbacks
        for callback in callbacks:
            callback.set_model(model)
            callback.set_params(params)

    def __getattr__(self, hook: str) -> Callable[..., None]:
        if not hook.startswith('on_'):
            raise AttributeError(hook)

        def dispatch(*args, **kwargs):
            for callback in self.callbacks:
                getattr(callback, hook)(*args, **kwargs)
        return dispatch


class History(Callback):
    """Records the logs of every epoch. Returned by ``fit``."""

    def on_train_begin(self, logs=None):
        self.epoch: List[int] = []
        self.history: Dict[str, List[float]] = {}

    def on_epoch_end(self, epoch, logs=None):
        self.epoch.append(epoch)
        for key, value in (logs or {}).items():
            self.history.setdefault(key, []).append(value)


class EarlyStopping(Callback):
    """
    Stop training when a monitored quantity has stopped improving.

    Args:
        monitor: Log key to watch, e.g. ``val_loss``
        min_delta: Minimum change that counts as an improvement
        patience: Epochs without improvement before stopping
        mode: ``min``, ``max`` or ``auto`` (``max`` for accuracy-like keys)
        restore_best_weights: Roll back to the best epoch's weights on stop
    """

    def __init__(
        self,
        monitor: str = 'val_loss',
        min_delta: float = 0.0,
        patience: int = 0,
        mode: str = 'auto',
        restore_best_weights: bool = False
    ):
        super().__init__()
        if mode not in ('auto', 'min', 'max'):
            raise ValueError(f"mode must be 'auto', 'min' or 'max', got '{mode}'")
        if mode == 'auto':
            mode = 'max' if 'acc' in monitor else 'min'
        self.monitor = monitor
        self.min_delta = abs(min_delta)
        self.patience = patience
        self.mode = mode
        self.restore_best_weights = restore_best_weights
        self.stopped_epoch = 0

    def _improved(self, current: float) -> bool:
        if self.mode == 'min':
            return current < self.best - self.min_delta
        return current > self.best + self.min_delta

    def on_train_begin(self, logs=None):
        self.wait = 0
        self.stopped_epoch = 0
        self.best = np.inf if self.mode == 'min' else -np.inf
        self.best_weights = None

    def on_epoch_end(self, epoch, logs=None):
        current = (logs or {}).get(self.monitor)
        if current is None:
            logger.warning(
                f"Early stopping conditioned on unavailable metric "
                f"'{self.monitor}'. Available: {sorted(logs or {})}"
            )
            return

        if self._improved(current):
            self.best = current
            self.wait = 0
            if self.restore_best_weights:
                self.best_weights = self.model.get_weights()
            return

        self.wait += 1
        if self.wait >= self.patience:
            self.stopped_epoch = epoch
            self.model.stop_training = True
            if self.restore_best_weights and self.best_weights is not None:
                self.model.set_weights(self.best_weights)

    def on_train_end(self, logs=None):
        if self.stopped_epoch > 0:
            logger.info(
                f"Early stopping at epoch {self.stopped_epoch + 1}: "
                f"{self.monitor} did not improve for {self.wait} epochs"
            )


class ProgressLogger(Callback):
    """
    Log a one-line summary every ``every`` epochs.

    Long regression runs (hundreds of epochs) would otherwise either be
    silent or flood the log.
    """

    def __init__(self, every: int = 100):
        super().__init__()
        if every < 1:
            raise ValueError(f"every must be a positive integer, got {every}")
        self.every = every

    def on_train_begin(self, logs=None):
        self._start = time.time()

    def on_epoch_end(self, epoch, logs=None):
        total = self.params.get('epochs')
        if (epoch + 1) % self.every and epoch + 1 != total:
            return
        summary = ', '.join(f"{k}={v:.4f}" for k, v in (logs or {}).items())
        logger.info(
            f"Epoch {epoch + 1}/{total} "
            f"({time.time() - self._start:.1f}s): {summary}"
        )


class LambdaCallback(Callback):
    """Wraps plain functions as a callback."""

    def __init__(
        self,
        on_epoch_end: Optional[Callable[[int, Logs], None]] = None,
        on_train_end: Optional[Callable[[Logs], None]] = None
    ):
        super().__init__()
        self._on_epoch_end = on_epoch_end
        self._on_train_end = on_train_end

    def on_epoch_end(self, epoch, logs=None):
        if self._on_epoch_end is not None:
            self._on_epoch_end(epoch, logs or {})

    def on_train_end(self, logs=None):
        if self._on_train_end is not None:
            self._on_train_end(logs or {})
