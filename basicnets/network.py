"""
network.py
~~~~~~~~~~

A sequential neural network trained with mini-batch gradient descent.

Layers are stacked in order; the model is built (parameters allocated) as
soon as the input shape is known, either from the first layer's
``input_shape`` or from the first batch passed to ``fit``/``predict``.
Gradients are computed by backpropagation through the layers in reverse
order and applied by the optimizer chosen in ``compile``.

Data is batch-major: ``x`` has shape ``(samples, *features)``.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from basicnets import losses as losses_module
from basicnets import metrics as metrics_module
from basicnets import optimizers as optimizers_module
from basicnets.callbacks import Callback, CallbackList, History
from basicnets.layers import Dense, Layer

logger = logging.getLogger(__name__)


class Sequential:
    """
    A linear stack of layers.

    Example:
        >>> model = Sequential([
        ...     Flatten(input_shape=(28, 28)),
        ...     Dense(128, activation='relu'),
        ...     Dense(10, activation='softmax'),
        ... ])
        >>> model.compile('adam', 'sparse_categorical_crossentropy', ['accuracy'])
        >>> history = model.fit(train_images, train_labels, epochs=5)
    """

    def __init__(
        self,
        layers: Optional[Sequence[Layer]] = None,
        name: Optional[str] = None,
        seed: Optional[int] = None
    ):
        self.name = name or 'sequential'
        self.layers: List[Layer] = []
        self.built = False
        self.stop_training = False
        self.optimizer: Optional[optimizers_module.Optimizer] = None
        self.loss: Optional[losses_module.Loss] = None
        self.metric_names: List[str] = []
        self._metric_fns: list = []
        self._rng = np.random.default_rng(seed)

        for layer in layers or []:
            self.add(layer)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add(self, layer: Layer) -> None:
        """
        Append a layer. The first layer may carry ``input_shape``; once the
        model is built, each new layer is built from the previous layer's
        output shape.
        """
        if not isinstance(layer, Layer):
            raise TypeError(f"Expected a Layer, got {type(layer).__name__}")
        self.layers.append(layer)
        if self.built:
            try:
                layer.build(self.layers[-2].output_shape, self._rng)
            except ValueError:
                self.layers.pop()
                raise
        elif len(self.layers) == 1 and layer.input_shape is not None:
            self.build(layer.input_shape)

    def build(self, input_shape: Sequence[int]) -> None:
        """
        Allocate every layer's parameters for samples of ``input_shape``.

        Args:
            input_shape: Shape of a single sample, without the batch axis
        """
        if not self.layers:
            raise RuntimeError("Cannot build a model without layers")
        shape = tuple(int(d) for d in input_shape)
        for layer in self.layers:
            layer.build(shape, self._rng)
            shape = layer.compute_output_shape(shape)
        self.built = True
        logger.debug(f"Built model '{self.name}' with sizes {self.sizes}")

    @property
    def input_shape(self) -> Optional[Tuple[int, ...]]:
        return self.layers[0].input_shape if self.layers else None

    @property
    def sizes(self) -> List[int]:
        """
        Width of each layer: flattened input size followed by the output
        size of every ``Dense`` layer, e.g. ``[784, 128, 10]``.
        """
        if not self.built:
            return []
        sizes = [int(np.prod(self.layers[0].input_shape))]
        sizes.extend(layer.units for layer in self.layers if isinstance(layer, Dense))
        return sizes

    def count_params(self) -> int:
        return sum(layer.count_params() for layer in self.layers)

    def summary(self) -> str:
        """Return (and log) a table of layers, output shapes and parameter counts."""
        if not self.built:
            raise RuntimeError("Model must be built before calling summary()")
        rows = [f'Model: "{self.name}"',
                f"{'Layer (type)':<28}{'Output Shape':<20}{'Param #':>10}",
                '=' * 58]
        for layer in self.layers:
            label = f"{layer.name} ({type(layer).__name__})"
            rows.append(f"{label:<28}{str((None,) + layer.output_shape):<20}"
                        f"{layer.count_params():>10}")
        rows.append('=' * 58)
        rows.append(f"Total params: {self.count_params():,}")
        text = '\n'.join(rows)
        logger.info('\n' + text)
        return text

    def get_weights(self) -> List[np.ndarray]:
        return [p.copy() for layer in self.layers for p in layer.params]

    def set_weights(self, weights: Sequence[np.ndarray]) -> None:
        """Copy ``weights`` into the model's parameters, in ``get_weights`` order."""
        params = [p for layer in self.layers for p in layer.params]
        if len(weights) != len(params):
            raise ValueError(
                f"Expected {len(params)} weight arrays, got {len(weights)}"
            )
        for param, value in zip(params, weights):
            value = np.asarray(value)
            if value.shape != param.shape:
                raise ValueError(
                    f"Weight shape mismatch: expected {param.shape}, got {value.shape}"
                )
            param[...] = value

    def get_config(self) -> dict:
        return {
            'name': self.name,
            'input_shape': list(self.input_shape) if self.input_shape else None,
            'layers': [layer.get_config() for layer in self.layers],
            'optimizer': self.optimizer.get_config() if self.optimizer else None,
            'loss': self.loss.name if self.loss else None,
            'metrics': list(self.metric_names),
        }

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def compile(
        self,
        optimizer: Union[str, optimizers_module.Optimizer] = 'sgd',
        loss: Union[str, losses_module.Loss] = 'mse',
        metrics: Optional[Sequence[str]] = None
    ) -> None:
        """
        Configure the model for training.

        Args:
            optimizer: Optimizer name (``adam``, ``rmsprop``, ``sgd``) or instance
            loss: Loss name or instance
            metrics: Metric names reported alongside the loss

        Raises:
            ValueError: If any name is unknown
        """
        self.optimizer = optimizers_module.get(optimizer)
        self.loss = losses_module.get(loss)
        self.metric_names = list(metrics or [])
        self._metric_fns = [metrics_module.get(m) for m in self.metric_names]

    def _check_compiled(self) -> None:
        if self.optimizer is None or self.loss is None:
            raise RuntimeError(
                "You must compile the model before training or evaluating it"
            )

    def _prepare_inputs(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if x.ndim < 2:
            raise ValueError(
                f"Inputs must have a batch axis, got shape {x.shape}"
            )
        if not self.built:
            self.build(x.shape[1:])
        elif tuple(x.shape[1:]) != self.input_shape:
            raise ValueError(
                f"Model expects samples of shape {self.input_shape}, "
                f"got {tuple(x.shape[1:])}"
            )
        return x

    @staticmethod
    def _check_lengths(x: np.ndarray, y: np.ndarray) -> None:
        if len(x) != len(y):
            raise ValueError(
                f"Inputs and targets have different sample counts: "
                f"{len(x)} != {len(y)}"
            )
        if len(x) == 0:
            raise ValueError("Cannot train or evaluate on an empty dataset")

    def _forward(self, x: np.ndarray) -> np.ndarray:
        for layer in self.layers:
            x = layer.forward(x)
        return x

    def _backward(self, grad: np.ndarray) -> None:
        for layer in reversed(self.layers):
            grad = layer.backward(grad)

    def _train_on_batch(self, x: np.ndarray, y: np.ndarray) -> Tuple[float, List[float]]:
        output = self._forward(x)
        loss = self.loss(y, output)
        batch_metrics = [fn(y, output) for fn in self._metric_fns]

        self._backward(self.loss.gradient(y, output))
        params = [p for layer in self.layers for p in layer.params]
        grads = [g for layer in self.layers for g in layer.grads]
        self.optimizer.apply(params, grads)
        return loss, batch_metrics

    def fit(
        self,
        x: np.ndarray,
        y: np.ndarray,
        epochs: int = 1,
        batch_size: int = 32,
        validation_split: float = 0.0,
        validation_data: Optional[Tuple[np.ndarray, np.ndarray]] = None,
        shuffle: bool = True,
        callbacks: Optional[Sequence[Callback]] = None,
        verbose: int = 0,
        yield_func: Optional[Callable[[], None]] = None
    ) -> History:
        """
        Train the model with mini-batch gradient descent.

        Args:
            x: Training inputs, shape ``(samples, *features)``
            y: Training targets (labels, one-hot rows or values)
            epochs: Number of passes over the training data
            batch_size: Samples per gradient update
            validation_split: Fraction of the data, taken from the end
                before shuffling, held out for validation
            validation_data: Explicit ``(x_val, y_val)``; overrides
                ``validation_split``
            shuffle: Reshuffle the training data every epoch
            callbacks: Extra callbacks; a ``History`` is always attached
            verbose: 1 logs every epoch at INFO level
            yield_func: Called after each mini-batch, e.g. to let other
                greenlets run during long training

        Returns:
            History with per-epoch ``loss``, metrics and ``val_`` variants

        Raises:
            RuntimeError: If the model has not been compiled
            ValueError: On bad arguments or mismatched data
        """
        self._check_compiled()
        if not isinstance(epochs, (int, np.integer)) or epochs < 1:
            raise ValueError(f"epochs must be a positive integer, got {epochs}")
        if not isinstance(batch_size, (int, np.integer)) or batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        if not 0.0 <= validation_split < 1.0:
            raise ValueError(
                f"validation_split must be in [0, 1), got {validation_split}"
            )

        x = self._prepare_inputs(x)
        y = np.asarray(y)
        self._check_lengths(x, y)

        if validation_data is not None:
            x_val, y_val = validation_data
            x_val = self._prepare_inputs(x_val)
            y_val = np.asarray(y_val)
            self._check_lengths(x_val, y_val)
        elif validation_split > 0.0:
            split_at = int(len(x) * (1.0 - validation_split))
            if split_at == 0 or split_at == len(x):
                raise ValueError(
                    f"validation_split={validation_split} leaves an empty "
                    f"training or validation set for {len(x)} samples"
                )
            x, x_val = x[:split_at], x[split_at:]
            y, y_val = y[:split_at], y[split_at:]
        else:
            x_val = y_val = None

        history = History()
        callback_list = CallbackList(
            [history] + list(callbacks or []),
            self,
            {'epochs': epochs, 'batch_size': batch_size, 'samples': len(x)}
        )

        n = len(x)
        self.stop_training = False
        callback_list.on_train_begin()
        logger.debug(
            f"Training '{self.name}' on {n} samples for {epochs} epochs "
            f"(batch_size={batch_size})"
        )

        for epoch in range(epochs):
            start_time = time.time()
            callback_list.on_epoch_begin(epoch)

            order = self._rng.permutation(n) if shuffle else np.arange(n)
            loss_sum = 0.0
            metric_sums = np.zeros(len(self._metric_fns))

            for batch_index, start in enumerate(range(0, n, batch_size)):
                idx = order[start:start + batch_size]
                loss, batch_metrics = self._train_on_batch(x[idx], y[idx])
                loss_sum += loss * len(idx)
                metric_sums += np.asarray(batch_metrics) * len(idx)
                callback_list.on_batch_end(batch_index, {'loss': loss})

                if yield_func:
                    yield_func()

            logs = {'loss': loss_sum / n}
            for name, total in zip(self.metric_names, metric_sums):
                logs[name] = float(total / n)

            if x_val is not None:
                val_results = self._evaluate_arrays(x_val, y_val, batch_size)
                logs['val_loss'] = val_results[0]
                for name, value in zip(self.metric_names, val_results[1:]):
                    logs[f'val_{name}'] = value

            if not np.isfinite(logs['loss']):
                logger.warning(
                    f"Loss became {logs['loss']} at epoch {epoch + 1}; "
                    f"consider a lower learning rate"
                )

            if verbose:
                elapsed = time.time() - start_time
                summary = ' - '.join(f"{k}: {v:.4f}" for k, v in logs.items())
                logger.info(f"Epoch {epoch + 1}/{epochs} ({elapsed:.2f}s) - {summary}")

            callback_list.on_epoch_end(epoch, logs)
            if self.stop_training:
                break

        callback_list.on_train_end()
        return history

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _evaluate_arrays(self, x: np.ndarray, y: np.ndarray,
                         batch_size: int) -> List[float]:
        output = self._predict_arrays(x, batch_size)
        results = [self.loss(y, output)]
        results.extend(fn(y, output) for fn in self._metric_fns)
        return results

    def _predict_arrays(self, x: np.ndarray, batch_size: int) -> np.ndarray:
        outputs = [self._forward(x[start:start + batch_size])
                   for start in range(0, len(x), batch_size)]
        return np.concatenate(outputs, axis=0)

    def evaluate(
        self,
        x: np.ndarray,
        y: np.ndarray,
        batch_size: int = 32
    ) -> Union[float, List[float]]:
        """
        Compute the loss and metrics on a dataset.

        Returns:
            The scalar loss when no metrics were compiled, otherwise
            ``[loss, *metrics]`` in the order given to ``compile``
        """
        self._check_compiled()
        if batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        x = self._prepare_inputs(x)
        y = np.asarray(y)
        self._check_lengths(x, y)

        results = self._evaluate_arrays(x, y, batch_size)
        logger.debug(f"Evaluated '{self.name}' on {len(x)} samples: {results}")
        if not self._metric_fns:
            return results[0]
        return results

    def predict(self, x: np.ndarray, batch_size: int = 32) -> np.ndarray:
        """
        Run the model forward on ``x``.

        Returns:
            Array of shape ``(samples, output_units)``
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        x = self._prepare_inputs(x)
        if len(x) == 0:
            return np.empty((0,) + self.layers[-1].output_shape)
        return self._predict_arrays(x, batch_size)
