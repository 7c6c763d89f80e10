"""
tutorials.py
~~~~~~~~~~~~

The two end-to-end walkthroughs:

- Fashion MNIST classification: scale pixels to [0, 1], train
  ``Flatten -> Dense(128, relu) -> Dense(10, softmax)`` with Adam and
  sparse categorical cross-entropy, report test accuracy.
- Boston housing regression: standardize features with training-set
  statistics, train ``Dense(64, relu) -> Dense(64, relu) -> Dense(1)`` with
  RMSprop and mean squared error, report test mean absolute error.

Each ``run_*`` function accepts pre-loaded arrays so it can be driven with
small synthetic data; by default it loads the real dataset.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from basicnets import plotting
from basicnets.callbacks import Callback, EarlyStopping, ProgressLogger
from basicnets.datasets import boston_housing, fashion_mnist
from basicnets.layers import Dense, Flatten
from basicnets.network import Sequential
from basicnets.optimizers import Adam, RMSprop
from basicnets.preprocessing import scale_pixels, shuffle_arrays, standardize

logger = logging.getLogger(__name__)

FASHION_MNIST = 'fashion_mnist'
BOSTON_HOUSING = 'boston_housing'
KINDS = (FASHION_MNIST, BOSTON_HOUSING)

# Headline test metric recorded for each kind of model
HEADLINE_METRIC = {FASHION_MNIST: 'accuracy', BOSTON_HOUSING: 'mae'}

ArrayPair = Tuple[np.ndarray, np.ndarray]


@dataclass
class TutorialResult:
    """Everything a tutorial run produces."""

    kind: str
    model: Sequential
    history: Dict[str, List[float]]
    test_metrics: Dict[str, float]
    predictions: np.ndarray
    x_test: np.ndarray
    y_test: np.ndarray
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def headline_metric(self) -> Tuple[str, float]:
        name = HEADLINE_METRIC[self.kind]
        return name, self.test_metrics[name]


def build_classifier(
    input_shape: Tuple[int, ...] = fashion_mnist.IMAGE_SHAPE,
    hidden_units: int = 128,
    num_classes: int = len(fashion_mnist.CLASS_NAMES),
    learning_rate: Optional[float] = None,
    seed: Optional[int] = None
) -> Sequential:
    """
    Build and compile the image classifier.

    Args:
        input_shape: Shape of one image
        hidden_units: Width of the hidden layer
        num_classes: Number of output classes
        learning_rate: Adam learning rate (library default when None)
        seed: Weight initialisation seed
    """
    model = Sequential([
        Flatten(input_shape=input_shape),
        Dense(hidden_units, activation='relu'),
        Dense(num_classes, activation='softmax'),
    ], name='fashion_mnist_classifier', seed=seed)

    optimizer = Adam(learning_rate) if learning_rate else 'adam'
    model.compile(
        optimizer=optimizer,
        loss='sparse_categorical_crossentropy',
        metrics=['accuracy']
    )
    return model


def build_regressor(
    input_dim: int = len(boston_housing.COLUMN_NAMES),
    hidden_units: int = 64,
    learning_rate: float = 0.001,
    seed: Optional[int] = None
) -> Sequential:
    """
    Build and compile the price regressor.

    Args:
        input_dim: Number of input features
        hidden_units: Width of both hidden layers
        learning_rate: RMSprop learning rate
        seed: Weight initialisation seed
    """
    model = Sequential([
        Dense(hidden_units, activation='relu', input_shape=(input_dim,)),
        Dense(hidden_units, activation='relu'),
        Dense(1),
    ], name='boston_housing_regressor', seed=seed)

    model.compile(
        optimizer=RMSprop(learning_rate),
        loss='mse',
        metrics=['mae', 'mse']
    )
    return model


def build_model(kind: str, learning_rate: Optional[float] = None,
                seed: Optional[int] = None) -> Sequential:
    """
    Build the model for a tutorial ``kind``.

    Raises:
        ValueError: If ``kind`` is unknown
    """
    if kind == FASHION_MNIST:
        return build_classifier(learning_rate=learning_rate, seed=seed)
    if kind == BOSTON_HOUSING:
        return build_regressor(learning_rate=learning_rate or 0.001, seed=seed)
    raise ValueError(f"Unknown tutorial '{kind}'. Choose one of: {list(KINDS)}")


def prepare_fashion_mnist(
    data: Optional[Tuple[ArrayPair, ArrayPair]] = None,
    data_dir: Optional[str] = None
) -> Tuple[ArrayPair, ArrayPair]:
    """Load Fashion MNIST (unless given) and scale the pixels to [0, 1]."""
    if data is None:
        data = fashion_mnist.load_data(data_dir)
    (train_images, train_labels), (test_images, test_labels) = data
    return ((scale_pixels(train_images), np.asarray(train_labels)),
            (scale_pixels(test_images), np.asarray(test_labels)))


def prepare_boston_housing(
    data: Optional[Tuple[ArrayPair, ArrayPair]] = None,
    data_dir: Optional[str] = None,
    seed: Optional[int] = None
) -> Tuple[Tuple[ArrayPair, ArrayPair], Tuple[np.ndarray, np.ndarray]]:
    """
    Load Boston housing (unless given), shuffle the training set, and
    standardize features with training-set statistics.

    Returns:
        ``(((x_train, y_train), (x_test, y_test)), (mean, std))``
    """
    if data is None:
        data = boston_housing.load_data(data_dir)
    (train_data, train_targets), (test_data, test_targets) = data
    train_data, train_targets = shuffle_arrays(
        np.asarray(train_data), np.asarray(train_targets), seed=seed
    )
    (train_norm, test_norm), stats = standardize(train_data, test_data)
    return ((train_norm, train_targets), (test_norm, np.asarray(test_targets))), stats


def run_fashion_mnist(
    epochs: int = 5,
    batch_size: int = 32,
    data: Optional[Tuple[ArrayPair, ArrayPair]] = None,
    data_dir: Optional[str] = None,
    callbacks: Optional[List[Callback]] = None,
    plots_dir: Optional[str] = None,
    seed: Optional[int] = None
) -> TutorialResult:
    """
    Train and evaluate the Fashion MNIST classifier.

    Args:
        epochs: Training epochs
        batch_size: Mini-batch size
        data: Raw ``((x_train, y_train), (x_test, y_test))``; loaded when None
        data_dir: Dataset cache directory
        callbacks: Extra training callbacks
        plots_dir: Write sample, prediction and history plots here
        seed: Weight initialisation and shuffling seed

    Returns:
        TutorialResult with ``accuracy`` and ``loss`` test metrics
    """
    (train_images, train_labels), (test_images, test_labels) = (
        prepare_fashion_mnist(data, data_dir)
    )
    logger.info(
        f"Training images {train_images.shape}, test images {test_images.shape}"
    )

    model = build_classifier(input_shape=train_images.shape[1:], seed=seed)
    model.summary()

    history = model.fit(
        train_images, train_labels,
        epochs=epochs,
        batch_size=batch_size,
        callbacks=callbacks,
        verbose=1
    )

    test_loss, test_acc = model.evaluate(test_images, test_labels)
    logger.info(f"Test accuracy: {test_acc:.4f}")

    predictions = model.predict(test_images)

    result = TutorialResult(
        kind=FASHION_MNIST,
        model=model,
        history=history.history,
        test_metrics={'loss': test_loss, 'accuracy': test_acc},
        predictions=predictions,
        x_test=test_images,
        y_test=test_labels,
    )
    if plots_dir:
        result.extras['plots'] = write_fashion_mnist_plots(result, plots_dir)
    return result


def run_boston_housing(
    epochs: int = 500,
    batch_size: int = 32,
    validation_split: float = 0.2,
    patience: Optional[int] = None,
    data: Optional[Tuple[ArrayPair, ArrayPair]] = None,
    data_dir: Optional[str] = None,
    callbacks: Optional[List[Callback]] = None,
    plots_dir: Optional[str] = None,
    seed: Optional[int] = None
) -> TutorialResult:
    """
    Train and evaluate the Boston housing regressor.

    Args:
        epochs: Maximum training epochs
        batch_size: Mini-batch size
        validation_split: Fraction of training data held out for validation
        patience: Enable early stopping on ``val_loss`` with this patience
        data: Raw ``((x_train, y_train), (x_test, y_test))``; loaded when None
        data_dir: Dataset cache directory
        callbacks: Extra training callbacks
        plots_dir: Write history and prediction plots here
        seed: Weight initialisation and shuffling seed

    Returns:
        TutorialResult with ``loss``, ``mae`` and ``mse`` test metrics, and
        the normalization statistics in ``extras``
    """
    ((train_data, train_targets), (test_data, test_targets)), (mean, std) = (
        prepare_boston_housing(data, data_dir, seed=seed)
    )
    logger.info(
        f"Training set {train_data.shape}, test set {test_data.shape}"
    )

    model = build_regressor(input_dim=train_data.shape[1], seed=seed)
    model.summary()

    fit_callbacks: List[Callback] = [ProgressLogger(every=100)]
    if patience is not None:
        fit_callbacks.append(EarlyStopping(monitor='val_loss', patience=patience))
    fit_callbacks.extend(callbacks or [])

    history = model.fit(
        train_data, train_targets,
        epochs=epochs,
        batch_size=batch_size,
        validation_split=validation_split,
        callbacks=fit_callbacks
    )

    loss, mae, mse = model.evaluate(test_data, test_targets)
    logger.info(f"Testing set Mean Abs Error: ${mae * 1000:7.2f}")

    predictions = model.predict(test_data).flatten()

    result = TutorialResult(
        kind=BOSTON_HOUSING,
        model=model,
        history=history.history,
        test_metrics={'loss': loss, 'mae': mae, 'mse': mse},
        predictions=predictions,
        x_test=test_data,
        y_test=test_targets,
        extras={'mean': mean, 'std': std, 'epochs_run': len(history.epoch)},
    )
    if plots_dir:
        result.extras['plots'] = write_boston_housing_plots(result, plots_dir)
    return result


def write_fashion_mnist_plots(result: TutorialResult, plots_dir: str) -> List[str]:
    """Save sample grid, prediction grid and training curves as PNGs."""
    names = fashion_mnist.CLASS_NAMES
    return [
        plotting.save_figure(
            plotting.plot_image_grid(result.x_test, result.y_test, names),
            os.path.join(plots_dir, 'fashion_mnist_samples.png')
        ),
        plotting.save_figure(
            plotting.plot_prediction_grid(
                result.predictions, result.y_test, result.x_test, names
            ),
            os.path.join(plots_dir, 'fashion_mnist_predictions.png')
        ),
        plotting.save_figure(
            plotting.plot_history(result.history, 'accuracy', 'Accuracy'),
            os.path.join(plots_dir, 'fashion_mnist_history.png')
        ),
    ]


def write_boston_housing_plots(result: TutorialResult, plots_dir: str) -> List[str]:
    """Save the MAE curve and the prediction scatter/error histogram as PNGs."""
    return [
        plotting.save_figure(
            plotting.plot_history(
                result.history, 'mae', 'Mean Abs Error [1000$]'
            ),
            os.path.join(plots_dir, 'boston_housing_history.png')
        ),
        plotting.save_figure(
            plotting.plot_regression(result.y_test, result.predictions),
            os.path.join(plots_dir, 'boston_housing_predictions.png')
        ),
    ]
