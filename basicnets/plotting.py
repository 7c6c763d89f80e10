"""
plotting.py
~~~~~~~~~~~

Matplotlib figures for inspecting datasets, predictions and training
curves. Every ``plot_*`` function returns a ``Figure``; use
``save_figure`` or ``figure_to_base64`` to get it out of memory.
"""

import base64
import logging
import os
from io import BytesIO
from typing import Dict, List, Optional, Sequence

import numpy as np

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

logger = logging.getLogger(__name__)


def figure_to_base64(fig: Figure) -> str:
    """
    Encode a figure as a base64 PNG string and close it.

    Returns:
        Base64-encoded PNG image string
    """
    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close(fig)
    return img_base64


def save_figure(fig: Figure, path: str) -> str:
    """Write a figure to ``path`` (format from the extension) and close it."""
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    fig.savefig(path, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Saved figure to {path}")
    return path


def plot_image(image: np.ndarray, colorbar: bool = True) -> Figure:
    """Show a single image with a colour scale, as a first look at the data."""
    fig = plt.figure()
    plt.imshow(image)
    if colorbar:
        plt.colorbar()
    plt.grid(False)
    return fig


def plot_image_grid(
    images: np.ndarray,
    labels: Sequence[int],
    class_names: Sequence[str],
    count: int = 25
) -> Figure:
    """
    Show the first ``count`` images in a square grid, captioned with their
    class names.
    """
    count = min(count, len(images))
    side = int(np.ceil(np.sqrt(count))) or 1
    fig = plt.figure(figsize=(2 * side, 2 * side))
    for i in range(count):
        plt.subplot(side, side, i + 1)
        plt.xticks([])
        plt.yticks([])
        plt.grid(False)
        plt.imshow(images[i], cmap=plt.cm.binary)
        plt.xlabel(class_names[int(labels[i])])
    return fig


def _draw_image(ax, predictions: np.ndarray, true_label: int,
                image: np.ndarray, class_names: Sequence[str]) -> None:
    ax.grid(False)
    ax.set_xticks([])
    ax.set_yticks([])
    ax.imshow(image, cmap=plt.cm.binary)

    predicted_label = int(np.argmax(predictions))
    color = 'blue' if predicted_label == true_label else 'red'
    ax.set_xlabel(
        f"{class_names[predicted_label]} {100 * np.max(predictions):2.0f}% "
        f"({class_names[true_label]})",
        color=color
    )


def _draw_value_array(ax, predictions: np.ndarray, true_label: int) -> None:
    ax.grid(False)
    ax.set_xticks(range(len(predictions)))
    ax.set_yticks([])
    bars = ax.bar(range(len(predictions)), predictions, color='#777777')
    ax.set_ylim([0, 1])
    bars[int(np.argmax(predictions))].set_color('red')
    bars[true_label].set_color('blue')


def plot_prediction(
    predictions: np.ndarray,
    true_label: int,
    image: np.ndarray,
    class_names: Sequence[str]
) -> Figure:
    """
    Show an image next to the model's class probabilities.

    The caption gives the predicted class, its confidence and the true
    class; it is blue when the prediction is right and red when wrong. In
    the bar chart the predicted class is red and the true class blue.
    """
    fig, (ax_image, ax_values) = plt.subplots(1, 2, figsize=(6, 3))
    _draw_image(ax_image, predictions, int(true_label), image, class_names)
    _draw_value_array(ax_values, predictions, int(true_label))
    return fig


def plot_prediction_grid(
    predictions: np.ndarray,
    labels: Sequence[int],
    images: np.ndarray,
    class_names: Sequence[str],
    rows: int = 5,
    cols: int = 3
) -> Figure:
    """Several ``plot_prediction`` panels in one figure."""
    count = min(rows * cols, len(images))
    fig = plt.figure(figsize=(2 * 2 * cols, 2 * rows))
    for i in range(count):
        ax_image = fig.add_subplot(rows, 2 * cols, 2 * i + 1)
        _draw_image(ax_image, predictions[i], int(labels[i]), images[i], class_names)
        ax_values = fig.add_subplot(rows, 2 * cols, 2 * i + 2)
        _draw_value_array(ax_values, predictions[i], int(labels[i]))
    fig.tight_layout()
    return fig


def plot_history(
    history: Dict[str, List[float]],
    metric: str = 'loss',
    ylabel: Optional[str] = None,
    scale: float = 1.0
) -> Figure:
    """
    Plot a training metric and its validation counterpart per epoch.

    Args:
        history: ``History.history`` dict
        metric: Key to plot, e.g. ``mae``; ``val_<metric>`` is added if present
        ylabel: Axis label (defaults to the metric name)
        scale: Multiplier applied to the values, e.g. 1000 for prices
            recorded in thousands of dollars

    Raises:
        ValueError: If ``metric`` is not in ``history``
    """
    if metric not in history:
        raise ValueError(
            f"Metric '{metric}' not in history. Available: {sorted(history)}"
        )
    epochs = np.arange(1, len(history[metric]) + 1)

    fig = plt.figure()
    plt.xlabel('Epoch')
    plt.ylabel(ylabel or metric)
    plt.plot(epochs, np.asarray(history[metric]) * scale, label=f'Train {metric}')
    val_key = f'val_{metric}'
    if val_key in history:
        plt.plot(epochs, np.asarray(history[val_key]) * scale, label=f'Val {metric}')
    plt.legend()
    return fig


def plot_regression(y_true: np.ndarray, y_pred: np.ndarray,
                    units: str = '[1000$]') -> Figure:
    """
    Predicted vs. true values (with the ideal diagonal) and a histogram of
    prediction errors.
    """
    y_true = np.asarray(y_true).reshape(-1)
    y_pred = np.asarray(y_pred).reshape(-1)
    if y_true.shape != y_pred.shape:
        raise ValueError(
            f"Got {y_true.size} true values for {y_pred.size} predictions"
        )

    fig, (ax_scatter, ax_hist) = plt.subplots(1, 2, figsize=(10, 4))
    ax_scatter.scatter(y_true, y_pred)
    ax_scatter.set_xlabel(f'True Values {units}')
    ax_scatter.set_ylabel(f'Predictions {units}')
    ax_scatter.set_aspect('equal')
    if y_true.size:
        lims = [0, max(y_true.max(), y_pred.max()) * 1.05]
        ax_scatter.set_xlim(lims)
        ax_scatter.set_ylim(lims)
        ax_scatter.plot(lims, lims)

    ax_hist.hist(y_pred - y_true, bins=50)
    ax_hist.set_xlabel(f'Prediction Error {units}')
    ax_hist.set_ylabel('Count')
    return fig
