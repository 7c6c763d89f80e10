"""
test_plotting.py
~~~~~~~~~~~~~~~~

Tests for the matplotlib figure helpers.
"""

import base64

import numpy as np
import pytest
from matplotlib.figure import Figure

from basicnets import plotting
from basicnets.datasets.fashion_mnist import CLASS_NAMES

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'


@pytest.fixture
def images():
    return np.random.default_rng(0).integers(0, 256, size=(30, 28, 28)).astype(np.float32) / 255.0


@pytest.fixture
def predictions():
    rows = np.random.default_rng(1).random((30, 10))
    return rows / rows.sum(axis=1, keepdims=True)


@pytest.mark.unit
class TestEncoding:

    def test_figure_to_base64_is_png(self, images):
        encoded = plotting.figure_to_base64(plotting.plot_image(images[0]))

        assert isinstance(encoded, str)
        assert base64.b64decode(encoded).startswith(PNG_SIGNATURE)

    def test_save_figure_creates_directories(self, tmp_path, images):
        path = str(tmp_path / 'plots' / 'image.png')

        returned = plotting.save_figure(plotting.plot_image(images[0]), path)

        assert returned == path
        with open(path, 'rb') as f:
            assert f.read(8) == PNG_SIGNATURE


@pytest.mark.unit
class TestImagePlots:

    def test_image_grid_caps_panel_count(self, images):
        fig = plotting.plot_image_grid(images, np.arange(30) % 10, CLASS_NAMES, count=25)

        assert isinstance(fig, Figure)
        assert len(fig.axes) == 25
        plotting.figure_to_base64(fig)

    def test_image_grid_with_few_images(self, images):
        fig = plotting.plot_image_grid(images[:3], [0, 1, 2], CLASS_NAMES)
        assert len(fig.axes) == 3
        plotting.figure_to_base64(fig)

    def test_prediction_caption_colour(self, images):
        """Test that a correct prediction is captioned in blue and a wrong one in red."""
        probs = np.full(10, 0.01)
        probs[3] = 0.91

        right = plotting.plot_prediction(probs, 3, images[0], CLASS_NAMES)
        wrong = plotting.plot_prediction(probs, 5, images[0], CLASS_NAMES)

        assert right.axes[0].xaxis.label.get_color() == 'blue'
        assert wrong.axes[0].xaxis.label.get_color() == 'red'
        assert 'Dress' in right.axes[0].get_xlabel()
        plotting.figure_to_base64(right)
        plotting.figure_to_base64(wrong)

    def test_prediction_grid(self, images, predictions):
        fig = plotting.plot_prediction_grid(predictions, np.arange(30) % 10, images,
                                            CLASS_NAMES, rows=2, cols=3)
        assert len(fig.axes) == 12
        plotting.figure_to_base64(fig)


@pytest.mark.unit
class TestMetricPlots:

    def test_history_plots_train_and_validation(self):
        history = {'mae': [3.0, 2.0, 1.5], 'val_mae': [3.5, 2.5, 2.4]}

        fig = plotting.plot_history(history, metric='mae', scale=1000)

        lines = fig.axes[0].get_lines()
        assert len(lines) == 2
        assert list(lines[0].get_ydata()) == [3000.0, 2000.0, 1500.0]
        plotting.figure_to_base64(fig)

    def test_history_without_validation(self):
        fig = plotting.plot_history({'loss': [1.0, 0.5]})
        assert len(fig.axes[0].get_lines()) == 1
        plotting.figure_to_base64(fig)

    def test_history_unknown_metric_raises(self):
        with pytest.raises(ValueError):
            plotting.plot_history({'loss': [1.0]}, metric='accuracy')

    def test_regression_plot(self):
        y_true = np.array([10.0, 20.0, 30.0])
        y_pred = np.array([[12.0], [18.0], [33.0]])

        fig = plotting.plot_regression(y_true, y_pred)

        assert len(fig.axes) == 2
        assert fig.axes[0].get_xlabel() == 'True Values [1000$]'
        plotting.figure_to_base64(fig)

    def test_regression_size_mismatch_raises(self):
        with pytest.raises(ValueError):
            plotting.plot_regression(np.zeros(3), np.zeros(2))
