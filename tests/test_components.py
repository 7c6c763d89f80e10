"""
test_components.py
~~~~~~~~~~~~~~~~~~

Unit tests for activations, losses, metrics, optimizers, callbacks and
preprocessing.
"""

import numpy as np
import pytest

from basicnets import activations, losses, metrics, optimizers
from basicnets.callbacks import EarlyStopping, History, LambdaCallback, ProgressLogger
from basicnets.layers import Dense
from basicnets.network import Sequential
from basicnets.preprocessing import (
    scale_pixels,
    shuffle_arrays,
    standardize,
    to_categorical
)


@pytest.mark.unit
class TestActivations:

    def test_softmax_rows_sum_to_one(self):
        """Test that softmax is stable for large logits."""
        z = np.array([[1000.0, 1000.0], [1.0, 2.0]])
        a = activations.get('softmax').forward(z)

        assert np.allclose(a.sum(axis=1), 1.0)
        assert np.allclose(a[0], [0.5, 0.5])

    def test_relu_zeroes_negatives(self):
        """Test relu forward and its gradient mask."""
        relu = activations.get('relu')
        z = np.array([[-1.0, 0.0, 2.0]])
        a = relu.forward(z)

        assert np.array_equal(a, [[0.0, 0.0, 2.0]])
        assert np.array_equal(relu.backward(z, a, np.ones_like(z)), [[0.0, 0.0, 1.0]])

    def test_none_is_linear(self):
        """Test that no activation means the identity."""
        assert activations.get(None).name == 'linear'


@pytest.mark.unit
class TestLosses:

    def test_sparse_crossentropy_perfect_prediction(self):
        """Test that confident correct predictions give near-zero loss."""
        y_pred = np.array([[1.0, 0.0], [0.0, 1.0]])
        assert losses.get('sparse_categorical_crossentropy')(np.array([0, 1]), y_pred) < 1e-6

    def test_sparse_crossentropy_uniform_prediction(self):
        """Test that uniform predictions over k classes give log(k)."""
        y_pred = np.full((4, 10), 0.1)
        loss = losses.get('sparse_categorical_crossentropy')(np.arange(4), y_pred)
        assert loss == pytest.approx(np.log(10))

    def test_sparse_and_dense_crossentropy_agree(self):
        """Test that sparse labels and one-hot targets give the same loss."""
        rng = np.random.default_rng(0)
        y_pred = activations.get('softmax').forward(rng.normal(size=(5, 3)))
        labels = np.array([0, 1, 2, 1, 0])

        sparse = losses.get('sparse_categorical_crossentropy')
        dense = losses.get('categorical_crossentropy')
        assert sparse(labels, y_pred) == pytest.approx(dense(np.eye(3)[labels], y_pred))
        assert np.allclose(sparse.gradient(labels, y_pred),
                           dense.gradient(np.eye(3)[labels], y_pred))

    def test_sparse_crossentropy_rejects_out_of_range_labels(self):
        """Test that labels beyond the output width raise ValueError."""
        with pytest.raises(ValueError):
            losses.get('sparse_categorical_crossentropy')(np.array([3]), np.full((1, 3), 1 / 3))

    def test_mse_and_mae_values(self):
        """Test mse/mae on column predictions with flat targets."""
        y_true = np.array([1.0, 2.0, 3.0])
        y_pred = np.array([[2.0], [2.0], [1.0]])

        assert losses.get('mse')(y_true, y_pred) == pytest.approx(5.0 / 3.0)
        assert losses.get('mae')(y_true, y_pred) == pytest.approx(1.0)
        assert losses.get('mse').gradient(y_true, y_pred).shape == (3, 1)

    def test_mse_rejects_mismatched_sizes(self):
        """Test that targets and predictions must have the same size."""
        with pytest.raises(ValueError):
            losses.get('mse')(np.zeros(4), np.zeros((3, 1)))


@pytest.mark.unit
class TestMetrics:

    def test_sparse_accuracy(self):
        y_pred = np.array([[0.9, 0.1], [0.2, 0.8], [0.7, 0.3]])
        assert metrics.accuracy(np.array([0, 1, 1]), y_pred) == pytest.approx(2 / 3)

    def test_one_hot_accuracy(self):
        y_pred = np.array([[0.9, 0.1], [0.2, 0.8]])
        assert metrics.accuracy(np.eye(2)[[0, 0]], y_pred) == 0.5

    def test_binary_accuracy(self):
        y_pred = np.array([[0.9], [0.2], [0.6]])
        assert metrics.accuracy(np.array([1, 0, 0]), y_pred) == pytest.approx(2 / 3)

    def test_regression_metrics(self):
        y_pred = np.array([[1.0], [3.0]])
        assert metrics.get('mae')(np.array([2.0, 2.0]), y_pred) == 1.0
        assert metrics.get('mse')(np.array([2.0, 5.0]), y_pred) == 2.5


@pytest.mark.unit
class TestOptimizers:

    def test_sgd_step(self):
        """Test that plain SGD subtracts learning_rate * gradient."""
        param = np.array([1.0, -1.0])
        optimizers.SGD(learning_rate=0.1).apply([param], [np.array([2.0, -4.0])])
        assert np.allclose(param, [0.8, -0.6])

    def test_sgd_momentum_accumulates(self):
        """Test that momentum makes the second identical step larger."""
        param = np.array([0.0])
        opt = optimizers.SGD(learning_rate=0.1, momentum=0.9)
        opt.apply([param], [np.array([1.0])])
        assert param[0] == pytest.approx(-0.1)
        opt.apply([param], [np.array([1.0])])
        assert param[0] == pytest.approx(-0.1 - 0.19)

    def test_adam_first_step_is_learning_rate_sized(self):
        """Test that Adam's bias-corrected first step is about lr * sign(grad)."""
        param = np.array([0.0, 0.0])
        optimizers.Adam(learning_rate=0.01).apply([param], [np.array([3.0, -0.5])])
        assert np.allclose(param, [-0.01, 0.01], rtol=1e-4)

    def test_rmsprop_first_step(self):
        """Test RMSprop's first update against the closed form."""
        param = np.array([0.0])
        optimizers.RMSprop(learning_rate=0.001, rho=0.9).apply([param], [np.array([2.0])])
        assert param[0] == pytest.approx(-0.001 / np.sqrt(0.1), rel=1e-5)

    def test_optimizer_updates_in_place(self):
        """Test that updates reach the caller's array object."""
        param = np.ones(3)
        same = param
        optimizers.get('adam').apply([param], [np.ones(3)])
        assert same is param
        assert np.all(param < 1.0)

    def test_rejects_bad_hyperparameters(self):
        with pytest.raises(ValueError):
            optimizers.SGD(learning_rate=0)
        with pytest.raises(ValueError):
            optimizers.SGD(momentum=1.0)

    def test_rejects_mismatched_gradients(self):
        with pytest.raises(ValueError):
            optimizers.SGD().apply([np.zeros(2)], [])


@pytest.mark.unit
class TestCallbacks:

    @pytest.fixture
    def model(self):
        model = Sequential([Dense(1, input_shape=(2,))], seed=0)
        model.compile(optimizer='sgd', loss='mse')
        return model

    def test_history_records_every_epoch(self):
        history = History()
        history.on_train_begin()
        history.on_epoch_end(0, {'loss': 2.0})
        history.on_epoch_end(1, {'loss': 1.0})

        assert history.epoch == [0, 1]
        assert history.history == {'loss': [2.0, 1.0]}

    def test_early_stopping_stops_after_patience(self, model):
        """Test that training stops once val_loss fails to improve patience times."""
        stopper = EarlyStopping(monitor='val_loss', patience=2)
        stopper.set_model(model)
        stopper.on_train_begin()

        for epoch, val_loss in enumerate([1.0, 0.5, 0.6, 0.55]):
            stopper.on_epoch_end(epoch, {'val_loss': val_loss})

        assert model.stop_training is True
        assert stopper.stopped_epoch == 3

    def test_early_stopping_resets_on_improvement(self, model):
        stopper = EarlyStopping(monitor='val_loss', patience=2)
        stopper.set_model(model)
        stopper.on_train_begin()

        for epoch, val_loss in enumerate([1.0, 1.1, 0.9, 1.0]):
            stopper.on_epoch_end(epoch, {'val_loss': val_loss})

        assert model.stop_training is False

    def test_early_stopping_max_mode_for_accuracy(self, model):
        """Test that accuracy-like monitors are maximised."""
        stopper = EarlyStopping(monitor='val_accuracy', patience=1)
        assert stopper.mode == 'max'
        stopper.set_model(model)
        stopper.on_train_begin()

        stopper.on_epoch_end(0, {'val_accuracy': 0.5})
        stopper.on_epoch_end(1, {'val_accuracy': 0.6})
        assert model.stop_training is False
        stopper.on_epoch_end(2, {'val_accuracy': 0.55})
        assert model.stop_training is True

    def test_early_stopping_restores_best_weights(self, model):
        stopper = EarlyStopping(monitor='loss', patience=1, restore_best_weights=True)
        stopper.set_model(model)
        stopper.on_train_begin()
        best = model.get_weights()

        stopper.on_epoch_end(0, {'loss': 1.0})
        model.set_weights([w + 1.0 for w in best])
        stopper.on_epoch_end(1, {'loss': 2.0})

        for expected, actual in zip(best, model.get_weights()):
            assert np.array_equal(expected, actual)

    def test_early_stopping_in_fit(self, model):
        """Test that fit() honours stop_training set by EarlyStopping."""
        x = np.ones((20, 2))
        y = np.zeros(20)
        # A learning rate this large makes the loss diverge immediately
        model.optimizer.learning_rate = 10.0

        history = model.fit(x, y, epochs=50, batch_size=20,
                            callbacks=[EarlyStopping(monitor='loss', patience=1)])

        assert len(history.epoch) < 50

    def test_early_stopping_rejects_unknown_mode(self):
        with pytest.raises(ValueError):
            EarlyStopping(mode='sideways')

    def test_lambda_callback_receives_logs(self, model):
        seen = []
        model.fit(np.ones((4, 2)), np.zeros(4), epochs=3,
                  callbacks=[LambdaCallback(on_epoch_end=lambda epoch, logs: seen.append((epoch, sorted(logs))))])

        assert seen == [(0, ['loss']), (1, ['loss']), (2, ['loss'])]

    def test_progress_logger_logs_periodically(self, model, caplog):
        caplog.set_level('INFO', logger='basicnets.callbacks')
        model.fit(np.ones((4, 2)), np.zeros(4), epochs=5,
                  callbacks=[ProgressLogger(every=2)])

        lines = [r.getMessage() for r in caplog.records if r.name == 'basicnets.callbacks']
        assert [line.split()[1] for line in lines] == ['2/5', '4/5', '5/5']


@pytest.mark.unit
class TestPreprocessing:

    def test_scale_pixels(self):
        images = np.array([[0, 51, 255]], dtype=np.uint8)
        scaled = scale_pixels(images)

        assert scaled.dtype == np.float32
        assert np.allclose(scaled, [[0.0, 0.2, 1.0]])

    def test_scale_pixels_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            scale_pixels(np.array([0, 300]))

    def test_standardize_uses_training_statistics(self):
        """Test that test data is transformed with the training mean and std."""
        train = np.array([[0.0, 5.0], [2.0, 5.0]])
        test = np.array([[4.0, 6.0]])

        (train_norm, test_norm), (mean, std) = standardize(train, test)

        assert np.allclose(mean, [1.0, 5.0])
        assert np.allclose(train_norm[:, 0], [-1.0, 1.0])
        assert np.allclose(test_norm, [[3.0, 1.0]])
        # Constant column is centred, not divided by zero
        assert np.allclose(train_norm[:, 1], 0.0)

    def test_to_categorical(self):
        one_hot = to_categorical(np.array([2, 0]), num_classes=3)
        assert np.array_equal(one_hot, [[0, 0, 1], [1, 0, 0]])

    def test_to_categorical_rejects_bad_labels(self):
        with pytest.raises(ValueError):
            to_categorical(np.array([3]), num_classes=3)

    def test_shuffle_arrays_keeps_pairs(self):
        x = np.arange(10)
        y = np.arange(10) * 10
        xs, ys = shuffle_arrays(x, y, seed=1)

        assert np.array_equal(ys, xs * 10)
        assert sorted(xs) == list(range(10))

    def test_shuffle_arrays_rejects_mismatch(self):
        with pytest.raises(ValueError):
            shuffle_arrays(np.arange(3), np.arange(4))
