"""
test_cli.py
~~~~~~~~~~~

Tests for the ``python -m basicnets`` command line.
"""

import pytest

from basicnets import __main__ as cli
from basicnets.datasets import DatasetError, boston_housing, fashion_mnist
from basicnets.model_persistence import list_saved_models
from conftest import make_housing_data, make_image_data


@pytest.fixture
def synthetic_datasets(monkeypatch):
    monkeypatch.setattr(fashion_mnist, 'load_data',
                        lambda data_dir=None: make_image_data(n_train=40, n_test=20))
    monkeypatch.setattr(boston_housing, 'load_data',
                        lambda data_dir=None: make_housing_data())


@pytest.mark.unit
class TestArguments:

    def test_requires_known_tutorial(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(['cifar10'])

    def test_defaults(self):
        args = cli.build_parser().parse_args(['boston-housing'])

        assert args.epochs is None
        assert args.batch_size == 32
        assert args.patience is None
        assert args.save is False

    @pytest.mark.parametrize('argv', [
        ['fashion-mnist', '--epochs', '0'],
        ['boston-housing', '--batch-size', '0'],
    ])
    def test_rejects_non_positive_values(self, argv, capsys):
        assert cli.main(argv) == 2
        assert 'must be a positive integer' in capsys.readouterr().err

    @pytest.mark.parametrize('argv, message', [
        (['fashion-mnist', '--seed', '-1'], '--seed must be a non-negative integer'),
        (['boston-housing', '--patience', '-1'], '--patience must be a non-negative integer'),
        (['fashion-mnist', '--patience', '3'], '--patience only applies to boston-housing'),
    ])
    def test_rejects_bad_seed_and_patience(self, argv, message, capsys):
        assert cli.main(argv) == 2
        assert message in capsys.readouterr().err


@pytest.mark.integration
class TestRuns:

    def test_fashion_mnist(self, synthetic_datasets, capsys):
        assert cli.main(['fashion-mnist', '--epochs', '1', '--seed', '0']) == 0

        out = capsys.readouterr().out
        assert 'fashion_mnist results' in out
        assert 'test accuracy:' in out

    def test_boston_housing_reports_dollars(self, synthetic_datasets, capsys):
        assert cli.main(['boston-housing', '--epochs', '2', '--patience', '5']) == 0

        out = capsys.readouterr().out
        assert 'test mae:' in out
        assert 'Testing set Mean Abs Error: $' in out

    def test_writes_plots(self, synthetic_datasets, tmp_path, capsys):
        plots_dir = tmp_path / 'plots'

        assert cli.main(['boston-housing', '--epochs', '1', '--plots', str(plots_dir)]) == 0

        assert sorted(p.name for p in plots_dir.iterdir()) == [
            'boston_housing_history.png', 'boston_housing_predictions.png'
        ]
        assert 'plot:' in capsys.readouterr().out

    def test_save_stores_model(self, synthetic_datasets, temp_db_dir, capsys):
        assert cli.main(['fashion-mnist', '--epochs', '1', '--save',
                         '--model-dir', temp_db_dir]) == 0

        saved = list_saved_models(temp_db_dir)
        assert len(saved) == 1
        assert saved[0]['kind'] == 'fashion_mnist'
        assert saved[0]['metric_name'] == 'accuracy'
        assert saved[0]['model_id'] in capsys.readouterr().out

    def test_dataset_error_exits_with_one(self, monkeypatch):
        def unavailable(data_dir=None):
            raise DatasetError("offline")
        monkeypatch.setattr(boston_housing, 'load_data', unavailable)

        assert cli.main(['boston-housing', '--epochs', '1']) == 1
