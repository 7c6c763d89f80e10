"""
test_datasets.py
~~~~~~~~~~~~~~~~

Tests for the dataset loaders. Nothing here touches the network: files
are written into a temporary data directory and ``requests.get`` is
replaced where a download would happen.
"""

import gzip
import os
import struct

import numpy as np
import pytest
import requests

from basicnets.datasets import boston_housing, fashion_mnist, utils
from basicnets.datasets.utils import (
    IDX_IMAGES_MAGIC,
    IDX_LABELS_MAGIC,
    DatasetError,
    get_file,
    read_idx
)


def write_idx(path, array, magic):
    """Write ``array`` as a gzip IDX file with the given magic number."""
    header = struct.pack('>II', magic, array.shape[0])
    if array.ndim == 3:
        header += struct.pack('>II', array.shape[1], array.shape[2])
    with gzip.open(path, 'wb') as f:
        f.write(header + array.astype(np.uint8).tobytes())


def write_fashion_files(data_dir, n_train=6, n_test=3):
    rng = np.random.default_rng(0)
    arrays = {
        'train_images': rng.integers(0, 256, size=(n_train, 28, 28)),
        'train_labels': rng.integers(0, 10, size=n_train),
        'test_images': rng.integers(0, 256, size=(n_test, 28, 28)),
        'test_labels': rng.integers(0, 10, size=n_test),
    }
    for key, fname in fashion_mnist.FILES.items():
        magic = IDX_IMAGES_MAGIC if key.endswith('images') else IDX_LABELS_MAGIC
        write_idx(os.path.join(data_dir, fname), arrays[key], magic)
    return arrays


@pytest.fixture
def no_network(monkeypatch):
    """Fail the test if anything tries to download."""
    def fail(*args, **kwargs):
        raise AssertionError(f"Unexpected download of {args[0] if args else kwargs}")
    monkeypatch.setattr(utils.requests, 'get', fail)


class FakeResponse:
    def __init__(self, chunks, status_error=None, fail_after=None):
        self.chunks = chunks
        self.status_error = status_error
        self.fail_after = fail_after

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def iter_content(self, chunk_size=1):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            yield chunk


@pytest.mark.unit
class TestReadIdx:

    def test_reads_labels(self, tmp_path):
        path = str(tmp_path / 'labels.gz')
        write_idx(path, np.array([3, 1, 4]), IDX_LABELS_MAGIC)

        labels = read_idx(path, IDX_LABELS_MAGIC)

        assert labels.dtype == np.uint8
        assert labels.tolist() == [3, 1, 4]

    def test_reads_images(self, tmp_path):
        path = str(tmp_path / 'images.gz')
        images = np.arange(2 * 28 * 28).reshape(2, 28, 28) % 256
        write_idx(path, images, IDX_IMAGES_MAGIC)

        assert np.array_equal(read_idx(path, IDX_IMAGES_MAGIC), images)

    def test_bad_magic_raises(self, tmp_path):
        path = str(tmp_path / 'labels.gz')
        write_idx(path, np.array([1, 2]), IDX_LABELS_MAGIC)

        with pytest.raises(DatasetError, match='magic'):
            read_idx(path, IDX_IMAGES_MAGIC)

    def test_truncated_payload_raises(self, tmp_path):
        path = str(tmp_path / 'labels.gz')
        with gzip.open(path, 'wb') as f:
            f.write(struct.pack('>II', IDX_LABELS_MAGIC, 10) + bytes(4))

        with pytest.raises(DatasetError):
            read_idx(path, IDX_LABELS_MAGIC)

    def test_not_gzip_raises(self, tmp_path):
        path = tmp_path / 'labels.gz'
        path.write_bytes(b'plain text, not gzip')

        with pytest.raises(DatasetError):
            read_idx(str(path), IDX_LABELS_MAGIC)


@pytest.mark.unit
class TestGetFile:

    def test_cached_file_is_not_downloaded(self, tmp_path, no_network):
        (tmp_path / 'cached.bin').write_bytes(b'data')

        path = get_file('cached.bin', 'https://example.invalid/cached.bin', str(tmp_path))

        assert path == str(tmp_path / 'cached.bin')

    def test_downloads_missing_file(self, tmp_path, monkeypatch):
        requested = []

        def fake_get(url, stream=False, timeout=None):
            requested.append(url)
            return FakeResponse([b'abc', b'def'])
        monkeypatch.setattr(utils.requests, 'get', fake_get)

        path = get_file('new.bin', 'https://example.invalid/new.bin', str(tmp_path))

        assert requested == ['https://example.invalid/new.bin']
        with open(path, 'rb') as f:
            assert f.read() == b'abcdef'
        assert not os.path.exists(path + '.part')

    def test_http_error_raises_dataset_error(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            utils.requests, 'get',
            lambda *a, **k: FakeResponse([], status_error=requests.HTTPError("404"))
        )

        with pytest.raises(DatasetError):
            get_file('missing.bin', 'https://example.invalid/missing.bin', str(tmp_path))
        assert os.listdir(str(tmp_path)) == []

    def test_interrupted_download_leaves_no_partial_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            utils.requests, 'get',
            lambda *a, **k: FakeResponse([b'abc', b'def'], fail_after=1)
        )

        with pytest.raises(DatasetError):
            get_file('broken.bin', 'https://example.invalid/broken.bin', str(tmp_path))
        assert os.listdir(str(tmp_path)) == []

    def test_creates_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setattr(utils.requests, 'get', lambda *a, **k: FakeResponse([b'x']))
        data_dir = tmp_path / 'nested' / 'cache'

        get_file('x.bin', 'https://example.invalid/x.bin', str(data_dir))

        assert (data_dir / 'x.bin').exists()


@pytest.mark.unit
class TestFashionMnist:

    def test_loads_idx_files(self, tmp_path, no_network):
        arrays = write_fashion_files(str(tmp_path))

        (x_train, y_train), (x_test, y_test) = fashion_mnist.load_data(str(tmp_path))

        assert x_train.shape == (6, 28, 28)
        assert x_test.shape == (3, 28, 28)
        assert np.array_equal(y_train, arrays['train_labels'])
        assert np.array_equal(x_test, arrays['test_images'])

    def test_prefers_npz(self, tmp_path, no_network):
        """Test that a converted npz is used even when no IDX files exist."""
        x = np.zeros((2, 28, 28), dtype=np.uint8)
        y = np.array([7, 9], dtype=np.uint8)
        fashion_mnist.save_npz(((x, y), (x[:1], y[:1])),
                               str(tmp_path / fashion_mnist.NPZ_NAME))

        (x_train, y_train), (x_test, y_test) = fashion_mnist.load_data(str(tmp_path))

        assert y_train.tolist() == [7, 9]
        assert x_test.shape == (1, 28, 28)

    def test_image_label_count_mismatch_raises(self, tmp_path, no_network):
        write_fashion_files(str(tmp_path))
        write_idx(str(tmp_path / fashion_mnist.FILES['train_labels']),
                  np.array([1, 2]), IDX_LABELS_MAGIC)

        with pytest.raises(DatasetError):
            fashion_mnist.load_data(str(tmp_path))

    def test_downloads_from_keras_mirror(self, tmp_path, monkeypatch):
        source = tmp_path / 'source'
        source.mkdir()
        write_fashion_files(str(source))
        requested = []

        def fake_get(url, stream=False, timeout=None):
            requested.append(url)
            fname = url.rsplit('/', 1)[-1]
            return FakeResponse([(source / fname).read_bytes()])
        monkeypatch.setattr(utils.requests, 'get', fake_get)

        data_dir = tmp_path / 'data'
        (x_train, _), _ = fashion_mnist.load_data(str(data_dir))

        assert len(x_train) == 6
        assert sorted(requested) == sorted(
            fashion_mnist.ORIGIN + fname for fname in fashion_mnist.FILES.values()
        )

    def test_class_names(self):
        assert len(fashion_mnist.CLASS_NAMES) == 10
        assert fashion_mnist.CLASS_NAMES[9] == 'Ankle boot'


@pytest.mark.unit
class TestBostonHousing:

    @pytest.fixture
    def data_dir(self, tmp_path):
        x = np.arange(20 * 13, dtype=np.float64).reshape(20, 13)
        y = np.arange(20, dtype=np.float64)
        np.savez(str(tmp_path / boston_housing.FILE_NAME), x=x, y=y)
        return str(tmp_path)

    def test_split_sizes(self, data_dir, no_network):
        (x_train, y_train), (x_test, y_test) = boston_housing.load_data(data_dir)

        assert x_train.shape == (16, 13)
        assert y_train.shape == (16,)
        assert x_test.shape == (4, 13)
        assert y_test.shape == (4,)

    def test_split_is_deterministic_and_shuffled(self, data_dir, no_network):
        (_, first), _ = boston_housing.load_data(data_dir)
        (_, second), _ = boston_housing.load_data(data_dir)

        assert np.array_equal(first, second)
        assert not np.array_equal(first, np.arange(16))

    def test_rows_stay_aligned_with_targets(self, data_dir, no_network):
        (x_train, y_train), (x_test, y_test) = boston_housing.load_data(data_dir)

        for x, y in ((x_train, y_train), (x_test, y_test)):
            assert np.array_equal(x[:, 0], y * 13)

    def test_every_sample_used_once(self, data_dir, no_network):
        (_, y_train), (_, y_test) = boston_housing.load_data(data_dir)
        assert sorted(np.concatenate([y_train, y_test]).tolist()) == list(range(20))

    @pytest.mark.parametrize('test_split', [-0.1, 1.0])
    def test_bad_test_split_raises(self, data_dir, test_split):
        with pytest.raises(ValueError):
            boston_housing.load_data(data_dir, test_split=test_split)

    def test_corrupt_file_raises(self, tmp_path, no_network):
        (tmp_path / boston_housing.FILE_NAME).write_bytes(b'not an npz')

        with pytest.raises(DatasetError):
            boston_housing.load_data(str(tmp_path))
