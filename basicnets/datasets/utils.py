"""
utils.py
~~~~~~~~

Download and file-format helpers shared by the dataset loaders.
"""

import gzip
import logging
import os
import struct
from typing import Optional

import numpy as np
import requests

from basicnets import config

logger = logging.getLogger(__name__)

# Public mirror the Keras dataset loaders download from
ORIGIN_BASE = 'https://storage.googleapis.com/tensorflow/tf-keras-datasets/'

IDX_LABELS_MAGIC = 2049
IDX_IMAGES_MAGIC = 2051


class DatasetError(Exception):
    """Raised when a dataset cannot be downloaded or parsed."""


def resolve_data_dir(data_dir: Optional[str] = None) -> str:
    """Return ``data_dir`` (or the configured default), creating it if needed."""
    data_dir = data_dir or config.DATA_DIR
    if not os.path.exists(data_dir):
        os.makedirs(data_dir)
    return data_dir


def get_file(
    fname: str,
    origin: str,
    data_dir: Optional[str] = None,
    timeout: Optional[float] = None
) -> str:
    """
    Return the local path of ``fname``, downloading it from ``origin`` first
    if it is not cached yet.

    The download is written to a ``.part`` file and renamed on success, so an
    interrupted download never leaves a truncated file behind.

    Args:
        fname: File name inside the data directory
        origin: URL to download from
        data_dir: Cache directory (defaults to ``BASICNETS_DATA_DIR``)
        timeout: Request timeout in seconds

    Returns:
        Absolute path to the cached file

    Raises:
        DatasetError: If the download fails
    """
    data_dir = resolve_data_dir(data_dir)
    path = os.path.abspath(os.path.join(data_dir, fname))
    if os.path.exists(path):
        logger.debug(f"Using cached {path}")
        return path

    partial_path = path + '.part'
    logger.info(f"Downloading {origin} -> {path}")
    try:
        with requests.get(origin, stream=True,
                          timeout=timeout or config.DOWNLOAD_TIMEOUT) as response:
            response.raise_for_status()
            with open(partial_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=1 << 16):
                    f.write(chunk)
    except (requests.RequestException, OSError) as e:
        if os.path.exists(partial_path):
            os.remove(partial_path)
        raise DatasetError(f"Failed to download {origin}: {e}") from e

    os.replace(partial_path, path)
    logger.info(f"Downloaded {fname} ({os.path.getsize(path) / 1024:.0f} KB)")
    return path


def read_idx(path: str, expected_magic: int) -> np.ndarray:
    """
    Read a gzip-compressed IDX file (the MNIST family's array format).

    The header is a big-endian magic number followed by one 32-bit size per
    dimension; label files have one dimension, image files three.

    Args:
        path: Path to an ``*-idx?-ubyte.gz`` file
        expected_magic: ``IDX_LABELS_MAGIC`` or ``IDX_IMAGES_MAGIC``

    Returns:
        uint8 array of shape ``(n,)`` or ``(n, rows, cols)``

    Raises:
        DatasetError: If the header or payload is malformed
    """
    try:
        with gzip.open(path, 'rb') as f:
            data = f.read()
    except (OSError, EOFError) as e:
        raise DatasetError(f"Could not read {path}: {e}") from e

    if len(data) < 8:
        raise DatasetError(f"{path} is too short to be an IDX file")

    magic, count = struct.unpack('>II', data[:8])
    if magic != expected_magic:
        raise DatasetError(
            f"{path}: bad IDX magic {magic}, expected {expected_magic}"
        )

    if magic == IDX_IMAGES_MAGIC:
        if len(data) < 16:
            raise DatasetError(f"{path}: truncated IDX image header")
        rows, cols = struct.unpack('>II', data[8:16])
        shape = (count, rows, cols)
        offset = 16
    else:
        shape = (count,)
        offset = 8

    expected = int(np.prod(shape))
    payload = np.frombuffer(data, dtype=np.uint8, offset=offset)
    if payload.size != expected:
        raise DatasetError(
            f"{path}: expected {expected} bytes of data, found {payload.size}"
        )
    return payload.reshape(shape)
