#!/usr/bin/env python3
"""
Convert the downloaded Fashion MNIST IDX files to a single NPZ file.

Parsing four gzip'd IDX files on every start is slower than loading one
compressed NPZ archive. Once ``data/fashion_mnist.npz`` exists,
``basicnets.datasets.fashion_mnist.load_data`` uses it automatically.

Usage:
    python scripts/convert_fashion_mnist_to_npz.py [--data-dir data] [--force]

The script will:
1. Download the IDX files if they are not cached yet
2. Save them as fashion_mnist.npz in the same directory
3. Verify the conversion was successful
"""

import argparse
import os
import sys
from typing import Tuple

import numpy as np

from basicnets.datasets import DatasetError
from basicnets.datasets import fashion_mnist


def verify_conversion(npz_filepath: str, original_data: Tuple) -> bool:
    """
    Verify that the NPZ file contains the same data as the original.

    Parameters:
    -----------
    npz_filepath : str
        Path to the .npz file
    original_data : tuple
        Original ((x_train, y_train), (x_test, y_test))

    Returns:
    --------
    bool
        True if verification passes
    """
    print("\n🔍 Verifying conversion...")

    (x_train, y_train), (x_test, y_test) = original_data
    (nx_train, ny_train), (nx_test, ny_test) = fashion_mnist.load_npz(npz_filepath)

    for name, original, converted in (
        ('Training images', x_train, nx_train),
        ('Training labels', y_train, ny_train),
        ('Test images', x_test, nx_test),
        ('Test labels', y_test, ny_test),
    ):
        if not np.array_equal(original, converted):
            print(f"❌ {name} don't match!")
            return False

    print("✅ Verification passed! Data is identical.")
    return True


def main():
    """Main conversion function."""
    parser = argparse.ArgumentParser(description="Convert Fashion MNIST IDX files to NPZ")
    parser.add_argument("--data-dir", type=str, default="data", help="Dataset directory (default: data)")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing NPZ file")
    args = parser.parse_args()

    print("=" * 60)
    print("Fashion MNIST Data Format Converter")
    print("IDX (gzip) → NPZ format")
    print("=" * 60)

    npz_path = os.path.join(args.data_dir, fashion_mnist.NPZ_NAME)
    if os.path.exists(npz_path) and not args.force:
        print(f"❌ {npz_path} already exists. Use --force to overwrite.")
        sys.exit(0)

    try:
        print(f"📂 Loading IDX files from: {args.data_dir}")
        original_data = fashion_mnist.load_idx_files(args.data_dir)
        (x_train, _), (x_test, _) = original_data
        print(f"   - Training: {len(x_train)} images")
        print(f"   - Test: {len(x_test)} images")

        print(f"\n💾 Converting to NPZ format: {npz_path}")
        fashion_mnist.save_npz(original_data, npz_path)
        npz_size = os.path.getsize(npz_path) / (1024 * 1024)
        print(f"✅ Saved successfully (size: {npz_size:.2f} MB)")

        if not verify_conversion(npz_path, original_data):
            os.remove(npz_path)
            sys.exit(1)

        print("\n" + "=" * 60)
        print("✅ CONVERSION COMPLETE!")
        print("=" * 60)

    except DatasetError as e:
        print(f"\n❌ Error during conversion: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
