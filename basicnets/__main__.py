"""
Command-line entry point for running the tutorials.

Usage:
    python -m basicnets fashion-mnist --epochs 5 --plots plots/
    python -m basicnets boston-housing --epochs 500 --patience 20 --save
"""

import argparse
import logging
import sys
import uuid
from typing import List, Optional

from basicnets import tutorials
from basicnets.datasets import DatasetError
from basicnets.logging_config import configure_logging
from basicnets.model_persistence import save_model

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='basicnets',
        description="Train the Fashion MNIST or Boston housing tutorial model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m basicnets fashion-mnist --epochs 5
    python -m basicnets boston-housing --patience 20 --plots plots/
        """,
    )
    parser.add_argument(
        "tutorial",
        choices=["fashion-mnist", "boston-housing"],
        help="Which tutorial to run",
    )
    parser.add_argument(
        "--epochs",
        type=int,
        default=None,
        help="Training epochs (default: 5 for fashion-mnist, 500 for boston-housing)",
    )
    parser.add_argument("--batch-size", type=int, default=32, help="Mini-batch size (default: 32)")
    parser.add_argument(
        "--patience",
        type=int,
        default=None,
        help="boston-housing only: stop early after this many epochs without val_loss improvement",
    )
    parser.add_argument("--data-dir", type=str, default=None, help="Dataset cache directory")
    parser.add_argument("--plots", type=str, default=None, help="Directory to write PNG plots to")
    parser.add_argument("--save", action="store_true", help="Store the trained model in the model database")
    parser.add_argument("--model-dir", type=str, default=None, help="Model database directory")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.epochs is not None and args.epochs < 1:
        print("Error: --epochs must be a positive integer", file=sys.stderr)
        return 2
    if args.batch_size < 1:
        print("Error: --batch-size must be a positive integer", file=sys.stderr)
        return 2
    if args.seed is not None and args.seed < 0:
        print("Error: --seed must be a non-negative integer", file=sys.stderr)
        return 2
    if args.patience is not None:
        if args.tutorial != "boston-housing":
            print("Error: --patience only applies to boston-housing", file=sys.stderr)
            return 2
        if args.patience < 0:
            print("Error: --patience must be a non-negative integer", file=sys.stderr)
            return 2

    try:
        if args.tutorial == "fashion-mnist":
            result = tutorials.run_fashion_mnist(
                epochs=args.epochs or 5,
                batch_size=args.batch_size,
                data_dir=args.data_dir,
                plots_dir=args.plots,
                seed=args.seed,
            )
        else:
            result = tutorials.run_boston_housing(
                epochs=args.epochs or 500,
                batch_size=args.batch_size,
                patience=args.patience,
                data_dir=args.data_dir,
                plots_dir=args.plots,
                seed=args.seed,
            )
    except DatasetError as e:
        logger.error(f"Could not load dataset: {e}")
        return 1

    print("\n" + "=" * 60)
    print(f"{result.kind} results")
    print("=" * 60)
    for name, value in result.test_metrics.items():
        print(f"  test {name}: {value:.4f}")
    if result.kind == tutorials.BOSTON_HOUSING:
        print(f"  Testing set Mean Abs Error: ${result.test_metrics['mae'] * 1000:7.2f}")
    for path in result.extras.get('plots', []):
        print(f"  plot: {path}")

    if args.save:
        model_id = str(uuid.uuid4())
        metric_name, metric_value = result.headline_metric
        saved = save_model(
            result.model, model_id, result.kind,
            model_dir=args.model_dir,
            trained=True,
            metric_name=metric_name,
            metric_value=metric_value,
        )
        if not saved:
            return 1
        print(f"  saved as model {model_id}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
