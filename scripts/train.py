#!/usr/bin/env python3
"""Train a CRF model from data in the CRFsuite text format.

Each line holds a label followed by tab-separated attributes
(``name`` or ``name:weight``); a blank line ends a sequence.

Usage:
    python scripts/train.py data/train.txt
    python scripts/train.py data/train.txt --output models/ner.crfsuite
    python scripts/train.py data/train.txt --algorithm ap --param max_iterations=50
    python scripts/train.py data/train.txt --params params.yaml --holdout data/dev.txt
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from crfchain.dataset import read_text
from crfchain.params import load_params
from crfchain.trainer import Trainer
from crfchain.trainers import ALGORITHMS

HOLDOUT_GROUP = 1


class ConsoleTrainer(Trainer):
    """Trainer that prints iteration progress."""

    def message(self, text: str) -> None:
        print(text, end="")


def parse_param(text: str) -> tuple[str, str]:
    """Parse NAME=VALUE."""
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {text!r}")
    return name, value


def load_sequences(trainer: Trainer, path: Path, group: int) -> int:
    """Append every sequence in path to trainer. Returns the count."""
    count = 0
    with open(path, encoding="utf-8") as f:
        for labels, xseq in read_text(f):
            trainer.append(xseq, labels, group=group)
            count += 1
    return count


def main():
    parser = argparse.ArgumentParser(description="Train a linear-chain CRF model")
    parser.add_argument(
        "training_data",
        type=Path,
        help="Path to training data in the CRFsuite text format",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=Path("models/model.crfsuite"),
        help="Output model path (default: models/model.crfsuite)",
    )
    parser.add_argument(
        "--algorithm",
        "-a",
        choices=sorted(ALGORITHMS),
        default="lbfgs",
        help="Training algorithm (default: lbfgs)",
    )
    parser.add_argument(
        "--params",
        type=Path,
        help="YAML file with training parameters",
    )
    parser.add_argument(
        "--param",
        "-p",
        type=parse_param,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a training parameter; may be repeated and overrides --params",
    )
    parser.add_argument(
        "--holdout",
        type=Path,
        help="Data evaluated after every iteration, in the same format",
    )
    parser.add_argument(
        "--help-params",
        action="store_true",
        help="List the parameters of the selected algorithm and exit",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Do not print iteration progress",
    )

    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING if args.quiet else logging.INFO, format="%(message)s")

    trainer_class = Trainer if args.quiet else ConsoleTrainer
    trainer = trainer_class(args.algorithm)

    if args.help_params:
        for name in trainer.params():
            print(trainer.help(name))
        return

    try:
        if args.params is not None:
            trainer.set_params(load_params(args.params))
        trainer.set_params(dict(args.param))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not args.training_data.exists():
        print(f"Error: Training data file not found: {args.training_data}")
        sys.exit(1)

    print(f"Loading training data from {args.training_data}...")
    num_train = load_sequences(trainer, args.training_data, group=0)
    print(f"Loaded {num_train} training sequences")

    holdout = -1
    if args.holdout is not None:
        if not args.holdout.exists():
            print(f"Error: Holdout data file not found: {args.holdout}")
            sys.exit(1)
        num_holdout = load_sequences(trainer, args.holdout, group=HOLDOUT_GROUP)
        print(f"Loaded {num_holdout} holdout sequences")
        holdout = HOLDOUT_GROUP

    if num_train == 0:
        print("Error: No training sequences found")
        sys.exit(1)

    print(f"\nTraining with algorithm={args.algorithm}, params={trainer.get_params()}...")
    model = trainer.train(args.output, holdout=holdout)

    assert trainer.result is not None
    print(f"\nStatus: {trainer.result.status.value} after {trainer.result.iterations} iterations")
    print(f"Labels: {', '.join(model.labels())}")
    print(f"Active features: {model.num_features}")
    print(f"Model saved to {args.output}")
    print(f"Model size: {args.output.stat().st_size / 1024:.1f} KB")


if __name__ == "__main__":
    main()
