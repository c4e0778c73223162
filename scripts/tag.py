#!/usr/bin/env python3
"""Tag data in the CRFsuite text format with a trained model.

The first field of every line is the reference label (it may be empty
when tagging unlabeled data). Predicted labels are printed one per line
with a blank line between sequences.

Usage:
    python scripts/tag.py models/model.crfsuite data/test.txt
    python scripts/tag.py models/model.crfsuite data/test.txt --evaluate
    python scripts/tag.py models/model.crfsuite data/test.txt --probability --marginals
"""

import argparse
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from crfchain.dataset import read_text
from crfchain.evaluation import evaluate
from crfchain.exceptions import CRFError
from crfchain.tagger import Tagger


def main():
    parser = argparse.ArgumentParser(description="Tag sequences with a trained CRF model")
    parser.add_argument("model", type=Path, help="Path to the model file")
    parser.add_argument("data", type=Path, help="Path to data in the CRFsuite text format")
    parser.add_argument(
        "--evaluate",
        "-e",
        action="store_true",
        help="Compare predictions with the reference labels and print a report",
    )
    parser.add_argument(
        "--probability",
        "-p",
        action="store_true",
        help="Print the probability of each predicted sequence",
    )
    parser.add_argument(
        "--marginals",
        "-i",
        action="store_true",
        help="Print the marginal probability of each predicted label",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Do not print the predicted labels",
    )

    args = parser.parse_args()

    for path in (args.model, args.data):
        if not path.exists():
            print(f"Error: File not found: {path}")
            sys.exit(1)

    try:
        tagger = Tagger.open(args.model)
    except CRFError as e:
        print(f"Error: Cannot load model: {e}")
        sys.exit(1)

    references: list[list[str]] = []
    predictions: list[list[str]] = []
    with tagger, open(args.data, encoding="utf-8") as f:
        for labels, xseq in read_text(f):
            tagger.set(xseq)
            predicted = tagger.tag()
            references.append(labels)
            predictions.append(predicted)

            if args.quiet:
                continue
            if args.probability:
                print(f"@probability\t{tagger.probability(predicted):f}")
            for t, label in enumerate(predicted):
                if args.marginals:
                    print(f"{label}:{tagger.marginal(label, t):f}")
                else:
                    print(label)
            print()

    if args.evaluate:
        print(evaluate(references, predictions, tagger.labels()).report())


if __name__ == "__main__":
    main()
