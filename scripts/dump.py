#!/usr/bin/env python3
"""Print the contents of a model file in a human-readable form.

Usage:
    python scripts/dump.py models/model.crfsuite
    python scripts/dump.py models/model.crfsuite > model.txt
"""

import argparse
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from crfchain.exceptions import CorruptModel
from crfchain.model import Model


def main():
    parser = argparse.ArgumentParser(description="Dump a CRF model file")
    parser.add_argument("model", type=Path, help="Path to the model file")

    args = parser.parse_args()

    if not args.model.exists():
        print(f"Error: Model file not found: {args.model}")
        sys.exit(1)

    try:
        model = Model.from_file(args.model)
    except CorruptModel as e:
        print(f"Error: {e}")
        sys.exit(1)

    model.dump(sys.stdout)


if __name__ == "__main__":
    main()
