"""Inference over a compiled model.

A Tagger is a session bound to one Model and one item sequence at a time:

    with Tagger.open("model.crfsuite") as tagger:
        tagger.set(xseq)
        labels = tagger.tag()
        prob = tagger.probability(labels)
        p = tagger.marginal(labels[0], 0)

The module-level functions load, labels, tag and probability cover the
one-shot queries.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from crfchain.context import Context
from crfchain.dataset import ItemSequenceInput
from crfchain.exceptions import LengthMismatch
from crfchain.model import Model

logger = logging.getLogger(__name__)


class Tagger:
    """Labels item sequences with a Model.

    Taggers are cheap. Each owns its scoring lattice, so use one Tagger
    per thread and share the Model between them.
    """

    def __init__(self, model: Model) -> None:
        self.model = model
        self._labels = model.labels()
        self._context: Context | None = None

    @classmethod
    def open(cls, path: Path | str) -> "Tagger":
        """Create a tagger for the model file at path."""
        return cls(Model.from_file(path))

    @classmethod
    def open_inmemory(cls, data: bytes) -> "Tagger":
        """Create a tagger for a model held in memory."""
        return cls(Model.from_bytes(data))

    def close(self) -> None:
        """Release the current lattice."""
        if self._context is not None:
            self._context.close()
            self._context = None

    def labels(self) -> list[str]:
        """Label names known to the model, in id order."""
        return list(self._labels)

    def set(self, xseq: ItemSequenceInput) -> None:
        """Score an item sequence. Unknown attributes are skipped.

        If scoring fails, the previously set sequence stays current.
        """
        context = self.model.context(xseq)
        self.close()
        self._context = context

    def _require_context(self) -> Context:
        if self._context is None:
            raise RuntimeError("No item sequence is set; call set() or tag(xseq) first")
        return self._context

    def tag(self, xseq: ItemSequenceInput | None = None) -> list[str]:
        """Most probable label sequence.

        Args:
            xseq: Item sequence to label. If None, label the sequence
                given to the last set() call.

        Returns:
            One label name per item.
        """
        if xseq is not None:
            self.set(xseq)
        path, _ = self._require_context().viterbi()
        return [self._labels[lid] for lid in path]

    def viterbi(self) -> tuple[list[str], float]:
        """Best label sequence of the current sequence and its score."""
        path, score = self._require_context().viterbi()
        return [self._labels[lid] for lid in path], score

    def _label_ids(self, yseq: Sequence[str]) -> list[int]:
        ctx = self._require_context()
        if len(yseq) != ctx.num_items:
            raise LengthMismatch(
                message="Label sequence does not match the item sequence",
                expected=ctx.num_items,
                actual=len(yseq),
            )
        return [self.model.label_id(y) for y in yseq]

    def score(self, yseq: Sequence[str]) -> float:
        """Unnormalized score of a label sequence for the current sequence."""
        return self._require_context().score(self._label_ids(yseq))

    def probability(self, yseq: Sequence[str]) -> float:
        """Conditional probability of a label sequence for the current sequence.

        Raises:
            LengthMismatch: If yseq differs in length from the sequence.
            DictionaryLookupFailed: If yseq holds an unknown label.
        """
        return self._require_context().probability(self._label_ids(yseq))

    def marginal(self, y: str, t: int) -> float:
        """Marginal probability of label y at position t.

        Raises:
            DictionaryLookupFailed: If y is unknown.
            IndexError: If t is out of range.
        """
        return self._require_context().marginal(self.model.label_id(y), t)

    def info(self) -> dict[str, int]:
        """Sizes of the loaded model."""
        return {
            "num_labels": self.model.num_labels,
            "num_attributes": self.model.num_attributes,
            "num_features": self.model.num_features,
        }

    def __enter__(self) -> "Tagger":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def load(source: bytes | Path | str) -> Model:
    """Load a model from in-memory bytes or a file path."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return Model.from_bytes(bytes(source))
    return Model.from_file(source)


def labels(model: Model) -> list[str]:
    """Label names of a model, in id order."""
    return model.labels()


def tag(model: Model, xseq: ItemSequenceInput) -> list[str]:
    """Most probable label sequence for xseq. An empty xseq gives []."""
    with Tagger(model) as tagger:
        return tagger.tag(xseq)


def probability(model: Model, xseq: ItemSequenceInput, yseq: Sequence[str]) -> float:
    """Conditional probability of yseq given xseq.

    Raises:
        LengthMismatch: If yseq and xseq differ in length.
        DictionaryLookupFailed: If yseq holds an unknown label.
    """
    with Tagger(model) as tagger:
        tagger.set(xseq)
        return tagger.probability(yseq)
