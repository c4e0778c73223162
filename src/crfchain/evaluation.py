"""Labeling accuracy against reference label sequences.

Reports per-label precision, recall and F1, their macro averages, the
item accuracy (correct positions) and the instance accuracy (sequences
labeled entirely correctly).
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass


@dataclass
class LabelMetrics:
    """Per-label accuracy counts."""

    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0

    @property
    def num_predicted(self) -> int:
        return self.true_positives + self.false_positives

    @property
    def num_reference(self) -> int:
        return self.true_positives + self.false_negatives

    @property
    def precision(self) -> float:
        if self.true_positives + self.false_positives == 0:
            return 0.0
        return self.true_positives / (self.true_positives + self.false_positives)

    @property
    def recall(self) -> float:
        if self.true_positives + self.false_negatives == 0:
            return 0.0
        return self.true_positives / (self.true_positives + self.false_negatives)

    @property
    def f1(self) -> float:
        if self.precision + self.recall == 0:
            return 0.0
        return 2 * self.precision * self.recall / (self.precision + self.recall)


@dataclass(frozen=True, slots=True)
class Evaluation:
    """Result of comparing predicted label sequences with references.

    Attributes:
        labels: Metrics per label name, in label id order.
        num_items: Number of compared positions.
        correct_items: Number of positions labeled correctly.
        num_instances: Number of compared sequences.
        correct_instances: Number of sequences labeled entirely correctly.
    """

    labels: dict[str, LabelMetrics]
    num_items: int
    correct_items: int
    num_instances: int
    correct_instances: int

    @property
    def item_accuracy(self) -> float:
        return self.correct_items / self.num_items if self.num_items else 0.0

    @property
    def instance_accuracy(self) -> float:
        return self.correct_instances / self.num_instances if self.num_instances else 0.0

    def _active(self) -> list[LabelMetrics]:
        return [m for m in self.labels.values() if m.num_predicted or m.num_reference]

    @property
    def macro_precision(self) -> float:
        active = self._active()
        return sum(m.precision for m in active) / len(active) if active else 0.0

    @property
    def macro_recall(self) -> float:
        active = self._active()
        return sum(m.recall for m in active) / len(active) if active else 0.0

    @property
    def macro_f1(self) -> float:
        active = self._active()
        return sum(m.f1 for m in active) / len(active) if active else 0.0

    def report(self) -> str:
        """Multi-line, human-readable summary."""
        lines = ["Performance by label (#match, #model, #ref) (precision, recall, F1):"]
        for name, m in self.labels.items():
            if not (m.num_predicted or m.num_reference):
                continue
            lines.append(
                f"    {name}: ({m.true_positives}, {m.num_predicted}, {m.num_reference}) "
                f"({m.precision:.4f}, {m.recall:.4f}, {m.f1:.4f})"
            )
        lines.append(
            f"Macro-average precision, recall, F1: "
            f"({self.macro_precision:.6f}, {self.macro_recall:.6f}, {self.macro_f1:.6f})"
        )
        lines.append(f"Item accuracy: {self.correct_items} / {self.num_items} ({self.item_accuracy:.4f})")
        lines.append(
            f"Instance accuracy: {self.correct_instances} / {self.num_instances} "
            f"({self.instance_accuracy:.4f})"
        )
        return "\n".join(lines)


def evaluate(
    references: Iterable[Sequence[str]],
    predictions: Iterable[Sequence[str]],
    labels: Sequence[str] = (),
) -> Evaluation:
    """Compare predicted label sequences with references.

    Args:
        references: Gold label sequences.
        predictions: Predicted label sequences, aligned with references.
        labels: Label names to report first, in this order. Labels met in
            the data but missing here are appended.

    Returns:
        Evaluation with per-label and aggregate accuracy.

    Raises:
        ValueError: If a prediction and its reference differ in length,
            or the two iterables differ in length.
    """
    metrics: dict[str, LabelMetrics] = {name: LabelMetrics() for name in labels}
    num_items = correct_items = num_instances = correct_instances = 0

    for reference, prediction in zip(references, predictions, strict=True):
        if len(reference) != len(prediction):
            raise ValueError(
                f"Prediction has {len(prediction)} labels but reference has {len(reference)}"
            )
        all_correct = True
        for ref, pred in zip(reference, prediction):
            ref_metrics = metrics.setdefault(ref, LabelMetrics())
            pred_metrics = metrics.setdefault(pred, LabelMetrics())
            if ref == pred:
                ref_metrics.true_positives += 1
                correct_items += 1
            else:
                ref_metrics.false_negatives += 1
                pred_metrics.false_positives += 1
                all_correct = False
        num_items += len(reference)
        num_instances += 1
        if all_correct:
            correct_instances += 1

    return Evaluation(
        labels=metrics,
        num_items=num_items,
        correct_items=correct_items,
        num_instances=num_instances,
        correct_instances=correct_instances,
    )
