"""Tests for labeling accuracy reports."""

import pytest

from crfchain.evaluation import LabelMetrics, evaluate


class TestLabelMetrics:
    """Tests for per-label precision, recall and F1."""

    def test_scores(self) -> None:
        """Precision, recall and F1 follow the usual definitions."""
        m = LabelMetrics(true_positives=2, false_positives=2, false_negatives=1)
        assert m.precision == pytest.approx(0.5)
        assert m.recall == pytest.approx(2 / 3)
        assert m.f1 == pytest.approx(2 * 0.5 * (2 / 3) / (0.5 + 2 / 3))

    def test_empty_counts(self) -> None:
        """Zero denominators give zero instead of failing."""
        m = LabelMetrics()
        assert m.precision == 0.0
        assert m.recall == 0.0
        assert m.f1 == 0.0


class TestEvaluate:
    """Tests for evaluate()."""

    def test_counts(self) -> None:
        """Item and instance accuracy count matches."""
        references = [["B", "O", "O"], ["O", "B"]]
        predictions = [["B", "O", "B"], ["O", "B"]]
        result = evaluate(references, predictions, ["B", "O"])

        assert result.num_items == 5
        assert result.correct_items == 4
        assert result.item_accuracy == pytest.approx(0.8)
        assert result.num_instances == 2
        assert result.correct_instances == 1
        assert result.instance_accuracy == pytest.approx(0.5)

        b = result.labels["B"]
        assert (b.true_positives, b.false_positives, b.false_negatives) == (2, 1, 0)
        o = result.labels["O"]
        assert (o.true_positives, o.false_positives, o.false_negatives) == (2, 0, 1)

    def test_label_order_and_extra_labels(self) -> None:
        """Given labels come first; labels met only in the data follow."""
        result = evaluate([["X", "Z"]], [["Y", "Z"]], ["Z", "Q"])
        assert list(result.labels) == ["Z", "Q", "X", "Y"]

    def test_macro_average_skips_unused_labels(self) -> None:
        """Labels never referenced nor predicted do not dilute the averages."""
        result = evaluate([["A", "A"]], [["A", "A"]], ["A", "UNUSED"])
        assert result.macro_precision == 1.0
        assert result.macro_recall == 1.0
        assert result.macro_f1 == 1.0

    def test_empty_input(self) -> None:
        """No sequences give zero accuracy."""
        result = evaluate([], [])
        assert result.item_accuracy == 0.0
        assert result.instance_accuracy == 0.0
        assert result.macro_f1 == 0.0

    def test_length_mismatch(self) -> None:
        """Misaligned sequences are rejected."""
        with pytest.raises(ValueError):
            evaluate([["A", "B"]], [["A"]])
        with pytest.raises(ValueError):
            evaluate([["A"], ["B"]], [["A"]])

    def test_report(self) -> None:
        """The report lists active labels and the accuracies."""
        result = evaluate([["B", "O"]], [["B", "B"]], ["B", "O", "I"])
        report = result.report()
        assert "    B: (1, 2, 1) (0.5000, 1.0000, 0.6667)" in report
        assert "    I:" not in report
        assert "Item accuracy: 1 / 2 (0.5000)" in report
        assert "Instance accuracy: 0 / 1 (0.0000)" in report
