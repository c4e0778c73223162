"""Cross-checks against python-crfsuite on the shared model file format."""

import tempfile
from pathlib import Path

import pytest

from crfchain.model import Model
from crfchain.tagger import Tagger
from crfchain.trainer import Trainer

pycrfsuite = pytest.importorskip("pycrfsuite")

TRAINING_DATA = [
    ([["w=John", "cap"], ["w=lives"], ["w=in"], ["w=Tokyo", "cap"]], ["B-PER", "O", "O", "B-LOC"]),
    ([["w=Mary", "cap"], ["w=visits"], ["w=Paris", "cap"]], ["B-PER", "O", "B-LOC"]),
    ([["w=it"], ["w=rains"], ["w=in"], ["w=Paris", "cap"]], ["O", "O", "O", "B-LOC"]),
    ([["w=John", "cap"], ["w=visits"], ["w=Tokyo", "cap"]], ["B-PER", "O", "B-LOC"]),
]

QUERIES = [
    [["w=Mary", "cap"], ["w=lives"], ["w=in"], ["w=Tokyo", "cap"]],
    [["w=it"], ["w=visits"], ["w=Paris", "cap"]],
    [["w=unseen"], ["cap"]],
    [{"w=John": 1.0, "cap": 0.5}, {"w=in": 2.0}],
]


def _assert_same_predictions(model_path: Path) -> None:
    reference = pycrfsuite.Tagger()
    reference.open(str(model_path))
    ours = Tagger.open(model_path)
    try:
        assert ours.labels() == reference.labels()
        for xseq in QUERIES:
            expected = reference.tag(xseq)
            assert ours.tag(xseq) == expected

            reference.set(xseq)
            ours.set(xseq)
            assert ours.probability(expected) == pytest.approx(reference.probability(expected), abs=1e-6)
            for t, label in enumerate(expected):
                assert ours.marginal(label, t) == pytest.approx(reference.marginal(label, t), abs=1e-6)
    finally:
        reference.close()
        ours.close()


class TestPycrfsuiteCompatibility:
    """Models move between crfchain and python-crfsuite."""

    def test_read_crfsuite_model(self) -> None:
        """Models trained by CRFsuite load and tag identically."""
        trainer = pycrfsuite.Trainer(verbose=False)
        for xseq, yseq in TRAINING_DATA:
            trainer.append(xseq, yseq)
        trainer.select("lbfgs")
        trainer.set_params({"c1": 0.0, "c2": 0.1, "feature.possible_transitions": True})

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crfsuite.model"
            trainer.train(str(path))
            model = Model.from_file(path)
            assert model.num_labels == 3
            _assert_same_predictions(path)

    def test_write_crfsuite_model(self) -> None:
        """Models written here open in CRFsuite and tag identically."""
        trainer = Trainer("lbfgs", {"c2": 0.1, "feature.possible_transitions": True})
        for xseq, yseq in TRAINING_DATA:
            trainer.append(xseq, yseq)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crfchain.model"
            trainer.train(path)
            _assert_same_predictions(path)
