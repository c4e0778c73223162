"""Tests for the instance encoder: compilation, scoring and gradients."""

import numpy as np
import pytest

from crfchain.dataset import Dataset
from crfchain.encoder import Encoder
from crfchain.exceptions import InvalidFeatureIndex
from crfchain.features import FeatureCatalog


def _make_encoder() -> tuple[Dataset, Encoder]:
    """Three labels, weighted attributes and every transition."""
    dataset = Dataset()
    dataset.append([["a", ("len", 0.5)], ["b"], ["a", "c"]], ["X", "Y", "Z"])
    dataset.append([["b", ("len", 2.0)], ["c"]], ["Y", "X"], weight=2.0)
    catalog = FeatureCatalog.generate(dataset, possible_states=True, possible_transitions=True)
    return dataset, Encoder(catalog)


def _random_weights(encoder: Encoder, seed: int = 0) -> np.ndarray:
    return np.random.default_rng(seed).normal(scale=0.5, size=encoder.num_features)


class TestCompile:
    """Tests for Encoder.compile."""

    def test_entries_cover_every_label(self) -> None:
        """Each attribute expands to one entry per state feature."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[0])

        # 5 attributes, 3 labels each with possible_states
        assert inst.num_items == 3
        assert len(inst.fids) == 15
        assert inst.positions.tolist() == [0] * 6 + [1] * 3 + [2] * 6
        assert inst.gold.tolist() == [0, 1, 2]
        assert inst.weight == 1.0
        np.testing.assert_array_equal(inst.labels, encoder.catalog.dst[inst.fids])

    def test_unknown_attributes_are_dropped(self) -> None:
        """Attributes without features contribute no entries."""
        dataset, encoder = _make_encoder()
        extra = Dataset(attributes=dataset.attributes)
        instance = extra.append([["unseen"], ["a"]])
        inst = encoder.compile(instance)
        assert inst.positions.tolist() == [1, 1, 1]
        assert inst.gold is None


class TestScoring:
    """Tests for lattice construction and path scores."""

    def test_path_score_equals_feature_sum(self) -> None:
        """score() sums the weights of features along the path."""
        dataset, encoder = _make_encoder()
        catalog = encoder.catalog
        inst = encoder.compile(dataset[0])
        weights = _random_weights(encoder)
        path = [2, 0, 1]

        expected = 0.0
        for t, item in enumerate(dataset[0].items):
            for aid, value in item.attributes:
                fid = catalog.state_feature_id(path[t], aid)
                expected += weights[fid] * value
        for a, b in zip(path[:-1], path[1:]):
            expected += weights[catalog.transition_feature_id(a, b)]

        assert encoder.score(inst, path, weights) == pytest.approx(expected)

    def test_path_features_agree_with_score(self) -> None:
        """The dot product of path features and weights is the path score."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[1])
        weights = _random_weights(encoder, seed=3)
        fids, values = encoder.path_features(inst, [1, 1])
        assert float(weights[fids] @ values) == pytest.approx(encoder.score(inst, [1, 1], weights))

    def test_weight_vector_must_fit(self) -> None:
        """A weight vector of the wrong size is rejected."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[0])
        with pytest.raises(InvalidFeatureIndex):
            encoder.viterbi(inst, np.zeros(encoder.num_features + 1))

    def test_scale_multiplies_weights(self) -> None:
        """A lattice built with a scale equals one built from scaled weights."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[0])
        weights = _random_weights(encoder)
        scaled = encoder.context(inst, weights, 0.25)
        direct = encoder.context(inst, weights * 0.25)
        np.testing.assert_allclose(scaled.state, direct.state)
        np.testing.assert_allclose(scaled.trans, direct.trans)


class TestPathDelta:
    """Tests for gold-minus-predicted feature counts."""

    def test_identical_paths_have_no_delta(self) -> None:
        """Equal paths cancel out."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[0])
        fids, deltas = encoder.path_delta(inst, [0, 1, 2], [0, 1, 2])
        assert fids.size == 0
        assert deltas.size == 0

    def test_delta_moves_score_difference(self) -> None:
        """delta . w equals score(gold) - score(predicted) for any w."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[0])
        weights = _random_weights(encoder, seed=5)
        gold = [0, 1, 2]
        predicted = [0, 2, 2]

        fids, deltas = encoder.path_delta(inst, gold, predicted)
        assert len(np.unique(fids)) == len(fids)
        assert np.all(deltas != 0)
        difference = encoder.score(inst, gold, weights) - encoder.score(inst, predicted, weights)
        assert float(weights[fids] @ deltas) == pytest.approx(difference)


class TestObjective:
    """Tests for the negative log-likelihood and its gradient."""

    def test_zero_weights(self) -> None:
        """With zero weights every path is equally likely."""
        dataset, encoder = _make_encoder()
        instances = [encoder.compile(inst) for inst in dataset]
        loss, _ = encoder.objective(instances, np.zeros(encoder.num_features))
        # 3^3 paths for the first instance, 3^2 for the second (weight 2)
        assert loss == pytest.approx(3 * np.log(3) + 2 * 2 * np.log(3))

    def test_gradient_matches_finite_differences(self) -> None:
        """The analytic gradient agrees with central differences."""
        dataset, encoder = _make_encoder()
        instances = [encoder.compile(inst) for inst in dataset]
        weights = _random_weights(encoder, seed=1)
        _, gradient = encoder.objective(instances, weights)

        h = 1e-6
        numeric = np.zeros_like(weights)
        for k in range(len(weights)):
            step = np.zeros_like(weights)
            step[k] = h
            plus, _ = encoder.objective(instances, weights + step)
            minus, _ = encoder.objective(instances, weights - step)
            numeric[k] = (plus - minus) / (2 * h)
        np.testing.assert_allclose(gradient, numeric, rtol=1e-4, atol=1e-6)

    def test_loss_matches_log_likelihood(self) -> None:
        """The objective is the weighted sum of per-instance losses."""
        dataset, encoder = _make_encoder()
        instances = [encoder.compile(inst) for inst in dataset]
        weights = _random_weights(encoder, seed=2)
        loss, _ = encoder.objective(instances, weights)
        expected = sum(inst.weight * encoder.log_likelihood_loss(inst, weights) for inst in instances)
        assert loss == pytest.approx(expected)

    def test_sgd_step_follows_negative_gradient(self) -> None:
        """One SGD step moves the weights by -gain times the gradient."""
        dataset, encoder = _make_encoder()
        inst = encoder.compile(dataset[1])
        weights = _random_weights(encoder, seed=4)
        _, gradient = encoder.objective([inst], weights)

        updated = weights.copy()
        loss = encoder.sgd_step(inst, updated, scale=1.0, gain=0.1)
        assert loss == pytest.approx(encoder.log_likelihood_loss(inst, weights))
        np.testing.assert_allclose(updated, weights - 0.1 * gradient, atol=1e-12)
