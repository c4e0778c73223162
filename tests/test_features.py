"""Tests for feature generation and the feature catalog."""

import numpy as np
import pytest

from crfchain.dataset import Dataset
from crfchain.features import Feature, FeatureCatalog, FeatureKind


def _make_dataset() -> Dataset:
    """Labels X=0, Y=1; attributes a=0, b=1."""
    dataset = Dataset()
    dataset.append([["a"], ["b"]], ["X", "Y"])
    dataset.append([["a"], ["a"]], ["X", "X"])
    return dataset


class TestGenerate:
    """Tests for FeatureCatalog.generate."""

    def test_observed_features_in_catalog_order(self) -> None:
        """State features by (label, attribute), then transitions by (src, dst)."""
        catalog = FeatureCatalog.generate(_make_dataset())

        assert list(catalog) == [
            Feature(FeatureKind.STATE, src=0, dst=0, freq=3.0),
            Feature(FeatureKind.STATE, src=1, dst=1, freq=1.0),
            Feature(FeatureKind.TRANSITION, src=0, dst=0, freq=1.0),
            Feature(FeatureKind.TRANSITION, src=0, dst=1, freq=1.0),
        ]
        assert catalog.num_state_features == 2
        assert catalog.num_transition_features == 2
        assert catalog.num_labels == 2
        assert catalog.num_attributes == 2

    def test_minfreq_cutoff(self) -> None:
        """Features observed fewer than minfreq times are dropped."""
        catalog = FeatureCatalog.generate(_make_dataset(), minfreq=2)
        assert list(catalog) == [Feature(FeatureKind.STATE, src=0, dst=0, freq=3.0)]

    def test_possible_transitions_ignore_cutoff(self) -> None:
        """Every label pair gets a transition feature, observed or not."""
        catalog = FeatureCatalog.generate(_make_dataset(), minfreq=2, possible_transitions=True)
        transitions = [(f.src, f.dst, f.freq) for f in catalog if f.kind == FeatureKind.TRANSITION]
        assert transitions == [(0, 0, 1.0), (0, 1, 1.0), (1, 0, 0.0), (1, 1, 0.0)]

    def test_possible_states(self) -> None:
        """Every label is paired with every observed attribute."""
        catalog = FeatureCatalog.generate(_make_dataset(), possible_states=True)
        states = [(f.dst, f.src) for f in catalog if f.kind == FeatureKind.STATE]
        assert states == [(0, 0), (0, 1), (1, 0), (1, 1)]

    def test_state_frequency_sums_attribute_values(self) -> None:
        """State frequencies add up attribute values; transitions count occurrences."""
        dataset = Dataset()
        dataset.append([[("len", 0.25)], [("len", 0.25)]], ["X", "X"])
        catalog = FeatureCatalog.generate(dataset)
        assert list(catalog) == [
            Feature(FeatureKind.STATE, src=0, dst=0, freq=0.5),
            Feature(FeatureKind.TRANSITION, src=0, dst=0, freq=1.0),
        ]

        pruned = FeatureCatalog.generate(dataset, minfreq=1)
        assert list(pruned) == [Feature(FeatureKind.TRANSITION, src=0, dst=0, freq=1.0)]

    def test_fractional_values_against_cutoff(self) -> None:
        """An attribute of value 0.5 survives minfreq 0.5 but not minfreq 1."""
        dataset = Dataset()
        dataset.append([{"a": 0.5}, {"b": 1}], ["X", "Y"])

        kept = FeatureCatalog.generate(dataset, minfreq=0.5)
        assert kept.state_feature_id(0, 0) is not None
        dropped = FeatureCatalog.generate(dataset, minfreq=1)
        assert dropped.state_feature_id(0, 0) is None
        assert dropped.state_feature_id(1, 1) is not None

    def test_requires_labels(self) -> None:
        """Unlabeled instances cannot generate features."""
        dataset = Dataset()
        dataset.append([["a"]])
        with pytest.raises(ValueError):
            FeatureCatalog.generate(dataset)

    def test_empty_dataset(self) -> None:
        """An empty dataset gives an empty catalog."""
        catalog = FeatureCatalog.generate(Dataset())
        assert len(catalog) == 0
        assert catalog.attribute_refs(0).size == 0


class TestLookups:
    """Tests for id lookups and reference tables."""

    def test_feature_ids(self) -> None:
        """Features are found by kind and endpoints."""
        catalog = FeatureCatalog.generate(_make_dataset())
        assert catalog.state_feature_id(0, 0) == 0
        assert catalog.state_feature_id(1, 1) == 1
        assert catalog.state_feature_id(1, 0) is None
        assert catalog.transition_feature_id(0, 1) == 3
        assert catalog.transition_feature_id(1, 0) is None
        assert catalog.transition_feature_id(5, 0) is None
        assert catalog.feature_id(FeatureKind.STATE, 0, 0) == 0
        assert catalog.feature_id(FeatureKind.TRANSITION, 0, 0) == 2

    def test_reference_tables(self) -> None:
        """Attributes list their state features; labels their outgoing transitions."""
        catalog = FeatureCatalog.generate(_make_dataset(), possible_states=True)
        assert catalog.attribute_refs(0).tolist() == [0, 2]
        assert catalog.attribute_refs(1).tolist() == [1, 3]
        assert catalog.attribute_refs(7).tolist() == []
        assert catalog.label_refs(0).tolist() == [4, 5]
        assert catalog.label_refs(1).tolist() == []
        np.testing.assert_array_equal(catalog.trans_ids, [4, 5])

    def test_rejects_out_of_order_features(self) -> None:
        """Transitions before states are rejected."""
        features = [
            Feature(FeatureKind.TRANSITION, src=0, dst=0),
            Feature(FeatureKind.STATE, src=0, dst=0),
        ]
        with pytest.raises(ValueError):
            FeatureCatalog(features, num_labels=1, num_attributes=1)

    def test_rejects_out_of_range_features(self) -> None:
        """Label and attribute ids must fit the declared sizes."""
        with pytest.raises(ValueError):
            FeatureCatalog([Feature(FeatureKind.STATE, src=3, dst=0)], num_labels=1, num_attributes=1)
        with pytest.raises(ValueError):
            FeatureCatalog([Feature(FeatureKind.TRANSITION, src=0, dst=2)], num_labels=2, num_attributes=0)
