"""Feature generation for linear-chain CRFs.

Two kinds of features are derived from gold-labeled training data:
- State features: (label, attribute) pairs observed at a position
- Transition features: (previous label, label) pairs observed between
  adjacent positions

Feature ids are dense. All state features come first, sorted by label
and then attribute, followed by all transition features sorted by source
and then target label. Scoring code relies on this layout.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from crfchain.dataset import Dataset

logger = logging.getLogger(__name__)


class FeatureKind(IntEnum):
    """Feature type codes, as stored in model files."""

    STATE = 0
    TRANSITION = 1


@dataclass(frozen=True, slots=True)
class Feature:
    """A single feature.

    Attributes:
        kind: STATE or TRANSITION.
        src: Attribute id (state) or source label id (transition).
        dst: Label id the feature fires for.
        freq: Number of observations in the training data.
    """

    kind: FeatureKind
    src: int
    dst: int
    freq: float = 0.0


class FeatureCatalog:
    """Immutable, densely indexed feature table.

    Attributes:
        num_labels: Number of labels the catalog was built for.
        num_attributes: Number of attributes the catalog was built for.
        num_state_features: Size of the leading state-feature range.
    """

    def __init__(self, features: Iterable[Feature], num_labels: int, num_attributes: int) -> None:
        """Build the catalog from features already in catalog order.

        Args:
            features: State features sorted by (label, attribute), then
                transition features sorted by (source, target).
            num_labels: Number of labels.
            num_attributes: Number of attributes.

        Raises:
            ValueError: If features are out of order or out of range.
        """
        self._features = tuple(features)
        self.num_labels = num_labels
        self.num_attributes = num_attributes

        kinds = np.array([f.kind for f in self._features], dtype=np.int8)
        self.src = np.array([f.src for f in self._features], dtype=np.int64)
        self.dst = np.array([f.dst for f in self._features], dtype=np.int64)

        states = kinds == FeatureKind.STATE
        self.num_state_features = int(states.sum())
        if not states[: self.num_state_features].all():
            raise ValueError("State features must precede transition features")

        state_keys = [(f.dst, f.src) for f in self._features[: self.num_state_features]]
        trans_keys = [(f.src, f.dst) for f in self._features[self.num_state_features :]]
        if state_keys != sorted(set(state_keys)) or trans_keys != sorted(set(trans_keys)):
            raise ValueError("Features must be unique and sorted in catalog order")

        if len(self._features):
            label_fields = np.concatenate((self.dst, self.src[self.num_state_features :]))
            if label_fields.min() < 0 or label_fields.max() >= num_labels:
                raise ValueError("Feature label id out of range")
            attr_fields = self.src[: self.num_state_features]
            if len(attr_fields) and (attr_fields.min() < 0 or attr_fields.max() >= num_attributes):
                raise ValueError("Feature attribute id out of range")

        self._state_index: dict[tuple[int, int], int] = {
            key: fid for fid, key in enumerate(state_keys)
        }

        # trans_index[i, j] is the feature id of i -> j, or -1
        self.trans_index = np.full((num_labels, num_labels), -1, dtype=np.int64)
        for offset, (i, j) in enumerate(trans_keys):
            self.trans_index[i, j] = self.num_state_features + offset

        self.trans_ids = np.arange(self.num_state_features, len(self._features), dtype=np.int64)

        # Feature ids per attribute, ascending (and therefore by label)
        state_src = self.src[: self.num_state_features]
        order = np.argsort(state_src, kind="stable")
        bounds = np.searchsorted(state_src[order], np.arange(num_attributes + 1))
        self._attr_refs = [order[bounds[a] : bounds[a + 1]] for a in range(num_attributes)]

    @classmethod
    def generate(
        cls,
        dataset: Dataset,
        minfreq: float = 0.0,
        possible_states: bool = False,
        possible_transitions: bool = False,
    ) -> "FeatureCatalog":
        """Derive features from gold-labeled instances.

        Args:
            dataset: Training instances. Every instance needs labels.
            minfreq: Features whose frequency is below this are discarded.
                A state feature's frequency is the sum of its attribute
                values; a transition's is its number of occurrences.
            possible_states: Also generate every (label, attribute) pair
                for attributes present in the data.
            possible_transitions: Also generate every label pair.

        Returns:
            The feature catalog.

        Raises:
            ValueError: If an instance has no gold labels.
        """
        num_labels = dataset.labels.count()
        num_attributes = dataset.attributes.count()

        state_counts: Counter[tuple[int, int]] = Counter()  # summed attribute values
        trans_counts: Counter[tuple[int, int]] = Counter()
        seen_attributes: set[int] = set()

        for instance in dataset:
            if instance.labels is None:
                raise ValueError("Feature generation requires gold labels")
            prev = -1
            for item, label in zip(instance.items, instance.labels):
                for aid, value in item.attributes:
                    state_counts[(label, aid)] += value
                    seen_attributes.add(aid)
                if prev >= 0:
                    trans_counts[(prev, label)] += 1
                prev = label

        states = {key: count for key, count in state_counts.items() if count >= minfreq}
        transitions = {key: count for key, count in trans_counts.items() if count >= minfreq}

        if possible_states:
            for label in range(num_labels):
                for aid in seen_attributes:
                    states.setdefault((label, aid), state_counts[(label, aid)])
        if possible_transitions:
            for i in range(num_labels):
                for j in range(num_labels):
                    transitions.setdefault((i, j), trans_counts[(i, j)])

        features = [
            Feature(FeatureKind.STATE, src=aid, dst=label, freq=float(count))
            for (label, aid), count in sorted(states.items())
        ]
        features.extend(
            Feature(FeatureKind.TRANSITION, src=i, dst=j, freq=float(count))
            for (i, j), count in sorted(transitions.items())
        )

        logger.info(
            "Generated %d features (%d state, %d transition) from %d instances, minfreq=%s",
            len(features),
            len(states),
            len(transitions),
            len(dataset),
            minfreq,
        )
        return cls(features, num_labels=num_labels, num_attributes=num_attributes)

    def state_feature_id(self, label: int, attribute: int) -> int | None:
        """Feature id of the state feature (label, attribute), or None."""
        return self._state_index.get((label, attribute))

    def transition_feature_id(self, src: int, dst: int) -> int | None:
        """Feature id of the transition src -> dst, or None."""
        if not (0 <= src < self.num_labels and 0 <= dst < self.num_labels):
            return None
        fid = int(self.trans_index[src, dst])
        return fid if fid >= 0 else None

    def feature_id(self, kind: FeatureKind, label: int, other: int) -> int | None:
        """Feature id by (kind, label, attribute-or-label).

        For state features ``other`` is the attribute; for transitions
        ``label`` is the source and ``other`` the target.
        """
        if kind == FeatureKind.STATE:
            return self.state_feature_id(label, other)
        return self.transition_feature_id(label, other)

    def attribute_refs(self, attribute: int) -> np.ndarray:
        """State feature ids whose source is attribute."""
        if 0 <= attribute < self.num_attributes:
            return self._attr_refs[attribute]
        return np.empty(0, dtype=np.int64)

    def label_refs(self, label: int) -> np.ndarray:
        """Transition feature ids leaving label."""
        row = self.trans_index[label]
        return row[row >= 0]

    @property
    def num_transition_features(self) -> int:
        return len(self._features) - self.num_state_features

    def __len__(self) -> int:
        return len(self._features)

    def __getitem__(self, fid: int) -> Feature:
        return self._features[fid]

    def __iter__(self) -> Iterator[Feature]:
        return iter(self._features)
