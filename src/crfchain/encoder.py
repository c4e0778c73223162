"""Binds a feature catalog and a weight vector to scoring lattices.

The encoder compiles each training instance once into flat arrays of
(position, feature id, label, value) entries. With those, building the
state score matrix, the gradient of the negative log-likelihood, and the
feature counts along a label path are all vectorized numpy operations.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from crfchain.context import Context
from crfchain.dataset import Instance
from crfchain.exceptions import InvalidFeatureIndex
from crfchain.features import FeatureCatalog


@dataclass(frozen=True, slots=True)
class CompiledInstance:
    """An instance flattened against a feature catalog.

    Entry k says: at position positions[k], state feature fids[k] fires
    for label labels[k] with attribute value values[k].

    Attributes:
        num_items: Sequence length T.
        positions: Item position of each entry.
        fids: State feature id of each entry.
        labels: Label the feature of each entry fires for.
        values: Attribute value of each entry.
        gold: Gold label ids, or None.
        weight: Instance weight.
    """

    num_items: int
    positions: np.ndarray
    fids: np.ndarray
    labels: np.ndarray
    values: np.ndarray
    gold: np.ndarray | None
    weight: float = 1.0


class Encoder:
    """Scores compiled instances under a weight vector."""

    def __init__(self, catalog: FeatureCatalog) -> None:
        self.catalog = catalog
        self.num_features = len(catalog)
        self.num_labels = catalog.num_labels
        self._trans_ids = catalog.trans_ids
        self._trans_src = catalog.src[self._trans_ids]
        self._trans_dst = catalog.dst[self._trans_ids]

    def compile(self, instance: Instance) -> CompiledInstance:
        """Flatten an instance. Attributes without features are dropped."""
        positions: list[np.ndarray] = []
        fids: list[np.ndarray] = []
        values: list[np.ndarray] = []
        for t, item in enumerate(instance.items):
            for aid, value in item.attributes:
                refs = self.catalog.attribute_refs(aid)
                if len(refs):
                    positions.append(np.full(len(refs), t, dtype=np.int64))
                    fids.append(refs)
                    values.append(np.full(len(refs), value, dtype=np.float64))

        if fids:
            flat_fids = np.concatenate(fids)
            flat_positions = np.concatenate(positions)
            flat_values = np.concatenate(values)
        else:
            flat_fids = np.empty(0, dtype=np.int64)
            flat_positions = np.empty(0, dtype=np.int64)
            flat_values = np.empty(0, dtype=np.float64)

        gold = None if instance.labels is None else np.asarray(instance.labels, dtype=np.int64)
        return CompiledInstance(
            num_items=len(instance),
            positions=flat_positions,
            fids=flat_fids,
            labels=self.catalog.dst[flat_fids],
            values=flat_values,
            gold=gold,
            weight=instance.weight,
        )

    def check_weights(self, weights: np.ndarray) -> None:
        """Fail fast on a weight vector that does not fit the catalog.

        Raises:
            InvalidFeatureIndex: If the vector length differs from the
                number of features.
        """
        if weights.ndim != 1 or weights.shape[0] != self.num_features:
            raise InvalidFeatureIndex(
                message=(
                    f"Weight vector of shape {weights.shape} does not match "
                    f"{self.num_features} features"
                )
            )

    def transition_scores(self, weights: np.ndarray, scale: float = 1.0) -> np.ndarray:
        trans = np.zeros((self.num_labels, self.num_labels))
        trans[self._trans_src, self._trans_dst] = weights[self._trans_ids] * scale
        return trans

    def state_scores(self, inst: CompiledInstance, weights: np.ndarray, scale: float = 1.0) -> np.ndarray:
        L = self.num_labels
        contributions = weights[inst.fids] * inst.values * scale
        flat = np.bincount(inst.positions * L + inst.labels, weights=contributions, minlength=inst.num_items * L)
        return flat.reshape(inst.num_items, L)

    def context(self, inst: CompiledInstance, weights: np.ndarray, scale: float = 1.0) -> Context:
        """Build the lattice of inst under weights * scale."""
        self.check_weights(weights)
        return Context(self.state_scores(inst, weights, scale), self.transition_scores(weights, scale))

    def viterbi(self, inst: CompiledInstance, weights: np.ndarray) -> tuple[list[int], float]:
        with self.context(inst, weights) as ctx:
            return ctx.viterbi()

    def score(self, inst: CompiledInstance, path: Sequence[int], weights: np.ndarray) -> float:
        with self.context(inst, weights) as ctx:
            return ctx.score(path)

    def path_features(self, inst: CompiledInstance, path: Sequence[int]) -> tuple[np.ndarray, np.ndarray]:
        """Feature ids and values firing along a label path (may repeat)."""
        labels = np.asarray(path, dtype=np.int64)
        on_path = inst.labels == labels[inst.positions]
        trans = self.catalog.trans_index[labels[:-1], labels[1:]] if len(labels) > 1 else np.empty(0, np.int64)
        trans = trans[trans >= 0]
        fids = np.concatenate((inst.fids[on_path], trans))
        values = np.concatenate((inst.values[on_path], np.ones(len(trans))))
        return fids, values

    def path_delta(
        self,
        inst: CompiledInstance,
        gold: Sequence[int],
        predicted: Sequence[int],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Sparse difference of feature counts, gold path minus predicted path.

        Returns:
            (feature ids, deltas) with unique ids and non-zero deltas.
        """
        gold_fids, gold_values = self.path_features(inst, gold)
        pred_fids, pred_values = self.path_features(inst, predicted)
        fids = np.concatenate((gold_fids, pred_fids))
        values = np.concatenate((gold_values, -pred_values))

        unique, inverse = np.unique(fids, return_inverse=True)
        sums = np.bincount(inverse, weights=values, minlength=len(unique))
        nonzero = sums != 0.0
        return unique[nonzero], sums[nonzero]

    def gradient_terms(self, inst: CompiledInstance, ctx: Context) -> tuple[float, np.ndarray, np.ndarray]:
        """Negative log-likelihood of the gold path and its gradient.

        The gradient is split into per-entry state terms (aligned with
        inst.fids) and dense transition terms (aligned with the catalog's
        transition range). Each term is expected minus observed count.

        Returns:
            (loss, state gradient per entry, transition gradient).
        """
        assert inst.gold is not None
        gold = inst.gold

        loss = ctx.log_norm() - ctx.score(gold)

        marginals = ctx.marginals()
        observed = (inst.labels == gold[inst.positions]).astype(np.float64)
        state_grad = (marginals[inst.positions, inst.labels] - observed) * inst.values

        expected_trans = ctx.transition_marginals()[self._trans_src, self._trans_dst]
        if len(gold) > 1:
            gold_trans = self.catalog.trans_index[gold[:-1], gold[1:]]
            gold_trans = gold_trans[gold_trans >= 0] - self.catalog.num_state_features
            observed_trans = np.bincount(gold_trans, minlength=len(self._trans_ids))
        else:
            observed_trans = np.zeros(len(self._trans_ids))
        return loss, state_grad, expected_trans - observed_trans

    def objective(
        self,
        instances: Sequence[CompiledInstance],
        weights: np.ndarray,
    ) -> tuple[float, np.ndarray]:
        """Weighted negative log-likelihood over instances and its gradient."""
        self.check_weights(weights)
        trans = self.transition_scores(weights)
        total = 0.0
        gradient = np.zeros(self.num_features)
        for inst in instances:
            with Context(self.state_scores(inst, weights), trans) as ctx:
                loss, state_grad, trans_grad = self.gradient_terms(inst, ctx)
            total += inst.weight * loss
            np.add.at(gradient, inst.fids, inst.weight * state_grad)
            gradient[self._trans_ids] += inst.weight * trans_grad
        return total, gradient

    def sgd_step(self, inst: CompiledInstance, weights: np.ndarray, scale: float, gain: float) -> float:
        """One stochastic gradient step on weights (stored unscaled).

        The effective weights are weights * scale. The update moves them
        by gain * (observed - expected) feature counts.

        Returns:
            Negative log-likelihood of the instance before the update.
        """
        with self.context(inst, weights, scale) as ctx:
            loss, state_grad, trans_grad = self.gradient_terms(inst, ctx)
        step = gain * inst.weight
        np.add.at(weights, inst.fids, -step * state_grad)
        weights[self._trans_ids] -= step * trans_grad
        return loss

    def log_likelihood_loss(self, inst: CompiledInstance, weights: np.ndarray) -> float:
        """Negative log-likelihood of the gold path."""
        assert inst.gold is not None
        with self.context(inst, weights) as ctx:
            return ctx.log_norm() - ctx.score(inst.gold)
