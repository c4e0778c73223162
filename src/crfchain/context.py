"""Scoring lattice for one sequence.

A Context holds the per-position state scores (T x L) and the transition
scores (L x L) of a linear-chain CRF and answers:
- Viterbi decoding (best label path and its score)
- The log partition function via scaled forward-backward
- Path scores and probabilities
- Position and transition marginals

Scores are log-linear feature sums. Forward-backward runs in log space
with every alpha row shifted by its maximum; the shifts are the log scale
factors and are added back when recovering log Z.
"""

from collections.abc import Sequence

import numpy as np
from scipy.special import logsumexp

from crfchain.exceptions import LengthMismatch


class Context:
    """Dynamic-programming buffers for one scored sequence.

    Example:
        with Context(state_scores, transition_scores) as ctx:
            path, score = ctx.viterbi()
            prob = ctx.probability(path)
    """

    def __init__(self, state: np.ndarray, trans: np.ndarray) -> None:
        """Create a lattice.

        Args:
            state: State scores, shape (T, L).
            trans: Transition scores, shape (L, L); trans[i, j] scores i -> j.

        Raises:
            ValueError: If the shapes disagree.
        """
        state = np.asarray(state, dtype=np.float64)
        trans = np.asarray(trans, dtype=np.float64)
        if state.ndim != 2 or trans.ndim != 2 or trans.shape[0] != trans.shape[1]:
            raise ValueError(f"Bad lattice shapes: state {state.shape}, transitions {trans.shape}")
        if state.shape[1] != trans.shape[0]:
            raise ValueError(
                f"State scores have {state.shape[1]} labels but transitions have {trans.shape[0]}"
            )

        self._state = state
        self._trans = trans

        self._alpha: np.ndarray | None = None
        self._beta: np.ndarray | None = None
        self._scale: np.ndarray | None = None
        self._rest = 0.0
        self._log_norm: float | None = None

    @property
    def num_items(self) -> int:
        return self._state.shape[0]

    @property
    def num_labels(self) -> int:
        return self._trans.shape[0]

    @property
    def state(self) -> np.ndarray:
        """State scores, shape (T, L)."""
        return self._state

    @property
    def trans(self) -> np.ndarray:
        """Transition scores, shape (L, L)."""
        return self._trans

    def viterbi(self) -> tuple[list[int], float]:
        """Find the highest-scoring label path.

        Ties are resolved toward the lowest label id, both inside the
        recurrence and in the final argmax.

        Returns:
            (label ids, path score). An empty sequence gives ([], 0.0).
        """
        T, L = self._state.shape
        if T == 0:
            return [], 0.0

        backptr = np.zeros((T, L), dtype=np.int64)
        columns = np.arange(L)
        delta = self._state[0].copy()
        for t in range(1, T):
            candidates = delta[:, None] + self._trans
            backptr[t] = np.argmax(candidates, axis=0)
            delta = candidates[backptr[t], columns] + self._state[t]

        best = int(np.argmax(delta))
        score = float(delta[best])

        path = [best] * T
        for t in range(T - 1, 0, -1):
            path[t - 1] = int(backptr[t, path[t]])
        return path, score

    def _forward_backward(self) -> None:
        if self._log_norm is not None:
            return

        T, L = self._state.shape
        if T == 0:
            self._log_norm = 0.0
            return

        # Rows are kept in log space, each shifted so its maximum is 0
        alpha = np.empty((T, L))
        scale = np.empty(T)
        row = self._state[0]
        for t in range(T):
            if t > 0:
                row = logsumexp(alpha[t - 1][:, None] + self._trans, axis=0) + self._state[t]
            scale[t] = row.max()
            alpha[t] = row - scale[t]

        beta = np.empty((T, L))
        beta[T - 1] = 0.0
        for t in range(T - 2, -1, -1):
            following = self._state[t + 1] + beta[t + 1]
            beta[t] = logsumexp(self._trans + following[None, :], axis=1) - scale[t + 1]

        rest = float(logsumexp(alpha[T - 1]))
        self._log_norm = float(scale.sum() + rest)

        self._alpha = alpha
        self._beta = beta
        self._scale = scale
        self._rest = rest

    def log_norm(self) -> float:
        """Log of the partition function Z. Zero for an empty sequence."""
        self._forward_backward()
        assert self._log_norm is not None
        return self._log_norm

    def _check_path(self, path: Sequence[int]) -> np.ndarray:
        labels = np.asarray(path, dtype=np.int64)
        if labels.shape != (self.num_items,):
            raise LengthMismatch(
                message="Label path does not match the scored sequence",
                expected=self.num_items,
                actual=len(path),
            )
        if len(labels) and (labels.min() < 0 or labels.max() >= self.num_labels):
            raise ValueError(f"Label id out of range in path {list(path)}")
        return labels

    def score(self, path: Sequence[int]) -> float:
        """Sum of state and transition scores along path.

        Raises:
            LengthMismatch: If path length differs from the sequence length.
        """
        labels = self._check_path(path)
        if len(labels) == 0:
            return 0.0
        total = self._state[np.arange(len(labels)), labels].sum()
        total += self._trans[labels[:-1], labels[1:]].sum()
        return float(total)

    def probability(self, path: Sequence[int]) -> float:
        """Conditional probability exp(score(path) - log Z).

        Raises:
            LengthMismatch: If path length differs from the sequence length.
        """
        score = self.score(path)
        if self.num_items == 0:
            return 1.0
        return float(np.exp(score - self.log_norm()))

    def marginals(self) -> np.ndarray:
        """Position marginals P(y_t = l), shape (T, L)."""
        self._forward_backward()
        if self.num_items == 0:
            return np.zeros((0, self.num_labels))
        assert self._alpha is not None and self._beta is not None
        return np.exp(self._alpha + self._beta - self._rest)

    def marginal(self, label: int, t: int) -> float:
        """Marginal probability of label at position t."""
        if not 0 <= t < self.num_items:
            raise IndexError(f"Position {t} out of range for a sequence of {self.num_items} items")
        self._forward_backward()
        assert self._alpha is not None and self._beta is not None
        return float(np.exp(self._alpha[t, label] + self._beta[t, label] - self._rest))

    def transition_marginals(self) -> np.ndarray:
        """Expected transition counts sum_t P(y_t = i, y_t+1 = j), shape (L, L)."""
        self._forward_backward()
        L = self.num_labels
        if self.num_items < 2:
            return np.zeros((L, L))
        assert self._alpha is not None and self._beta is not None and self._scale is not None

        following = self._state[1:] + self._beta[1:] - self._scale[1:, None] - self._rest
        pairs = self._alpha[:-1, :, None] + self._trans[None, :, :] + following[:, None, :]
        return np.exp(pairs).sum(axis=0)

    def close(self) -> None:
        """Release the buffers."""
        self._alpha = self._beta = self._scale = None
        self._state = np.zeros((0, self.num_labels))
        self._log_norm = None

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
