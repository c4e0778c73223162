"""Adaptive Regularization of Weight vectors (AROW).

Keeps a mean weight vector and a diagonal covariance. Features seen often
get a small variance and move little; rare features stay flexible. On a
mistake, with delta = F(x, gold) - F(x, predicted):

    cost  = score(predicted) - score(gold) + #errors
    alpha = cost / (gamma + sum(cov * delta^2))
    mean += alpha * cov * delta
    cov   = 1 / (1 / cov + delta^2 / gamma)
"""

import logging
import time
from collections.abc import Sequence

import numpy as np

from crfchain.encoder import CompiledInstance
from crfchain.params import ONLINE_PARAMS, ParamSpec
from crfchain.trainers.base import OnlineTrainer, TrainingStatus, count_errors

logger = logging.getLogger(__name__)


class AROWTrainer(OnlineTrainer):
    """Confidence-weighted online learning with adaptive regularization."""

    name = "arow"
    PARAMS = (
        ParamSpec("variance", float, 1.0, "Initial variance of every feature weight."),
        ParamSpec("gamma", float, 1.0, "Tradeoff between loss and the change of the distribution."),
        ParamSpec("max_iterations", int, 100, "Maximum number of epochs."),
        ParamSpec("epsilon", float, 0.0, "Stop when the average loss falls to this value."),
        *ONLINE_PARAMS,
    )

    def _run(self, instances: Sequence[CompiledInstance]) -> tuple[np.ndarray, TrainingStatus]:
        N = len(instances)
        K = self.encoder.num_features
        variance = float(self.params["variance"])
        gamma = float(self.params["gamma"])
        max_iterations = int(self.params["max_iterations"])
        epsilon = float(self.params["epsilon"])

        if variance <= 0.0 or gamma <= 0.0:
            raise ValueError("arow requires a positive variance and gamma")
        if N == 0:
            logger.warning("No training instances")
            return np.zeros(K), TrainingStatus.CONVERGED

        mean = np.zeros(K)
        cov = np.full(K, variance)
        status = TrainingStatus.MAX_ITERATIONS_REACHED

        for _epoch in range(max_iterations):
            start = time.perf_counter()
            loss = 0.0
            for i in self._order(N):
                inst = instances[i]
                assert inst.gold is not None
                path, predicted_score = self.encoder.viterbi(inst, mean)
                d = count_errors(inst.gold, path)
                if d > 0:
                    gold_score = self.encoder.score(inst, inst.gold, mean)
                    cost = predicted_score - gold_score + d
                    fids, deltas = self.encoder.path_delta(inst, inst.gold, path)
                    frac = gamma + float(cov[fids] @ (deltas * deltas))
                    alpha = cost / frac
                    mean[fids] += alpha * cov[fids] * deltas
                    cov[fids] = 1.0 / (1.0 / cov[fids] + deltas * deltas / gamma)
                    loss += cost * inst.weight

            self._record(loss, mean, time.perf_counter() - start)

            if loss / N <= epsilon:
                status = TrainingStatus.CONVERGED
                break
            if self.stop_requested:
                status = TrainingStatus.STOPPED
                break

        return mean.copy(), status
