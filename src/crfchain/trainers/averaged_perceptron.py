"""Averaged perceptron.

For every instance the current weights decode a Viterbi path. On a
mistake the feature counts of the gold path are added to the weights and
those of the predicted path subtracted. The returned weights are the
average of the weight vectors after every instance, computed in O(K) per
epoch with the usual accumulator:

    averaged = w - ws / c

where ws accumulates every update scaled by its time step c.
"""

import logging
import time
from collections.abc import Sequence

import numpy as np

from crfchain.encoder import CompiledInstance
from crfchain.params import ONLINE_PARAMS, ParamSpec
from crfchain.trainers.base import OnlineTrainer, TrainingStatus, count_errors

logger = logging.getLogger(__name__)


class AveragedPerceptronTrainer(OnlineTrainer):
    """Structured perceptron with weight averaging."""

    name = "ap"
    PARAMS = (
        ParamSpec("max_iterations", int, 100, "Maximum number of epochs."),
        ParamSpec("epsilon", float, 0.0, "Stop when the ratio of mislabeled items falls to this value."),
        *ONLINE_PARAMS,
    )

    def _run(self, instances: Sequence[CompiledInstance]) -> tuple[np.ndarray, TrainingStatus]:
        N = len(instances)
        K = self.encoder.num_features
        max_iterations = int(self.params["max_iterations"])
        epsilon = float(self.params["epsilon"])

        if N == 0:
            logger.warning("No training instances")
            return np.zeros(K), TrainingStatus.CONVERGED

        w = np.zeros(K)
        ws = np.zeros(K)
        averaged = w
        c = 1
        status = TrainingStatus.MAX_ITERATIONS_REACHED

        for _epoch in range(max_iterations):
            start = time.perf_counter()
            loss = 0.0
            for i in self._order(N):
                inst = instances[i]
                assert inst.gold is not None
                path, _ = self.encoder.viterbi(inst, w)
                d = count_errors(inst.gold, path)
                if d > 0:
                    fids, deltas = self.encoder.path_delta(inst, inst.gold, path)
                    w[fids] += deltas
                    ws[fids] += c * deltas
                    loss += d / inst.num_items * inst.weight
                c += 1

            averaged = w - ws / c
            self._record(loss, averaged, time.perf_counter() - start)

            if loss / N <= epsilon:
                status = TrainingStatus.CONVERGED
                break
            if self.stop_requested:
                status = TrainingStatus.STOPPED
                break

        return averaged.copy(), status
