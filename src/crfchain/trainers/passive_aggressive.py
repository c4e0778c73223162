"""Passive-aggressive online learning.

On a mistake the weights move along delta = F(x, gold) - F(x, predicted)
by the smallest step that would make the gold path win by a margin:

    cost = score(predicted) - score(gold) + sqrt(#errors)   (error sensitive)
    cost = score(predicted) - score(gold) + 1               (otherwise)

    type 0 (PA):    tau = cost / |delta|^2
    type 1 (PA-I):  tau = min(c, cost / |delta|^2)
    type 2 (PA-II): tau = cost / (|delta|^2 + 1 / (2c))
"""

import logging
import math
import time
from collections.abc import Sequence

import numpy as np

from crfchain.encoder import CompiledInstance
from crfchain.params import ONLINE_PARAMS, ParamSpec
from crfchain.trainers.base import OnlineTrainer, TrainingStatus, count_errors

logger = logging.getLogger(__name__)


def step_size(kind: int, cost: float, norm2: float, c: float) -> float:
    """Update step tau for the given algorithm variant.

    Raises:
        ValueError: If kind is not 0, 1 or 2.
    """
    if kind == 0:
        return cost / norm2
    if kind == 1:
        return min(c, cost / norm2)
    if kind == 2:
        return cost / (norm2 + 0.5 / c)
    raise ValueError(f"Unknown passive-aggressive type {kind}; expected 0, 1 or 2")


class PassiveAggressiveTrainer(OnlineTrainer):
    """PA, PA-I and PA-II with optional weight averaging."""

    name = "pa"
    PARAMS = (
        ParamSpec("type", int, 1, "Strategy: 0 (PA), 1 (PA-I), 2 (PA-II)."),
        ParamSpec("c", float, 1.0, "Aggressiveness parameter; bounds (PA-I) or softens (PA-II) the step."),
        ParamSpec("error_sensitive", bool, True, "Include the square root of the number of errors in the cost."),
        ParamSpec("averaging", bool, True, "Return the average of the weight vectors over all updates."),
        ParamSpec("max_iterations", int, 100, "Maximum number of epochs."),
        ParamSpec("epsilon", float, 0.0, "Stop when the average loss falls to this value."),
        *ONLINE_PARAMS,
    )

    def _run(self, instances: Sequence[CompiledInstance]) -> tuple[np.ndarray, TrainingStatus]:
        N = len(instances)
        K = self.encoder.num_features
        kind = int(self.params["type"])
        c = float(self.params["c"])
        error_sensitive = bool(self.params["error_sensitive"])
        averaging = bool(self.params["averaging"])
        max_iterations = int(self.params["max_iterations"])
        epsilon = float(self.params["epsilon"])

        # Validate the variant before spending an epoch
        step_size(kind, 1.0, 1.0, c)

        if N == 0:
            logger.warning("No training instances")
            return np.zeros(K), TrainingStatus.CONVERGED

        w = np.zeros(K)
        ws = np.zeros(K)
        result = w
        u = 1
        status = TrainingStatus.MAX_ITERATIONS_REACHED

        for _epoch in range(max_iterations):
            start = time.perf_counter()
            loss = 0.0
            for i in self._order(N):
                inst = instances[i]
                assert inst.gold is not None
                path, predicted_score = self.encoder.viterbi(inst, w)
                d = count_errors(inst.gold, path)
                if d > 0:
                    gold_score = self.encoder.score(inst, inst.gold, w)
                    cost = predicted_score - gold_score + (math.sqrt(d) if error_sensitive else 1.0)
                    fids, deltas = self.encoder.path_delta(inst, inst.gold, path)
                    norm2 = float(deltas @ deltas)
                    if norm2 > 0.0:
                        tau = step_size(kind, cost, norm2, c) * inst.weight
                        w[fids] += tau * deltas
                        ws[fids] += tau * u * deltas
                    loss += cost * inst.weight
                u += 1

            result = w - ws / u if averaging else w
            self._record(loss, result, time.perf_counter() - start)

            if loss / N <= epsilon:
                status = TrainingStatus.CONVERGED
                break
            if self.stop_requested:
                status = TrainingStatus.STOPPED
                break

        return result.copy(), status
