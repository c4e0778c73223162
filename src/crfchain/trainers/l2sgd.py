"""Stochastic gradient descent with L2 regularization.

Pegasos-style updates: with lambda = 2 * c2 / N, step t uses the learning
rate eta_t = 1 / (lambda * (t0 + t)). The L2 shrinkage of every weight is
folded into a running scale factor so each step only touches the
features of one instance; the factor is applied to the weights at the end
of every epoch.

The offset t0 is picked by calibration: one epoch over a sample is run
for a range of initial learning rates and the one with the lowest loss
wins.
"""

import logging
import math
import time
from collections.abc import Sequence

import numpy as np

from crfchain.encoder import CompiledInstance
from crfchain.params import ONLINE_PARAMS, ParamSpec
from crfchain.trainers.base import OnlineTrainer, TrainingStatus

logger = logging.getLogger(__name__)


class L2SGDTrainer(OnlineTrainer):
    """SGD with L2 regularization and learning-rate calibration."""

    name = "l2sgd"
    PARAMS = (
        ParamSpec("c2", float, 1.0, "Coefficient of L2 regularization."),
        ParamSpec("max_iterations", int, 1000, "Maximum number of epochs."),
        ParamSpec("period", int, 10, "Number of epochs over which the improvement is measured."),
        ParamSpec("delta", float, 1e-6, "Stop when the relative improvement over period falls below this."),
        ParamSpec("calibration.eta", float, 0.1, "Initial learning rate tried by calibration."),
        ParamSpec("calibration.rate", float, 2.0, "Factor by which calibration grows or shrinks the rate."),
        ParamSpec("calibration.samples", int, 1000, "Number of instances used for calibration."),
        ParamSpec("calibration.candidates", int, 10, "Number of improving rates calibration looks for."),
        ParamSpec("calibration.max_trials", int, 20, "Maximum number of rates calibration tries."),
        *ONLINE_PARAMS,
    )

    def _epoch(
        self,
        instances: Sequence[CompiledInstance],
        order: np.ndarray,
        weights: np.ndarray,
        t0: float,
        lam: float,
        t: int,
    ) -> tuple[float, int]:
        """Run one pass over instances[order], updating weights in place.

        Returns:
            (regularized loss of the pass, step counter after the pass).
        """
        decay = 1.0
        loss = 0.0
        for i in order:
            inst = instances[i]
            eta = 1.0 / (lam * (t0 + t))
            decay *= 1.0 - eta * lam
            gain = eta / decay
            loss += inst.weight * self.encoder.sgd_step(inst, weights, decay, gain)
            t += 1
        weights *= decay
        loss += 0.5 * lam * float(weights @ weights) * len(order)
        return loss, t

    def _initial_loss(self, sample: Sequence[CompiledInstance], weights: np.ndarray) -> float:
        return sum(inst.weight * self.encoder.log_likelihood_loss(inst, weights) for inst in sample)

    def calibrate(self, instances: Sequence[CompiledInstance], lam: float) -> float:
        """Pick the initial learning rate on a sample.

        The rate grows by ``calibration.rate`` while it keeps reducing the
        loss, then shrinks from the initial rate until enough improving
        candidates have been seen or the trial budget is spent.

        Returns:
            The offset t0 = 1 / (lambda * best eta).
        """
        init_eta = float(self.params["calibration.eta"])
        rate = float(self.params["calibration.rate"])
        candidates = int(self.params["calibration.candidates"])
        max_trials = int(self.params["calibration.max_trials"])

        order = self._order(len(instances))[: int(self.params["calibration.samples"])]
        sample = [instances[i] for i in order]
        K = self.encoder.num_features

        init_loss = self._initial_loss(sample, np.zeros(K))
        logger.info("Calibrating the learning rate on %d instances, initial loss %f", len(sample), init_loss)

        eta = init_eta
        best_eta = init_eta
        best_loss = math.inf
        num = candidates
        decreasing = False
        trials = 1
        while num > 0 or not decreasing:
            weights = np.zeros(K)
            with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
                loss, _ = self._epoch(sample, np.arange(len(sample)), weights, 1.0 / (lam * eta), lam, 0)

            ok = math.isfinite(loss) and loss < init_loss
            logger.info("Trial #%d (eta = %f): %f%s", trials, eta, loss, "" if ok else " (worse)")
            if ok:
                num -= 1
            if math.isfinite(loss) and loss < best_loss:
                best_loss = loss
                best_eta = eta

            if not decreasing:
                if ok and num > 0:
                    eta *= rate
                else:
                    decreasing = True
                    num = candidates
                    eta = init_eta / rate
            else:
                eta /= rate

            trials += 1
            if trials >= max_trials:
                break

        logger.info("Best learning rate (eta): %f", best_eta)
        return 1.0 / (lam * best_eta)

    def _run(self, instances: Sequence[CompiledInstance]) -> tuple[np.ndarray, TrainingStatus]:
        N = len(instances)
        K = self.encoder.num_features
        c2 = float(self.params["c2"])
        max_iterations = int(self.params["max_iterations"])
        period = int(self.params["period"])
        delta = float(self.params["delta"])

        if N == 0:
            logger.warning("No training instances")
            return np.zeros(K), TrainingStatus.CONVERGED
        if c2 <= 0.0:
            raise ValueError("l2sgd requires a positive c2")

        lam = 2.0 * c2 / N
        t0 = self.calibrate(instances, lam)

        weights = np.zeros(K)
        best_weights = weights.copy()
        best_loss = math.inf
        past = np.zeros(period)
        t = 0
        status = TrainingStatus.MAX_ITERATIONS_REACHED

        for epoch in range(1, max_iterations + 1):
            start = time.perf_counter()
            loss, t = self._epoch(instances, self._order(N), weights, t0, lam, t)
            self._check_finite(loss)

            if loss < best_loss:
                best_loss = loss
                best_weights = weights.copy()

            if period < epoch:
                improvement = (past[(epoch - 1) % period] - loss) / loss if loss else 0.0
            else:
                improvement = delta
            past[(epoch - 1) % period] = loss

            self._record(
                loss,
                weights,
                time.perf_counter() - start,
                improvement=improvement,
                learning_rate=1.0 / (lam * (t0 + t)),
            )

            if improvement < delta:
                status = TrainingStatus.CONVERGED
                break
            if self.stop_requested:
                status = TrainingStatus.STOPPED
                break

        return best_weights, status
