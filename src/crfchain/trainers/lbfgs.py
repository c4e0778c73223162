"""Batch training with limited-memory BFGS.

Minimizes the regularized negative log-likelihood

    f(w) = sum_i weight_i * -log P(y_i | x_i; w) + c1 * |w|_1 + c2 * |w|^2

with scipy's L-BFGS-B. The L1 term is made smooth by splitting
w = w_pos - w_neg with both halves bounded below by zero, the usual
reformulation for bound-constrained quasi-Newton solvers.
"""

import logging
import time
from collections import deque
from collections.abc import Sequence
from typing import Any

import numpy as np
from scipy.optimize import OptimizeResult, minimize

from crfchain.encoder import CompiledInstance
from crfchain.params import ParamSpec
from crfchain.trainers.base import BaseTrainer, TrainingStatus

logger = logging.getLogger(__name__)

_INT_MAX = 2**31 - 1


class LBFGSTrainer(BaseTrainer):
    """Gradient descent with L-BFGS, optionally with L1 and L2 penalties."""

    name = "lbfgs"
    PARAMS = (
        ParamSpec("c1", float, 0.0, "Coefficient of L1 regularization."),
        ParamSpec("c2", float, 1.0, "Coefficient of L2 regularization."),
        ParamSpec("num_memories", int, 6, "Number of corrections kept to approximate the inverse Hessian."),
        ParamSpec("max_iterations", int, _INT_MAX, "Maximum number of iterations."),
        ParamSpec("epsilon", float, 1e-5, "Convergence threshold on the relative gradient norm."),
        ParamSpec("period", int, 10, "Number of iterations over which the objective improvement is measured."),
        ParamSpec("delta", float, 1e-5, "Stop when the relative improvement over period falls below this."),
        ParamSpec("max_linesearch", int, 20, "Maximum number of line-search trials per iteration."),
    )

    def _run(self, instances: Sequence[CompiledInstance]) -> tuple[np.ndarray, TrainingStatus]:
        K = self.encoder.num_features
        c1 = float(self.params["c1"])
        c2 = float(self.params["c2"])
        max_iterations = int(self.params["max_iterations"])
        epsilon = float(self.params["epsilon"])
        period = int(self.params["period"])
        delta = float(self.params["delta"])
        max_linesearch = int(self.params["max_linesearch"])
        use_l1 = c1 > 0.0

        if K == 0:
            logger.warning("No features to train")
            return np.zeros(0), TrainingStatus.CONVERGED

        def unpack(x: np.ndarray) -> np.ndarray:
            return x[:K] - x[K:] if use_l1 else x

        last: dict[str, np.ndarray] = {}

        def fun(x: np.ndarray) -> tuple[float, np.ndarray]:
            w = unpack(x)
            f, g = self.encoder.objective(instances, w)
            if c2 > 0.0:
                f += c2 * float(w @ w)
                g = g + 2.0 * c2 * w
            self._check_finite(f)
            self._check_finite(float(np.abs(g).max()) if len(g) else 0.0, "gradient")
            if use_l1:
                f += c1 * float(x.sum())
                g = np.concatenate((g + c1, c1 - g))
            last["x"] = x.copy()
            last["g"] = g
            return f, g

        past: deque[float] = deque(maxlen=period)
        state: dict[str, Any] = {"reason": None, "tick": time.perf_counter()}

        def projected_gradient_norm(x: np.ndarray) -> float:
            g = last["g"] if "x" in last and np.array_equal(last["x"], x) else fun(x)[1]
            if use_l1:
                # Components held at the lower bound only count when pushing inward
                g = np.where((x <= 0.0) & (g > 0.0), 0.0, g)
            return float(np.linalg.norm(g))

        def callback(intermediate_result: OptimizeResult) -> None:
            x = intermediate_result.x
            f = float(intermediate_result.fun)
            w = unpack(x)
            now = time.perf_counter()
            xnorm = float(np.linalg.norm(w))
            gnorm = projected_gradient_norm(x)
            self._record(
                f,
                w,
                now - state["tick"],
                gradient_norm=gnorm,
                active_features=float(np.count_nonzero(w)),
            )
            state["tick"] = now

            if gnorm / max(xnorm, 1.0) <= epsilon:
                state["reason"] = TrainingStatus.CONVERGED
                raise StopIteration
            if len(past) == period and f != 0.0:
                improvement = (past[0] - f) / f
                if abs(improvement) < delta:
                    logger.info("Relative improvement %g over %d iterations is below delta", improvement, period)
                    state["reason"] = TrainingStatus.CONVERGED
                    raise StopIteration
            past.append(f)
            if self.stop_requested:
                state["reason"] = TrainingStatus.STOPPED
                raise StopIteration
            if len(self._log) >= max_iterations:
                state["reason"] = TrainingStatus.MAX_ITERATIONS_REACHED
                raise StopIteration

        x0 = np.zeros(2 * K if use_l1 else K)
        bounds = [(0.0, None)] * (2 * K) if use_l1 else None
        result = minimize(
            fun,
            x0,
            jac=True,
            method="L-BFGS-B",
            bounds=bounds,
            callback=callback,
            options={
                "maxcor": int(self.params["num_memories"]),
                "maxiter": max_iterations,
                "maxfun": min(_INT_MAX, max_iterations * (max_linesearch + 1)),
                "maxls": max_linesearch,
                "gtol": 0.0,
                "ftol": 0.0,
            },
        )

        if state["reason"] is not None:
            status = state["reason"]
        else:
            status, self._warning = termination(result)
        return unpack(result.x), status


def termination(result: OptimizeResult) -> tuple[TrainingStatus, str]:
    """Map how scipy's L-BFGS-B finished to a status and a warning.

    A normal finish gives an empty warning. When the optimizer gives up,
    for example after a failed line search, the last accepted point is
    kept as CONVERGED and the warning carries scipy's message.
    """
    if result.status == 0:
        return TrainingStatus.CONVERGED, ""
    if result.status == 1:
        return TrainingStatus.MAX_ITERATIONS_REACHED, ""
    return TrainingStatus.CONVERGED, f"L-BFGS terminated early: {result.message}"
