"""Shared outer loop for the training algorithms.

Every trainer moves through the same states:

    INIT -> ITERATING -> CONVERGED | MAX_ITERATIONS_REACHED | STOPPED

The three final states are terminal. Each iteration is recorded as an
IterationLog, optionally with a holdout evaluation, and reported to an
optional callback.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

import numpy as np

from crfchain.encoder import CompiledInstance, Encoder
from crfchain.evaluation import Evaluation, evaluate
from crfchain.exceptions import TrainingDiverged
from crfchain.params import ParamSpec, Parameters

logger = logging.getLogger(__name__)


class TrainingStatus(Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {TrainingStatus.CONVERGED, TrainingStatus.MAX_ITERATIONS_REACHED, TrainingStatus.STOPPED}
)


@dataclass(frozen=True, slots=True)
class IterationLog:
    """Progress of one training iteration.

    Attributes:
        iteration: 1-based iteration (epoch) number.
        loss: Objective value or error measure of the algorithm.
        feature_norm: L2 norm of the weights after the iteration.
        seconds: Wall-clock time spent in the iteration.
        extras: Algorithm-specific quantities (learning rate, improvement, ...).
        evaluation: Holdout evaluation, if holdout data was given.
    """

    iteration: int
    loss: float
    feature_norm: float
    seconds: float
    extras: dict[str, float] = field(default_factory=dict)
    evaluation: Evaluation | None = None

    def summary(self) -> str:
        parts = [
            f"Iteration {self.iteration}",
            f"loss={self.loss:.6f}",
            f"feature_norm={self.feature_norm:.6f}",
        ]
        parts.extend(f"{key}={value:.6g}" for key, value in self.extras.items())
        parts.append(f"seconds={self.seconds:.3f}")
        if self.evaluation is not None:
            parts.append(f"holdout_item_accuracy={self.evaluation.item_accuracy:.4f}")
        return " ".join(parts)


@dataclass(frozen=True, slots=True)
class TrainingResult:
    """Outcome of a training run.

    Attributes:
        weights: Final weight vector, indexed by feature id.
        status: Terminal status.
        iterations: Number of completed iterations.
        log: Per-iteration records.
        warning: Why the optimizer gave up early, empty for a normal finish.
    """

    weights: np.ndarray
    status: TrainingStatus
    iterations: int
    log: tuple[IterationLog, ...]
    warning: str = ""


class BaseTrainer:
    """Common state, logging and evaluation for all algorithms.

    Subclasses set ``name`` and ``PARAMS`` and implement ``_run``, which
    returns the final weights and a terminal status.
    """

    name: ClassVar[str] = ""
    PARAMS: ClassVar[tuple[ParamSpec, ...]] = ()

    def __init__(
        self,
        encoder: Encoder,
        params: Mapping[str, Any] | None = None,
        label_names: Sequence[str] = (),
        stop_event: threading.Event | None = None,
        on_iteration: Callable[[IterationLog], None] | None = None,
    ) -> None:
        """Initialize the trainer.

        Args:
            encoder: Encoder bound to the feature catalog.
            params: Parameter values overriding the defaults.
            label_names: Label names by id, for holdout reports.
            stop_event: Set from another thread to stop between iterations.
            on_iteration: Called with every IterationLog.
        """
        self.encoder = encoder
        self.params = Parameters(self.PARAMS)
        if params:
            self.params.update({k: v for k, v in params.items() if k in self.params})
        self._label_names = tuple(label_names)
        self._stop_event = stop_event or threading.Event()
        self._on_iteration = on_iteration
        self._status = TrainingStatus.INIT
        self._log: list[IterationLog] = []
        self._holdout: Sequence[CompiledInstance] = ()
        self._warning = ""

    @property
    def status(self) -> TrainingStatus:
        return self._status

    def _advance(self, status: TrainingStatus) -> None:
        if self._status.is_terminal:
            raise RuntimeError(f"Training already finished with status {self._status.value}")
        self._status = status

    def stop(self) -> None:
        """Request a stop. Honored between iterations only."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def train(
        self,
        instances: Sequence[CompiledInstance],
        holdout: Sequence[CompiledInstance] = (),
    ) -> TrainingResult:
        """Run the algorithm.

        Args:
            instances: Compiled, gold-labeled training instances.
            holdout: Compiled instances evaluated after every iteration.

        Returns:
            TrainingResult with the final weights and terminal status.

        Raises:
            RuntimeError: If this trainer has already run.
            TrainingDiverged: If the objective becomes NaN or infinite.
        """
        if self._status is not TrainingStatus.INIT:
            raise RuntimeError("A trainer instance can only be run once")

        self._holdout = holdout
        logger.info(
            "Training with %s on %d instances (%d features, %d labels): %s",
            self.name,
            len(instances),
            self.encoder.num_features,
            self.encoder.num_labels,
            self.params.as_dict(),
        )
        self._advance(TrainingStatus.ITERATING)
        start = time.perf_counter()
        weights, status = self._run(instances)
        self._advance(status)
        if self._warning:
            logger.warning("%s: %s", self.name, self._warning)
        logger.info(
            "Finished %s training: %s after %d iterations (%.3f seconds)",
            self.name,
            status.value,
            len(self._log),
            time.perf_counter() - start,
        )
        return TrainingResult(
            weights=weights,
            status=status,
            iterations=len(self._log),
            log=tuple(self._log),
            warning=self._warning,
        )

    def _run(self, instances: Sequence[CompiledInstance]) -> tuple[np.ndarray, TrainingStatus]:
        raise NotImplementedError

    def evaluate(self, weights: np.ndarray) -> Evaluation | None:
        """Decode the holdout instances with weights and score them."""
        if not self._holdout:
            return None

        def names(ids: Sequence[int]) -> list[str]:
            return [self._label_name(i) for i in ids]

        references = []
        predictions = []
        for inst in self._holdout:
            assert inst.gold is not None
            path, _ = self.encoder.viterbi(inst, weights)
            references.append(names(inst.gold.tolist()))
            predictions.append(names(path))
        return evaluate(references, predictions, self._label_names)

    def _label_name(self, label_id: int) -> str:
        if 0 <= label_id < len(self._label_names):
            return self._label_names[label_id]
        return str(label_id)

    def _record(
        self,
        loss: float,
        weights: np.ndarray,
        seconds: float,
        **extras: float,
    ) -> IterationLog:
        entry = IterationLog(
            iteration=len(self._log) + 1,
            loss=float(loss),
            feature_norm=float(np.linalg.norm(weights)),
            seconds=seconds,
            extras={key: float(value) for key, value in extras.items()},
            evaluation=self.evaluate(weights),
        )
        self._log.append(entry)
        logger.info("%s: %s", self.name, entry.summary())
        if entry.evaluation is not None:
            logger.info("Holdout evaluation:\n%s", entry.evaluation.report())
        if self._on_iteration is not None:
            self._on_iteration(entry)
        return entry

    def _check_finite(self, value: float, what: str = "loss") -> None:
        if not np.isfinite(value):
            raise TrainingDiverged(
                message=f"{self.name} {what} overflowed to {value}",
                iteration=len(self._log) + 1,
            )


class OnlineTrainer(BaseTrainer):
    """Base for algorithms that update weights one instance at a time."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._rng = np.random.default_rng(int(self.params["random_seed"]))

    def _order(self, n: int) -> np.ndarray:
        if self.params["shuffle"]:
            return self._rng.permutation(n)
        return np.arange(n)


def count_errors(gold: np.ndarray, predicted: Sequence[int]) -> int:
    """Number of positions where predicted differs from gold."""
    return int(np.count_nonzero(gold != np.asarray(predicted, dtype=np.int64)))
