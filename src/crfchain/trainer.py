"""Training facade.

Collects labeled sequences, generates features, runs the selected
algorithm and compiles the result into a Model:

    trainer = Trainer("lbfgs", {"c2": 0.5, "feature.possible_transitions": True})
    for xseq, yseq in data:
        trainer.append(xseq, yseq)
    model = trainer.train("model.crfsuite")
"""

import logging
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from crfchain.dataset import Dataset, ItemSequenceInput
from crfchain.encoder import Encoder
from crfchain.features import FeatureCatalog
from crfchain.model import Model, ModelWriter
from crfchain.params import FEATURE_PARAMS, Parameters, ParamValue
from crfchain.trainers import BaseTrainer, IterationLog, TrainingResult, get_trainer_class

logger = logging.getLogger(__name__)


class Trainer:
    """Trains linear-chain CRF models.

    Parameters are the feature generation parameters (``feature.*``) plus
    those of the selected algorithm. Selecting another algorithm resets
    the parameters to their defaults.
    """

    def __init__(self, algorithm: str = "lbfgs", params: Mapping[str, Any] | None = None) -> None:
        """Initialize the trainer.

        Args:
            algorithm: One of 'lbfgs', 'l2sgd', 'ap', 'pa', 'arow'.
            params: Parameter values to set after selecting the algorithm.

        Raises:
            ValueError: If the algorithm or a parameter is unknown.
        """
        self._dataset = Dataset()
        self._stop_event = threading.Event()
        self._trainer_class: type[BaseTrainer]
        self._params: Parameters
        self.select(algorithm)
        if params:
            self.set_params(params)
        self.result: TrainingResult | None = None

    @property
    def algorithm(self) -> str:
        return self._trainer_class.name

    @property
    def dataset(self) -> Dataset:
        return self._dataset

    def select(self, algorithm: str) -> None:
        """Select the training algorithm and reset parameters to its defaults.

        Raises:
            ValueError: If the algorithm is unknown.
        """
        trainer_class = get_trainer_class(algorithm)
        self._trainer_class = trainer_class
        self._params = Parameters((*FEATURE_PARAMS, *trainer_class.PARAMS))

    def set_params(self, params: Mapping[str, Any]) -> None:
        """Set several parameters. Nothing changes if any of them is invalid.

        Raises:
            ValueError: If a name is unknown or a value invalid.
        """
        self._params.update(params)

    def set(self, name: str, value: Any) -> None:
        self._params.set(name, value)

    def get(self, name: str) -> ParamValue:
        """Current value of a parameter.

        Raises:
            KeyError: If the name is unknown.
        """
        return self._params.get(name)

    def get_params(self) -> dict[str, ParamValue]:
        return self._params.as_dict()

    def params(self) -> list[str]:
        """Names of the parameters of the selected algorithm."""
        return self._params.names()

    def help(self, name: str) -> str:
        return self._params.help(name)

    def append(
        self,
        xseq: ItemSequenceInput,
        yseq: Sequence[str],
        group: int = 0,
        weight: float = 1.0,
    ) -> None:
        """Add a labeled training sequence.

        Args:
            xseq: Items in python-crfsuite form, one per position.
            yseq: Gold label names, one per item.
            group: Group number; train(holdout=group) evaluates on it.
            weight: Instance weight.

        Raises:
            LengthMismatch: If yseq and xseq differ in length.
        """
        self._dataset.append(xseq, yseq, group=group, weight=weight)

    def clear(self) -> None:
        """Remove all training sequences."""
        self._dataset = Dataset()

    def __len__(self) -> int:
        return len(self._dataset)

    def message(self, text: str) -> None:
        """Receive one progress line per iteration. Override to display them."""

    def stop(self) -> None:
        """Ask train() to stop after the current iteration.

        A request made before train() starts stops the next run after its
        first iteration.
        """
        self._stop_event.set()

    def _on_iteration(self, entry: IterationLog) -> None:
        self.message(entry.summary() + "\n")

    def train(self, model_path: Path | str | None = None, holdout: int = -1) -> Model:
        """Train a model on the appended sequences.

        Args:
            model_path: Where to write the model file, if anywhere.
            holdout: Group number used for evaluation only. Negative
                means no holdout.

        Returns:
            The trained Model. The run's TrainingResult is kept in
            ``self.result``.

        Raises:
            ValueError: If there is no training data.
            TrainingDiverged: If the objective overflows.
        """
        train_set, test_set = self._dataset.split(holdout)
        if not len(train_set):
            raise ValueError("No training data; append sequences before training")

        catalog = FeatureCatalog.generate(
            train_set,
            minfreq=float(self._params["feature.minfreq"]),
            possible_states=bool(self._params["feature.possible_states"]),
            possible_transitions=bool(self._params["feature.possible_transitions"]),
        )
        encoder = Encoder(catalog)
        instances = [encoder.compile(inst) for inst in train_set]
        holdout_instances = [encoder.compile(inst) for inst in test_set]
        logger.info(
            "Training on %d sequences (%d items), holding out %d",
            len(train_set),
            train_set.num_items,
            len(test_set),
        )

        trainer = self._trainer_class(
            encoder,
            params=self._params.as_dict(),
            label_names=self._dataset.labels.names(),
            stop_event=self._stop_event,
            on_iteration=self._on_iteration,
        )
        try:
            self.result = trainer.train(instances, holdout_instances)
        finally:
            # A stop request ends at most one run
            self._stop_event.clear()

        data = ModelWriter(
            catalog,
            self.result.weights,
            self._dataset.attributes.names(),
            self._dataset.labels.names(),
        ).to_bytes()

        if model_path is not None:
            path = Path(model_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            logger.info("Saved model to %s", path)

        return Model.from_bytes(data)
