"""Training algorithms, selectable by name."""

from crfchain.trainers.arow import AROWTrainer
from crfchain.trainers.averaged_perceptron import AveragedPerceptronTrainer
from crfchain.trainers.base import BaseTrainer, IterationLog, TrainingResult, TrainingStatus
from crfchain.trainers.l2sgd import L2SGDTrainer
from crfchain.trainers.lbfgs import LBFGSTrainer
from crfchain.trainers.passive_aggressive import PassiveAggressiveTrainer

ALGORITHMS: dict[str, type[BaseTrainer]] = {
    "lbfgs": LBFGSTrainer,
    "l2sgd": L2SGDTrainer,
    "ap": AveragedPerceptronTrainer,
    "pa": PassiveAggressiveTrainer,
    "arow": AROWTrainer,
}

# Long names accepted by python-crfsuite
ALIASES = {
    "averaged-perceptron": "ap",
    "passive-aggressive": "pa",
}


def get_trainer_class(name: str) -> type[BaseTrainer]:
    """Trainer class for an algorithm name.

    Raises:
        ValueError: If the name is unknown.
    """
    key = ALIASES.get(name.lower(), name.lower())
    try:
        return ALGORITHMS[key]
    except KeyError:
        raise ValueError(f"Unknown training algorithm: {name}. Valid algorithms: {tuple(ALGORITHMS)}") from None


__all__ = [
    "ALGORITHMS",
    "AROWTrainer",
    "AveragedPerceptronTrainer",
    "BaseTrainer",
    "IterationLog",
    "L2SGDTrainer",
    "LBFGSTrainer",
    "PassiveAggressiveTrainer",
    "TrainingResult",
    "TrainingStatus",
    "get_trainer_class",
]
