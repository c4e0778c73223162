"""crfchain - Linear-chain conditional random fields for sequence labeling."""

from crfchain.context import Context
from crfchain.dataset import Dataset, Instance, Item, read_text
from crfchain.dictionary import Dictionary, Quark
from crfchain.evaluation import Evaluation, LabelMetrics, evaluate
from crfchain.exceptions import (
    CorruptModel,
    CRFError,
    DictionaryLookupFailed,
    InvalidFeatureIndex,
    LengthMismatch,
    TrainingDiverged,
)
from crfchain.features import Feature, FeatureCatalog, FeatureKind
from crfchain.model import Model, ModelWriter
from crfchain.params import load_params
from crfchain.tagger import Tagger, labels, load, probability, tag
from crfchain.trainer import Trainer
from crfchain.trainers import IterationLog, TrainingResult, TrainingStatus

__version__ = "0.1.0"

__all__ = [
    "Context",
    "CorruptModel",
    "CRFError",
    "Dataset",
    "Dictionary",
    "DictionaryLookupFailed",
    "Evaluation",
    "evaluate",
    "Feature",
    "FeatureCatalog",
    "FeatureKind",
    "Instance",
    "InvalidFeatureIndex",
    "Item",
    "IterationLog",
    "LabelMetrics",
    "labels",
    "LengthMismatch",
    "load",
    "load_params",
    "Model",
    "ModelWriter",
    "probability",
    "Quark",
    "read_text",
    "tag",
    "Tagger",
    "Trainer",
    "TrainingDiverged",
    "TrainingResult",
    "TrainingStatus",
]
