"""Exceptions for crfchain training and inference."""

from dataclasses import dataclass


class CRFError(Exception):
    """Base exception for all crfchain errors."""

    pass


@dataclass
class DictionaryLookupFailed(CRFError):
    """A name or id is not present in a dictionary.

    Raised for unknown labels. Unknown attributes at tagging time are
    skipped instead and never raise this error.

    Attributes:
        message: Description of the error.
        key: The name or id that was looked up.
    """

    message: str
    key: str | int

    def __str__(self) -> str:
        return f"{self.message}: {self.key!r}"


@dataclass
class CorruptModel(CRFError):
    """A model buffer failed structural validation.

    Raised when:
    - The file magic, chunk ids or byte-order marker do not match
    - An offset or size points outside the buffer
    - A feature reference or feature field is out of range
    """

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class LengthMismatch(CRFError):
    """A label sequence does not match the length of the scored sequence.

    Attributes:
        message: Description of the error.
        expected: Length of the scored sequence.
        actual: Length of the label sequence that was given.
    """

    message: str
    expected: int
    actual: int

    def __str__(self) -> str:
        return f"{self.message} (expected {self.expected}, got {self.actual})"


@dataclass
class InvalidFeatureIndex(CRFError):
    """A weight vector or feature id disagrees with the feature table."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class TrainingDiverged(CRFError):
    """The objective or gradient became NaN or infinite.

    Attributes:
        message: Description of the error.
        iteration: Iteration (1-based) at which the overflow was detected.
    """

    message: str
    iteration: int

    def __str__(self) -> str:
        return f"{self.message} (iteration {self.iteration})"
