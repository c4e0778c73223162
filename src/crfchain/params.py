"""Named training parameters.

Parameters use CRFsuite's dotted names ("c2", "feature.minfreq",
"calibration.eta", ...). Each has a type, a default and a help string.
Values may be given as Python values or as strings, and parameter sets
can be loaded from YAML files:

    c2: 0.5
    max_iterations: 200
    feature:
      minfreq: 2
      possible_transitions: true
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

ParamValue = int | float | bool | str

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True, slots=True)
class ParamSpec:
    """Declaration of one parameter.

    Attributes:
        name: Dotted parameter name.
        type: One of int, float, bool, str.
        default: Default value.
        help: One-line description.
    """

    name: str
    type: type
    default: ParamValue
    help: str

    def coerce(self, value: Any) -> ParamValue:
        """Convert value to this parameter's type.

        Raises:
            ValueError: If the value cannot be converted.
        """
        if self.type is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)):
                return value != 0
            text = str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(f"Parameter {self.name} expects a boolean, got {value!r}")

        try:
            if self.type is int:
                if isinstance(value, float) and not value.is_integer():
                    raise ValueError
                return int(value)
            if self.type is float:
                return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Parameter {self.name} expects {self.type.__name__}, got {value!r}") from exc
        return str(value)


FEATURE_PARAMS: tuple[ParamSpec, ...] = (
    ParamSpec(
        "feature.minfreq",
        float,
        0.0,
        "Cut-off threshold for feature frequency (attribute values summed for state features).",
    ),
    ParamSpec(
        "feature.possible_states",
        bool,
        False,
        "Generate state features for every label and attribute pair, observed or not.",
    ),
    ParamSpec(
        "feature.possible_transitions",
        bool,
        False,
        "Generate transition features for every label pair, observed or not.",
    ),
)

ONLINE_PARAMS: tuple[ParamSpec, ...] = (
    ParamSpec("shuffle", bool, True, "Shuffle the training instances before every epoch."),
    ParamSpec("random_seed", int, 0, "Seed of the shuffling random number generator."),
)


class Parameters:
    """A typed parameter set with defaults."""

    def __init__(self, specs: Iterable[ParamSpec]) -> None:
        self._specs: dict[str, ParamSpec] = {spec.name: spec for spec in specs}
        self._values: dict[str, ParamValue] = {name: spec.default for name, spec in self._specs.items()}

    def set(self, name: str, value: Any) -> None:
        """Set one parameter.

        Raises:
            ValueError: If the name is unknown or the value invalid.
        """
        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown parameter: {name}. Valid parameters: {tuple(self._specs)}")
        self._values[name] = spec.coerce(value)

    def update(self, values: Mapping[str, Any]) -> None:
        """Set several parameters. Nothing changes if any value is invalid."""
        coerced: dict[str, ParamValue] = {}
        for name, value in values.items():
            spec = self._specs.get(name)
            if spec is None:
                raise ValueError(f"Unknown parameter: {name}. Valid parameters: {tuple(self._specs)}")
            coerced[name] = spec.coerce(value)
        self._values.update(coerced)

    def get(self, name: str) -> ParamValue:
        """Current value of a parameter.

        Raises:
            KeyError: If the name is unknown.
        """
        return self._values[name]

    def __getitem__(self, name: str) -> ParamValue:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def names(self) -> list[str]:
        return list(self._specs)

    def help(self, name: str) -> str:
        """Help line for a parameter: name, type, default and description."""
        spec = self._specs[name]
        return f"{spec.name} ({spec.type.__name__}, default={spec.default}): {spec.help}"

    def as_dict(self) -> dict[str, ParamValue]:
        return dict(self._values)


def _flatten(prefix: str, data: Mapping[str, Any]) -> Iterator[tuple[str, Any]]:
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            yield from _flatten(f"{name}.", value)
        else:
            yield name, value


def load_params(path: Path | str) -> dict[str, Any]:
    """Load a parameter mapping from a YAML file.

    Nested mappings are flattened into dotted names.

    Args:
        path: Path to the YAML file.

    Returns:
        Mapping of parameter names to raw values.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document is not a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parameter file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Parameter file {path} must contain a mapping, got {type(data).__name__}")

    params = dict(_flatten("", data))
    logger.info("Loaded %d parameters from %s", len(params), path)
    return params
