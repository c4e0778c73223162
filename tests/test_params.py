"""Tests for named training parameters and YAML parameter files."""

import tempfile
from pathlib import Path

import pytest

from crfchain.params import FEATURE_PARAMS, ParamSpec, Parameters, load_params


def _make_params() -> Parameters:
    return Parameters(
        (
            *FEATURE_PARAMS,
            ParamSpec("c2", float, 1.0, "L2 coefficient."),
            ParamSpec("max_iterations", int, 100, "Iteration limit."),
            ParamSpec("algorithm", str, "x", "A string parameter."),
        )
    )


class TestParameters:
    """Tests for Parameters."""

    def test_defaults(self) -> None:
        """Parameters start at their defaults."""
        params = _make_params()
        assert params["c2"] == 1.0
        assert params.get("feature.minfreq") == 0.0
        assert params["feature.possible_transitions"] is False
        assert "c2" in params
        assert "c3" not in params
        assert params.names()[0] == "feature.minfreq"

    def test_string_values_are_coerced(self) -> None:
        """Values given as text are converted to the declared type."""
        params = _make_params()
        params.set("c2", "0.25")
        params.set("max_iterations", "7")
        params.set("feature.possible_states", "yes")
        params.set("feature.possible_transitions", 1)
        assert params["c2"] == 0.25
        assert params["max_iterations"] == 7
        assert params["feature.possible_states"] is True
        assert params["feature.possible_transitions"] is True

    def test_invalid_values(self) -> None:
        """Unconvertible values raise ValueError."""
        params = _make_params()
        with pytest.raises(ValueError):
            params.set("c2", "lots")
        with pytest.raises(ValueError):
            params.set("max_iterations", 2.5)
        with pytest.raises(ValueError):
            params.set("feature.possible_states", "maybe")

    def test_unknown_name(self) -> None:
        """Unknown names are rejected on set and raise KeyError on get."""
        params = _make_params()
        with pytest.raises(ValueError):
            params.set("c3", 1)
        with pytest.raises(KeyError):
            params.get("c3")

    def test_update_is_atomic(self) -> None:
        """A bad entry leaves every parameter unchanged."""
        params = _make_params()
        with pytest.raises(ValueError):
            params.update({"c2": 0.5, "max_iterations": "many"})
        assert params["c2"] == 1.0

    def test_help(self) -> None:
        """help() names the type and default."""
        assert _make_params().help("c2") == "c2 (float, default=1.0): L2 coefficient."


class TestLoadParams:
    """Tests for YAML parameter files."""

    def test_nested_mappings_flatten(self) -> None:
        """Nested mappings become dotted names."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "params.yaml"
            path.write_text(
                "c2: 0.5\nmax_iterations: 20\nfeature:\n  minfreq: 2\n  possible_transitions: true\n",
                encoding="utf-8",
            )
            values = load_params(path)

        assert values == {
            "c2": 0.5,
            "max_iterations": 20,
            "feature.minfreq": 2,
            "feature.possible_transitions": True,
        }
        params = _make_params()
        params.update(values)
        assert params["feature.minfreq"] == 2.0

    def test_empty_file(self) -> None:
        """An empty document holds no parameters."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "empty.yaml"
            path.write_text("", encoding="utf-8")
            assert load_params(path) == {}

    def test_not_a_mapping(self) -> None:
        """A top-level list is rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "list.yaml"
            path.write_text("- c2\n- c1\n", encoding="utf-8")
            with pytest.raises(ValueError):
                load_params(path)

    def test_missing_file(self) -> None:
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_params("/nonexistent/params.yaml")
