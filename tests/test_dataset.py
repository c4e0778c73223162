"""Tests for training data containers and input conversion."""

import io

import pytest

from crfchain.dataset import (
    Dataset,
    Instance,
    Item,
    escape_attribute,
    item_attributes,
    read_text,
)
from crfchain.exceptions import LengthMismatch


class TestItemAttributes:
    """Tests for python-crfsuite style item conversion."""

    def test_string_values_join_key_and_value(self) -> None:
        """String values become 'key:value' with weight 1."""
        assert item_attributes({"word": "Tokyo"}) == [("word:Tokyo", 1.0)]

    def test_numbers_and_bools_weight_the_key(self) -> None:
        """Numbers and bools keep the key and become the weight."""
        result = item_attributes({"len": 5, "ratio": 0.25, "upper": True, "digit": False})
        assert result == [("len", 5.0), ("ratio", 0.25), ("upper", 1.0), ("digit", 0.0)]

    def test_nested_mappings_and_lists(self) -> None:
        """Nested dicts prefix their keys; lists expand to one attribute each."""
        result = item_attributes({"prev": {"word": "in", "len": 2}, "tags": ["x", "y"]})
        assert result == [
            ("prev:word:in", 1.0),
            ("prev:len", 2.0),
            ("tags:x", 1.0),
            ("tags:y", 1.0),
        ]

    def test_list_items(self) -> None:
        """List items hold names or (name, weight) pairs."""
        assert item_attributes(["a", ("b", 0.5)]) == [("a", 1.0), ("b", 0.5)]

    def test_empty_item(self) -> None:
        """An item without attributes is valid."""
        assert item_attributes({}) == []
        assert item_attributes([]) == []


class TestInstance:
    """Tests for Instance."""

    def test_labels_must_align(self) -> None:
        """Instance rejects labels that do not match the items."""
        items = (Item(((0, 1.0),)), Item(()))
        with pytest.raises(LengthMismatch) as excinfo:
            Instance(items=items, labels=(0,))
        assert excinfo.value.expected == 2
        assert excinfo.value.actual == 1

    def test_unlabeled_instance(self) -> None:
        """Labels are optional."""
        instance = Instance(items=(Item(()),))
        assert instance.labels is None
        assert len(instance) == 1
        assert instance.weight == 1.0


class TestDataset:
    """Tests for Dataset."""

    def test_append_interns_names(self) -> None:
        """Attributes and labels are interned into the shared tables."""
        dataset = Dataset()
        first = dataset.append([["w=a", "cap"], ["w=b"]], ["B", "O"])
        second = dataset.append([["w=b"]], ["O"])

        assert dataset.attributes.names() == ("w=a", "cap", "w=b")
        assert dataset.labels.names() == ("B", "O")
        assert first.items[0].attributes == ((0, 1.0), (1, 1.0))
        assert first.labels == (0, 1)
        assert second.items[0].attributes == ((2, 1.0),)
        assert len(dataset) == 2

    def test_append_rejects_mismatch_without_side_effects(self) -> None:
        """A length mismatch leaves the dataset unchanged."""
        dataset = Dataset()
        with pytest.raises(LengthMismatch):
            dataset.append([["w=a"], ["w=b"]], ["B"])
        assert len(dataset) == 0
        assert dataset.attributes.count() == 0
        assert dataset.labels.count() == 0

    def test_append_rejects_bad_values_without_side_effects(self) -> None:
        """An invalid attribute value in a later item interns nothing."""
        dataset = Dataset()
        with pytest.raises(TypeError):
            dataset.append([{"a": 1}, {"b": None}], ["X", "Y"])
        with pytest.raises(ValueError):
            dataset.append([["a"], [("b", "heavy")]], ["X", "Y"])
        assert len(dataset) == 0
        assert dataset.attributes.count() == 0
        assert dataset.labels.count() == 0

    def test_statistics(self) -> None:
        """num_items and max_length aggregate over instances."""
        dataset = Dataset()
        dataset.append([["a"], ["b"], ["c"]], ["X", "X", "X"])
        dataset.append([["a"]], ["X"])
        dataset.append([], [])
        assert dataset.num_items == 4
        assert dataset.max_length == 3

    def test_split_by_group(self) -> None:
        """split() separates one group and shares the tables."""
        dataset = Dataset()
        dataset.append([["a"]], ["X"], group=0)
        dataset.append([["b"]], ["Y"], group=1)
        dataset.append([["c"]], ["X"], group=0)

        train, test = dataset.split(1)
        assert len(train) == 2
        assert len(test) == 1
        assert train.labels is dataset.labels
        assert test.attributes is dataset.attributes

        train, test = dataset.split(-1)
        assert len(train) == 3
        assert len(test) == 0

    def test_clear_keeps_names(self) -> None:
        """clear() drops instances but keeps interned names."""
        dataset = Dataset()
        dataset.append([["a"]], ["X"])
        dataset.clear()
        assert len(dataset) == 0
        assert dataset.labels.id_of("X") == 0


class TestReadText:
    """Tests for the CRFsuite text format reader."""

    def test_sequences_split_on_blank_lines(self) -> None:
        """Blank lines separate sequences; fields are tab-separated."""
        text = "B\tw=John\tcap\nO\tw=runs\n\nO\tw=x\n"
        sequences = list(read_text(io.StringIO(text)))

        assert len(sequences) == 2
        labels, xseq = sequences[0]
        assert labels == ["B", "O"]
        assert xseq == [[("w=John", 1.0), ("cap", 1.0)], [("w=runs", 1.0)]]
        assert sequences[1] == (["O"], [[("w=x", 1.0)]])

    def test_attribute_weights(self) -> None:
        """The text after the last unescaped colon is the weight."""
        sequences = list(read_text(["X\tlen:0.5\ta:b:2\n"]))
        assert sequences[0][1] == [[("len", 0.5), ("a:b", 2.0)]]

    def test_escapes(self) -> None:
        """Escaped colons and backslashes belong to the name."""
        sequences = list(read_text(["X\tw\\:b\tpath\\\\x\tk\\:v:3\n"]))
        assert sequences[0][1] == [[("w:b", 1.0), ("path\\x", 1.0), ("k:v", 3.0)]]

    def test_invalid_weight(self) -> None:
        """A weight that is not a number is an error."""
        with pytest.raises(ValueError):
            list(read_text(["X\tw:abc\n"]))

    def test_multiple_blank_lines_and_crlf(self) -> None:
        """Repeated blank lines and CRLF line ends are tolerated."""
        text = "A\tf\r\n\r\n\r\nB\tg\r\n"
        sequences = list(read_text(io.StringIO(text)))
        assert [labels for labels, _ in sequences] == [["A"], ["B"]]

    def test_escape_round_trip(self) -> None:
        """escape_attribute output parses back to the original name."""
        name = "url:http\\x"
        line = f"X\t{escape_attribute(name)}\n"
        sequences = list(read_text([line]))
        assert sequences[0][1] == [[(name, 1.0)]]
