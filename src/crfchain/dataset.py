"""Training data containers and input conversion.

Converts python-crfsuite style item sequences into interned Instances:
- dict items: {"word": "Tokyo", "is_upper": False, "len": 5.0}
- list items: ["word=Tokyo", ("len", 5.0)]

Also reads the CRFsuite text format, one item per line:
    LABEL<TAB>attr1<TAB>attr2:0.5
with a blank line between sequences.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TextIO, Union

from crfchain.dictionary import Quark
from crfchain.exceptions import LengthMismatch

AttributeValue = Union[str, float, bool, int, Mapping[str, "AttributeValue"], Sequence[str]]
ItemInput = Union[Mapping[str, AttributeValue], Sequence[Union[str, tuple[str, float]]]]
ItemSequenceInput = Sequence[ItemInput]


@dataclass(frozen=True, slots=True)
class Item:
    """Observed attributes at one sequence position.

    Attributes:
        attributes: (attribute id, weight) pairs in input order.
    """

    attributes: tuple[tuple[int, float], ...]

    def __len__(self) -> int:
        return len(self.attributes)


@dataclass(frozen=True, slots=True)
class Instance:
    """A sequence of items with optional gold labels.

    Attributes:
        items: One Item per position.
        labels: Gold label ids aligned with items, or None when tagging.
        weight: Scale of this instance's contribution to the loss.
        group: Group number, used to select holdout data.
    """

    items: tuple[Item, ...]
    labels: tuple[int, ...] | None = None
    weight: float = 1.0
    group: int = 0

    def __post_init__(self) -> None:
        if self.labels is not None and len(self.labels) != len(self.items):
            raise LengthMismatch(
                message="Label sequence does not match the item sequence",
                expected=len(self.items),
                actual=len(self.labels),
            )

    def __len__(self) -> int:
        return len(self.items)


def _iter_mapping(prefix: str, values: Mapping[str, AttributeValue]) -> Iterator[tuple[str, float]]:
    for key, value in values.items():
        name = f"{prefix}{key}"
        if isinstance(value, str):
            yield f"{name}:{value}", 1.0
        elif isinstance(value, Mapping):
            yield from _iter_mapping(f"{name}:", value)
        elif isinstance(value, (list, tuple, set, frozenset)):
            for element in value:
                yield f"{name}:{element}", 1.0
        else:
            yield name, float(value)


def item_attributes(item: ItemInput) -> list[tuple[str, float]]:
    """Flatten one input item into (attribute name, weight) pairs.

    Dict items follow python-crfsuite's conventions:
    - str values become "key:value" with weight 1.0
    - nested dicts become "key:subkey" with the nested value
    - lists of strings become one "key:element" attribute each
    - numbers and bools become "key" weighted by the value

    List items hold attribute names (weight 1.0) or (name, weight) pairs.

    Args:
        item: Attributes observed at one position.

    Returns:
        List of (name, weight) pairs in input order.
    """
    if isinstance(item, Mapping):
        return list(_iter_mapping("", item))

    attributes: list[tuple[str, float]] = []
    for entry in item:
        if isinstance(entry, str):
            attributes.append((entry, 1.0))
        else:
            name, value = entry
            attributes.append((name, float(value)))
    return attributes


@dataclass
class Dataset:
    """Ordered collection of instances sharing two interning tables.

    Attributes:
        attributes: Interning table for attribute names.
        labels: Interning table for label names.
        instances: Instances in insertion order.
    """

    attributes: Quark = field(default_factory=Quark)
    labels: Quark = field(default_factory=Quark)
    instances: list[Instance] = field(default_factory=list)

    def append(
        self,
        xseq: ItemSequenceInput,
        yseq: Sequence[str] | None = None,
        group: int = 0,
        weight: float = 1.0,
    ) -> Instance:
        """Intern a sequence and add it to the dataset.

        Args:
            xseq: Item sequence in python-crfsuite form.
            yseq: Gold label names, one per item, or None.
            group: Group number for holdout selection.
            weight: Instance weight.

        Returns:
            The interned Instance.

        Raises:
            LengthMismatch: If yseq and xseq differ in length.
            TypeError: If an attribute value is not a number, string or
                collection.
            ValueError: If an attribute value cannot be read as a number.
        """
        if yseq is not None and len(yseq) != len(xseq):
            raise LengthMismatch(
                message="Label sequence does not match the item sequence",
                expected=len(xseq),
                actual=len(yseq),
            )

        # Every item is converted before any name is interned
        converted = [item_attributes(x) for x in xseq]
        items = tuple(
            Item(tuple((self.attributes.intern(name), value) for name, value in attributes))
            for attributes in converted
        )
        labels = None if yseq is None else tuple(self.labels.intern(y) for y in yseq)
        instance = Instance(items=items, labels=labels, weight=weight, group=group)
        self.instances.append(instance)
        return instance

    def split(self, holdout: int) -> tuple[Dataset, Dataset]:
        """Split into (training, holdout) by group number.

        Both parts share this dataset's interning tables.

        Args:
            holdout: Group number to hold out. Negative means no holdout.
        """
        train = Dataset(attributes=self.attributes, labels=self.labels)
        test = Dataset(attributes=self.attributes, labels=self.labels)
        for instance in self.instances:
            if holdout >= 0 and instance.group == holdout:
                test.instances.append(instance)
            else:
                train.instances.append(instance)
        return train, test

    @property
    def num_items(self) -> int:
        """Total number of items over all instances."""
        return sum(len(instance) for instance in self.instances)

    @property
    def max_length(self) -> int:
        """Length of the longest instance."""
        return max((len(instance) for instance in self.instances), default=0)

    def clear(self) -> None:
        """Remove all instances. Interned names are kept."""
        self.instances.clear()

    def __len__(self) -> int:
        return len(self.instances)

    def __iter__(self) -> Iterator[Instance]:
        return iter(self.instances)

    def __getitem__(self, index: int) -> Instance:
        return self.instances[index]


def _parse_attribute(field_text: str) -> tuple[str, float]:
    """Parse 'name' or 'name:weight' with '\\:' and '\\\\' escapes."""
    name_chars: list[str] = []
    weight_text: str | None = None
    i = 0
    while i < len(field_text):
        ch = field_text[i]
        if ch == "\\" and i + 1 < len(field_text) and field_text[i + 1] in ":\\":
            name_chars.append(field_text[i + 1])
            i += 2
            continue
        if ch == ":":
            # The last unescaped colon separates the weight
            rest = field_text[i + 1 :]
            if _is_last_colon(rest):
                weight_text = rest
                break
        name_chars.append(ch)
        i += 1

    name = "".join(name_chars)
    if weight_text is None:
        return name, 1.0
    try:
        return name, float(weight_text)
    except ValueError as exc:
        raise ValueError(f"Invalid attribute weight in {field_text!r}") from exc


def _is_last_colon(rest: str) -> bool:
    i = 0
    while i < len(rest):
        if rest[i] == "\\" and i + 1 < len(rest) and rest[i + 1] in ":\\":
            i += 2
            continue
        if rest[i] == ":":
            return False
        i += 1
    return True


def read_text(stream: TextIO | Iterable[str]) -> Iterator[tuple[list[str], list[list[tuple[str, float]]]]]:
    """Read sequences in the CRFsuite text format.

    Each non-blank line is one item: the label, then attributes, separated
    by tabs. A blank line ends a sequence.

    Args:
        stream: Text stream or iterable of lines.

    Yields:
        (labels, xseq) pairs where xseq holds (name, weight) lists.
    """
    labels: list[str] = []
    xseq: list[list[tuple[str, float]]] = []
    for raw in stream:
        line = raw.rstrip("\r\n")
        if not line.strip():
            if xseq:
                yield labels, xseq
                labels, xseq = [], []
            continue

        fields = line.split("\t")
        labels.append(fields[0])
        xseq.append([_parse_attribute(f) for f in fields[1:] if f])

    if xseq:
        yield labels, xseq


def escape_attribute(name: str) -> str:
    """Escape an attribute name for the CRFsuite text format."""
    return name.replace("\\", "\\\\").replace(":", "\\:")
