"""String/id dictionaries for attributes and labels.

Two implementations share the Dictionary interface:
- Quark: mutable interning table used while collecting training data
- cqdb.Reader: read-only table backed by a compiled model buffer
"""

from collections.abc import Iterable, Iterator
from typing import Protocol, runtime_checkable

from crfchain.exceptions import DictionaryLookupFailed


@runtime_checkable
class Dictionary(Protocol):
    """Bidirectional mapping between names and dense integer ids.

    Lookups on unknown keys return None, which callers must keep apart
    from a valid id 0.
    """

    def id_of(self, name: str) -> int | None: ...

    def name_of(self, id_: int) -> str | None: ...

    def count(self) -> int: ...


class Quark:
    """Interning table assigning dense ids in order of first occurrence.

    Ids are never recycled or renumbered, so a feature table indexed by
    these ids stays valid for the lifetime of the table.
    """

    __slots__ = ("_names", "_ids")

    def __init__(self, names: Iterable[str] = ()) -> None:
        """Initialize the table.

        Args:
            names: Names to intern immediately, in order.
        """
        self._names: list[str] = []
        self._ids: dict[str, int] = {}
        for name in names:
            self.intern(name)

    def intern(self, name: str) -> int:
        """Return the id for name, assigning the next id if it is new."""
        id_ = self._ids.get(name)
        if id_ is None:
            id_ = len(self._names)
            self._ids[name] = id_
            self._names.append(name)
        return id_

    def id_of(self, name: str) -> int | None:
        return self._ids.get(name)

    def name_of(self, id_: int) -> str | None:
        if 0 <= id_ < len(self._names):
            return self._names[id_]
        return None

    def to_id(self, name: str) -> int:
        """Strict lookup.

        Raises:
            DictionaryLookupFailed: If name was never interned.
        """
        id_ = self._ids.get(name)
        if id_ is None:
            raise DictionaryLookupFailed(message="Unknown name", key=name)
        return id_

    def to_name(self, id_: int) -> str:
        """Strict reverse lookup.

        Raises:
            DictionaryLookupFailed: If id was never assigned.
        """
        name = self.name_of(id_)
        if name is None:
            raise DictionaryLookupFailed(message="Unknown id", key=id_)
        return name

    def count(self) -> int:
        return len(self._names)

    def names(self) -> tuple[str, ...]:
        """All names in id order."""
        return tuple(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __repr__(self) -> str:
        return f"Quark(count={len(self._names)})"
