"""Compiled CRF models and their binary container.

The container is the CRFsuite ``crf1d`` model format, so files written
here can be opened by python-crfsuite and vice versa:

    header (48 bytes)
    FEAT  feature records (type, src, dst, weight)
    CQDB  label dictionary
    CQDB  attribute dictionary
    LFRF  per-label lists of outgoing transition features
    AFRF  per-attribute lists of state features

Compilation drops features with zero weight and renumbers the attributes
that keep at least one feature. Loading validates the layout up front and
reads feature references on demand.
"""

import logging
import struct
from collections.abc import Sequence
from pathlib import Path
from typing import Any, TextIO

import numpy as np

from crfchain import cqdb
from crfchain.context import Context
from crfchain.dataset import ItemSequenceInput, item_attributes
from crfchain.exceptions import CorruptModel, DictionaryLookupFailed, InvalidFeatureIndex
from crfchain.features import FeatureCatalog, FeatureKind

logger = logging.getLogger(__name__)

MAGIC = b"lCRF"
MODEL_TYPE = b"FOMC"
VERSION = 100

FEATURE_DTYPE = np.dtype([("type", "<u4"), ("src", "<u4"), ("dst", "<u4"), ("weight", "<f8")])

_HEADER = struct.Struct("<4sI4sIIIIIIIII")
_CHUNK = struct.Struct("<4sII")
HEADER_SIZE = _HEADER.size
CHUNK_SIZE = _CHUNK.size

FEATURES_CHUNK = b"FEAT"
LABEL_REFS_CHUNK = b"LFRF"
ATTRIBUTE_REFS_CHUNK = b"AFRF"

_HEADER_FIELDS = (
    "magic",
    "size",
    "type",
    "version",
    "num_features",
    "num_labels",
    "num_attrs",
    "off_features",
    "off_labels",
    "off_attrs",
    "off_labelrefs",
    "off_attrrefs",
)


def _refs_chunk(chunk_id: bytes, lists: Sequence[np.ndarray], begin: int) -> bytes:
    """Serialize a reference chunk whose offsets are absolute file positions."""
    table_size = CHUNK_SIZE + 4 * len(lists)
    offsets: list[int] = []
    body = bytearray()
    for fids in lists:
        offsets.append(begin + table_size + len(body))
        body += struct.pack("<I", len(fids))
        body += np.asarray(fids, dtype="<u4").tobytes()
    header = _CHUNK.pack(chunk_id, table_size + len(body), len(lists))
    return header + struct.pack(f"<{len(offsets)}I", *offsets) + bytes(body)


class ModelWriter:
    """Compiles trained weights into the binary model format.

    Example:
        writer = ModelWriter(catalog, weights, dataset.attributes.names(), dataset.labels.names())
        writer.save("model.crfsuite")
    """

    def __init__(
        self,
        catalog: FeatureCatalog,
        weights: np.ndarray,
        attribute_names: Sequence[str],
        label_names: Sequence[str],
    ) -> None:
        """Prepare a model for writing.

        Args:
            catalog: Feature catalog the weights are indexed by.
            weights: One weight per feature.
            attribute_names: Attribute names by id.
            label_names: Label names by id.

        Raises:
            InvalidFeatureIndex: If weights do not match the catalog.
            ValueError: If the name tables do not cover the catalog.
        """
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != (len(catalog),):
            raise InvalidFeatureIndex(
                message=f"Weight vector of shape {weights.shape} does not match {len(catalog)} features"
            )
        if len(label_names) < catalog.num_labels or len(attribute_names) < catalog.num_attributes:
            raise ValueError("Name tables do not cover the labels and attributes of the catalog")

        self._catalog = catalog
        self._weights = weights
        self._attribute_names = attribute_names
        self._label_names = label_names

    def to_bytes(self) -> bytes:
        """Serialize the model."""
        catalog = self._catalog
        weights = self._weights
        num_features = len(catalog)
        num_state = catalog.num_state_features

        active = np.flatnonzero(weights != 0.0)
        fmap = np.full(num_features, -1, dtype=np.int64)
        fmap[active] = np.arange(len(active))

        used_attrs = np.unique(catalog.src[active[active < num_state]])
        amap = np.full(catalog.num_attributes, -1, dtype=np.int64)
        amap[used_attrs] = np.arange(len(used_attrs))

        records = np.zeros(len(active), dtype=FEATURE_DTYPE)
        is_state = active < num_state
        records["type"] = np.where(is_state, FeatureKind.STATE, FeatureKind.TRANSITION)
        src = catalog.src[active]
        src[is_state] = amap[src[is_state]]
        records["src"] = src
        records["dst"] = catalog.dst[active]
        records["weight"] = weights[active]

        out = bytearray(HEADER_SIZE)

        off_features = len(out)
        out += _CHUNK.pack(FEATURES_CHUNK, CHUNK_SIZE + records.nbytes, len(records))
        out += records.tobytes()

        off_labels = len(out)
        labels = cqdb.Writer()
        for lid in range(catalog.num_labels):
            labels.put(self._label_names[lid], lid)
        out += labels.to_bytes()

        off_attrs = len(out)
        attributes = cqdb.Writer()
        for new_id, old_id in enumerate(used_attrs.tolist()):
            attributes.put(self._attribute_names[old_id], new_id)
        out += attributes.to_bytes()

        def remapped(fids: np.ndarray) -> np.ndarray:
            mapped = fmap[fids]
            return mapped[mapped >= 0]

        off_labelrefs = len(out)
        label_lists = [remapped(catalog.label_refs(lid)) for lid in range(catalog.num_labels)]
        out += _refs_chunk(LABEL_REFS_CHUNK, label_lists, off_labelrefs)

        off_attrrefs = len(out)
        attr_lists = [remapped(catalog.attribute_refs(aid)) for aid in used_attrs.tolist()]
        out += _refs_chunk(ATTRIBUTE_REFS_CHUNK, attr_lists, off_attrrefs)

        out[:HEADER_SIZE] = _HEADER.pack(
            MAGIC,
            len(out),
            MODEL_TYPE,
            VERSION,
            len(records),
            catalog.num_labels,
            len(used_attrs),
            off_features,
            off_labels,
            off_attrs,
            off_labelrefs,
            off_attrrefs,
        )
        logger.info(
            "Compiled model: %d of %d features active, %d labels, %d attributes, %d bytes",
            len(records),
            num_features,
            catalog.num_labels,
            len(used_attrs),
            len(out),
        )
        return bytes(out)

    def save(self, path: Path | str) -> None:
        """Write the model to path."""
        Path(path).write_bytes(self.to_bytes())


class Model:
    """An immutable compiled model.

    Any number of Taggers may share one Model. Feature references are
    decoded on first use and cached per attribute.
    """

    def __init__(self, data: bytes) -> None:
        """Open and validate a model buffer.

        Args:
            data: Complete model file contents.

        Raises:
            CorruptModel: If the buffer fails validation.
        """
        self._data = bytes(data)
        self._header = self._read_header()
        self._features = self._read_features()

        self._labels = cqdb.Reader(self._data, self._header["off_labels"])
        self._attributes = cqdb.Reader(self._data, self._header["off_attrs"])
        if self._labels.count() != self.num_labels:
            raise CorruptModel(
                message=f"Label dictionary holds {self._labels.count()} labels, header says {self.num_labels}"
            )
        if self._attributes.count() != self.num_attributes:
            raise CorruptModel(
                message=(
                    f"Attribute dictionary holds {self._attributes.count()} attributes, "
                    f"header says {self.num_attributes}"
                )
            )

        self._label_refs = self._open_refs(LABEL_REFS_CHUNK, self._header["off_labelrefs"], self.num_labels)
        self._attr_refs = self._open_refs(ATTRIBUTE_REFS_CHUNK, self._header["off_attrrefs"], self.num_attributes)

        self._state_cache: dict[int, tuple[np.ndarray, np.ndarray]] = {}
        self._trans: np.ndarray | None = None

        logger.info(
            "Loaded model: %d labels, %d attributes, %d features",
            self.num_labels,
            self.num_attributes,
            self.num_features,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Model":
        return cls(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "Model":
        """Load a model file.

        Raises:
            FileNotFoundError: If the file does not exist.
            CorruptModel: If the file fails validation.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")
        logger.info("Loading model from %s", path)
        return cls(path.read_bytes())

    def _read_header(self) -> dict[str, Any]:
        if len(self._data) < HEADER_SIZE:
            raise CorruptModel(message=f"Model buffer of {len(self._data)} bytes is too small")
        header = dict(zip(_HEADER_FIELDS, _HEADER.unpack_from(self._data, 0)))
        if header["magic"] != MAGIC:
            raise CorruptModel(message=f"Bad model magic {header['magic']!r}")
        if header["type"] != MODEL_TYPE:
            raise CorruptModel(message=f"Unsupported model type {header['type']!r}")
        if header["version"] != VERSION:
            raise CorruptModel(message=f"Unsupported model version {header['version']}")
        if header["size"] > len(self._data):
            raise CorruptModel(message=f"Header size {header['size']} exceeds the buffer of {len(self._data)} bytes")
        for name in ("off_features", "off_labels", "off_attrs", "off_labelrefs", "off_attrrefs"):
            if not HEADER_SIZE <= header[name] < header["size"]:
                raise CorruptModel(message=f"Header field {name}={header[name]} is out of bounds")
        return header

    def _open_chunk(self, chunk_id: bytes, offset: int) -> tuple[int, int]:
        size_limit = self._header["size"]
        if offset + CHUNK_SIZE > size_limit:
            raise CorruptModel(message=f"{chunk_id.decode()} chunk at {offset} is truncated")
        found, size, num = _CHUNK.unpack_from(self._data, offset)
        if found != chunk_id:
            raise CorruptModel(message=f"Expected chunk {chunk_id!r} at {offset}, found {found!r}")
        if size < CHUNK_SIZE or offset + size > size_limit:
            raise CorruptModel(message=f"{chunk_id.decode()} chunk size {size} is out of bounds")
        return size, num

    def _read_features(self) -> np.ndarray:
        offset = self._header["off_features"]
        size, num = self._open_chunk(FEATURES_CHUNK, offset)
        if CHUNK_SIZE + num * FEATURE_DTYPE.itemsize > size:
            raise CorruptModel(message=f"Feature chunk is too small for {num} features")
        if self._header["num_features"] not in (0, num):
            raise CorruptModel(
                message=f"Header says {self._header['num_features']} features, chunk holds {num}"
            )

        features = np.frombuffer(self._data, dtype=FEATURE_DTYPE, count=num, offset=offset + CHUNK_SIZE)
        kinds = features["type"]
        state = kinds == FeatureKind.STATE
        if np.any((kinds != FeatureKind.STATE) & (kinds != FeatureKind.TRANSITION)):
            raise CorruptModel(message="Unknown feature type")
        if np.any(features["dst"] >= self._header["num_labels"]):
            raise CorruptModel(message="Feature target label out of range")
        if np.any(features["src"][state] >= self._header["num_attrs"]):
            raise CorruptModel(message="State feature attribute out of range")
        if np.any(features["src"][~state] >= self._header["num_labels"]):
            raise CorruptModel(message="Transition feature source label out of range")
        if not np.all(np.isfinite(features["weight"])):
            raise CorruptModel(message="Feature weight is not finite")
        return features

    def _open_refs(self, chunk_id: bytes, offset: int, count: int) -> np.ndarray:
        size, num = self._open_chunk(chunk_id, offset)
        if num < count or CHUNK_SIZE + 4 * num > size:
            raise CorruptModel(message=f"{chunk_id.decode()} chunk holds {num} references, expected {count}")
        return np.frombuffer(self._data, dtype="<u4", count=num, offset=offset + CHUNK_SIZE)

    def _read_refs(self, table: np.ndarray, index: int) -> np.ndarray:
        offset = int(table[index])
        if offset == 0:
            return np.empty(0, dtype=np.int64)
        if offset + 4 > self._header["size"]:
            raise CorruptModel(message=f"Feature reference list at {offset} is out of bounds")
        (n,) = struct.unpack_from("<I", self._data, offset)
        if offset + 4 + 4 * n > self._header["size"]:
            raise CorruptModel(message=f"Feature reference list at {offset} is truncated")
        fids = np.frombuffer(self._data, dtype="<u4", count=n, offset=offset + 4).astype(np.int64)
        if np.any(fids >= len(self._features)):
            raise CorruptModel(message=f"Feature reference list at {offset} has an out-of-range feature id")
        return fids

    @property
    def num_labels(self) -> int:
        return self._header["num_labels"]

    @property
    def num_attributes(self) -> int:
        return self._header["num_attrs"]

    @property
    def num_features(self) -> int:
        return len(self._features)

    @property
    def features(self) -> np.ndarray:
        """Read-only structured view of the feature records."""
        return self._features

    @property
    def weights(self) -> np.ndarray:
        return self._features["weight"]

    def labels(self) -> list[str]:
        """Label names in id order."""
        names = []
        for lid in range(self.num_labels):
            name = self._labels.name_of(lid)
            if name is None:
                raise CorruptModel(message=f"Label {lid} has no name")
            names.append(name)
        return names

    def label_id(self, name: str) -> int:
        """Strict label lookup.

        Raises:
            DictionaryLookupFailed: If the label is unknown.
        """
        lid = self._labels.id_of(name)
        if lid is None:
            raise DictionaryLookupFailed(message="Unknown label", key=name)
        return lid

    def label_name(self, lid: int) -> str:
        name = self._labels.name_of(lid)
        if name is None:
            raise DictionaryLookupFailed(message="Unknown label id", key=lid)
        return name

    def attribute_id(self, name: str) -> int | None:
        """Attribute id, or None for attributes the model does not know."""
        return self._attributes.id_of(name)

    def label_refs(self, lid: int) -> np.ndarray:
        """Ids of the transition features leaving label lid."""
        return self._read_refs(self._label_refs, lid)

    def attribute_refs(self, aid: int) -> np.ndarray:
        """Ids of the state features of attribute aid."""
        return self._read_refs(self._attr_refs, aid)

    def state_features(self, aid: int) -> tuple[np.ndarray, np.ndarray]:
        """(label ids, weights) of the state features of attribute aid."""
        cached = self._state_cache.get(aid)
        if cached is not None:
            return cached

        fids = self.attribute_refs(aid)
        records = self._features[fids]
        if np.any(records["type"] != FeatureKind.STATE) or np.any(records["src"] != aid):
            raise CorruptModel(message=f"Attribute {aid} references a foreign feature")
        entry = (records["dst"].astype(np.int64), records["weight"].astype(np.float64))
        self._state_cache[aid] = entry
        return entry

    def transitions(self) -> np.ndarray:
        """Transition weight matrix, shape (L, L)."""
        if self._trans is not None:
            return self._trans

        L = self.num_labels
        trans = np.zeros((L, L))
        for lid in range(L):
            records = self._features[self.label_refs(lid)]
            if np.any(records["type"] != FeatureKind.TRANSITION) or np.any(records["src"] != lid):
                raise CorruptModel(message=f"Label {lid} references a foreign feature")
            trans[lid, records["dst"].astype(np.int64)] = records["weight"]
        trans.setflags(write=False)
        self._trans = trans
        return trans

    def state_weight(self, attribute: str, label: str) -> float:
        """Weight of the state feature (attribute, label), 0.0 if absent."""
        aid = self.attribute_id(attribute)
        if aid is None:
            return 0.0
        labels, weights = self.state_features(aid)
        hits = weights[labels == self.label_id(label)]
        return float(hits[0]) if len(hits) else 0.0

    def transition_weight(self, src: str, dst: str) -> float:
        """Weight of the transition src -> dst, 0.0 if absent."""
        return float(self.transitions()[self.label_id(src), self.label_id(dst)])

    def state_scores(self, xseq: ItemSequenceInput) -> np.ndarray:
        """State score matrix of an item sequence, shape (T, L).

        Attributes unknown to the model are skipped.
        """
        state = np.zeros((len(xseq), self.num_labels))
        for t, item in enumerate(xseq):
            for name, value in item_attributes(item):
                aid = self._attributes.id_of(name)
                if aid is None:
                    logger.debug("Skipping unknown attribute %r at position %d", name, t)
                    continue
                labels, weights = self.state_features(aid)
                state[t, labels] += weights * value
        return state

    def context(self, xseq: ItemSequenceInput) -> Context:
        """Scoring lattice of an item sequence under this model."""
        return Context(self.state_scores(xseq), self.transitions())

    def to_bytes(self) -> bytes:
        return self._data

    def save(self, path: Path | str) -> None:
        Path(path).write_bytes(self._data)

    def dump(self, stream: TextIO) -> None:
        """Write a human-readable listing of the model."""
        header = self._header
        stream.write("FILEHEADER = {\n")
        stream.write(f"  magic: {header['magic'].decode('ascii', 'replace')}\n")
        stream.write(f"  size: {header['size']}\n")
        stream.write(f"  type: {header['type'].decode('ascii', 'replace')}\n")
        for name in ("version", "num_features", "num_labels", "num_attrs"):
            stream.write(f"  {name}: {header[name]}\n")
        for name in ("off_features", "off_labels", "off_attrs", "off_labelrefs", "off_attrrefs"):
            stream.write(f"  {name}: 0x{header[name]:X}\n")
        stream.write("}\n\n")

        label_names = self.labels()
        stream.write("LABELS = {\n")
        for lid, name in enumerate(label_names):
            stream.write(f"  {lid:5d}: {name}\n")
        stream.write("}\n\n")

        attribute_names = [self._attributes.name_of(aid) or "" for aid in range(self.num_attributes)]
        stream.write("ATTRIBUTES = {\n")
        for aid, name in enumerate(attribute_names):
            stream.write(f"  {aid:5d}: {name}\n")
        stream.write("}\n\n")

        stream.write("TRANSITIONS = {\n")
        for lid in range(self.num_labels):
            for fid in self.label_refs(lid).tolist():
                record = self._features[fid]
                stream.write(
                    f"  ({record['type']}) {label_names[lid]} --> "
                    f"{label_names[record['dst']]}: {record['weight']:f}\n"
                )
        stream.write("}\n\n")

        stream.write("STATE_FEATURES = {\n")
        for aid in range(self.num_attributes):
            for fid in self.attribute_refs(aid).tolist():
                record = self._features[fid]
                stream.write(
                    f"  ({record['type']}) {attribute_names[aid]} --> "
                    f"{label_names[record['dst']]}: {record['weight']:f}\n"
                )
        stream.write("}\n\n")
