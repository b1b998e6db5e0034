"""Catalog value types shared by the trigger engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class TypeFamily(str, Enum):
    """Partition of column data types for audit purposes."""

    SCALAR = "scalar"
    BINARY = "binary"
    SPATIAL = "spatial"

    @property
    def excluded(self) -> bool:
        return self is not TypeFamily.SCALAR


BINARY_TYPES = frozenset({
    "blob", "tinyblob", "mediumblob", "longblob",
    "binary", "varbinary",
    "bytea", "largebinary",
})

SPATIAL_TYPES = frozenset({
    "geometry", "point", "linestring", "polygon",
    "multipoint", "multilinestring", "multipolygon", "geometrycollection",
    "geography", "line", "lseg", "box", "path", "circle",
})


def classify_type(data_type: str) -> TypeFamily:
    """Map a backend data type name to its family."""
    base = (data_type or "").strip().lower()
    if base in BINARY_TYPES:
        return TypeFamily.BINARY
    if base in SPATIAL_TYPES:
        return TypeFamily.SPATIAL
    return TypeFamily.SCALAR


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    data_type: str

    @property
    def family(self) -> TypeFamily:
        return classify_type(self.data_type)

    @property
    def excluded(self) -> bool:
        return self.family.excluded


@dataclass(frozen=True)
class TableDescriptor:
    """Introspected shape of one table.

    ``primary_key_columns`` keeps every primary-key column in key order;
    ``primary_key`` is only set when there is exactly one of them.
    """

    name: str
    columns: Tuple[ColumnDescriptor, ...] = ()
    primary_key_columns: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def primary_key(self) -> Optional[ColumnDescriptor]:
        if len(self.primary_key_columns) != 1:
            return None
        return self.column(self.primary_key_columns[0])

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.name == name:
                return column
        return None
