"""Statically declared persistence metadata for persisted types.

Each persisted type registers its table name and ordered key columns once at
startup. The engine resolves primary-key values and cache keys from this
registry instead of inspecting mapper or proxy internals at runtime.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import TYPE_CHECKING

from brokerdb.domain.errors import IntrospectionError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EntityDescriptor:
    """Key layout of one persisted type."""

    entity_type: type
    table: str
    key_columns: tuple[str, ...]
    key_types: tuple[type, ...] = ()

    @property
    def has_single_key(self) -> bool:
        return len(self.key_columns) == 1

    def cache_key(self, values: Sequence[object]) -> object:
        """Collapse key values into the form used by the second-level cache."""

        converted = tuple(self.coerce_key(index, value) for index, value in enumerate(values))
        return converted[0] if len(converted) == 1 else converted

    def coerce_key(self, index: int, value: object) -> object:
        """Convert a raw key value to the registered key type where possible.

        Drivers commonly return integral keys as ``Decimal`` when they are read
        back through a plain SELECT, so those are narrowed to ``int``.
        """

        if index >= len(self.key_types):
            return value
        target = self.key_types[index]
        if isinstance(value, target):
            return value
        if isinstance(value, Decimal) and target is int and value == value.to_integral_value():
            return int(value)
        log.warning(
            "No key conversion available for %s: %s -> %s",
            self.table,
            type(value).__name__,
            target.__name__,
        )
        return value


def _declared_fields(entity_type: type) -> frozenset[str]:
    names: set[str] = set()
    if dataclasses.is_dataclass(entity_type):
        names.update(item.name for item in dataclasses.fields(entity_type))
    for klass in entity_type.__mro__:
        names.update(getattr(klass, "__annotations__", {}))
        slots = getattr(klass, "__slots__", ())
        names.update((slots,) if isinstance(slots, str) else slots)
    return frozenset(names)


class PersistenceMetadataRegistry:
    """Registry mapping persisted types and table names to their key layout."""

    def __init__(self) -> None:
        self._by_type: dict[type, EntityDescriptor] = {}
        self._by_table: dict[str, EntityDescriptor] = {}
        self._lock = Lock()

    def register(
        self,
        entity_type: type,
        *,
        table: str,
        key_columns: Sequence[str],
        key_types: Sequence[type] = (),
    ) -> EntityDescriptor:
        if not key_columns:
            raise ValueError(f"{entity_type.__name__} must declare at least one key column")
        if key_types and len(key_types) != len(key_columns):
            raise ValueError(f"{entity_type.__name__}: key_types must match key_columns")
        descriptor = EntityDescriptor(
            entity_type=entity_type,
            table=table,
            key_columns=tuple(key_columns),
            key_types=tuple(key_types),
        )
        with self._lock:
            if entity_type in self._by_type:
                raise ValueError(f"{entity_type.__name__} is already registered")
            if table.lower() in self._by_table:
                raise ValueError(f"Table {table} is already registered")
            self._by_type[entity_type] = descriptor
            self._by_table[table.lower()] = descriptor
        return descriptor

    def find(self, entity_type: type) -> EntityDescriptor | None:
        return self._by_type.get(entity_type)

    def describe(self, entity_type: type) -> EntityDescriptor:
        descriptor = self.find(entity_type)
        if descriptor is None:
            raise IntrospectionError(f"{entity_type.__name__} is not a registered persisted type")
        return descriptor

    def by_table(self, table: str) -> EntityDescriptor | None:
        return self._by_table.get(table.strip("`\"'[] ").lower())

    def primary_key_values(self, obj: object) -> tuple[object, ...]:
        """Return the key-column values of ``obj`` in declared key order."""

        descriptor = self.describe(type(obj))
        declared = _declared_fields(type(obj))
        values: list[object] = []
        for column in descriptor.key_columns:
            if column not in declared:
                raise IntrospectionError(
                    f"{type(obj).__name__} declares no field for key column {column}"
                )
            try:
                values.append(getattr(obj, column))
            except AttributeError as exc:
                raise IntrospectionError(
                    f"{type(obj).__name__}.{column} is declared but not set"
                ) from exc
        return tuple(values)

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(tuple(self._by_type.values()))

    def __len__(self) -> int:
        return len(self._by_type)
