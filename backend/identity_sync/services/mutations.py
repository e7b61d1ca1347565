"""
Mutation plan types produced by reconciliation handlers.

Handlers never write to the store. They describe what must change as an
ordered tuple of Upsert and Delete mutations; the dispatcher applies them.
Keys may contain RecordRef values, which name another record by its
natural key and are resolved to that record's local id at apply time
(e.g. the membership created alongside a brand new entity).
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


class Table(str, enum.Enum):
    """Tables of the Local Identity Store addressable by mutations."""
    PROFILES = "profiles"
    ENTITIES = "entities"
    ENTITY_MEMBERS = "entity_members"
    ENTITY_SOCIAL_LINKS = "entity_social_links"
    ENTITY_CONFIGURATIONS = "entity_configurations"


@dataclass(frozen=True)
class RecordRef:
    """Local id of the record in `table` whose natural key is `key`."""
    table: Table
    key: Dict[str, Any]

    def __str__(self) -> str:
        return f"{self.table.value}{self.key}"


@dataclass(frozen=True)
class Upsert:
    """
    Insert-if-absent, patch-named-fields-if-present.

    `fields` are written on insert and on update. `insert_fields` are
    written on insert only (created_by, joined_at, brief), so a replayed
    event never refreshes them. Fields not named are left untouched.
    """
    table: Table
    key: Dict[str, Any]
    fields: Dict[str, Any] = field(default_factory=dict)
    insert_fields: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        return f"upsert {self.table.value} {_format_key(self.key)}"


@dataclass(frozen=True)
class Delete:
    """Idempotent `DELETE FROM table WHERE ...`; deleting nothing is fine."""
    table: Table
    where: Dict[str, Any]

    def describe(self) -> str:
        return f"delete {self.table.value} {_format_key(self.where)}"


Mutation = Union[Upsert, Delete]


class ReconciliationKind(str, enum.Enum):
    PLAN = "plan"
    NOOP = "noop"
    MISSING_REFERENCE = "missing_reference"


@dataclass(frozen=True)
class Reconciliation:
    """What a handler decided for one event."""
    kind: ReconciliationKind
    mutations: Tuple[Mutation, ...] = ()
    reason: Optional[str] = None

    @classmethod
    def plan(cls, *mutations: Mutation) -> "Reconciliation":
        return cls(kind=ReconciliationKind.PLAN, mutations=tuple(mutations))

    @classmethod
    def noop(cls, reason: str) -> "Reconciliation":
        return cls(kind=ReconciliationKind.NOOP, reason=reason)

    @classmethod
    def missing_reference(cls, reason: str) -> "Reconciliation":
        return cls(kind=ReconciliationKind.MISSING_REFERENCE, reason=reason)


def _format_key(key: Dict[str, Any]) -> str:
    return ", ".join(f"{name}={value}" for name, value in sorted(key.items()))
