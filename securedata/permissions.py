"""
Secure Data API — static permission table.

Maps role → operation → set of document names the role may touch.  There are
no wildcards and no inheritance: a document missing from a set is denied.

The table is built once at process start and is read-only afterwards.  Changing
who can touch what is a configuration change plus a redeploy, never an API call.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from loguru import logger


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


# HTTP method → operation checked against the table
METHOD_OPERATIONS: Mapping[str, Operation] = MappingProxyType({
    "GET":    Operation.READ,
    "POST":   Operation.WRITE,
    "PUT":    Operation.WRITE,
    "PATCH":  Operation.WRITE,
    "DELETE": Operation.DELETE,
})


DEFAULT_PERMISSIONS: dict[str, dict[str, list[str]]] = {
    "admin": {
        "read": [
            "clients.json", "users.json", "contracts.json", "lmp-database.json",
            "accounts.json", "energy-profiles.json", "activity-log.json",
            "usage-profiles.json", "tickets.json", "widget-preferences.json",
        ],
        "write": [
            "clients.json", "users.json", "contracts.json", "lmp-database.json",
            "accounts.json", "energy-profiles.json", "activity-log.json",
            "usage-profiles.json", "tickets.json", "widget-preferences.json",
        ],
        "delete": ["energy-profiles.json", "tickets.json"],
    },
    "ae": {
        "read": [
            "clients.json", "contracts.json", "accounts.json",
            "energy-profiles.json", "usage-profiles.json",
        ],
        "write": ["energy-profiles.json", "contracts.json", "usage-profiles.json"],
        "delete": ["energy-profiles.json"],
    },
    "widget": {
        "read": [
            "clients.json", "accounts.json", "energy-profiles.json",
            "usage-profiles.json", "widget-preferences.json", "activity-log.json",
        ],
        "write": [
            "energy-profiles.json", "usage-profiles.json",
            "widget-preferences.json", "activity-log.json",
        ],
        "delete": [],
    },
    "workflow": {
        "read": ["lmp-database.json"],
        "write": ["lmp-database.json"],
        "delete": [],
    },
    "readonly": {
        "read": ["lmp-database.json"],
        "write": [],
        "delete": [],
    },
}


class PermissionTable:
    """
    Immutable role/operation/document allow-table.

    Parameters
    ----------
    entries:
        ``{role: {"read": [...], "write": [...], "delete": [...]}}``.
        Unknown operation names are rejected; missing operations mean
        "nothing allowed".
    """

    def __init__(self, entries: Mapping[str, Mapping[str, Iterable[str]]]) -> None:
        table: dict[str, Mapping[Operation, frozenset[str]]] = {}
        for role, ops in entries.items():
            role_ops: dict[Operation, frozenset[str]] = {}
            for op_name, documents in ops.items():
                try:
                    op = Operation(op_name)
                except ValueError as exc:
                    raise ValueError(
                        f"Unknown operation {op_name!r} for role {role!r}"
                    ) from exc
                role_ops[op] = frozenset(documents)
            table[role] = MappingProxyType(role_ops)
        self._table: Mapping[str, Mapping[Operation, frozenset[str]]] = MappingProxyType(table)

    @classmethod
    def default(cls) -> "PermissionTable":
        return cls(DEFAULT_PERMISSIONS)

    @classmethod
    def from_file(cls, path: str | Path) -> "PermissionTable":
        """Load a table from a JSON file shaped like ``DEFAULT_PERMISSIONS``."""
        with open(path, encoding="utf-8") as fh:
            entries = json.load(fh)
        if not isinstance(entries, dict):
            raise ValueError(f"Permission file {path} must contain a JSON object.")
        logger.info("Permission table loaded from {} ({} roles).", path, len(entries))
        return cls(entries)

    @property
    def roles(self) -> frozenset[str]:
        return frozenset(self._table)

    def allowed_documents(self, role: Optional[str], operation: Operation | str) -> frozenset[str]:
        if role is None or role not in self._table:
            return frozenset()
        return self._table[role].get(Operation(operation), frozenset())

    def is_allowed(self, role: Optional[str], document: str, operation: Operation | str) -> bool:
        """True iff *document* is in the allow-set for (*role*, *operation*)."""
        return document in self.allowed_documents(role, operation)
