"""
SQLite backed node session.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple

from ..utils import time_call
from .base import PropertyType, StorageError
from .memory import MemoryNodeSession, NodeRecord, Workspace

TABLE = "blaze_nodes"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    identifier TEXT PRIMARY KEY,
    parent TEXT,
    name TEXT NOT NULL,
    position INTEGER NOT NULL,
    primary_type TEXT NOT NULL,
    mixins TEXT NOT NULL,
    properties TEXT NOT NULL
)
"""


def _encode_value(ptype: PropertyType, value: Any) -> Any:
    if ptype is PropertyType.DATE:
        if isinstance(value, list):
            return [item.isoformat() for item in value]
        return value.isoformat()
    return value


def _decode_value(ptype: PropertyType, value: Any) -> Any:
    if ptype is PropertyType.DATE:
        if isinstance(value, list):
            return [datetime.fromisoformat(item) for item in value]
        return datetime.fromisoformat(value)
    return value


def encode_properties(properties: Dict[str, Tuple[PropertyType, Any]]) -> str:
    return json.dumps(
        {name: [ptype.value, _encode_value(ptype, value)] for name, (ptype, value) in properties.items()}
    )


def decode_properties(payload: str) -> Dict[str, Tuple[PropertyType, Any]]:
    decoded: Dict[str, Tuple[PropertyType, Any]] = {}
    for name, (type_name, value) in json.loads(payload).items():
        ptype = PropertyType(type_name)
        decoded[name] = (ptype, _decode_value(ptype, value))
    return decoded


class SQLiteNodeSession(MemoryNodeSession):
    """
    Node session whose persisted workspace lives in an SQLite table.

    The working tree is kept in memory; ``save()`` rewrites the table and
    transactions map to SQLite transactions.
    """

    logger_name = "storage.sqlite"

    def __init__(self, path: str = ":memory:", *, timeout: float = 5.0, supports_transactions: bool = True) -> None:
        self.path = path
        self._connection: sqlite3.Connection | None = sqlite3.connect(
            path,
            isolation_level=None,
            timeout=timeout,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute(_SCHEMA)
        super().__init__(supports_transactions=supports_transactions)

    def _ensure_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError("SQLiteNodeSession is not connected.")
        return self._connection

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        connection = self._ensure_connection()
        with time_call("sqlite.execute", self.logger):
            return connection.execute(sql, params or ())

    # ------------------------------------------------------------------ #
    # Persistence hooks
    # ------------------------------------------------------------------ #
    def _read_persisted(self) -> Workspace:
        rows = self.execute(
            f"SELECT identifier, parent, name, position, primary_type, mixins, properties "
            f"FROM {TABLE} ORDER BY position"
        ).fetchall()
        workspace: Workspace = {}
        for row in rows:
            workspace[row["identifier"]] = NodeRecord(
                identifier=row["identifier"],
                name=row["name"],
                parent=row["parent"],
                primary_type=row["primary_type"],
                mixins=json.loads(row["mixins"]),
                properties=decode_properties(row["properties"]),
            )
        for row in rows:
            if row["parent"] is not None:
                workspace[row["parent"]].children.append(row["identifier"])
        return workspace

    def _write_persisted(self, workspace: Workspace) -> None:
        connection = self._ensure_connection()
        rows: List[Tuple[Any, ...]] = []
        for record in workspace.values():
            position = 0
            if record.parent is not None:
                position = workspace[record.parent].children.index(record.identifier)
            rows.append(
                (
                    record.identifier,
                    record.parent,
                    record.name,
                    position,
                    record.primary_type,
                    json.dumps(record.mixins),
                    encode_properties(record.properties),
                )
            )

        owns_transaction = not connection.in_transaction
        if owns_transaction:
            connection.execute("BEGIN")
        try:
            with time_call("sqlite.write_workspace", self.logger, rows=len(rows)):
                connection.execute(f"DELETE FROM {TABLE}")
                connection.executemany(
                    f"INSERT INTO {TABLE} (identifier, parent, name, position, primary_type, mixins, properties) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.Error:
            if owns_transaction:
                connection.execute("ROLLBACK")
            raise
        if owns_transaction:
            connection.execute("COMMIT")

    def _start_transaction(self) -> None:
        self._ensure_connection().execute("BEGIN")

    def _finish_transaction(self, commit: bool) -> None:
        self._ensure_connection().execute("COMMIT" if commit else "ROLLBACK")

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        super().close()
