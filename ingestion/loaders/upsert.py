"""
Idempotent multi-row upsert statements built from a table mapping
"""

from typing import Any, Dict, List

from sqlalchemy import Table
from sqlalchemy.dialects import mysql, postgresql, sqlite

from core.exceptions import LoadError
from models.targets import TableMapping

SUPPORTED_DIALECTS = ("mysql", "postgresql", "sqlite")


def _last_per_key(mapping: TableMapping, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse rows sharing a natural key, keeping the last one.

    PostgreSQL rejects a statement that updates the same row twice.
    """
    by_key: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        key = tuple(row.get(c) for c in mapping.natural_key)
        by_key.pop(key, None)
        by_key[key] = row
    return list(by_key.values())


def build_upsert(table: Table, mapping: TableMapping, rows: List[Dict[str, Any]], dialect: str):
    """
    Build INSERT ... VALUES (rows) with an update-on-natural-key clause.

    MySQL:           ON DUPLICATE KEY UPDATE col = VALUES(col)
    PostgreSQL/SQLite: ON CONFLICT (natural key) DO UPDATE SET col = excluded.col

    Every mutable column is overwritten with the incoming value, so
    re-submitting the same rows converges to the same stored state.
    Values are always bound parameters.
    """
    if not rows:
        raise LoadError("Cannot build an upsert for zero rows", context={"table_name": mapping.table_name})

    rows = _last_per_key(mapping, rows)

    if dialect == "mysql":
        stmt = mysql.insert(table).values(rows)
        # Key-only tables still need an update clause for the no-op
        columns = mapping.mutable_columns or mapping.natural_key[:1]
        return stmt.on_duplicate_key_update({c: stmt.inserted[c] for c in columns})

    if dialect in ("postgresql", "sqlite"):
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(table).values(rows)
        if not mapping.mutable_columns:
            return stmt.on_conflict_do_nothing(index_elements=list(mapping.natural_key))
        return stmt.on_conflict_do_update(
            index_elements=list(mapping.natural_key),
            set_={c: stmt.excluded[c] for c in mapping.mutable_columns}
        )

    raise LoadError(
        f"Unsupported dialect for upsert: {dialect}",
        context={"dialect": dialect, "supported": ", ".join(SUPPORTED_DIALECTS)}
    )
