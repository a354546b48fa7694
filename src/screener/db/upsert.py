"""
Dialect-aware INSERT ... ON CONFLICT helpers.

SQLite and PostgreSQL both support ON CONFLICT (...) DO UPDATE / DO
NOTHING with the same shape, only the insert() constructor differs.
"""
from typing import Any, Dict, Iterable, List, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(conn: Connection, table):
    """Return the ON CONFLICT-capable insert() for this connection's dialect."""
    name = conn.dialect.name
    try:
        return _INSERTS[name](table)
    except KeyError:
        raise NotImplementedError(f"ON CONFLICT upserts are not supported on {name!r}") from None


def _table(model):
    return getattr(model, "__table__", model)


def upsert(
    conn: Connection,
    model,
    rows: Iterable[Dict[str, Any]],
    index_elements: Sequence[str],
    skip_none: bool = True,
) -> int:
    """
    Insert rows, updating on natural-key conflict. Returns rows written.

    With skip_none, None values are dropped before the write, so a None
    never overwrites a stored column on update. Rows are grouped by their
    remaining key set so each statement is homogeneous.
    """
    table = _table(model)
    groups: Dict[tuple, List[Dict[str, Any]]] = {}
    for row in rows:
        if skip_none:
            row = {k: v for k, v in row.items() if v is not None or k in index_elements}
        groups.setdefault(tuple(sorted(row)), []).append(row)

    written = 0
    for keys, batch in groups.items():
        update_cols = [c for c in keys if c not in index_elements]
        stmt = dialect_insert(conn, table).values(batch)
        if update_cols:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(index_elements),
                set_={c: stmt.excluded[c] for c in update_cols},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(index_elements))
        conn.execute(stmt)
        written += len(batch)
    return written


def insert_ignore(
    conn: Connection,
    model,
    rows: Iterable[Dict[str, Any]],
    index_elements: Sequence[str],
) -> int:
    """Insert rows, leaving existing natural-key rows untouched."""
    batch = list(rows)
    if not batch:
        return 0
    stmt = dialect_insert(conn, _table(model)).values(batch)
    conn.execute(stmt.on_conflict_do_nothing(index_elements=list(index_elements)))
    return len(batch)
