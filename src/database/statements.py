"""
Dialect-native bulk write statements.

PostgreSQL in production, SQLite in tests. Both support
``INSERT .. ON CONFLICT`` with the same shape, so statements are built by
the matching dialect module for whichever engine the session is bound to.
"""

from typing import Any, Dict, Iterable, Iterator, List, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"ON CONFLICT writes not supported for dialect {dialect!r}") from None


def _uniform(model: Any, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Give every record the same keys; missing values take the column default."""
    keys: List[str] = []
    for record in records:
        keys.extend(k for k in record if k not in keys)
    if all(len(record) == len(keys) for record in records):
        return records

    fill = {}
    for name in keys:
        default = model.__table__.c[name].default
        fill[name] = default.arg if default is not None and default.is_scalar else None
    return [{k: record.get(k, fill[k]) for k in keys} for record in records]


def upsert_statement(
    session: AsyncSession,
    model: Any,
    records: List[Dict[str, Any]],
    key: Sequence[str],
):
    """INSERT .. ON CONFLICT (key) DO UPDATE every non-key column supplied."""
    insert = _insert_for(session)
    records = _uniform(model, records)
    stmt = insert(model).values(records)
    update_cols = [c for c in records[0] if c not in key and c != "id"]
    if not update_cols:
        return stmt.on_conflict_do_nothing(index_elements=list(key))
    return stmt.on_conflict_do_update(
        index_elements=list(key),
        set_={c: stmt.excluded[c] for c in update_cols},
    )


def insert_ignore_statement(
    session: AsyncSession,
    model: Any,
    records: List[Dict[str, Any]],
    key: Sequence[str],
):
    """INSERT .. ON CONFLICT (key) DO NOTHING"""
    insert = _insert_for(session)
    return insert(model).values(_uniform(model, records)).on_conflict_do_nothing(index_elements=list(key))


def chunked(records: Iterable[Dict[str, Any]], size: int) -> Iterator[List[Dict[str, Any]]]:
    """Yield lists of at most ``size`` records."""
    chunk: List[Dict[str, Any]] = []
    for record in records:
        chunk.append(record)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
