"""Dialect-aware INSERT ... ON CONFLICT helpers.

Single-statement upserts are what keep concurrent units of work from
racing each other on the same row.
"""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from behavioral_engine.common.exceptions import ConfigurationError


def _insert_factory(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert
    if dialect == "postgresql":
        return postgresql.insert
    raise ConfigurationError(
        f"Unsupported database dialect for upserts: {dialect}",
        details={"dialect": dialect},
    )


def upsert(
    session: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    update_values: Dict[str, Any],
    conflict_where: Optional[Any] = None,
    returning: Optional[Iterable[Any]] = None,
):
    """Insert ``values`` or, on conflict, apply ``update_values``.

    Args:
        session: Open ORM session (the statement joins its transaction)
        model: Mapped class
        values: Column values for the insert
        conflict_columns: Columns of the unique index that may conflict
        update_values: Column values (or SQL expressions) for the update
        conflict_where: Predicate of a partial unique index
        returning: Columns to return

    Returns:
        The first returned row, or None when nothing is returned.
    """
    insert = _insert_factory(session)
    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        index_where=conflict_where,
        set_=update_values,
    )
    if returning is not None:
        stmt = stmt.returning(*returning)
        return session.execute(stmt).first()
    session.execute(stmt)
    return None
