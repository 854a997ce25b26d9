"""
Append-only enforcement.

Two layers guard every append-only table:

- Database triggers that abort any UPDATE or DELETE (SQLite ``RAISE(ABORT)``,
  PostgreSQL plpgsql function). These also stop bulk statements that bypass
  the ORM.
- ORM mapper events that raise ``ImmutabilityError`` before a flush would
  emit an UPDATE or DELETE for a loaded instance.
"""

from typing import List, Type

from sqlalchemy import DDL, event

from ..lifecycle.errors import ImmutabilityError
from .base import Base

APPEND_ONLY_FUNCTION = "deny_append_only_mutation"

APPEND_ONLY_TABLES: List[str] = []

_pg_function = DDL(
    f"""
    CREATE OR REPLACE FUNCTION {APPEND_ONLY_FUNCTION}() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION USING MESSAGE = TG_TABLE_NAME || ' is append-only';
    END;
    $$ LANGUAGE plpgsql
    """
)
event.listen(Base.metadata, "before_create", _pg_function.execute_if(dialect="postgresql"))


def sqlite_trigger_statements(table: str) -> List[str]:
    """Return the SQLite trigger DDL denying UPDATE and DELETE on ``table``."""
    return [
        f"CREATE TRIGGER IF NOT EXISTS trg_{table}_no_{op.lower()} "
        f"BEFORE {op} ON {table} "
        f"BEGIN SELECT RAISE(ABORT, '{table} is append-only'); END"
        for op in ("UPDATE", "DELETE")
    ]


def postgresql_trigger_statement(table: str) -> str:
    """Return the PostgreSQL trigger DDL denying UPDATE and DELETE on ``table``."""
    return (
        f"CREATE TRIGGER trg_{table}_append_only "
        f"BEFORE UPDATE OR DELETE ON {table} "
        f"FOR EACH ROW EXECUTE FUNCTION {APPEND_ONLY_FUNCTION}()"
    )


def _deny_mutation(mapper, connection, target) -> None:
    identity = mapper.primary_key_from_instance(target)
    raise ImmutabilityError(mapper.class_.__name__, identity[0] if len(identity) == 1 else identity)


def register_append_only(model: Type[Base]) -> None:
    """Install trigger DDL and ORM guards for an append-only model."""
    table = model.__table__
    APPEND_ONLY_TABLES.append(table.name)

    for statement in sqlite_trigger_statements(table.name):
        event.listen(table, "after_create", DDL(statement).execute_if(dialect="sqlite"))
    event.listen(
        table,
        "after_create",
        DDL(postgresql_trigger_statement(table.name)).execute_if(dialect="postgresql"),
    )

    event.listen(model, "before_update", _deny_mutation)
    event.listen(model, "before_delete", _deny_mutation)
