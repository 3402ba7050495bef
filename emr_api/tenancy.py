"""Per-request tenant scoping of pooled connections.

Each clinic owns one PostgreSQL schema. A borrowed connection is pointed at
the tenant schema (plus the shared schema) with ``SET search_path`` before any
query runs. Identifiers cannot be bound as query parameters, so the schema
name is checked against a strict pattern and then quoted as an identifier.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping, Optional, Tuple

import psycopg
from psycopg import sql

from emr_api.errors import InvalidTenantError, translate_database_error

logger = logging.getLogger("emr_api.tenancy")

SCHEMA_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_schema_name(name) -> bool:
    return isinstance(name, str) and bool(SCHEMA_NAME_RE.fullmatch(name))


def search_path_statement(schema: str, shared_schema: str = "public") -> sql.Composed:
    return sql.SQL("SET search_path TO {}, {}").format(
        sql.Identifier(schema), sql.Identifier(shared_schema)
    )


async def set_tenant_search_path(
    conn: psycopg.AsyncConnection, schema: str, *, shared_schema: str = "public"
) -> None:
    """Scope unqualified table names on ``conn`` to ``schema``."""
    if not is_valid_schema_name(schema):
        logger.error("Invalid tenant schema name provided: %r", schema)
        raise InvalidTenantError("Bad Request: Invalid tenant identifier.")
    await conn.execute(search_path_statement(schema, shared_schema))
    logger.debug("Search path set to %s, %s", schema, shared_schema)


@asynccontextmanager
async def tenant_session(
    runtime,
    schema: str,
    action: str,
    *,
    references: Optional[Mapping[str, Tuple[str, object]]] = None,
    foreign_key_status: int = 400,
    invalid_format_message: Optional[str] = None,
) -> AsyncIterator[psycopg.AsyncConnection]:
    """Borrow a connection scoped to ``schema`` for one operation.

    Database errors raised inside the block are translated into API errors
    described in terms of ``action``; the connection goes back to the pool
    whichever way the block exits.
    """
    try:
        async with runtime.connection() as conn:
            await set_tenant_search_path(
                conn, schema, shared_schema=runtime.settings.shared_schema
            )
            yield conn
    except psycopg.Error as exc:
        raise translate_database_error(
            exc,
            action=action,
            tenant=schema,
            references=references,
            foreign_key_status=foreign_key_status,
            invalid_format_message=invalid_format_message,
        ) from exc
