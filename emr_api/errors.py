"""Error taxonomy for the EMR API and translation of PostgreSQL failures.

Every error a handler can surface is an :class:`EmrApiError` carrying the HTTP
status, a user-facing ``message`` and an optional diagnostic ``error`` string.
Database exceptions are classified by SQLSTATE in :func:`translate_database_error`.
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

import psycopg

logger = logging.getLogger("emr_api.errors")

# SQLSTATE codes we classify explicitly.
INVALID_SCHEMA_NAME = "3F000"
UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"
FOREIGN_KEY_VIOLATION = "23503"
UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"
INVALID_TEXT_REPRESENTATION = "22P02"
INVALID_DATETIME_FORMAT = "22007"
DATETIME_FIELD_OVERFLOW = "22008"
INVALID_PARAMETER_VALUE = "22023"

_INVALID_VALUE_CODES = {
    INVALID_TEXT_REPRESENTATION,
    INVALID_DATETIME_FORMAT,
    DATETIME_FIELD_OVERFLOW,
    INVALID_PARAMETER_VALUE,
    NOT_NULL_VIOLATION,
    CHECK_VIOLATION,
}


class EmrApiError(Exception):
    """Base class for errors rendered as JSON API responses."""

    status_code = 500

    def __init__(self, message: str, *, error: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, str]:
        body = {"message": self.message}
        if self.error:
            body["error"] = self.error
        return body


class BadRequestError(EmrApiError):
    status_code = 400


class InvalidTenantError(BadRequestError):
    """The tenant claim is missing or is not a safe schema identifier."""


class NotFoundError(EmrApiError):
    status_code = 404


class TenantSchemaNotFoundError(NotFoundError):
    """The tenant's schema (or its tables) has not been provisioned."""


class ConflictError(EmrApiError):
    status_code = 409


class DatabaseError(EmrApiError):
    status_code = 500


class DatabaseUnavailableError(DatabaseError):
    """The connection pool could not be created or validated."""


class CredentialError(Exception):
    """Base class for Secrets Manager lookup failures."""


class CredentialResolutionError(CredentialError):
    """No secret could be located for the database cluster."""


class CredentialRetrievalError(CredentialError):
    """The secret exists but its value could not be fetched or parsed."""


def translate_database_error(
    exc: psycopg.Error,
    *,
    action: str,
    tenant: str,
    references: Optional[Mapping[str, Tuple[str, object]]] = None,
    foreign_key_status: int = 400,
    invalid_format_message: Optional[str] = None,
) -> EmrApiError:
    """Map a psycopg error raised while performing ``action`` to an API error.

    ``references`` maps foreign-key constraint names to the request field and
    value that populated them, so violations can name the offending reference.
    """
    code = exc.sqlstate
    diag = exc.diag
    detail = diag.message_detail or str(exc)
    logger.error(
        "Database error during %s for tenant %s: sqlstate=%s constraint=%s",
        action,
        tenant,
        code,
        diag.constraint_name,
    )

    if code in (INVALID_SCHEMA_NAME, UNDEFINED_TABLE):
        return TenantSchemaNotFoundError(f"Tenant schema '{tenant}' not found.", error=str(exc))

    if code == FOREIGN_KEY_VIOLATION:
        if foreign_key_status == 409:
            return ConflictError(
                f"Conflict: Cannot {action} because related records exist.", error=detail
            )
        field, value = (references or {}).get(diag.constraint_name, ("related entity", None))
        if value is None:
            message = f"Bad Request: Invalid {field} provided. It does not exist."
        else:
            message = f"Bad Request: Invalid {field} provided ({value}). It does not exist."
        return BadRequestError(message, error=detail)

    if code == UNIQUE_VIOLATION:
        return ConflictError("Conflict: Data violates a unique constraint.", error=detail)

    if code in _INVALID_VALUE_CODES:
        return BadRequestError(
            invalid_format_message or "Bad Request: Invalid data format provided.",
            error=str(exc),
        )

    if code == UNDEFINED_COLUMN:
        return BadRequestError("Bad Request: Invalid field or filter parameter used.", error=str(exc))

    return DatabaseError(f"Internal Server Error: Could not {action}.", error=str(exc))
