"""FastAPI dependencies shared by the operation routers."""

from fastapi import Request

from emr_api.database import DatabaseRuntime
from emr_api.errors import InvalidTenantError


def get_runtime(request: Request) -> DatabaseRuntime:
    return request.app.state.runtime


def get_tenant_schema(request: Request) -> str:
    """Tenant schema extracted from the token claims by the router middleware."""
    tenant = getattr(request.state, "tenant_schema", None)
    if not tenant:
        raise InvalidTenantError("Bad Request: Tenant identifier missing or invalid in user token.")
    return tenant
