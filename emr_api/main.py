"""FastAPI entrypoint for the EMR API Lambda.

This module builds the app, resolves the tenant for every protected request,
provides the health endpoint, and exposes a Mangum handler for API Gateway
proxy events.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException

from emr_api.database import DatabaseRuntime
from emr_api.dependencies import get_runtime
from emr_api.errors import EmrApiError
from emr_api.patient_routes import patientrouter
from emr_api.queue_routes import queuerouter
from emr_api.responses import apply_cors, error_response, json_response, preflight_response
from emr_api.settings import Settings, get_settings
from emr_api.soapnote_routes import soapnoterouter
from emr_api.tenancy import is_valid_schema_name

logger = logging.getLogger("emr_api")

HEALTHCHECK_PATH = "/healthcheck"


def extract_tenant_schema(event: Optional[dict], claim: str) -> Optional[str]:
    """Return the trimmed tenant claim from an API Gateway event, if usable."""
    authorizer = ((event or {}).get("requestContext") or {}).get("authorizer") or {}
    claims = authorizer.get("claims") or {}
    raw = claims.get(claim)
    if not isinstance(raw, str) or not raw.strip():
        logger.warning("Tenant claim %s missing or empty in authorizer claims", claim)
        return None
    tenant = raw.strip()
    if not is_valid_schema_name(tenant):
        logger.warning("Tenant claim %s is not a valid schema name: %r", claim, tenant)
        return None
    return tenant


def create_app(settings: Optional[Settings] = None, runtime: Optional[DatabaseRuntime] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger("emr_api").setLevel(settings.log_level.upper())

    app = FastAPI(title=settings.app_name, version="1.0.0")
    app.state.settings = settings
    app.state.runtime = runtime or DatabaseRuntime.from_settings(settings)
    origin = settings.cors_allow_origin

    @app.middleware("http")
    async def route_request(request: Request, call_next):
        method = request.method
        path = request.url.path
        logger.info("Received %s request for %s", method, path)

        if method == "OPTIONS":
            return preflight_response(origin)

        if path != HEALTHCHECK_PATH:
            tenant = extract_tenant_schema(request.scope.get("aws.event"), settings.tenant_claim)
            if tenant is None:
                return error_response(
                    400, "Bad Request: Tenant identifier missing or invalid in user token.", origin
                )
            request.state.tenant_schema = tenant

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("Unhandled error processing %s %s", method, path)
            return error_response(500, "Internal Server Error", origin, error=str(exc))
        logger.info("Returning response: status %s", response.status_code)
        return apply_cors(response, origin)

    @app.exception_handler(EmrApiError)
    async def handle_api_error(request: Request, exc: EmrApiError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.error)
        return json_response(exc.status_code, exc.to_body(), origin)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            logger.info("Path not found: %s %s", request.method, request.url.path)
            return error_response(404, "Not Found", origin, requestedPath=request.url.path)
        return error_response(exc.status_code, str(exc.detail), origin)

    @app.get(HEALTHCHECK_PATH)
    async def healthcheck(runtime: DatabaseRuntime = Depends(get_runtime)):
        await runtime.ensure_pool()
        db_ok = await runtime.ping()
        return {
            "status": "OK",
            "database_status": "OK" if db_ok else "Unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(patientrouter)
    app.include_router(queuerouter)
    app.include_router(soapnoterouter)
    return app


app = create_app()

# AWS Lambda handler
handler = Mangum(app, lifespan="off")
