"""Uniform JSON responses with CORS headers attached."""

from typing import Any, Dict

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

ALLOWED_METHODS = "OPTIONS,POST,GET,PUT,DELETE"
ALLOWED_HEADERS = "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token"
PREFLIGHT_MAX_AGE = "86400"


def cors_headers(allow_origin: str = "*") -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
    }


def apply_cors(response: Response, allow_origin: str = "*") -> Response:
    for name, value in cors_headers(allow_origin).items():
        response.headers[name] = value
    return response


def preflight_response(allow_origin: str = "*") -> Response:
    headers = cors_headers(allow_origin)
    headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
    return Response(status_code=204, headers=headers)


def json_response(status_code: int, body: Any, allow_origin: str = "*") -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers=cors_headers(allow_origin),
    )


def error_response(status_code: int, message: str, allow_origin: str = "*", **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"message": message}
    body.update({key: value for key, value in extra.items() if value is not None})
    return json_response(status_code, body, allow_origin)
