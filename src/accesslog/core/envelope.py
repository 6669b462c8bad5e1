from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from accesslog.core.errors import AccessLogError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def envelope(data: Any = None, error: dict | None = None) -> dict:
    return {
        "success": error is None,
        "data": jsonable_encoder(data) if data is not None else None,
        "error": error,
        "timestamp": _now(),
    }


def ok(data: Any = None, status_code: int = 200, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(envelope(data), status_code=status_code, headers=headers)


def error_response(err: AccessLogError, headers: dict | None = None, data: Any = None) -> JSONResponse:
    return JSONResponse(
        envelope(data, error=jsonable_encoder(err.to_dict())),
        status_code=err.status_code,
        headers=headers,
    )
