import re
import uuid
from dataclasses import dataclass, field

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from accesslog.models.application import ApplicationSnapshot

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


@dataclass
class RequestScope:
    """Per-request state shared by the pipeline stages and the handler."""

    request_id: str
    client_ip: str | None = None
    application: ApplicationSnapshot | None = None
    # extra headers for whatever response ends up being sent
    response_headers: dict[str, str] = field(default_factory=dict)

    @property
    def app_id(self) -> str | None:
        return self.application.app_id if self.application else None


def get_scope(request: Request) -> RequestScope:
    scope = getattr(request.state, "scope", None)
    if scope is None:
        scope = RequestScope(request_id=uuid.uuid4().hex)
        request.state.scope = scope
        request.state.request_id = scope.request_id
    return scope


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        inbound = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = inbound if _REQUEST_ID_RE.match(inbound) else uuid.uuid4().hex

        scope = RequestScope(request_id=request_id)
        request.state.request_id = request_id
        request.state.scope = scope

        response = await call_next(request)
        for name, value in scope.response_headers.items():
            if name not in response.headers:
                response.headers[name] = value
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
