from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_workspace_id, set_workspace_id
from app.core.config import get_settings


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    user_id: str | None
    workspace_id: str


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        workspace_id = request.headers.get("x-workspace-id") or get_settings().default_workspace_id
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            user_id=None,
            workspace_id=workspace_id,
        )
        token = set_workspace_id(workspace_id)
        try:
            response = await call_next(request)
        finally:
            reset_workspace_id(token)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
