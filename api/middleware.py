"""Request-scoped middleware for API requests."""

from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.user_context import set_current_user_id, clear_current_user_id

ACTING_USER_HEADER = "X-Acting-User-Id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ActingUserMiddleware(BaseHTTPMiddleware):
    """
    Puts the acting staff member into the user context.

    The upstream gateway authenticates the caller and forwards their id in
    X-Acting-User-Id. The header is optional; when present it must be a
    positive integer. Context is always cleared after the request.
    """

    async def dispatch(self, request: Request, call_next):
        raw = request.headers.get(ACTING_USER_HEADER)
        user_id = None

        if raw is not None:
            try:
                user_id = int(raw)
            except ValueError:
                user_id = 0
            if user_id < 1:
                return JSONResponse(
                    status_code=400,
                    content=error_response(
                        ErrorCodes.INVALID_REQUEST,
                        f"{ACTING_USER_HEADER} must be a positive integer",
                        getattr(request.state, "request_id", None),
                    ).model_dump(mode="json"),
                )

        request.state.acting_user_id = user_id
        if user_id is not None:
            set_current_user_id(user_id)

        try:
            return await call_next(request)
        finally:
            clear_current_user_id()
