from fastapi import Request, status
from fastapi.responses import JSONResponse
import traceback
from typing import Dict, Any, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from concierge.auth.auth_utils import identity_from_authorization
from concierge.core.exceptions import AppBaseException, RateLimitException
from concierge.core.logging import logger
from concierge.core.rate_limit import InMemoryRateLimiter, get_rate_limiter
from concierge.domain.models.rate_limit import RateLimitDecision, RateLimitKey, ThrottleResponse

RATE_LIMITED_MESSAGE = "You're going a bit fast. Please wait {seconds} seconds and try again."


def rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(max(0, decision.remaining)),
        "X-RateLimit-Reset": str(int(decision.resets_at)),
    }
    if not decision.admitted:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def throttled_response(throttle: ThrottleResponse, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """
    Build the 429 body shared by the limiter and upstream rejections.
    """
    content = {
        "error": "rate_limited",
        "message": RATE_LIMITED_MESSAGE.format(seconds=throttle.retry_after_seconds),
        **throttle.model_dump(by_alias=True),
    }
    response_headers = {"Retry-After": str(throttle.retry_after_seconds)}
    response_headers.update(headers or {})
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=content,
        headers=response_headers
    )


async def exception_handler(request: Request, exception: Exception) -> JSONResponse:
    """
    Global exception handler for all endpoints.
    """
    if isinstance(exception, RateLimitException):
        logger.warning(
            f"Upstream rate limit on {request.method} {request.url.path}: {exception.message}",
            extra={"retry_after": exception.retry_after}
        )
        decision: Optional[RateLimitDecision] = getattr(request.state, "rate_limit", None)
        limit = exception.limit or (decision.limit if decision is not None else 0)
        throttle = ThrottleResponse(
            retry_after_seconds=max(1, exception.retry_after),
            limit=limit,
            remaining=0
        )
        headers = {"X-RateLimit-Limit": str(limit), "X-RateLimit-Remaining": "0"}
        if decision is not None:
            headers["X-RateLimit-Reset"] = str(int(decision.resets_at))
        return throttled_response(throttle, headers)

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_content: Dict[str, Any] = {
        "success": False,
        "message": "An unexpected error occurred",
        "details": {}
    }

    path = request.url.path
    method = request.method
    client_host = request.client.host if request.client else "unknown"
    headers = None

    if isinstance(exception, AppBaseException):
        status_code = exception.status_code
        error_content["message"] = exception.message
        error_content["details"] = exception.details
        if status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}

        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"Error processing request {method} {path} from {client_host}: "
            f"{exception.message}",
            extra={
                "status_code": status_code,
                "details": exception.details,
                "request_path": path,
                "request_method": method,
                "client_host": client_host
            }
        )
    else:
        exception_type = type(exception).__name__
        exception_str = str(exception)

        error_content["message"] = f"Unexpected error: {exception_type}"
        error_content["details"]["error"] = exception_str

        logger.error(
            f"Unhandled exception processing request {method} {path} from {client_host}: "
            f"{exception_type}: {exception_str}",
            extra={
                "status_code": status_code,
                "exception_type": exception_type,
                "stacktrace": traceback.format_exc(),
                "request_path": path,
                "request_method": method,
                "client_host": client_host
            }
        )

    return JSONResponse(
        status_code=status_code,
        content=error_content,
        headers=headers
    )


class ErrorHandlingMiddleware:
    """
    Middleware for global exception handling across the application.
    """
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            response = await exception_handler(request, exc)
            await response(scope, receive, send)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Admission control for throttled endpoint families.

    Requests without a valid identity are rejected before the limiter is
    consulted. Admitted requests carry the decision on ``request.state``.
    """
    def __init__(self, app: ASGIApp, rate_limiter: Optional[InMemoryRateLimiter] = None):
        super().__init__(app)
        self._rate_limiter = rate_limiter

    @property
    def rate_limiter(self) -> InMemoryRateLimiter:
        if self._rate_limiter is not None:
            return self._rate_limiter
        return get_rate_limiter()

    async def dispatch(self, request: Request, call_next):
        if request.method != "POST":
            return await call_next(request)

        rate_limiter = self.rate_limiter
        family = rate_limiter.family_for_path(request.url.path)
        if family is None:
            return await call_next(request)

        try:
            identity = identity_from_authorization(request.headers.get("Authorization"))
        except AppBaseException as exc:
            return await exception_handler(request, exc)

        key = RateLimitKey(user_id=identity.user_id, endpoint_family=family.name)
        decision = rate_limiter.check_and_consume(key)

        if not decision.admitted:
            return throttled_response(decision.to_throttle_response(), rate_limit_headers(decision))

        request.state.identity = identity
        request.state.rate_limit = decision

        response = await call_next(request)
        # Headers already set by an upstream throttle response win.
        for name, value in rate_limit_headers(decision).items():
            response.headers.setdefault(name, value)
        return response
