"""
HTTP access to the concierge endpoint from the client side.

Every call resolves to one of four outcomes so callers never need to catch
transport exceptions themselves.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import ValidationError

from concierge.core.config import settings
from concierge.core.logging import get_logger
from concierge.domain.models.rate_limit import ThrottleResponse

logger = get_logger("client.api")


@dataclass
class Success:
    data: Dict[str, Any] = field(default_factory=dict)
    throttle: Optional[ThrottleResponse] = None


@dataclass
class RateLimited:
    throttle: ThrottleResponse


@dataclass
class AuthFailure:
    message: str = "Please sign in again to use the AI concierge."


@dataclass
class Failure:
    message: str
    retryable: bool = True
    status_code: Optional[int] = None


RequestOutcome = Union[Success, RateLimited, AuthFailure, Failure]


def _header_int(response: httpx.Response, name: str) -> Optional[int]:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def throttle_from_response(response: httpx.Response) -> ThrottleResponse:
    """
    Read retry metadata from a 429 body, falling back to the Retry-After header.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and "retryAfterSeconds" in body:
        try:
            return ThrottleResponse.model_validate({
                "retryAfterSeconds": body.get("retryAfterSeconds"),
                "limit": body.get("limit", 0),
                "remaining": body.get("remaining", 0),
            })
        except ValidationError:
            logger.warning("Malformed throttle body, falling back to headers")

    return ThrottleResponse(
        retry_after_seconds=max(0, _header_int(response, "Retry-After") or 0),
        limit=_header_int(response, "X-RateLimit-Limit") or 0,
        remaining=0,
    )


def quota_from_headers(response: httpx.Response) -> Optional[ThrottleResponse]:
    limit = _header_int(response, "X-RateLimit-Limit")
    remaining = _header_int(response, "X-RateLimit-Remaining")
    if limit is None or remaining is None:
        return None
    return ThrottleResponse(retry_after_seconds=0, limit=limit, remaining=remaining)


def classify_response(response: httpx.Response) -> RequestOutcome:
    if response.status_code == 429:
        return RateLimited(throttle=throttle_from_response(response))
    if response.status_code in (401, 403):
        return AuthFailure()
    if response.status_code >= 400:
        return Failure(
            message="Sorry, the AI concierge is unavailable right now. You may retry now.",
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError:
        data = {}
    return Success(data=data if isinstance(data, dict) else {"result": data}, throttle=quota_from_headers(response))


class ConciergeClient:
    """
    Thin async wrapper around ``POST {base_url}/ai/concierge``.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.token = token
        self.base_url = (base_url or settings.CONCIERGE_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CLIENT_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def ask(self, context: Optional[str] = None) -> RequestOutcome:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport
            ) as client:
                response = await client.post("/ai/concierge", json={"context": context}, headers=self._headers())
        except httpx.TimeoutException:
            logger.warning("Concierge request timed out")
            return Failure(message="The request timed out. You may retry now.")
        except httpx.HTTPError as e:
            logger.warning(f"Concierge request failed: {type(e).__name__}: {e}")
            return Failure(message="Network error. You may retry now.")

        return classify_response(response)
