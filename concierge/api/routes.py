from fastapi import APIRouter, Depends, Request

from concierge.auth.auth_utils import get_current_identity
from concierge.core.rate_limit import AI_CONCIERGE_FAMILY, InMemoryRateLimiter
from concierge.domain.models.concierge import ConciergeRequest, ConciergeResponse, Identity
from concierge.domain.models.rate_limit import RateLimitKey, ThrottleResponse
from concierge.services.ai_provider import AIProvider, get_concierge_suggestions
from concierge.services.providers import get_ai_provider, get_rate_limiter_service

router = APIRouter()

@router.post("/ai/concierge", response_model=ConciergeResponse)
async def ask_concierge(
    request: Request,
    body: ConciergeRequest,
    identity: Identity = Depends(get_current_identity),
    provider: AIProvider = Depends(get_ai_provider)
):
    """
    Personalised suggestions from the AI concierge.
    Admission is decided by the rate limit middleware before this runs.
    """
    suggestions, source = await get_concierge_suggestions(provider, identity, body.context)

    decision = getattr(request.state, "rate_limit", None)
    quota = decision.to_throttle_response() if decision is not None else None

    return ConciergeResponse(ok=True, suggestions=suggestions, source=source, quota=quota)

@router.get("/ai/quota", response_model=ThrottleResponse)
async def get_concierge_quota(
    identity: Identity = Depends(get_current_identity),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter_service)
):
    """
    Current concierge quota for the caller. Does not consume a request.
    """
    key = RateLimitKey(user_id=identity.user_id, endpoint_family=AI_CONCIERGE_FAMILY)
    return rate_limiter.peek(key).to_throttle_response()
