from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from concierge.domain.models.rate_limit import ThrottleResponse


class Identity(BaseModel):
    """Authenticated caller, resolved from the bearer token"""
    user_id: str
    role: Optional[str] = None


class ConciergeRequest(BaseModel):
    """Body of a concierge call"""
    context: Optional[str] = Field(default=None, max_length=2000)


class ConciergeResponse(BaseModel):
    """Suggestions returned by the concierge"""
    ok: bool = True
    suggestions: List[str] = []
    source: str = "ai"
    quota: Optional[ThrottleResponse] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ok": True,
                "suggestions": ["Update your resume headline to mention your forklift licence"],
                "source": "ai",
                "quota": {"retryAfterSeconds": 0, "limit": 5, "remaining": 4}
            }
        }
    )
