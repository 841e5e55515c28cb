from pydantic import BaseModel, ConfigDict, Field

AI_CONCIERGE_FAMILY = "ai-concierge"


class RateLimitKey(BaseModel):
    """
    Identifies the bucket being throttled: one caller on one endpoint family.
    """
    user_id: str
    endpoint_family: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.endpoint_family}:{self.user_id}"


class RateLimitWindow(BaseModel):
    """
    Fixed window counter for a single key. Lives only in process memory.
    """
    window_started_at: float
    request_count: int = 0
    limit: int
    window_seconds: int

    @property
    def resets_at(self) -> float:
        return self.window_started_at + self.window_seconds

    def is_expired(self, now: float) -> bool:
        return now - self.window_started_at >= self.window_seconds

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "window_started_at": 1590000000.0,
                "request_count": 3,
                "limit": 5,
                "window_seconds": 60
            }
        }
    )


class RateLimitDecision(BaseModel):
    """
    Outcome of one admission check.
    """
    admitted: bool
    limit: int
    remaining: int
    retry_after_seconds: int = 0
    resets_at: float

    def to_throttle_response(self) -> "ThrottleResponse":
        return ThrottleResponse(
            retry_after_seconds=self.retry_after_seconds,
            limit=self.limit,
            remaining=self.remaining
        )


class ThrottleResponse(BaseModel):
    """
    Quota metadata shared by server and client. Serialized with camelCase keys.
    """
    retry_after_seconds: int = Field(default=0, ge=0, alias="retryAfterSeconds")
    limit: int
    remaining: int

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "retryAfterSeconds": 42,
                "limit": 5,
                "remaining": 0
            }
        }
    )
