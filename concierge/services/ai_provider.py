# concierge/services/ai_provider.py
"""
Upstream AI provider access for the concierge.
"""
import re
import time
from typing import List, Optional, Tuple

import httpx

from concierge.core.config import settings
from concierge.core.exceptions import ExternalServiceException, RateLimitException, UpstreamTimeoutException
from concierge.core.logging import get_logger
from concierge.core.metrics import AI_PROVIDER_LATENCY
from concierge.domain.models.concierge import Identity

logger = get_logger("ai_provider")

SERVICE_NAME = "ai-provider"
MAX_SUGGESTIONS = 5
MIN_SUGGESTION_LENGTH = 10
NUMBERING_PATTERN = re.compile(r"^\d+[.)\s]+")

FALLBACK_SUGGESTIONS = [
    "Review your profile summary so employers can see your strengths at a glance.",
    "Browse jobs that match your saved skills and apply to one this week.",
    "Book a short session with a mentor to talk through your next career step.",
]

PROMPT_TEMPLATE = (
    "You are an AI career concierge. Be practical, supportive and action-oriented.\n"
    "CURRENT QUERY CONTEXT: {context}\n"
    "Provide 3-5 personalised, actionable suggestions, each on a new line starting with a number."
)


def build_prompt(context: Optional[str]) -> str:
    return PROMPT_TEMPLATE.format(context=context or "General dashboard visit")


def parse_suggestions(text: str) -> List[str]:
    """Split provider text into at most five numbered-line suggestions."""
    suggestions = []
    for line in text.split("\n"):
        if len(line.strip()) <= MIN_SUGGESTION_LENGTH:
            continue
        cleaned = NUMBERING_PATTERN.sub("", line.strip()).strip()
        if cleaned:
            suggestions.append(cleaned)
    return suggestions[:MAX_SUGGESTIONS]


def _retry_after(response: httpx.Response) -> int:
    # Missing, dated or non-positive values fall back to the configured delay.
    fallback = settings.AI_PROVIDER_RETRY_AFTER_SECONDS
    try:
        seconds = int(response.headers["Retry-After"])
    except (KeyError, ValueError):
        return fallback
    return seconds if seconds > 0 else fallback


class AIProvider:
    """
    Calls the configured upstream provider over HTTP.
    Without a provider URL, static suggestions are returned instead.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url if url is not None else settings.AI_PROVIDER_URL
        self.timeout = timeout if timeout is not None else settings.AI_PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    async def ask(self, prompt: str, identity: Identity) -> Tuple[str, str]:
        """
        Returns (text, source). Source is "ai" or "fallback".

        Raises:
            RateLimitException: If the provider itself throttles us
            UpstreamTimeoutException: If the provider does not answer in time
            ExternalServiceException: For any other provider failure
        """
        if not self.url:
            return "\n".join(f"{i}. {s}" for i, s in enumerate(FALLBACK_SUGGESTIONS, 1)), "fallback"

        start_time = time.time()
        outcome = "error"
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
                response = await client.post(self.url, json={"prompt": prompt, "user_id": identity.user_id})

            if response.status_code == 429:
                outcome = "rate_limited"
                raise RateLimitException(
                    message="AI provider is rate limiting requests",
                    retry_after=_retry_after(response)
                )
            if response.status_code >= 400:
                raise ExternalServiceException(
                    SERVICE_NAME,
                    details={"status_code": response.status_code}
                )

            text = response.json().get("text") or ""
            outcome = "ok"
            return text, "ai"
        except httpx.TimeoutException:
            outcome = "timeout"
            logger.error(f"AI provider timed out after {self.timeout}s")
            raise UpstreamTimeoutException(SERVICE_NAME, self.timeout)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"AI provider request failed: {type(e).__name__}: {e}")
            raise ExternalServiceException(SERVICE_NAME, details={"error": str(e)})
        finally:
            AI_PROVIDER_LATENCY.labels(outcome=outcome).observe(time.time() - start_time)


async def get_concierge_suggestions(provider: AIProvider, identity: Identity, context: Optional[str]) -> Tuple[List[str], str]:
    text, source = await provider.ask(build_prompt(context), identity)
    suggestions = parse_suggestions(text)
    if not suggestions and text.strip():
        suggestions = [text.strip()]
    logger.info(f"Concierge answered {identity.user_id} with {len(suggestions)} suggestions from {source}")
    return suggestions, source
