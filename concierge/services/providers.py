# concierge/services/providers.py
"""
Service provider module for dependency injection.
"""
from concierge.core.rate_limit import InMemoryRateLimiter, get_rate_limiter
from concierge.services.ai_provider import AIProvider

_ai_provider = None

def get_ai_provider() -> AIProvider:
    global _ai_provider
    if _ai_provider is None:
        _ai_provider = AIProvider()
    return _ai_provider

def get_rate_limiter_service() -> InMemoryRateLimiter:
    return get_rate_limiter()
