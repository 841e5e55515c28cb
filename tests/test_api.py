import httpx
import pytest
from fastapi.testclient import TestClient
from fastapi import status
from prometheus_client import REGISTRY

from concierge.auth.auth_utils import create_token
from concierge.core.config import settings
from concierge.main import app
from concierge.services.ai_provider import AIProvider
from concierge.services.providers import get_ai_provider

client = TestClient(app)

CONCIERGE_URL = f"{settings.API_PREFIX}/ai/concierge"
QUOTA_URL = f"{settings.API_PREFIX}/ai/quota"
LIMIT = settings.AI_RATE_LIMIT_MAX_REQUESTS
WINDOW = settings.AI_RATE_LIMIT_WINDOW_SECONDS


def use_provider(handler):
    provider = AIProvider(url="http://provider.test/ask", timeout=1.0, transport=httpx.MockTransport(handler))
    app.dependency_overrides[get_ai_provider] = lambda: provider


def test_concierge_returns_suggestions_and_quota(limiter, auth_headers):
    resp = client.post(CONCIERGE_URL, json={"context": "Dashboard"}, headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["source"] == "fallback"
    assert len(data["suggestions"]) == 3
    assert data["quota"] == {"retryAfterSeconds": 0, "limit": LIMIT, "remaining": LIMIT - 1}
    assert resp.headers["X-RateLimit-Limit"] == str(LIMIT)
    assert resp.headers["X-RateLimit-Remaining"] == str(LIMIT - 1)


def test_rapid_calls_are_throttled(limiter, auth_headers):
    """
    limit=5 per 60s: five calls admitted with remaining 4..0, sixth gets 429
    """
    remaining = []
    for _ in range(LIMIT):
        resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
        assert resp.status_code == 200
        remaining.append(resp.json()["quota"]["remaining"])
    assert remaining == list(range(LIMIT - 1, -1, -1))

    resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    assert resp.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    body = resp.json()
    assert body["error"] == "rate_limited"
    assert body["retryAfterSeconds"] == WINDOW
    assert body["limit"] == LIMIT
    assert body["remaining"] == 0
    assert resp.headers["Retry-After"] == str(WINDOW)


def test_window_rollover_admits_again(limiter, clock, auth_headers):
    for _ in range(LIMIT + 1):
        client.post(CONCIERGE_URL, json={}, headers=auth_headers)

    clock.advance(WINDOW)
    resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["quota"]["remaining"] == LIMIT - 1


def test_missing_identity_fails_closed(limiter):
    resp = client.post(CONCIERGE_URL, json={})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["success"] is False
    assert len(limiter) == 0


def test_invalid_token_fails_closed(limiter):
    resp = client.post(CONCIERGE_URL, json={}, headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert "Invalid token" in resp.json()["message"]
    assert len(limiter) == 0


def test_token_without_subject_fails_closed(limiter):
    token = create_token({"role": "member"})
    resp = client.post(CONCIERGE_URL, json={}, headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED


def test_users_have_separate_quotas(limiter, auth_headers):
    for _ in range(LIMIT):
        client.post(CONCIERGE_URL, json={}, headers=auth_headers)

    other = {"Authorization": f"Bearer {create_token({'sub': 'user-456'})}"}
    assert client.post(CONCIERGE_URL, json={}, headers=auth_headers).status_code == 429
    assert client.post(CONCIERGE_URL, json={}, headers=other).status_code == 200


def test_quota_endpoint_does_not_consume(limiter, auth_headers):
    client.post(CONCIERGE_URL, json={}, headers=auth_headers)

    for _ in range(3):
        resp = client.get(QUOTA_URL, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"retryAfterSeconds": 0, "limit": LIMIT, "remaining": LIMIT - 1}


def test_quota_endpoint_requires_identity(limiter):
    assert client.get(QUOTA_URL).status_code == status.HTTP_401_UNAUTHORIZED


def test_provider_text_is_parsed(limiter, auth_headers, clear_overrides):
    text = "Here are some ideas:\n1. Finish the forklift course you started\n2) Apply to the warehouse role in Dubbo\nok\n"
    use_provider(lambda request: httpx.Response(200, json={"text": text}))

    resp = client.post(CONCIERGE_URL, json={"context": "TAFE dashboard"}, headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["source"] == "ai"
    assert data["suggestions"] == [
        "Here are some ideas:",
        "Finish the forklift course you started",
        "Apply to the warehouse role in Dubbo",
    ]


def test_provider_failure_is_503(limiter, auth_headers, clear_overrides):
    use_provider(lambda request: httpx.Response(500, json={"error": "boom"}))

    resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    assert resp.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert resp.json()["details"]["service"] == "ai-provider"


def test_provider_timeout_is_504(limiter, auth_headers, clear_overrides):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)
    use_provider(handler)

    resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    assert resp.status_code == status.HTTP_504_GATEWAY_TIMEOUT


def test_provider_rate_limit_uses_throttle_contract(limiter, auth_headers, clear_overrides):
    use_provider(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))

    resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    assert resp.status_code == 429
    assert resp.json()["error"] == "rate_limited"
    assert resp.json()["retryAfterSeconds"] == 7
    assert resp.headers["Retry-After"] == "7"


def test_provider_rate_limit_without_retry_after(limiter, auth_headers, clear_overrides):
    """
    A bare upstream 429 still tells the caller to wait and reports the local limit
    """
    use_provider(lambda request: httpx.Response(429))

    resp = client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    assert resp.status_code == 429
    body = resp.json()
    assert body["retryAfterSeconds"] == settings.AI_PROVIDER_RETRY_AFTER_SECONDS
    assert body["retryAfterSeconds"] > 0
    assert body["limit"] == LIMIT
    assert body["remaining"] == 0
    assert "wait 0 seconds" not in body["message"]
    assert resp.headers["Retry-After"] == str(body["retryAfterSeconds"])
    assert resp.headers["X-RateLimit-Limit"] == str(LIMIT)
    assert resp.headers["X-RateLimit-Remaining"] == "0"


def test_rejections_are_counted_in_metrics(limiter, auth_headers):
    def count(code):
        labels = {"method": "POST", "endpoint": CONCIERGE_URL, "http_status": str(code)}
        return REGISTRY.get_sample_value("http_requests_total", labels) or 0.0

    before = {code: count(code) for code in (200, 401, 429)}
    for _ in range(LIMIT + 1):
        client.post(CONCIERGE_URL, json={}, headers=auth_headers)
    client.post(CONCIERGE_URL, json={})

    assert count(200) - before[200] == LIMIT
    assert count(429) - before[429] == 1
    assert count(401) - before[401] == 1


def test_health_endpoints_are_not_throttled(limiter):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").json()["status"] == "ready"
    assert client.get("/metrics").status_code == 200
