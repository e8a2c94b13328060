"""Tests for the enrichment HTTP client."""

import asyncio
import json

import httpx
import pytest

from roamdex.engine.analyzer import TextAnalyzer
from roamdex.engine.config import EnrichmentConfig
from roamdex.engine.enrichment import EnrichmentClient, EnrichmentResponse
from roamdex.engine.error_handling import ServiceState


BASE_URL = "http://enrich.test/functions/v1"


def make_client(handler, **config):
    config.setdefault("base_url", BASE_URL)
    return EnrichmentClient(
        EnrichmentConfig(enabled=True, **config),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_enhance_success():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={
            "success": True,
            "searchTerms": ["ramen", "noodles"],
            "filters": {"location": "Tokyo"},
            "suggestions": ["Try searching food"],
        })

    client = make_client(handler)
    context = [{"id": str(i)} for i in range(5)]
    response = await client.enhance("late night noodle places", context)

    assert not response.failed
    assert response.search_terms == ["ramen", "noodles"]
    assert response.filters == {"location": "Tokyo"}
    assert response.suggestions == ["Try searching food"]

    sent = requests[0]
    assert sent.url == f"{BASE_URL}/ai-search"
    body = json.loads(sent.content)
    assert body["query"] == "late night noodle places"
    assert len(body["context"]) == 3


@pytest.mark.asyncio
async def test_api_key_header():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"success": True, "searchTerms": []})

    await make_client(handler, api_key="secret").enhance("query text here")
    assert seen["auth"] == "Bearer secret"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"error": "boom", "fallback": {"searchTerms": ["x"]}}),
    httpx.Response(200, content=b"not json"),
    httpx.Response(200, json={"success": False, "error": "model unavailable"}),
    httpx.Response(200, json={"success": True, "searchTerms": "ramen"}),
    httpx.Response(200, json=["ramen"]),
])
async def test_enhance_falls_back(response):
    client = make_client(lambda request: response)

    result = await client.enhance("cheap eats in osaka")

    assert result.failed
    assert result.search_terms == ["cheap eats in osaka"]
    assert result.filters == {}
    assert result.suggestions == []


@pytest.mark.asyncio
async def test_enhance_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_client(handler).enhance("museum tickets paris")

    assert result.failed
    assert result.to_dict() == {"searchTerms": ["museum tickets paris"], "filters": {}, "suggestions": []}


@pytest.mark.asyncio
async def test_enhance_is_bounded_by_timeout():
    async def slow_handler(request):
        await asyncio.sleep(1.0)
        return httpx.Response(200, json={"success": True, "searchTerms": ["late"]})

    client = make_client(slow_handler, timeout_s=0.05)
    result = await client.enhance("something slow to answer")

    assert result.failed
    assert result.search_terms == ["something slow to answer"]


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    client = make_client(handler, failure_threshold=2, recovery_timeout_s=60)

    for _ in range(2):
        assert (await client.enhance("broken service query")).failed
    assert client.breaker.health.state == ServiceState.CIRCUIT_OPEN

    result = await client.enhance("broken service query")
    assert result.failed
    assert len(calls) == 2
    assert client.health()["state"] == "circuit_open"


@pytest.mark.asyncio
async def test_circuit_recovers():
    responses = [httpx.Response(503), httpx.Response(200, json={"success": True, "searchTerms": ["ok"]})]

    client = make_client(lambda request: responses.pop(0), failure_threshold=1, recovery_timeout_s=0)

    assert (await client.enhance("flaky service query")).failed
    assert client.breaker.is_open

    result = await client.enhance("flaky service query")
    assert not result.failed
    assert result.search_terms == ["ok"]
    assert not client.breaker.is_open


@pytest.mark.asyncio
async def test_suggest_tags_remote():
    def handler(request):
        body = json.loads(request.content)
        assert request.url.path.endswith("/smart-suggestions")
        assert body == {"input": "Sunset at the beach", "type": "auto-tag", "context": {"type": "journal"}}
        return httpx.Response(200, json={"success": True, "result": ["beach", "sunset"]})

    tags = await make_client(handler).suggest_tags("Sunset at the beach", "journal")
    assert tags == ["beach", "sunset"]


@pytest.mark.asyncio
async def test_suggest_tags_falls_back_to_local():
    text = "Visited an ancient temple museum in the mountains"
    client = make_client(lambda request: httpx.Response(500))

    tags = await client.suggest_tags(text, "journal")

    assert tags == TextAnalyzer().generate_tags(text, "journal")


def test_fallback_response():
    response = EnrichmentResponse.fallback("dinner in rome")
    assert response.failed
    assert response.to_dict() == {"searchTerms": ["dinner in rome"], "filters": {}, "suggestions": []}
