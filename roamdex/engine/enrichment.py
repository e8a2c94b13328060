"""Client for the optional remote query-enrichment service.

The service sits behind two JSON endpoints:

- ``POST {base_url}/ai-search`` with ``{query, context}`` answers
  ``{success, searchTerms, filters, suggestions}``
- ``POST {base_url}/smart-suggestions`` with ``{input, type, context}``
  answers ``{success, result}``

Neither call ever raises to the caller. Failures (timeouts, non-2xx,
malformed JSON, open circuit) degrade to a local fallback.
"""

import asyncio
from typing import List, Dict, Any, Optional, Callable
from dataclasses import dataclass, field

import httpx
from loguru import logger

from .analyzer import TextAnalyzer
from .config import EnrichmentConfig
from .error_handling import CircuitBreaker, CircuitOpenError


class EnrichmentError(Exception):
    """The enrichment service answered with something unusable."""


@dataclass
class EnrichmentResponse:
    search_terms: List[str]
    filters: Dict[str, Any] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def fallback(cls, query: str, error: Optional[str] = None) -> "EnrichmentResponse":
        """Stand-in used whenever the service can't be used: search the query as-is."""
        return cls(search_terms=[query], failed=True, error=error)

    @classmethod
    def from_payload(cls, payload: Any) -> "EnrichmentResponse":
        if not isinstance(payload, dict):
            raise EnrichmentError(f"Expected a JSON object, got {type(payload).__name__}")
        if not payload.get("success", False):
            raise EnrichmentError(payload.get("error") or "service reported failure")

        terms = payload.get("searchTerms")
        if not isinstance(terms, list) or not all(isinstance(t, str) for t in terms):
            raise EnrichmentError("searchTerms must be a list of strings")

        filters = payload.get("filters") or {}
        suggestions = payload.get("suggestions") or []
        if not isinstance(filters, dict) or not isinstance(suggestions, list):
            raise EnrichmentError("malformed filters or suggestions")

        return cls(
            search_terms=[t for t in terms if t.strip()],
            filters=filters,
            suggestions=[str(s) for s in suggestions],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "searchTerms": list(self.search_terms),
            "filters": dict(self.filters),
            "suggestions": list(self.suggestions),
        }


class EnrichmentClient:
    """Async HTTP client for query enrichment and tag suggestions."""

    def __init__(self,
                 config: Optional[EnrichmentConfig] = None,
                 analyzer: Optional[TextAnalyzer] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            config: Endpoint, timeout and circuit-breaker settings
            analyzer: Local analyzer used when tag suggestion falls back
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.config = config or EnrichmentConfig()
        self.analyzer = analyzer or TextAnalyzer()
        self.transport = transport
        self.breaker = CircuitBreaker(
            name="enrichment",
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout_s,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> Any:
        url = f"{self.config.base_url.rstrip('/')}/{endpoint}"
        async with httpx.AsyncClient(transport=self.transport, timeout=self.config.timeout_s) as client:
            response = await client.post(url, json=body, headers=self._headers())
            response.raise_for_status()
            return response.json()

    async def _call(self,
                    endpoint: str,
                    body: Dict[str, Any],
                    parse: Callable[[Any], Any] = lambda payload: payload) -> Any:
        """POST through the circuit breaker, bounded by the configured timeout.

        ``parse`` runs inside the breaker so malformed answers count as failures.
        """
        async def bounded():
            payload = await asyncio.wait_for(self._post(endpoint, body), timeout=self.config.timeout_s)
            return parse(payload)

        return await self.breaker.call(bounded)

    async def enhance(self, query: str, context: Optional[List[Dict[str, Any]]] = None) -> EnrichmentResponse:
        """
        Ask for alternate search terms for ``query``.

        Args:
            query: The user's query
            context: Up to ``max_context`` current top results, as dicts

        Returns:
            The service's answer, or ``EnrichmentResponse.fallback(query)``
        """
        context = list(context or [])[:self.config.max_context]
        try:
            return await self._call(
                "ai-search", {"query": query, "context": context}, EnrichmentResponse.from_payload
            )
        except CircuitOpenError as e:
            logger.debug(f"Enrichment skipped: {e}")
            return EnrichmentResponse.fallback(query, error=str(e))
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError, EnrichmentError) as e:
            logger.warning(f"Enrichment failed for {query!r}: {type(e).__name__}: {e}")
            return EnrichmentResponse.fallback(query, error=str(e) or type(e).__name__)
        except Exception as e:
            logger.error(f"Unexpected enrichment error for {query!r}: {e}")
            return EnrichmentResponse.fallback(query, error=str(e))

    async def suggest_tags(self, text: str, type: Optional[str] = None) -> List[str]:
        """Remote auto-tagging, falling back to local tag generation."""
        body = {"input": text, "type": "auto-tag", "context": {"type": type} if type else {}}
        try:
            payload = await self._call("smart-suggestions", body)
            if isinstance(payload, dict) and payload.get("success"):
                result = payload.get("result")
                if isinstance(result, list) and result:
                    return [str(tag) for tag in result]
            logger.debug("Tag suggestion returned no usable result, using local tags")
        except CircuitOpenError as e:
            logger.debug(f"Tag suggestion skipped: {e}")
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Tag suggestion failed: {e.__class__.__name__}: {e}")
        except Exception as e:
            logger.error(f"Unexpected tag suggestion error: {e}")

        return self.analyzer.generate_tags(text, type)

    def health(self) -> Dict[str, Any]:
        return self.breaker.health.to_dict()
