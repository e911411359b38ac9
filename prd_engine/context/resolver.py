import logging
from typing import Any
from typing import Protocol

import httpx
from pydantic import ValidationError
from tenacity import RetryCallState
from tenacity import retry
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from prd_engine.core.config import Settings
from prd_engine.core.exceptions import ConfigurationError
from prd_engine.core.exceptions import ContextQueryFailed
from prd_engine.models.prd_models import ContextAvailability
from prd_engine.models.prd_models import ContextResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class ContextResolver(Protocol):
    """Read-only access to the codebase and mockup context linked to a request."""

    async def has_context(self, request_id: str) -> ContextAvailability: ...

    async def query_codebase_context(
        self, project_id: str, question: str, search_query: str
    ) -> ContextResponse | None: ...

    async def query_mockup_context(self, request_id: str, feature_query: str) -> ContextResponse | None: ...


# ---------------------------------------------------------------
# Helper predicate for tenacity retry
# ---------------------------------------------------------------


def _should_retry_context_call(retry_state: RetryCallState) -> bool:
    """Retry on transport errors and on 429/5xx responses from the context service."""
    if not retry_state.outcome:
        return False

    exc = retry_state.outcome.exception()
    if not exc:
        return False

    if isinstance(exc, httpx.TransportError):
        logger.debug("Transport error talking to context service (%s). Retrying...", type(exc).__name__)
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUSES:
        logger.debug("Retryable context service status %s detected. Retrying...", exc.response.status_code)
        return True
    return False


class HttpContextResolver:
    """ContextResolver over the JSON API of a context service.

    Endpoints (relative to ``base_url``):

    - ``GET  /requests/{request_id}/context`` -> ContextAvailability
    - ``POST /projects/{project_id}/codebase/query`` -> ContextResponse
    - ``POST /requests/{request_id}/mockups/query`` -> ContextResponse

    A 404 means "nothing linked" and maps to an empty availability or ``None``.
    Any other failure surfaces as :class:`ContextQueryFailed`.
    """

    def __init__(self, base_url: str, *, timeout: float = 15.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(timeout))
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpContextResolver":
        if not settings.context_service_url:
            raise ConfigurationError("PRD_CONTEXT_SERVICE_URL is not set; no context service to resolve against.")
        return cls(settings.context_service_url, timeout=settings.context_query_timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpContextResolver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        retry=_should_retry_context_call,
        reraise=True,
    )  # type: ignore
    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        response = await self._client.request(method, path, json=payload)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def _call(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            return await self._request(method, path, payload)
        except httpx.HTTPStatusError as e:
            logger.error("Context service returned %s for %s %s", e.response.status_code, method, path, exc_info=False)
            raise ContextQueryFailed(f"Context service error {e.response.status_code} on {path}") from e
        except httpx.HTTPError as e:
            logger.error("Context service request failed for %s %s: %s", method, path, e, exc_info=False)
            raise ContextQueryFailed(f"Context service unreachable: {e}") from e
        except ValueError as e:
            raise ContextQueryFailed(f"Context service returned invalid JSON on {path}") from e

    async def has_context(self, request_id: str) -> ContextAvailability:
        data = await self._call("GET", f"/requests/{request_id}/context")
        if data is None:
            return ContextAvailability()
        try:
            return ContextAvailability.model_validate(data)
        except ValidationError as e:
            raise ContextQueryFailed(f"Invalid availability payload for request {request_id}: {e}") from e

    async def query_codebase_context(self, project_id: str, question: str, search_query: str) -> ContextResponse | None:
        data = await self._call(
            "POST",
            f"/projects/{project_id}/codebase/query",
            {"question": question, "search_query": search_query},
        )
        return self._parse_response(data, f"codebase {project_id}")

    async def query_mockup_context(self, request_id: str, feature_query: str) -> ContextResponse | None:
        data = await self._call("POST", f"/requests/{request_id}/mockups/query", {"query": feature_query})
        return self._parse_response(data, f"mockups {request_id}")

    @staticmethod
    def _parse_response(data: Any, source: str) -> ContextResponse | None:
        if data is None:
            return None
        try:
            return ContextResponse.model_validate(data)
        except ValidationError as e:
            raise ContextQueryFailed(f"Invalid context response from {source}: {e}") from e
