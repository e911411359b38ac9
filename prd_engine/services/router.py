"""Privacy-ordered provider routing and fallback execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union
from uuid import uuid4

from prd_engine.core.config import Settings
from prd_engine.core.exceptions import AllProvidersExhausted
from prd_engine.core.exceptions import ProviderError
from prd_engine.core.exceptions import ProviderErrorKind
from prd_engine.core.exceptions import ProviderUnavailable
from prd_engine.models.prd_models import Message
from prd_engine.services.llm import ProviderClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnDevice:
    """Model running on the user's device."""


@dataclass(frozen=True)
class PrivateCloud:
    """Privacy-preserving cloud compute operated for the device owner."""


@dataclass(frozen=True)
class External:
    """Opt-in third-party API."""

    provider: str


Candidate = Union[OnDevice, PrivateCloud, External]


def candidate_name(candidate: Candidate) -> str:
    if isinstance(candidate, OnDevice):
        return "on_device"
    if isinstance(candidate, PrivateCloud):
        return "private_cloud"
    if isinstance(candidate, External):
        return candidate.provider
    raise TypeError(f"Unknown route candidate: {candidate!r}")


def is_external(candidate: Candidate) -> bool:
    return isinstance(candidate, External)


@dataclass(frozen=True)
class RoutingPolicy:
    allow_external: bool = False
    prefer_privacy: bool = True
    prefer_local_first: bool = True
    max_context_on_device: int = 1500
    max_context_private_cloud: int = 6000
    external_providers: tuple[str, ...] = ("anthropic", "openai", "gemini")
    log_external_calls: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> RoutingPolicy:
        return cls(
            allow_external=settings.allow_external_providers,
            prefer_privacy=settings.prefer_privacy,
            prefer_local_first=settings.prefer_local_first,
            max_context_on_device=settings.max_context_on_device,
            max_context_private_cloud=settings.max_context_private_cloud,
            external_providers=tuple(settings.external_providers),
            log_external_calls=settings.log_external_calls,
        )


@dataclass(frozen=True)
class RouteResult:
    text: str
    candidate: Candidate

    @property
    def provider(self) -> str:
        return candidate_name(self.candidate)


FailureCallback = Callable[[Candidate, Exception], None]


class ProviderRouter:
    """Ranks execution candidates for a conversation and runs them in order.

    Device capabilities are the set of registered clients: a private target
    with no client is never routed to.
    """

    def __init__(
        self,
        clients: dict[Candidate, ProviderClient],
        policy: RoutingPolicy | None = None,
        call_timeout: float = 120.0,
    ):
        self._clients = dict(clients)
        self.policy = policy or RoutingPolicy()
        self.call_timeout = call_timeout

    @classmethod
    def from_settings(cls, clients: dict[Candidate, ProviderClient], settings: Settings) -> ProviderRouter:
        return cls(clients, RoutingPolicy.from_settings(settings), call_timeout=settings.provider_call_timeout)

    @property
    def has_on_device(self) -> bool:
        return OnDevice() in self._clients

    @property
    def has_private_cloud(self) -> bool:
        return PrivateCloud() in self._clients

    def route(self, conversation: list[Message], needs_json: bool = False) -> list[Candidate]:
        """Return the ordered candidate list for one call. Never includes duplicates."""
        policy = self.policy
        size = sum(len(m.content) for m in conversation)

        private: list[Candidate] = []
        if size < policy.max_context_on_device and not needs_json and policy.prefer_local_first:
            private = [OnDevice(), PrivateCloud()]
        elif size < policy.max_context_private_cloud:
            private = [PrivateCloud(), OnDevice()]
        else:
            # Too large for the on-device context window
            private = [PrivateCloud()]
        private = [c for c in private if c in self._clients]

        external: list[Candidate] = []
        if policy.allow_external:
            external = [External(name) for name in policy.external_providers]

        ordered = private + external if policy.prefer_privacy else external + private

        routes: list[Candidate] = []
        for candidate in ordered:
            if candidate not in routes:
                routes.append(candidate)
        return routes

    def explain_route(self, conversation: list[Message], needs_json: bool = False) -> str:
        routes = self.route(conversation, needs_json)
        size = sum(len(m.content) for m in conversation)
        chain = " -> ".join(candidate_name(c) for c in routes) or "(none)"
        lines = [
            "Routing decision:",
            f"  content size: {size} chars",
            f"  needs JSON: {'yes' if needs_json else 'no'}",
            f"  privacy mode: {'enabled' if self.policy.prefer_privacy else 'disabled'}",
            f"  external allowed: {'yes' if self.policy.allow_external else 'no'}",
            f"  route: {chain}",
        ]
        if routes:
            first = routes[0]
            if isinstance(first, OnDevice):
                lines.append("  primary: on-device model, data never leaves the device")
            elif isinstance(first, PrivateCloud):
                lines.append("  primary: private cloud compute")
            else:
                lines.append("  primary: external API (opt-in)")
        return "\n".join(lines)

    async def _call(self, candidate: Candidate, conversation: list[Message], needs_json: bool) -> str:
        name = candidate_name(candidate)
        if is_external(candidate) and not self.policy.allow_external:
            raise ProviderUnavailable(name, "External providers disabled by privacy settings")
        client = self._clients.get(candidate)
        if client is None:
            raise ProviderUnavailable(name)
        if is_external(candidate) and self.policy.log_external_calls:
            logger.info("Using external provider %s (%d messages)", name, len(conversation))

        try:
            text = await asyncio.wait_for(client.generate(conversation, needs_json), timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(ProviderErrorKind.TIMEOUT, f"{name} timed out after {self.call_timeout}s", name) from e
        if not isinstance(text, str) or not text.strip():
            raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, f"{name} returned an empty response", name)
        return text

    async def execute(
        self,
        conversation: list[Message],
        needs_json: bool = False,
        on_failure: FailureCallback | None = None,
        request_id: str | None = None,
    ) -> RouteResult:
        """Try the route in order; first success wins.

        Raises AllProvidersExhausted when every candidate failed. Cancellation
        propagates immediately.
        """
        request_id = request_id or str(uuid4())
        routes = self.route(conversation, needs_json)
        logger.debug("[%s] Route: %s", request_id, [candidate_name(c) for c in routes])

        failures: list[tuple[str, Exception]] = []
        for candidate in routes:
            name = candidate_name(candidate)
            try:
                text = await self._call(candidate, conversation, needs_json)
            except ProviderError as e:
                failure: Exception = e
            except Exception as e:
                failure = ProviderError(ProviderErrorKind.INVALID_RESPONSE, f"{name} failed: {e}", name)
                failure.__cause__ = e
            else:
                logger.info("[%s] Generated using %s", request_id, name)
                return RouteResult(text=text, candidate=candidate)

            logger.warning("[%s] Route %s failed: %s", request_id, name, failure)
            failures.append((name, failure))
            if on_failure is not None:
                on_failure(candidate, failure)

        logger.error("[%s] All %d route candidates failed", request_id, len(routes))
        raise AllProvidersExhausted(failures)
