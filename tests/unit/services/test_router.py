import asyncio

import pytest

from prd_engine.core.exceptions import AllProvidersExhausted
from prd_engine.core.exceptions import ProviderError
from prd_engine.core.exceptions import ProviderErrorKind
from prd_engine.core.exceptions import ProviderUnavailable
from prd_engine.models.prd_models import Message
from prd_engine.models.prd_models import Role
from prd_engine.services.router import External
from prd_engine.services.router import OnDevice
from prd_engine.services.router import PrivateCloud
from prd_engine.services.router import ProviderRouter
from prd_engine.services.router import RoutingPolicy
from prd_engine.services.router import candidate_name


def _conversation(size: int = 10) -> list[Message]:
    return [Message(role=Role.USER, content="x" * size)]


def _network_error(name: str) -> ProviderError:
    return ProviderError(ProviderErrorKind.NETWORK, f"{name} unreachable", name)


@pytest.fixture
def private_clients(make_provider):
    return {
        OnDevice(): make_provider("on_device", default="local"),
        PrivateCloud(): make_provider("private_cloud", default="cloud"),
    }


def test_small_conversation_prefers_on_device(private_clients):
    router = ProviderRouter(private_clients)
    assert router.route(_conversation(100)) == [OnDevice(), PrivateCloud()]


def test_json_or_medium_conversation_prefers_private_cloud(private_clients):
    router = ProviderRouter(private_clients)
    assert router.route(_conversation(100), needs_json=True) == [PrivateCloud(), OnDevice()]
    assert router.route(_conversation(3000)) == [PrivateCloud(), OnDevice()]


def test_large_conversation_skips_on_device(private_clients):
    router = ProviderRouter(private_clients)
    assert router.route(_conversation(7000)) == [PrivateCloud()]


def test_externals_only_when_allowed(private_clients):
    closed = ProviderRouter(private_clients, RoutingPolicy(allow_external=False))
    assert not any(isinstance(c, External) for c in closed.route(_conversation()))

    opened = ProviderRouter(private_clients, RoutingPolicy(allow_external=True, external_providers=("anthropic", "openai")))
    assert opened.route(_conversation()) == [OnDevice(), PrivateCloud(), External("anthropic"), External("openai")]


def test_externals_first_without_privacy_preference(private_clients):
    router = ProviderRouter(
        private_clients, RoutingPolicy(allow_external=True, prefer_privacy=False, external_providers=("openai",))
    )
    assert router.route(_conversation()) == [External("openai"), OnDevice(), PrivateCloud()]


def test_route_has_no_duplicates(private_clients):
    router = ProviderRouter(private_clients, RoutingPolicy(allow_external=True, external_providers=("openai", "openai")))
    routes = router.route(_conversation())
    assert len(routes) == len(set(routes))


def test_unregistered_private_targets_are_not_routed(make_provider):
    router = ProviderRouter({PrivateCloud(): make_provider("private_cloud", default="ok")})
    assert not router.has_on_device
    assert router.has_private_cloud
    assert router.route(_conversation()) == [PrivateCloud()]


def test_explain_route(private_clients):
    explanation = ProviderRouter(private_clients).explain_route(_conversation(42))
    assert "content size: 42 chars" in explanation
    assert "route: on_device -> private_cloud" in explanation
    assert "on-device model" in explanation


@pytest.mark.asyncio
async def test_execute_falls_through_to_third_candidate(make_provider):
    a = make_provider("on_device", _network_error("on_device"))
    b = make_provider("private_cloud", ProviderError(ProviderErrorKind.RATE_LIMIT, "slow down", "private_cloud"))
    c = make_provider("openai", "hello from C")
    router = ProviderRouter(
        {OnDevice(): a, PrivateCloud(): b, External("openai"): c},
        RoutingPolicy(allow_external=True, external_providers=("openai",)),
    )
    seen = []

    result = await router.execute(_conversation(), on_failure=lambda cand, exc: seen.append(candidate_name(cand)))

    assert result.text == "hello from C"
    assert result.candidate == External("openai")
    assert result.provider == "openai"
    assert seen == ["on_device", "private_cloud"]
    assert len(a.calls) == len(b.calls) == len(c.calls) == 1


@pytest.mark.asyncio
async def test_execute_raises_one_aggregate_error_when_all_fail(make_provider):
    a = make_provider("on_device", _network_error("on_device"))
    b = make_provider("private_cloud", _network_error("private_cloud"))
    router = ProviderRouter({OnDevice(): a, PrivateCloud(): b})

    with pytest.raises(AllProvidersExhausted) as exc_info:
        await router.execute(_conversation())

    assert [name for name, _ in exc_info.value.failures] == ["on_device", "private_cloud"]
    assert len(a.calls) == len(b.calls) == 1


@pytest.mark.asyncio
async def test_missing_external_client_is_skipped_as_unavailable(make_provider):
    router = ProviderRouter(
        {External("openai"): make_provider("openai", "ok")},
        RoutingPolicy(allow_external=True, external_providers=("anthropic", "openai")),
    )
    failures = []

    result = await router.execute(_conversation(), on_failure=lambda cand, exc: failures.append(exc))

    assert result.provider == "openai"
    assert len(failures) == 1
    assert isinstance(failures[0], ProviderUnavailable)
    assert failures[0].kind is ProviderErrorKind.NOT_CONFIGURED


@pytest.mark.asyncio
async def test_empty_reply_and_unexpected_errors_advance(make_provider):
    a = make_provider("on_device", "   ")
    b = make_provider("private_cloud", RuntimeError("boom"))
    router = ProviderRouter({OnDevice(): a, PrivateCloud(): b})

    with pytest.raises(AllProvidersExhausted) as exc_info:
        await router.execute(_conversation())

    kinds = [exc.kind for _, exc in exc_info.value.failures]
    assert kinds == [ProviderErrorKind.INVALID_RESPONSE, ProviderErrorKind.INVALID_RESPONSE]


@pytest.mark.asyncio
async def test_slow_provider_times_out(make_provider):
    class SlowProvider:
        name = "on_device"

        async def generate(self, conversation, json_requested=False):
            await asyncio.sleep(1)
            return "too late"

    fast = make_provider("private_cloud", "in time")
    router = ProviderRouter({OnDevice(): SlowProvider(), PrivateCloud(): fast}, call_timeout=0.01)
    kinds = []

    result = await router.execute(_conversation(), on_failure=lambda cand, exc: kinds.append(exc.kind))

    assert result.text == "in time"
    assert kinds == [ProviderErrorKind.TIMEOUT]


@pytest.mark.asyncio
async def test_cancellation_propagates_without_fallback(make_provider):
    a = make_provider("on_device", asyncio.CancelledError())
    b = make_provider("private_cloud", "never")
    router = ProviderRouter({OnDevice(): a, PrivateCloud(): b})

    with pytest.raises(asyncio.CancelledError):
        await router.execute(_conversation())
    assert b.calls == []


@pytest.mark.asyncio
async def test_json_flag_reaches_provider(make_provider):
    provider = make_provider("private_cloud", '{"ok": true}')
    router = ProviderRouter({PrivateCloud(): provider})
    await router.execute(_conversation(), needs_json=True)
    assert provider.calls[0][1] is True
