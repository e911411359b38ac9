import pytest

from prd_engine.core.config import Settings
from prd_engine.models.prd_models import Message


class ScriptedProvider:
    """Provider double: replays scripted replies, raises scripted exceptions.

    A reply may be a string, an exception instance, or a callable taking
    ``(conversation, json_requested)``. Once the script is used up, ``default``
    is replayed.
    """

    def __init__(self, name: str, *replies, default=None):
        self.name = name
        self.replies = list(replies)
        self.default = default
        self.calls: list[tuple[list[Message], bool]] = []

    async def generate(self, conversation: list[Message], json_requested: bool = False) -> str:
        self.calls.append((conversation, json_requested))
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(conversation, json_requested)
            if isinstance(reply, BaseException):
                raise reply
        return reply


@pytest.fixture
def make_provider():
    def _make_provider(name: str, *replies, default=None) -> ScriptedProvider:
        return ScriptedProvider(name, *replies, default=default)

    return _make_provider


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def make_settings():
    def _make_settings(**overrides) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make_settings
