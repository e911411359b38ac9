import pytest

from prd_engine.core.exceptions import SessionNotFound
from prd_engine.generation_logic.session_store import SessionStore
from prd_engine.models.prd_models import Message
from prd_engine.models.prd_models import Role


def _turn(i: int) -> tuple[Message, Message]:
    return Message(role=Role.USER, content=f"q{i}"), Message(role=Role.ASSISTANT, content=f"a{i}")


def test_create_get_remove():
    store = SessionStore()
    session = store.create({"PRD": "Product Requirements Document"})

    assert session.id in store
    assert store.get(session.id) is session
    assert session.glossary.definition("PRD") == "Product Requirements Document"
    assert session.domain == "general"

    store.remove(session.id)
    assert len(store) == 0
    with pytest.raises(SessionNotFound):
        store.get(session.id)
    with pytest.raises(SessionNotFound):
        store.remove(session.id)


def test_sessions_are_independent():
    store = SessionStore()
    first, second = store.create(), store.create()
    first.commit_turn(*_turn(1))

    assert first.id != second.id
    assert second.history == []
    assert first.lock is not second.lock


def test_recent_history_window():
    session = SessionStore().create()
    for i in range(3):
        session.commit_turn(*_turn(i))

    assert [m.content for m in session.recent_history(5)] == ["a0", "q1", "a1", "q2", "a2"]
    assert session.recent_history(0) == []
    # A copy: callers cannot mutate the stored history through it
    session.recent_history(2).clear()
    assert len(session.history) == 6
