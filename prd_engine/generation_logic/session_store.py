import asyncio
import logging
from dataclasses import dataclass
from dataclasses import field
from uuid import uuid4

from prd_engine.core.exceptions import SessionNotFound
from prd_engine.models.prd_models import Message
from prd_engine.services.glossary import DEFAULT_DOMAIN
from prd_engine.services.glossary import Glossary

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Conversation state of one user session.

    ``lock`` serializes every operation on the session; callers hold it for
    the whole read-append-write of a chat or generate call.
    """

    id: str
    glossary: Glossary
    history: list[Message] = field(default_factory=list)
    domain: str = DEFAULT_DOMAIN
    linked_request_id: str | None = None
    linked_project_id: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def recent_history(self, window: int) -> list[Message]:
        if window <= 0:
            return []
        return list(self.history[-window:])

    def commit_turn(self, user: Message, assistant: Message) -> None:
        """Append a completed exchange. Both messages land together or not at all."""
        self.history.extend((user, assistant))


class SessionStore:
    """In-memory sessions keyed by opaque id."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def create(self, glossary_terms: dict[str, str] | None = None) -> Session:
        session = Session(id=str(uuid4()), glossary=Glossary(glossary_terms))
        self._sessions[session.id] = session
        logger.info("Session %s started", session.id)
        return session

    def get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(f"Unknown session id: {session_id}") from None

    def remove(self, session_id: str) -> Session:
        try:
            session = self._sessions.pop(session_id)
        except KeyError:
            raise SessionNotFound(f"Unknown session id: {session_id}") from None
        logger.info("Session %s ended after %d messages", session_id, len(session.history))
        return session

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
