import asyncio
import logging
from typing import Any
from uuid import uuid4

from prd_engine.context.clarification import ClarificationCollector
from prd_engine.context.clarification import HumanPrompt
from prd_engine.context.resolver import ContextResolver
from prd_engine.core.config import Settings
from prd_engine.core.config import load_settings
from prd_engine.core.exceptions import RequestDeadlineExceeded
from prd_engine.core.exceptions import SessionNotFound
from prd_engine.generation_logic.session_store import Session
from prd_engine.generation_logic.session_store import SessionStore
from prd_engine.models.prd_models import ChatOptions
from prd_engine.models.prd_models import ChatReply
from prd_engine.models.prd_models import GenerationRequest
from prd_engine.models.prd_models import GenerationResult
from prd_engine.models.prd_models import Message
from prd_engine.models.prd_models import ProjectContext
from prd_engine.models.prd_models import Role
from prd_engine.services.glossary import detect_domain
from prd_engine.services.llm import OpenAIChatProvider
from prd_engine.services.llm import ProviderClient
from prd_engine.services.llm import build_conversation
from prd_engine.services.llm import render_prompt
from prd_engine.services.pipeline import GenerationPipeline
from prd_engine.services.router import Candidate
from prd_engine.services.router import External
from prd_engine.services.router import OnDevice
from prd_engine.services.router import PrivateCloud
from prd_engine.services.router import ProviderRouter
from prd_engine.services.router import candidate_name

__all__ = [
    "SessionOrchestrator",
    "build_default_clients",
]

logger = logging.getLogger(__name__)


def build_default_clients(settings: Settings) -> dict[Candidate, ProviderClient]:
    """Register an OpenAI-compatible client for every target the settings configure."""
    clients: dict[Candidate, ProviderClient] = {}
    if settings.on_device_base_url:
        # Local servers ignore the key but the client requires one
        clients[OnDevice()] = OpenAIChatProvider(
            "on_device",
            settings,
            base_url=settings.on_device_base_url,
            api_key="local",
            model_id=settings.on_device_model_id,
        )
    if settings.private_cloud_base_url:
        clients[PrivateCloud()] = OpenAIChatProvider(
            "private_cloud",
            settings,
            base_url=settings.private_cloud_base_url,
            api_key=settings.private_cloud_api_key or "local",
            model_id=settings.private_cloud_model_id,
        )
    if settings.openai_api_key:
        clients[External("openai")] = OpenAIChatProvider("openai", settings)
    return clients


def _request_as_message(request: GenerationRequest) -> str:
    lines = [f"Generate a PRD for: {request.feature}"]
    if request.context:
        lines.append(f"Context: {request.context}")
    if request.requirements:
        lines.append("Requirements: " + "; ".join(request.requirements))
    return "\n".join(lines)


class SessionOrchestrator:
    """Entry point of the engine: sessions, chat turns and document generation.

    Each session is guarded by its own lock, held for the whole call, and its
    history only changes after a call succeeds.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clients: dict[Candidate, ProviderClient] | None = None,
        resolver: ContextResolver | None = None,
        human_prompt: HumanPrompt | None = None,
    ):
        self.settings = settings or load_settings()
        self._custom_clients = clients
        self.resolver = resolver
        self.human_prompt = human_prompt
        self.sessions = SessionStore()
        self._build_services()

    def _build_services(self) -> None:
        clients = self._custom_clients if self._custom_clients is not None else build_default_clients(self.settings)
        self.router = ProviderRouter.from_settings(clients, self.settings)
        self.collector = ClarificationCollector(self.settings, self.resolver, self.human_prompt)
        self.pipeline = GenerationPipeline(self.router, self.settings, self.collector)
        logger.debug("Services built; route targets registered: %s", sorted(candidate_name(c) for c in clients))

    def reload_config(self, **overrides: Any) -> Settings:
        """Rebuild settings from the environment and rewire the services.

        Calls already in flight keep the services they started with.
        """
        self.settings = load_settings(**overrides)
        self._build_services()
        logger.info("Configuration reloaded")
        return self.settings

    # -----------------------------------------------------------------
    # Session lifecycle
    # -----------------------------------------------------------------

    async def start_session(self) -> str:
        return self.sessions.create(self.settings.DEFAULT_GLOSSARY).id

    def _ensure_open(self, session_id: str) -> None:
        # Calls queued behind end_session must not touch the removed session
        if session_id not in self.sessions:
            raise SessionNotFound(f"Session {session_id} ended before the call could run")

    async def end_session(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        async with session.lock:
            self.sessions.remove(session_id)

    async def set_linked_context(
        self, session_id: str, request_id: str | None = None, project_id: str | None = None
    ) -> None:
        """Link external context (a request with mockups, an indexed project) to the session."""
        session = self.sessions.get(session_id)
        async with session.lock:
            self._ensure_open(session_id)
            session.linked_request_id = request_id
            session.linked_project_id = project_id
        logger.info("Session %s linked to request=%s project=%s", session_id, request_id, project_id)

    async def history(self, session_id: str) -> list[Message]:
        session = self.sessions.get(session_id)
        async with session.lock:
            self._ensure_open(session_id)
            return list(session.history)

    async def clear_history(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        async with session.lock:
            self._ensure_open(session_id)
            session.history.clear()

    async def add_glossary_term(self, session_id: str, acronym: str, definition: str) -> None:
        session = self.sessions.get(session_id)
        async with session.lock:
            self._ensure_open(session_id)
            session.glossary.add(acronym, definition)

    def explain_route(self, message: str, needs_json: bool = False) -> str:
        return self.router.explain_route(build_conversation("", message), needs_json)

    # -----------------------------------------------------------------
    # Calls
    # -----------------------------------------------------------------

    def _system_prompt(self, session: Session, domain: str, inject_context: bool) -> str:
        return render_prompt(
            "system_prompt.jinja2",
            domain=domain if inject_context else "",
            acronym_policy=session.glossary.system_policy(domain) if inject_context else "",
        )

    async def _with_deadline(self, call, request_id: str):
        try:
            return await asyncio.wait_for(call, timeout=self.settings.request_deadline)
        except asyncio.TimeoutError:
            logger.error("[%s] Request exceeded deadline of %.0fs", request_id, self.settings.request_deadline)
            raise RequestDeadlineExceeded(f"Request exceeded deadline of {self.settings.request_deadline}s") from None

    async def chat(self, session_id: str, message: str, options: ChatOptions | None = None) -> ChatReply:
        options = options or ChatOptions()
        session = self.sessions.get(session_id)
        request_id = str(uuid4())

        async with session.lock:
            self._ensure_open(session_id)
            system_prompt = options.system_prompt or self._system_prompt(session, session.domain, options.inject_context)
            user_text = session.glossary.resolve(message) if options.inject_context else message
            history = session.recent_history(self.settings.history_window) if options.include_history else []
            conversation = build_conversation(system_prompt, user_text, history, max_chars=self.settings.max_prompt_chars)

            logger.info("[%s] Chat turn in session %s (%d history messages)", request_id, session_id, len(history))
            routed = await self._with_deadline(
                self.router.execute(conversation, needs_json=options.needs_json, request_id=request_id), request_id
            )
            session.commit_turn(Message(role=Role.USER, content=message), Message(role=Role.ASSISTANT, content=routed.text))
            return ChatReply(response=routed.text, provider=routed.provider)

    async def generate(
        self,
        session_id: str,
        request: GenerationRequest,
        human_prompt: HumanPrompt | None = None,
        project: ProjectContext | None = None,
    ) -> GenerationResult:
        """Generate a PRD within a session.

        Raises AllProvidersExhausted when no provider could produce a draft, and
        RequestDeadlineExceeded when the whole call outlives ``request_deadline``.
        """
        session = self.sessions.get(session_id)

        async with session.lock:
            self._ensure_open(session_id)
            request = request.model_copy(
                update={
                    "request_id": request.request_id or session.linked_request_id,
                    "project_id": request.project_id or session.linked_project_id,
                }
            )
            log_id = request.request_id or str(uuid4())
            domain = detect_domain(f"{request.feature}\n{request.context}")
            system_prompt = self._system_prompt(session, domain, inject_context=True)
            history = session.recent_history(self.settings.history_window)

            logger.info("[%s] Generating PRD in session %s (domain=%s)", log_id, session_id, domain)
            result = await self._with_deadline(
                self.pipeline.execute(
                    request,
                    system_prompt,
                    history,
                    project=project,
                    human_prompt=human_prompt or self.human_prompt,
                ),
                log_id,
            )

            session.domain = domain
            session.commit_turn(
                Message(role=Role.USER, content=_request_as_message(request)),
                Message(role=Role.ASSISTANT, content=result.document),
            )
            return result
