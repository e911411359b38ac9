import json
import logging
import pathlib
import re
from typing import Any
from typing import Protocol
from uuid import uuid4

import httpx
import jinja2
from openai import APIConnectionError
from openai import APIStatusError
from openai import APITimeoutError
from openai import AsyncOpenAI
from openai import AuthenticationError
from openai import OpenAIError
from openai import RateLimitError

from prd_engine.core.config import Settings
from prd_engine.core.exceptions import ConfigurationError
from prd_engine.core.exceptions import JSONParsingError
from prd_engine.core.exceptions import ProviderError
from prd_engine.core.exceptions import ProviderErrorKind
from prd_engine.models.prd_models import Message
from prd_engine.models.prd_models import Role

logger = logging.getLogger(__name__)


# --- Reusable Jinja2 Environment ---
PROMPT_DIR = pathlib.Path(__file__).parent / "prompt_templates"
env: jinja2.Environment | None = None
try:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(PROMPT_DIR),
        undefined=jinja2.StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    logger.debug("Jinja2 environment initialized for path: %s", PROMPT_DIR)
except Exception:
    logger.exception("Failed to initialize Jinja2 environment at %s", PROMPT_DIR)
    env = None


def render_prompt(template_name: str, **context: Any) -> str:
    """Render one of the bundled prompt templates."""
    if env is None:
        raise ConfigurationError("Template environment not available.")
    try:
        return env.get_template(template_name).render(**context)
    except jinja2.TemplateNotFound:
        logger.error("Template not found: %s", template_name)
        raise ConfigurationError(f"Template '{template_name}' not found.") from None
    except jinja2.UndefinedError as e:
        logger.error("Template %s rendered with missing variables: %s", template_name, e)
        raise ConfigurationError(f"Template '{template_name}' is missing a variable: {e}") from e


def build_conversation(
    system_prompt: str,
    user_prompt: str,
    history: list[Message] | None = None,
    max_chars: int | None = None,
) -> list[Message]:
    """System prompt, then prior history, then the new user turn.

    When ``max_chars`` is given, the oldest history messages are dropped until
    the conversation fits. The system prompt and the new turn are always kept.
    """
    kept = list(history or [])
    if max_chars is not None:
        budget = max_chars - len(system_prompt) - len(user_prompt)
        while kept and sum(len(m.content) for m in kept) > budget:
            kept.pop(0)
        if len(kept) < len(history or []):
            logger.warning("Prompt exceeds %d chars; dropped %d oldest history message(s)", max_chars, len(history or []) - len(kept))
    conversation = [Message(role=Role.SYSTEM, content=system_prompt)]
    conversation.extend(kept)
    conversation.append(Message(role=Role.USER, content=user_prompt))
    return conversation


class ProviderClient(Protocol):
    """What the router needs from a provider: one call, text out, ProviderError on failure."""

    name: str

    async def generate(self, conversation: list[Message], json_requested: bool = False) -> str: ...


# ---------------------------------------------------------------
# OpenAI-compatible chat provider
# ---------------------------------------------------------------
class OpenAIChatProvider:
    """Provider adapter for any OpenAI-compatible chat completions endpoint.

    The same class serves on-device/local servers (e.g. an Ollama or MLX server
    exposing ``/v1``) and hosted APIs; only ``base_url`` and the key differ.
    Retries are left to the router, which advances to the next candidate instead.
    """

    def __init__(
        self,
        name: str,
        settings: Settings,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model_id: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.name = name
        self.model_id = model_id or settings.model_id
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self.timeout_config = httpx.Timeout(settings.LLM_CONNECT_TIMEOUT, read=settings.LLM_READ_TIMEOUT)
        self._client = client
        self._base_url = base_url or settings.openai_base_url

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ProviderError(ProviderErrorKind.NOT_CONFIGURED, f"API key not configured for {self.name}", self.name)
            self._client = AsyncOpenAI(
                base_url=self._base_url,
                api_key=self._api_key,
                timeout=self.timeout_config,
                max_retries=0,
            )
        return self._client

    async def generate(self, conversation: list[Message], json_requested: bool = False) -> str:
        request_id = str(uuid4())
        logger.info("[%s] %s call with model %s (%d messages)", request_id, self.name, self.model_id, len(conversation))

        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": [m.as_dict() for m in conversation],
            "temperature": 0.2 if json_requested else 0.7,
        }
        if json_requested:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            rsp = await self.client.chat.completions.create(**kwargs)
        except ProviderError:
            raise
        except APITimeoutError as e:
            raise ProviderError(ProviderErrorKind.TIMEOUT, f"{self.name} timed out: {e}", self.name) from e
        except RateLimitError as e:
            raise ProviderError(ProviderErrorKind.RATE_LIMIT, f"{self.name} rate limited: {e}", self.name) from e
        except AuthenticationError as e:
            raise ProviderError(ProviderErrorKind.NOT_CONFIGURED, f"{self.name} rejected credentials: {e}", self.name) from e
        except APIConnectionError as e:
            raise ProviderError(ProviderErrorKind.NETWORK, f"{self.name} connection error: {e}", self.name) from e
        except APIStatusError as e:
            kind = ProviderErrorKind.NETWORK if e.status_code >= 500 else ProviderErrorKind.INVALID_RESPONSE
            raise ProviderError(kind, f"{self.name} API error {e.status_code}: {e}", self.name) from e
        except OpenAIError as e:
            raise ProviderError(ProviderErrorKind.NETWORK, f"{self.name} API error: {e}", self.name) from e

        if not rsp or not getattr(rsp, "choices", None):
            logger.error("[%s] Invalid response structure from %s: %s", request_id, self.name, str(rsp))
            raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "Invalid response structure", self.name)

        message = getattr(rsp.choices[0], "message", None)
        content = getattr(message, "content", None) if message is not None else None
        if not content or not content.strip():
            logger.error("[%s] Empty content in %s response", request_id, self.name)
            raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "Empty response content", self.name)

        content = content.strip()
        logger.debug("[%s] %s response received, length: %d chars", request_id, self.name, len(content))
        return content


# ---------------------------------------------------------------
# JSON extractor helper
# ---------------------------------------------------------------
def extract_json(text: str) -> Any:
    """Attempts to robustly extract and parse JSON from model responses, handling markdown fences and extraneous text."""
    if isinstance(text, (dict, list)):
        return text

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Initial JSON parse failed, attempting extraction strategies...")

    # Strategy 1: Markdown Code Fence Extraction
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Failed to parse JSON from fenced block, trying next strategy...")

    # Strategy 2: raw_decode from the first object/array marker
    obj_start = text.find("{")
    arr_start = text.find("[")
    if obj_start == -1 and arr_start == -1:
        raise JSONParsingError("No JSON object or array marker found in response")
    start_pos = min(pos for pos in (obj_start, arr_start) if pos != -1)
    try:
        obj, _ = json.JSONDecoder().raw_decode(text, start_pos)
        return obj
    except json.JSONDecodeError as e:
        logger.debug("Failed to parse JSON using raw_decode: %s", e)

    # Strategy 3: last {...} block with braces balanced
    blocks = re.findall(r"\{[\s\S]*\}", text)
    if blocks:
        candidate = blocks[-1]
        missing = candidate.count("{") - candidate.count("}")
        if missing > 0:
            candidate += "}" * missing
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
    raise JSONParsingError("All strategies to parse JSON from model response failed.")
