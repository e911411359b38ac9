"""Engine configuration settings.

This module defines the engine-wide settings using Pydantic's BaseSettings.
Settings are loaded from environment variables (prefix ``PRD_``) and an optional
``.env`` file, with type validation and default values.

There is no module-level settings instance: the orchestrator builds one with
:func:`load_settings` when it is created and passes it down by parameter, and
``SessionOrchestrator.reload_config()`` builds a fresh one.
"""

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict

# Order in which opt-in external providers are appended to a route
DEFAULT_EXTERNAL_PROVIDERS = ["anthropic", "openai", "gemini"]


class Settings(BaseSettings):
    """Manages engine settings, loading them from environment variables or an .env file.

    Attributes:
        openai_api_key: API key used by the OpenAI-compatible provider adapter.
        openai_base_url: Base URL of the OpenAI-compatible endpoint.
        model_id: Identifier for the language model used by the adapter.
        on_device_base_url: OpenAI-compatible endpoint of a model served on this machine, if any.
        on_device_model_id: Model name served at ``on_device_base_url``.
        private_cloud_base_url: OpenAI-compatible endpoint of the private cloud target, if any.
        private_cloud_api_key: Key for the private cloud endpoint.
        private_cloud_model_id: Model name served at ``private_cloud_base_url``.
        allow_external_providers: Whether external (non-private) providers may be routed to.
        prefer_privacy: Rank on-device and private-cloud targets before external ones.
        prefer_local_first: Put the on-device target ahead of private cloud when both fit.
        log_external_calls: Log every call that leaves the device/private cloud.
        external_providers: Ordered names of the external providers to consider.
        max_context_on_device: Max conversation size (chars) routed on-device first.
        max_context_private_cloud: Max conversation size (chars) routed to private cloud first.
        provider_call_timeout: Timeout in seconds for one provider call.
        context_query_timeout: Timeout in seconds for one context-source query.
        request_deadline: Overall deadline in seconds for one chat/generate call.
        quality_target: Composite quality score (0-100) at which refinement stops.
        max_refine_iterations: Hard cap on refine iterations.
        codebase_confidence_threshold: Min confidence (0-1) to accept a codebase auto-answer.
        mockup_confidence_threshold: Min confidence (0-1) to accept a mockup auto-answer.
        history_window: Number of past session messages included in prompts.
        max_prompt_chars: Conversations above this size are truncated from the oldest history.
        context_service_url: Base URL of the context service used by HttpContextResolver.
        DEFAULT_GLOSSARY: Acronyms seeded into every new session glossary.
        LLM_CONNECT_TIMEOUT: Provider client connect timeout in seconds.
        LLM_READ_TIMEOUT: Provider client read timeout in seconds.
    """

    openai_api_key: str | None = Field(default=None)
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    model_id: str = Field(default="gpt-4o-mini")

    on_device_base_url: str | None = Field(default=None)
    on_device_model_id: str = Field(default="llama3.2")
    private_cloud_base_url: str | None = Field(default=None)
    private_cloud_api_key: str | None = Field(default=None)
    private_cloud_model_id: str = Field(default="gpt-4o-mini")

    allow_external_providers: bool = Field(default=False)
    prefer_privacy: bool = Field(default=True)
    prefer_local_first: bool = Field(default=True)
    log_external_calls: bool = Field(default=True)
    external_providers: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTERNAL_PROVIDERS))

    max_context_on_device: int = Field(default=1500)
    max_context_private_cloud: int = Field(default=6000)

    provider_call_timeout: float = Field(default=120.0)
    context_query_timeout: float = Field(default=15.0)
    request_deadline: float = Field(default=900.0)

    quality_target: float = Field(default=85.0, ge=0.0, le=100.0)
    max_refine_iterations: int = Field(default=3, ge=0)

    codebase_confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    mockup_confidence_threshold: float = Field(default=0.60, ge=0.0, le=1.0)

    history_window: int = Field(default=5, ge=0)
    max_prompt_chars: int = Field(default=200_000)

    context_service_url: str | None = Field(default=None)

    DEFAULT_GLOSSARY: dict[str, str] = Field(
        default_factory=lambda: {
            "PRD": "Product Requirements Document",
            "API": "Application Programming Interface",
            "SLA": "Service Level Agreement",
            "RBAC": "Role-Based Access Control",
            "KPI": "Key Performance Indicator",
        }
    )

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="Provider client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=180.0, description="Provider client read timeout in seconds.")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PRD_",
        protected_namespaces=("settings_",),
        extra="ignore",
    )

    @field_validator("external_providers", mode="before")  # type: ignore
    @classmethod
    def assemble_external_providers(cls, v: str | list[str] | None) -> list[str]:
        """Accepts a comma separated string or a list; empty values fall back to the default order."""
        if isinstance(v, str) and v:
            return [name.strip().lower() for name in v.split(",") if name.strip()]
        elif isinstance(v, list):
            return [str(name).lower() for name in v]
        return list(DEFAULT_EXTERNAL_PROVIDERS)


def load_settings(**overrides: Any) -> Settings:
    """Build a fresh Settings instance; keyword overrides win over the environment."""
    return Settings(**overrides)
