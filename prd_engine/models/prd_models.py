from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from prd_engine.core.exceptions import ValidationFailed


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A single conversation turn. Frozen: history is append-only."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class Scope(str, Enum):
    """Coarse request classification driving validation rules."""

    MIGRATION = "migration"
    FEATURE = "feature"
    PLATFORM = "platform"
    BUGFIX = "bugfix"
    OPTIMIZATION = "optimization"


class Stage(str, Enum):
    RESEARCH = "research"
    PLAN = "plan"
    DRAFT = "draft"
    CRITIQUE = "critique"
    REFINE = "refine"
    DONE = "done"
    FAILED = "failed"


class GenerationRequest(BaseModel):
    """Input of one ``generate`` call."""

    feature: str
    context: str = ""
    priority: str = "medium"
    requirements: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    project_id: str | None = None
    request_id: str | None = None


class ProjectContext(BaseModel):
    """Optional facts about the target project used by the validator."""

    ci_pipeline: str | None = None
    platform: str | None = None
    languages: list[str] = Field(default_factory=list)


class PipelineStageResult(BaseModel):
    """Output of one pipeline stage, handed to the next stage of the same run."""

    stage: Stage
    text: str
    iteration: int = 0


class QualityScore(BaseModel):
    """Five-dimension quality breakdown plus the weighted composite (all 0-100)."""

    model_config = ConfigDict(frozen=True)

    completeness: float = Field(ge=0.0, le=100.0)
    specificity: float = Field(ge=0.0, le=100.0)
    technical_depth: float = Field(ge=0.0, le=100.0)
    clarity: float = Field(ge=0.0, le=100.0)
    actionability: float = Field(ge=0.0, le=100.0)
    overall: float = Field(ge=0.0, le=100.0)

    def is_production_ready(self, target: float = 85.0) -> bool:
        return self.overall >= target

    @property
    def summary(self) -> str:
        return (
            f"PRD Quality Score: {self.overall:.1f}%\n"
            f"- Completeness: {self.completeness:.1f}%\n"
            f"- Specificity: {self.specificity:.1f}%\n"
            f"- Technical Depth: {self.technical_depth:.1f}%\n"
            f"- Clarity: {self.clarity:.1f}%\n"
            f"- Actionability: {self.actionability:.1f}%"
        )


class ValidationResult(BaseModel):
    """Findings of the validator. Each list is filled independently."""

    scope: Scope = Scope.FEATURE
    critical_gaps: list[str] = Field(default_factory=list)
    clarifying_questions: list[str] = Field(default_factory=list)
    specific_issues: list[str] = Field(default_factory=list)
    refinement_suggestions: list[str] = Field(default_factory=list)

    @property
    def is_production_ready(self) -> bool:
        return not self.critical_gaps and not self.specific_issues

    @property
    def needs_refinement(self) -> bool:
        return not self.is_production_ready

    def raise_for_findings(self) -> None:
        """Raise ValidationFailed when the draft has gaps or issues."""
        if not self.is_production_ready:
            raise ValidationFailed(list(self.critical_gaps), list(self.specific_issues))

    @property
    def summary(self) -> str:
        if self.is_production_ready:
            return "PRD is production-ready"
        parts = []
        if self.critical_gaps:
            parts.append(f"Critical Gaps: {len(self.critical_gaps)}")
        if self.specific_issues:
            parts.append(f"Issues: {len(self.specific_issues)}")
        if self.clarifying_questions:
            parts.append(f"Questions: {len(self.clarifying_questions)}")
        return "PRD needs refinement - " + ", ".join(parts)


class AnswerSource(str, Enum):
    CODEBASE = "codebase"
    MOCKUP = "mockup"
    HUMAN = "human"


class ClarificationAnswer(BaseModel):
    question: str
    answer: str
    source: AnswerSource
    # Only meaningful for auto answers; human answers carry 1.0
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    @property
    def is_auto(self) -> bool:
        return self.source is not AnswerSource.HUMAN


class ContextAvailability(BaseModel):
    """Which external context sources exist for a linked request."""

    has_codebase: bool = False
    has_mockups: bool = False
    codebase_project_id: str | None = None
    mockup_count: int = 0
    is_codebase_indexed: bool = False

    @property
    def has_any(self) -> bool:
        return self.has_codebase or self.has_mockups


class ContextResponse(BaseModel):
    """Answer returned by one context source."""

    relevant_items: list[dict[str, Any]] = Field(default_factory=list)
    summary: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    items_analyzed: int = 0


class QualityReport(BaseModel):
    score: QualityScore
    iterations: int
    target: float
    validation: ValidationResult
    meets_target: bool
    # Set when the refine loop stopped early because every provider failed
    exhausted: bool = False
    critique_score: float | None = None
    clarifications: list[ClarificationAnswer] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        status = "Production Ready" if self.meets_target else "Needs Improvement"
        return f"{self.score.summary}\nIterations: {self.iterations}\nStatus: {status}"


class GenerationResult(BaseModel):
    document: str
    provider: str
    quality: QualityReport


class ChatOptions(BaseModel):
    include_history: bool = True
    needs_json: bool = False
    inject_context: bool = True
    system_prompt: str | None = None


class ChatReply(BaseModel):
    response: str
    provider: str


class PipelineEvent(BaseModel):
    """Progress event streamed by ``GenerationPipeline.run``."""

    type: str
    message: str | None = None
    stage: Stage | None = None
    iteration: int | None = None
    score: float | None = None
    payload: GenerationResult | None = None
