from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from uuid import uuid4

from prd_engine.context.clarification import ClarificationCollector
from prd_engine.context.clarification import HumanPrompt
from prd_engine.core.config import Settings
from prd_engine.core.exceptions import AllProvidersExhausted
from prd_engine.core.exceptions import JSONParsingError
from prd_engine.core.exceptions import PipelineError
from prd_engine.models.prd_models import ClarificationAnswer
from prd_engine.models.prd_models import GenerationRequest
from prd_engine.models.prd_models import GenerationResult
from prd_engine.models.prd_models import Message
from prd_engine.models.prd_models import PipelineEvent
from prd_engine.models.prd_models import PipelineStageResult
from prd_engine.models.prd_models import ProjectContext
from prd_engine.models.prd_models import QualityReport
from prd_engine.models.prd_models import QualityScore
from prd_engine.models.prd_models import Scope
from prd_engine.models.prd_models import Stage
from prd_engine.models.prd_models import ValidationResult
from prd_engine.services.llm import build_conversation
from prd_engine.services.llm import extract_json
from prd_engine.services.llm import render_prompt
from prd_engine.services.quality import score_document
from prd_engine.services.router import ProviderRouter
from prd_engine.services.validator import build_refinement_brief
from prd_engine.services.validator import clarifying_questions
from prd_engine.services.validator import detect_scope
from prd_engine.services.validator import validate

logger = logging.getLogger(__name__)


# "Completeness (8/10)", "Overall: 7 out of 10", "Clarity (1-10): 7"
_CRITIQUE_SCORE_PATTERNS = (
    re.compile(r"\(\d+-10\):\s*(\d+(?:\.\d+)?)"),
    re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:out of|/)\s*10\b"),
)
_READY_PHRASES = ("ready for development? yes", "overall: ready")
_NOT_READY_PHRASES = ("ready for development? no", "overall: not ready")


def extract_score_from_critique(critique: str) -> float | None:
    """Turn a free-text critique into a 0-100 score, or None when it states none.

    Every "N/10"-style rating is scaled by 10 and averaged. A readiness verdict
    moves the average to at least 85 (ready) or at most 70 (not ready).
    """
    scores: list[float] = []
    for pattern in _CRITIQUE_SCORE_PATTERNS:
        scores.extend(min(float(m.group(1)), 10.0) * 10 for m in pattern.finditer(critique))

    average = sum(scores) / len(scores) if scores else None
    lowered = critique.lower()
    if any(p in lowered for p in _NOT_READY_PHRASES):
        return min(70.0, average if average is not None else 70.0)
    if any(p in lowered for p in _READY_PHRASES):
        return max(85.0, average if average is not None else 85.0)
    return average


def research_open_questions(research: str) -> list[str]:
    """Open questions listed by the research stage; empty when it listed none."""
    if not research:
        return []
    try:
        findings = extract_json(research)
    except JSONParsingError:
        return []
    questions = findings.get("open_questions") if isinstance(findings, dict) else None
    if not isinstance(questions, list):
        return []
    return [q.strip() for q in questions if isinstance(q, str) and q.strip()]


@dataclass
class _Draft:
    """A scored candidate document; the best one seen is what the run returns."""

    text: str
    provider: str
    quality: QualityScore
    validation: ValidationResult
    gate: float
    critique: str = ""
    critique_score: float | None = None


class GenerationPipeline:
    """Runs research -> plan -> draft -> critique <-> refine for one request.

    The critique/refine loop stops when the gating score reaches the quality
    target or after ``max_refine_iterations`` refinements. The gating score is
    the deterministic composite, capped by the critique's own score when the
    critique states one.
    """

    def __init__(
        self,
        router: ProviderRouter,
        settings: Settings,
        collector: ClarificationCollector | None = None,
    ):
        self.router = router
        self.settings = settings
        self.collector = collector

    # -----------------------------------------------------------------
    # Stage helpers
    # -----------------------------------------------------------------

    def _conversation(self, system_prompt: str, user_prompt: str, history: list[Message] | None = None) -> list[Message]:
        return build_conversation(system_prompt, user_prompt, history, max_chars=self.settings.max_prompt_chars)

    async def _structured_stage(
        self,
        request_id: str,
        stage: Stage,
        template_name: str,
        system_prompt: str,
        history: list[Message] | None,
        **context,
    ) -> PipelineStageResult:
        """Best-effort JSON stage. Provider exhaustion degrades to an empty result."""
        prompt = render_prompt(template_name, **context)
        try:
            routed = await self.router.execute(
                self._conversation(system_prompt, prompt, history), needs_json=True, request_id=request_id
            )
        except AllProvidersExhausted as e:
            logger.warning("[%s] %s stage skipped: %s", request_id, stage.value, e, exc_info=False)
            return PipelineStageResult(stage=stage, text="")

        try:
            text = json.dumps(extract_json(routed.text), indent=2, ensure_ascii=False)
        except JSONParsingError:
            logger.debug("[%s] %s output is not JSON, keeping raw text", request_id, stage.value)
            text = routed.text.strip()
        return PipelineStageResult(stage=stage, text=text)

    async def _critique(self, request_id: str, system_prompt: str, feature: str, document: str) -> tuple[str, float | None]:
        prompt = render_prompt("critique_prompt.jinja2", feature=feature, document=document)
        try:
            routed = await self.router.execute(self._conversation(system_prompt, prompt), request_id=request_id)
        except AllProvidersExhausted as e:
            logger.warning("[%s] Critique unavailable, gating on composite score only: %s", request_id, e, exc_info=False)
            return "", None
        return routed.text, extract_score_from_critique(routed.text)

    def _score(
        self,
        text: str,
        provider: str,
        request: GenerationRequest,
        project: ProjectContext | None,
        scope: Scope,
        critique: str,
        critique_score: float | None,
    ) -> _Draft:
        quality = score_document(text)
        gate = quality.overall if critique_score is None else min(critique_score, quality.overall)
        validation = validate(text, request.feature, request.context, project=project, scope=scope)
        return _Draft(
            text=text,
            provider=provider,
            quality=quality,
            validation=validation,
            gate=gate,
            critique=critique,
            critique_score=critique_score,
        )

    # -----------------------------------------------------------------
    # Streaming run
    # -----------------------------------------------------------------

    async def run(
        self,
        request: GenerationRequest,
        system_prompt: str,
        history: list[Message] | None = None,
        project: ProjectContext | None = None,
        human_prompt: HumanPrompt | None = None,
    ) -> AsyncGenerator[PipelineEvent, None]:
        """Run the pipeline, yielding progress events and finally a ``data`` event.

        ``AllProvidersExhausted`` during DRAFT is reported with an ``error``
        event and then re-raised. Cancellation propagates untouched.
        """
        request_id = request.request_id or str(uuid4())
        target = self.settings.quality_target
        max_iterations = self.settings.max_refine_iterations
        scope = detect_scope(request.feature, request.context)
        logger.info("[%s] Starting generation pipeline (scope=%s, target=%.1f)", request_id, scope.value, target)

        try:
            yield PipelineEvent(type="status", stage=Stage.RESEARCH, message="Researching the request...")
            research = await self._structured_stage(
                request_id,
                Stage.RESEARCH,
                "research_prompt.jinja2",
                system_prompt,
                history,
                feature=request.feature,
                context=request.context,
                priority=request.priority,
                requirements=request.requirements,
            )

            yield PipelineEvent(type="status", stage=Stage.PLAN, message="Planning document structure...")
            plan = await self._structured_stage(
                request_id,
                Stage.PLAN,
                "plan_prompt.jinja2",
                system_prompt,
                history,
                feature=request.feature,
                scope=scope.value,
                research=research.text,
            )

            yield PipelineEvent(type="status", stage=Stage.DRAFT, message="Writing the first draft...")
            draft_prompt = render_prompt(
                "draft_prompt.jinja2",
                feature=request.feature,
                context=request.context,
                priority=request.priority,
                requirements=request.requirements,
                scope=scope.value,
                plan=plan.text,
            )
            routed = await self.router.execute(
                self._conversation(system_prompt, draft_prompt, history), request_id=request_id
            )
            current = PipelineStageResult(stage=Stage.DRAFT, text=routed.text)
            current_provider = routed.provider

            iteration = 0
            best: _Draft | None = None
            exhausted = False
            clarifications: list[ClarificationAnswer] = []

            while True:
                yield PipelineEvent(type="status", stage=Stage.CRITIQUE, iteration=iteration, message="Reviewing draft...")
                critique, critique_score = await self._critique(request_id, system_prompt, request.feature, current.text)
                scored = self._score(current.text, current_provider, request, project, scope, critique, critique_score)
                if best is None or scored.gate > best.gate:
                    best = scored
                logger.info(
                    "[%s] Iteration %d scored %.1f (composite %.1f, critique %s)",
                    request_id,
                    iteration,
                    scored.gate,
                    scored.quality.overall,
                    "n/a" if critique_score is None else f"{critique_score:.1f}",
                )
                yield PipelineEvent(type="score", stage=Stage.CRITIQUE, iteration=iteration, score=scored.gate)

                if scored.gate >= target or iteration >= max_iterations:
                    break

                if iteration == 0 and self.collector is not None:
                    questions = (
                        list(request.open_questions)
                        + research_open_questions(research.text)
                        + clarifying_questions(scored.validation)
                    )
                    if questions:
                        yield PipelineEvent(type="status", stage=Stage.CRITIQUE, message="Resolving open questions...")
                        clarifications = await self.collector.collect(
                            questions,
                            request_id=request.request_id,
                            project_id=request.project_id,
                            human_prompt=human_prompt,
                        )

                yield PipelineEvent(
                    type="status", stage=Stage.REFINE, iteration=iteration + 1, message="Refining the best draft..."
                )
                refine_prompt = render_prompt(
                    "refine_prompt.jinja2",
                    feature=request.feature,
                    document=best.text,
                    critique=best.critique,
                    brief=build_refinement_brief(best.validation),
                    clarifications=clarifications,
                )
                try:
                    routed = await self.router.execute(self._conversation(system_prompt, refine_prompt), request_id=request_id)
                except AllProvidersExhausted as e:
                    logger.warning("[%s] Refinement stopped, providers exhausted: %s", request_id, e, exc_info=False)
                    exhausted = True
                    break
                current = PipelineStageResult(stage=Stage.REFINE, text=routed.text, iteration=iteration + 1)
                current_provider = routed.provider
                iteration += 1

            report = QualityReport(
                score=best.quality,
                iterations=iteration,
                target=target,
                validation=best.validation,
                meets_target=best.gate >= target,
                exhausted=exhausted,
                critique_score=best.critique_score,
                clarifications=clarifications,
            )
            result = GenerationResult(document=best.text, provider=best.provider, quality=report)
            logger.info(
                "[%s] Pipeline completed: score %.1f after %d iteration(s), meets target: %s",
                request_id,
                best.gate,
                iteration,
                report.meets_target,
            )
            yield PipelineEvent(type="status", stage=Stage.DONE, message="Document ready.", score=best.gate)
            yield PipelineEvent(type="data", stage=Stage.DONE, payload=result)

        except AllProvidersExhausted as e:
            logger.error("[%s] Pipeline failed, no provider could draft: %s", request_id, e, exc_info=False)
            yield PipelineEvent(type="error", stage=Stage.FAILED, message=str(e))
            raise
        finally:
            logger.info("[%s] Pipeline processing finished.", request_id)

    async def execute(
        self,
        request: GenerationRequest,
        system_prompt: str,
        history: list[Message] | None = None,
        project: ProjectContext | None = None,
        human_prompt: HumanPrompt | None = None,
    ) -> GenerationResult:
        """Drain :meth:`run` and return its result."""
        result: GenerationResult | None = None
        async for event in self.run(request, system_prompt, history, project=project, human_prompt=human_prompt):
            if event.type == "data":
                result = event.payload
        if result is None:
            raise PipelineError("Pipeline finished without producing a document")
        return result
