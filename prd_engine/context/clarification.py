"""Clarification collection: auto-answer from linked context, then ask a human.

For each question the collector tries, in order, the indexed codebase of the
linked project, then the request's mockups, and only then a human. The first
source whose confidence clears its threshold answers the question; answers are
never blended across sources.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Protocol

from rapidfuzz.distance import Levenshtein

from prd_engine.context.resolver import ContextResolver
from prd_engine.core.config import Settings
from prd_engine.models.prd_models import AnswerSource
from prd_engine.models.prd_models import ClarificationAnswer
from prd_engine.models.prd_models import ContextAvailability
from prd_engine.models.prd_models import ContextResponse

logger = logging.getLogger(__name__)

LEVENSHTEIN_SIMILARITY_THRESHOLD = 0.7
JACCARD_SIMILARITY_THRESHOLD = 0.6

COMMON_WORDS = frozenset(
    {
        "what", "which", "when", "where", "should", "could", "would", "will", "with", "have",
        "that", "this", "from", "been", "being", "about", "into", "through", "during", "before",
        "after", "above", "below", "between", "under", "again", "further", "then", "once", "here",
        "there", "both", "each", "more", "most", "other", "some", "such", "only", "same", "than",
        "very", "just", "used", "using", "specific", "need", "needs", "needed", "method",
    }
)  # fmt: skip

_WORD_SPLIT_RE = re.compile(r"[\W_]+")


class HumanPrompt(Protocol):
    async def ask(self, question: str) -> str: ...


class ConsoleHumanPrompt:
    """Asks on stdin without blocking the event loop."""

    def __init__(self, prompt_suffix: str = "\n> "):
        self.prompt_suffix = prompt_suffix

    async def ask(self, question: str) -> str:
        try:
            answer = await asyncio.to_thread(input, f"{question}{self.prompt_suffix}")
        except EOFError:
            return ""
        return answer.strip()


# ---------------------------------------------------------------
# Question similarity helpers
# ---------------------------------------------------------------


def significant_words(text: str) -> set[str]:
    """Lowercased words longer than three characters, minus common English words."""
    return {w for w in _WORD_SPLIT_RE.split(text.lower()) if len(w) > 3 and w not in COMMON_WORDS}


def _normalize(text: str) -> str:
    return " ".join(_WORD_SPLIT_RE.split(text.lower().strip())).strip()


def are_similar(first: str, second: str) -> bool:
    a, b = _normalize(first), _normalize(second)
    if a == b:
        return True
    if Levenshtein.normalized_similarity(a, b) > LEVENSHTEIN_SIMILARITY_THRESHOLD:
        return True

    words_a, words_b = significant_words(first), significant_words(second)
    if not words_a or not words_b:
        return False
    jaccard = len(words_a & words_b) / len(words_a | words_b)
    return jaccard > JACCARD_SIMILARITY_THRESHOLD


def deduplicate_questions(questions: list[str]) -> list[str]:
    """Drop blank and near-duplicate questions, keeping the first occurrence."""
    kept: list[str] = []
    for question in questions:
        question = question.strip()
        if not question:
            continue
        if any(are_similar(question, existing) for existing in kept):
            logger.debug("Dropping near-duplicate clarification question: %s", question)
            continue
        kept.append(question)
    return kept


def build_search_query(question: str) -> str:
    words = [w for w in _WORD_SPLIT_RE.split(question.lower()) if w in significant_words(question)]
    # Preserve question order while removing repeats
    return " ".join(dict.fromkeys(words)) or question.strip()


# ---------------------------------------------------------------
# Collector
# ---------------------------------------------------------------


class ClarificationCollector:
    def __init__(
        self,
        settings: Settings,
        resolver: ContextResolver | None = None,
        human_prompt: HumanPrompt | None = None,
    ):
        self.settings = settings
        self.resolver = resolver
        self.human_prompt = human_prompt

    async def collect(
        self,
        questions: list[str],
        request_id: str | None = None,
        project_id: str | None = None,
        human_prompt: HumanPrompt | None = None,
    ) -> list[ClarificationAnswer]:
        """Resolve questions sequentially; returns the answers in question order.

        Questions nobody could answer (no confident source, no human prompt, or
        an empty human reply) are left out of the result.
        """
        prompt = human_prompt or self.human_prompt
        unique = deduplicate_questions(questions)
        if not unique:
            return []

        availability = await self._availability(request_id)
        logger.info(
            "[%s] Collecting %d clarification(s); context available: %s",
            request_id,
            len(unique),
            availability.has_any if availability else False,
        )

        answers: list[ClarificationAnswer] = []
        for question in unique:
            answer = None
            if self.resolver is not None and availability is not None and availability.has_any and request_id:
                answer = await self._auto_answer(self.resolver, question, availability, request_id, project_id)
            if answer is None:
                answer = await self._ask_human(question, prompt, request_id)
            if answer is not None:
                answers.append(answer)
        return answers

    async def _availability(self, request_id: str | None) -> ContextAvailability | None:
        if self.resolver is None or not request_id:
            return None
        try:
            return await asyncio.wait_for(self.resolver.has_context(request_id), timeout=self.settings.context_query_timeout)
        except Exception as e:
            logger.warning("[%s] Context availability check failed: %s", request_id, e, exc_info=False)
            return None

    async def _auto_answer(
        self,
        resolver: ContextResolver,
        question: str,
        availability: ContextAvailability,
        request_id: str,
        project_id: str | None,
    ) -> ClarificationAnswer | None:
        search_query = build_search_query(question)

        codebase_project = project_id or availability.codebase_project_id
        if availability.has_codebase and availability.is_codebase_indexed and codebase_project:
            response = await self._query(
                resolver.query_codebase_context(codebase_project, question, search_query), request_id, "codebase"
            )
            answer = self._accept(question, response, AnswerSource.CODEBASE, self.settings.codebase_confidence_threshold)
            if answer is not None:
                return answer

        if availability.has_mockups:
            response = await self._query(resolver.query_mockup_context(request_id, search_query), request_id, "mockup")
            answer = self._accept(question, response, AnswerSource.MOCKUP, self.settings.mockup_confidence_threshold)
            if answer is not None:
                return answer
        return None

    async def _query(self, call, request_id: str, source: str) -> ContextResponse | None:
        try:
            return await asyncio.wait_for(call, timeout=self.settings.context_query_timeout)
        except Exception as e:
            logger.warning("[%s] %s context query failed, treating as unanswered: %s", request_id, source, e, exc_info=False)
            return None

    @staticmethod
    def _accept(
        question: str, response: ContextResponse | None, source: AnswerSource, threshold: float
    ) -> ClarificationAnswer | None:
        if response is None or not response.summary.strip():
            return None
        if response.confidence < threshold:
            logger.debug(
                "%s answer below threshold (%.2f < %.2f) for: %s", source.value, response.confidence, threshold, question
            )
            return None
        logger.info("Auto-answered from %s (confidence %.2f): %s", source.value, response.confidence, question)
        return ClarificationAnswer(
            question=question, answer=response.summary.strip(), source=source, confidence=response.confidence
        )

    async def _ask_human(
        self, question: str, prompt: HumanPrompt | None, request_id: str | None
    ) -> ClarificationAnswer | None:
        if prompt is None:
            logger.info("[%s] No human prompt bound; leaving unanswered: %s", request_id, question)
            return None
        reply = (await prompt.ask(question)).strip()
        if not reply:
            logger.debug("[%s] Empty answer discarded for: %s", request_id, question)
            return None
        return ClarificationAnswer(question=question, answer=reply, source=AnswerSource.HUMAN)
