"""Deterministic PRD quality scoring.

Every function here is pure: the same text always yields the same scores, and
nothing touches the network or shared state.
"""

from __future__ import annotations

import re

from prd_engine.models.prd_models import QualityScore

REQUIRED_SECTIONS: tuple[str, ...] = (
    "problem",
    "solution",
    "requirements",
    "acceptance",
    "metrics",
    "timeline",
    "risks",
    "api",
    "database",
    "security",
    "monitoring",
    "deployment",
)

TECHNICAL_TERMS: tuple[str, ...] = (
    "api",
    "endpoint",
    "database",
    "schema",
    "authentication",
    "authorization",
    "encryption",
    "latency",
    "throughput",
    "scalability",
    "microservice",
    "cache",
    "queue",
    "webhook",
    "rest",
    "graphql",
    "grpc",
    "jwt",
    "oauth",
    "rbac",
)

VAGUE_TERMS: tuple[str, ...] = (
    "improve",
    "enhance",
    "optimize",
    "better",
    "various",
    "some",
    "many",
    "several",
    "appropriate",
    "suitable",
    "user-friendly",
    "modern",
    "robust",
    "flexible",
)

ACTION_INDICATORS: tuple[str, ...] = (
    "must",
    "shall",
    "will",
    "should",
    "given",
    "when",
    "then",
    "endpoint:",
    "method:",
    "path:",
    "request:",
    "response:",
    "field:",
    "type:",
    "create",
    "implement",
    "deploy",
)

# Composite weights; they must sum to 1.0
WEIGHTS: dict[str, float] = {
    "completeness": 0.20,
    "specificity": 0.25,
    "technical_depth": 0.25,
    "clarity": 0.15,
    "actionability": 0.15,
}

VAGUE_TERM_PENALTY = 10.0

_PERCENT_RE = re.compile(r"\d+(\.\d+)?%")
_TIME_UNIT_RE = re.compile(r"\d+\s*(ms|sec|min|hour|day|week|month)")
_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _fraction_present(text: str, terms: tuple[str, ...]) -> float:
    lowered = text.lower()
    found = sum(1 for term in terms if term in lowered)
    return found / len(terms) * 100


def completeness(text: str) -> float:
    return _fraction_present(text, REQUIRED_SECTIONS)


def specificity(text: str) -> float:
    digits = sum(1 for ch in text if ch.isdigit())
    percentages = len(_PERCENT_RE.findall(text))
    time_units = len(_TIME_UNIT_RE.findall(text))
    dates = len(_ISO_DATE_RE.findall(text))
    raw = digits + percentages * 2 + time_units * 2 + dates * 3
    return min(raw / 2, 100.0)


def technical_depth(text: str) -> float:
    return _fraction_present(text, TECHNICAL_TERMS)


def clarity(text: str) -> float:
    lowered = text.lower()
    vague_count = sum(1 for term in VAGUE_TERMS if term in lowered)
    return max(100.0 - vague_count * VAGUE_TERM_PENALTY, 0.0)


def actionability(text: str) -> float:
    return _fraction_present(text, ACTION_INDICATORS)


def composite(
    completeness_score: float,
    specificity_score: float,
    technical_depth_score: float,
    clarity_score: float,
    actionability_score: float,
) -> float:
    return (
        completeness_score * WEIGHTS["completeness"]
        + specificity_score * WEIGHTS["specificity"]
        + technical_depth_score * WEIGHTS["technical_depth"]
        + clarity_score * WEIGHTS["clarity"]
        + actionability_score * WEIGHTS["actionability"]
    )


def score_document(text: str) -> QualityScore:
    """Score a document on the five quality dimensions and their weighted composite."""
    c = completeness(text)
    s = specificity(text)
    t = technical_depth(text)
    cl = clarity(text)
    a = actionability(text)
    return QualityScore(
        completeness=c,
        specificity=s,
        technical_depth=t,
        clarity=cl,
        actionability=a,
        overall=composite(c, s, t, cl, a),
    )
