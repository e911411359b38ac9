"""Rule-based PRD validation.

Scope detection and validation are both table driven. ``SCOPE_RULES`` is
evaluated in order and the first group with a keyword hit wins.
``VALIDATION_RULES`` always runs in full: every rule appends at most one
message to exactly one of the four result lists.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import NamedTuple

from prd_engine.models.prd_models import ProjectContext
from prd_engine.models.prd_models import Scope
from prd_engine.models.prd_models import ValidationResult


class ScopeRule(NamedTuple):
    keywords: tuple[str, ...]
    scope: Scope


SCOPE_RULES: tuple[ScopeRule, ...] = (
    ScopeRule(("migrate", "migration", "upgrade", "port to", "convert from", "swift 6"), Scope.MIGRATION),
    ScopeRule(("bug", "bugfix", "fix", "crash", "regression", "broken", "defect", "hotfix"), Scope.BUGFIX),
    ScopeRule(
        ("optimize", "optimise", "optimization", "performance", "speed up", "faster", "reduce latency", "memory usage"),
        Scope.OPTIMIZATION,
    ),
    ScopeRule(("platform", "infrastructure", "ci/cd", "sdk", "monorepo", "build system", "tooling"), Scope.PLATFORM),
)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(r"\b" + re.escape(keyword) + r"\b")


_SCOPE_PATTERNS: tuple[tuple[tuple[re.Pattern[str], ...], Scope], ...] = tuple(
    (tuple(_keyword_pattern(k) for k in rule.keywords), rule.scope) for rule in SCOPE_RULES
)


def detect_scope(feature: str, context: str = "") -> Scope:
    """Classify a request. Whole-word matches only, so "prefix" never reads as "fix"."""
    text = f"{feature}\n{context}".lower()
    for patterns, scope in _SCOPE_PATTERNS:
        if any(p.search(text) for p in patterns):
            return scope
    return Scope.FEATURE


class ValidationInput(NamedTuple):
    text: str
    lower: str
    context_lower: str
    scope: Scope
    project: ProjectContext | None

    @property
    def is_ios(self) -> bool:
        return "ios" in self.context_lower or "testflight" in self.context_lower or "TestFlight" in self.text

    @property
    def mentions_swift(self) -> bool:
        return self.scope is Scope.MIGRATION and "swift" in self.lower

    @property
    def ci_pipeline(self) -> str:
        return (self.project.ci_pipeline or "").lower() if self.project else ""


GAP = "critical_gaps"
QUESTION = "clarifying_questions"
ISSUE = "specific_issues"
SUGGESTION = "refinement_suggestions"


class Rule(NamedTuple):
    target: str
    message: str
    applies: Callable[[ValidationInput], bool]


def _has_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


def _missing_concurrency(v: ValidationInput) -> bool:
    return v.mentions_swift and not _has_any(v.text, ("strict concurrency", "Sendable", "@MainActor"))


def _missing_deprecation(v: ValidationInput) -> bool:
    return v.mentions_swift and "deprecat" not in v.text


def _rollback_without_trigger(v: ValidationInput) -> bool:
    return v.scope is Scope.MIGRATION and "Rollback" in v.text and not _has_any(v.text, ("trigger", "threshold"))


def _ios_linux_runner(v: ValidationInput) -> bool:
    return v.is_ios and _has_any(v.text, ("ubuntu-latest", "runs-on: ubuntu"))


def _ios_generate_xcodeproj(v: ValidationInput) -> bool:
    return v.is_ios and "swift package generate-xcodeproj" in v.text


def _ios_missing_xcodebuild(v: ValidationInput) -> bool:
    return v.is_ios and "xcodebuild" not in v.text and "TestFlight" in v.text


def _ios_missing_destination(v: ValidationInput) -> bool:
    return v.is_ios and "xcodebuild" in v.text and "destination" not in v.text


def _has_placeholders(v: ValidationInput) -> bool:
    return _has_any(v.text, ("feature1", "feature2", "TODO", "// Swift 6.2 code"))


_VALIDATOR_VAGUE_TERMS = ("improve", "better", "enhance", "optimize", "various")


def _vague_without_metrics(v: ValidationInput) -> bool:
    if "%" in v.text or "ms" in v.text:
        return False
    return any(term in v.lower for term in _VALIDATOR_VAGUE_TERMS)


_NUMERIC_GATES = ("= 0", "≤", "≥", "100%", "85%", "< ", "> ")


def _no_numeric_gates(v: ValidationInput) -> bool:
    return not _has_any(v.text, _NUMERIC_GATES)


def _acceptance_not_gwt(v: ValidationInput) -> bool:
    return "Acceptance" in v.text and not _has_any(v.text, ("GIVEN", "WHEN", "THEN"))


def _workflow_missing_branches(v: ValidationInput) -> bool:
    return "github" in v.ci_pipeline and "on:" in v.text and "branches:" not in v.text


def _xcodebuild_unformatted(v: ValidationInput) -> bool:
    return "github" in v.ci_pipeline and "xcodebuild" in v.text and not _has_any(v.text, ("xcpretty", "xcbeautify"))


def _missing_coverage(v: ValidationInput) -> bool:
    return bool(v.ci_pipeline) and "test" in v.text and not _has_any(v.text, ("coverage", "xccov"))


def _fake_action(action: str) -> Callable[[ValidationInput], bool]:
    return lambda v: action in v.text


NON_EXISTENT_ACTIONS = ("swift-tools-cache@v1", "actions/run-sh@v2", "swift-setup@v1")

VALIDATION_RULES: tuple[Rule, ...] = (
    # Migration
    Rule(GAP, "Missing Swift 6 concurrency migration steps (Sendable, strict concurrency, actor isolation)", _missing_concurrency),
    Rule(SUGGESTION, "Add section on handling Sendable conformance and @MainActor annotations", _missing_concurrency),
    Rule(
        GAP,
        "No mention of async/await compatibility checks",
        lambda v: v.mentions_swift and "async" not in v.text and "await" not in v.text,
    ),
    Rule(GAP, "Missing deprecation handling strategy", _missing_deprecation),
    Rule(SUGGESTION, "Add step to identify and fix deprecated APIs", _missing_deprecation),
    Rule(
        QUESTION,
        "How are dependencies locked? Using SPM (Package.resolved) or CocoaPods (Podfile.lock)?",
        lambda v: v.scope is Scope.MIGRATION and not _has_any(v.text, ("Package.resolved", "Podfile.lock")),
    ),
    Rule(
        QUESTION,
        "What's the current baseline? (build time, warning count, coverage %)",
        lambda v: v.scope is Scope.MIGRATION and not _has_any(v.text, ("baseline", "current")),
    ),
    Rule(GAP, "Rollback missing specific triggers (e.g., 'if warnings > 50' or 'if coverage < 85%')", _rollback_without_trigger),
    Rule(SUGGESTION, "Define rollback triggers: build failures, coverage drop, perf regression threshold", _rollback_without_trigger),
    # Platform specifics
    Rule(ISSUE, "iOS build using Linux runner - must use macos-14 or macos-latest", _ios_linux_runner),
    Rule(SUGGESTION, "Replace 'ubuntu-latest' with 'macos-14' for iOS builds", _ios_linux_runner),
    Rule(ISSUE, "Using deprecated 'generate-xcodeproj' command", _ios_generate_xcodeproj),
    Rule(SUGGESTION, "Use xcodebuild directly with -workspace or -project flag", _ios_generate_xcodeproj),
    Rule(GAP, "Missing xcodebuild commands for iOS app compilation and archiving", _ios_missing_xcodebuild),
    Rule(SUGGESTION, "Add xcodebuild clean build test archive commands", _ios_missing_xcodebuild),
    Rule(GAP, "xcodebuild missing -destination flag for simulator/device", _ios_missing_destination),
    Rule(SUGGESTION, "Add: -destination 'platform=iOS Simulator,name=iPhone 15'", _ios_missing_destination),
    # General quality
    Rule(ISSUE, "Contains placeholder/template code instead of real implementation", _has_placeholders),
    Rule(SUGGESTION, "Replace placeholder code with actual implementation steps", _has_placeholders),
    Rule(GAP, "Contains vague terms without specific metrics", _vague_without_metrics),
    Rule(
        SUGGESTION,
        "Replace vague terms with measurable targets (e.g., 'reduce by 20%', 'under 100ms')",
        _vague_without_metrics,
    ),
    *(Rule(ISSUE, f"Uses non-existent GitHub Action: {action}", _fake_action(action)) for action in NON_EXISTENT_ACTIONS),
    Rule(
        SUGGESTION,
        "Use official actions: actions/checkout@v4, actions/cache@v4",
        lambda v: any(action in v.text for action in NON_EXISTENT_ACTIONS),
    ),
    # Acceptance criteria
    Rule(GAP, "Acceptance criteria lack numeric thresholds", _no_numeric_gates),
    Rule(SUGGESTION, "Add specific numbers: 'errors = 0', 'warnings ≤ 20', 'coverage ≥ 85%'", _no_numeric_gates),
    Rule(GAP, "Acceptance criteria not in GIVEN-WHEN-THEN format", _acceptance_not_gwt),
    Rule(SUGGESTION, "Format as: GIVEN [context], WHEN [action], THEN [measurable outcome]", _acceptance_not_gwt),
    # CI pipeline
    Rule(GAP, "CI workflow missing branch specification", _workflow_missing_branches),
    Rule(SUGGESTION, "Add 'branches: [main, develop]' to workflow triggers", _workflow_missing_branches),
    Rule(SUGGESTION, "Consider adding xcpretty or xcbeautify for readable output", _xcodebuild_unformatted),
    Rule(GAP, "No test coverage measurement/export defined", _missing_coverage),
    Rule(SUGGESTION, "Add: xcrun xccov view --report to export coverage", _missing_coverage),
)


def validate(
    text: str,
    feature: str,
    context: str = "",
    project: ProjectContext | None = None,
    scope: Scope | None = None,
) -> ValidationResult:
    """Validate a draft against every rule. Never raises on findings."""
    detected = scope or detect_scope(feature, context)
    v = ValidationInput(text=text, lower=text.lower(), context_lower=context.lower(), scope=detected, project=project)
    findings: dict[str, list[str]] = {GAP: [], QUESTION: [], ISSUE: [], SUGGESTION: []}
    for rule in VALIDATION_RULES:
        if rule.applies(v):
            findings[rule.target].append(rule.message)
    return ValidationResult(scope=detected, **findings)


MIGRATION_DEFAULT_QUESTIONS = (
    "What's your current Swift version and target version?",
    "Current warning count and test coverage percentage?",
    "Using SPM or CocoaPods for dependencies?",
)


def clarifying_questions(result: ValidationResult) -> list[str]:
    """Questions to resolve for a validation result, with scope defaults for migrations."""
    questions = list(result.clarifying_questions)
    if result.scope is Scope.MIGRATION and not questions:
        questions.extend(MIGRATION_DEFAULT_QUESTIONS)
    return questions


def build_refinement_brief(result: ValidationResult) -> str:
    """Render validation findings as the issue list handed to a refine prompt."""
    parts: list[str] = []
    if result.critical_gaps:
        parts.append("CRITICAL GAPS TO ADDRESS:\n" + "\n".join(f"- {gap}" for gap in result.critical_gaps))
    if result.specific_issues:
        parts.append("SPECIFIC ISSUES TO FIX:\n" + "\n".join(f"- {issue}" for issue in result.specific_issues))
    if result.refinement_suggestions:
        parts.append("IMPROVEMENTS:\n" + "\n".join(f"- {s}" for s in result.refinement_suggestions))
    return "\n\n".join(parts)
