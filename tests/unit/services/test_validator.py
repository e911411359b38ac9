import pytest

from prd_engine.core.exceptions import ValidationFailed
from prd_engine.models.prd_models import ProjectContext
from prd_engine.models.prd_models import Scope
from prd_engine.models.prd_models import ValidationResult
from prd_engine.services.validator import MIGRATION_DEFAULT_QUESTIONS
from prd_engine.services.validator import build_refinement_brief
from prd_engine.services.validator import clarifying_questions
from prd_engine.services.validator import detect_scope
from prd_engine.services.validator import validate

CLEAN_PRD = "Acceptance: GIVEN a signed-out user WHEN they sign in THEN p95 latency ≤ 200ms"


@pytest.mark.parametrize(
    "feature,expected",
    [
        ("Migrate the app to Swift 6", Scope.MIGRATION),
        ("Fix login crash on launch", Scope.BUGFIX),
        ("Speed up feed performance", Scope.OPTIMIZATION),
        ("Set up CI/CD for the monorepo", Scope.PLATFORM),
        ("Add prefix search to contacts", Scope.FEATURE),
    ],
)
def test_detect_scope(feature, expected):
    assert detect_scope(feature) is expected


def test_detect_scope_first_rule_wins():
    # Both migration and bugfix keywords; migration is checked first
    assert detect_scope("Upgrade the SDK to fix the crash") is Scope.MIGRATION


def test_detect_scope_reads_context():
    assert detect_scope("Checkout screen", context="There is a regression since 2.3") is Scope.BUGFIX


def test_oauth_ios_draft_missing_destination_flag():
    draft = (
        "Acceptance: GIVEN a user WHEN they log in with OAuth2 THEN errors = 0\n"
        "Build: xcodebuild -scheme App test\n"
        "Ship to TestFlight after review."
    )
    assert detect_scope("Add OAuth2 login", "iOS app") is Scope.FEATURE
    result = validate(draft, "Add OAuth2 login", context="iOS app")

    assert result.scope is Scope.FEATURE
    assert "xcodebuild missing -destination flag for simulator/device" in result.critical_gaps
    assert not result.is_production_ready
    assert result.needs_refinement


def test_validate_is_idempotent():
    draft = "We will improve onboarding. TODO: details. Uses swift-setup@v1."
    first = validate(draft, "Improve onboarding")
    second = validate(draft, "Improve onboarding")
    assert first == second


def test_general_rules_flag_placeholders_and_fake_actions():
    result = validate("TODO: write steps. uses: actions/run-sh@v2", "New feature")
    assert "Contains placeholder/template code instead of real implementation" in result.specific_issues
    assert "Uses non-existent GitHub Action: actions/run-sh@v2" in result.specific_issues
    assert "Use official actions: actions/checkout@v4, actions/cache@v4" in result.refinement_suggestions


def test_clean_draft_is_production_ready():
    result = validate(CLEAN_PRD, "Add sign in")
    assert result.critical_gaps == []
    assert result.specific_issues == []
    assert result.is_production_ready
    assert result.summary == "PRD is production-ready"


def test_migration_rules_only_apply_to_migrations():
    text = "Move to Swift 6. Rollback if needed. errors = 0"
    migration = validate(text, "Migrate to Swift 6")
    feature = validate(text, "Add profile screen")

    assert migration.scope is Scope.MIGRATION
    assert any("Rollback missing specific triggers" in gap for gap in migration.critical_gaps)
    assert migration.clarifying_questions
    assert feature.clarifying_questions == []


def test_ci_rules_use_project_context():
    text = "on: push\njobs: run tests with xcodebuild -destination 'platform=iOS Simulator' errors = 0"
    result = validate(text, "Add CI", project=ProjectContext(ci_pipeline="GitHub Actions"))

    assert "CI workflow missing branch specification" in result.critical_gaps
    assert "No test coverage measurement/export defined" in result.critical_gaps
    assert "Consider adding xcpretty or xcbeautify for readable output" in result.refinement_suggestions


def test_clarifying_questions_adds_migration_defaults():
    result = ValidationResult(scope=Scope.MIGRATION)
    assert clarifying_questions(result) == list(MIGRATION_DEFAULT_QUESTIONS)
    assert clarifying_questions(ValidationResult(scope=Scope.FEATURE)) == []


def test_build_refinement_brief_sections():
    result = ValidationResult(critical_gaps=["gap"], specific_issues=["issue"], refinement_suggestions=["tip"])
    brief = build_refinement_brief(result)
    assert "CRITICAL GAPS TO ADDRESS:\n- gap" in brief
    assert "SPECIFIC ISSUES TO FIX:\n- issue" in brief
    assert "IMPROVEMENTS:\n- tip" in brief
    assert build_refinement_brief(ValidationResult()) == ""


def test_raise_for_findings():
    validate(CLEAN_PRD, "Add sign in").raise_for_findings()
    with pytest.raises(ValidationFailed) as exc_info:
        validate("TODO", "Add sign in").raise_for_findings()
    assert exc_info.value.issues == ["Contains placeholder/template code instead of real implementation"]
