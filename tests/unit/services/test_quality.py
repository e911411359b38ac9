import pytest

from prd_engine.services import quality
from prd_engine.services.quality import REQUIRED_SECTIONS
from prd_engine.services.quality import WEIGHTS
from prd_engine.services.quality import score_document


def test_weights_sum_to_one():
    assert sum(WEIGHTS.values()) == pytest.approx(1.0)


def test_completeness_bounds():
    assert quality.completeness("") == 0.0
    assert quality.completeness(" ".join(REQUIRED_SECTIONS)) == 100.0


def test_completeness_is_case_insensitive():
    assert quality.completeness("PROBLEM and SOLUTION") == pytest.approx(2 / 12 * 100)


def test_specificity_counts_numbers_units_and_dates():
    # 14 digits + 1 percentage (x2) + 1 time unit (x2) + 1 ISO date (x3) = 21 -> 10.5
    text = "Latency 200ms, 99.9% uptime by 2025-01-01"
    assert quality.specificity(text) == pytest.approx(10.5)


def test_specificity_is_capped():
    assert quality.specificity("1" * 500) == 100.0


def test_clarity_penalizes_each_distinct_vague_term_once():
    assert quality.clarity("improve and enhance") == 80.0
    assert quality.clarity("improve improve improve") == 90.0
    assert quality.clarity(" ".join(quality.VAGUE_TERMS)) == 0.0


def test_technical_depth_and_actionability():
    assert quality.technical_depth("api with jwt and oauth") == pytest.approx(3 / 20 * 100)
    assert quality.actionability("The system must create a record") == pytest.approx(2 / 17 * 100)


def test_score_document_composite_matches_weights():
    text = "Problem: login is slow. Solution: add an API cache. Requirements: must respond in 200ms."
    score = score_document(text)
    expected = (
        score.completeness * 0.20
        + score.specificity * 0.25
        + score.technical_depth * 0.25
        + score.clarity * 0.15
        + score.actionability * 0.15
    )
    assert score.overall == pytest.approx(expected)


def test_score_document_is_pure():
    text = "Security review by 2025-03-01; p95 latency under 150ms for the endpoint."
    assert score_document(text) == score_document(text)


def test_score_summary_and_readiness():
    score = score_document("")
    assert score.summary.startswith("PRD Quality Score:")
    assert not score.is_production_ready()
    assert score.is_production_ready(target=0.0)
