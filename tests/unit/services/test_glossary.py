import pytest

from prd_engine.services.glossary import DEFAULT_DOMAIN
from prd_engine.services.glossary import Glossary
from prd_engine.services.glossary import detect_domain


def test_resolve_expands_first_whole_word_use_only():
    glossary = Glossary({"SLA": "Service Level Agreement"})
    text = glossary.resolve("The SLA is 99.9%. Breaching the SLA pages on-call.")
    assert text == "The SLA (Service Level Agreement) is 99.9%. Breaching the SLA pages on-call."


def test_resolve_ignores_partial_words_and_existing_expansions():
    glossary = Glossary({"API": "Application Programming Interface"})
    assert glossary.resolve("RAPID APIs") == "RAPID APIs"
    already = "API (Application Programming Interface) first, then API."
    assert glossary.resolve(already) == already


def test_add_rejects_empty_entries():
    glossary = Glossary()
    with pytest.raises(ValueError):
        glossary.add("  ", "something")
    glossary.add(" KPI ", "Key Performance Indicator")
    assert glossary.definition("KPI") == "Key Performance Indicator"
    assert "KPI" in glossary
    assert len(glossary) == 1


def test_system_policy():
    assert Glossary().system_policy() == ""
    policy = Glossary({"PRD": "Product Requirements Document"}).system_policy("mobile")
    assert "Domain: Mobile" in policy
    assert "PRD: Product Requirements Document" in policy


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Ship the iOS widget via TestFlight", "mobile"),
        ("Refund flow for checkout", "payments"),
        ("Add OAuth sign-in", "security"),
        ("A nice new settings screen", DEFAULT_DOMAIN),
    ],
)
def test_detect_domain(text, expected):
    assert detect_domain(text) == expected
