"""Per-session acronym glossary and domain detection."""

from __future__ import annotations

import re
from typing import NamedTuple


class DomainRule(NamedTuple):
    domain: str
    indicators: tuple[str, ...]


# Evaluated in order, first indicator hit wins
DOMAIN_RULES: tuple[DomainRule, ...] = (
    DomainRule("mobile", ("ios", "android", "swiftui", "testflight", "xcode", "mobile app")),
    DomainRule("payments", ("payment", "checkout", "billing", "invoice", "stripe", "refund")),
    DomainRule("security", ("oauth", "authentication", "sso", "encryption", "rbac", "compliance")),
    DomainRule("data", ("analytics", "etl", "data warehouse", "dashboard", "reporting", "pipeline")),
    DomainRule("infrastructure", ("kubernetes", "terraform", "ci/cd", "deployment", "monitoring", "observability")),
    DomainRule("ecommerce", ("cart", "catalog", "inventory", "order", "shipping")),
)

DEFAULT_DOMAIN = "general"


def detect_domain(text: str) -> str:
    lowered = text.lower()
    for rule in DOMAIN_RULES:
        if any(indicator in lowered for indicator in rule.indicators):
            return rule.domain
    return DEFAULT_DOMAIN


class Glossary:
    """Acronym -> definition map owned by one session."""

    def __init__(self, terms: dict[str, str] | None = None):
        self._terms: dict[str, str] = {}
        for acronym, definition in (terms or {}).items():
            self.add(acronym, definition)

    def add(self, acronym: str, definition: str) -> None:
        acronym = acronym.strip()
        definition = definition.strip()
        if not acronym or not definition:
            raise ValueError("Glossary entries need a non-empty acronym and definition")
        self._terms[acronym] = definition

    def definition(self, acronym: str) -> str | None:
        return self._terms.get(acronym)

    def entries(self) -> dict[str, str]:
        return dict(self._terms)

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, acronym: object) -> bool:
        return acronym in self._terms

    def resolve(self, text: str) -> str:
        """Expand the first whole-word use of each known acronym as ``ACR (definition)``.

        Acronyms already followed by their expansion are left alone, and longer
        acronyms are handled first so "APIs" style overlaps resolve predictably.
        """
        resolved = text
        for acronym in sorted(self._terms, key=len, reverse=True):
            definition = self._terms[acronym]
            expanded = f"{acronym} ({definition})"
            if expanded in resolved:
                continue
            pattern = re.compile(r"(?<![A-Za-z0-9])" + re.escape(acronym) + r"(?![A-Za-z0-9])")
            resolved = pattern.sub(expanded, resolved, count=1)
        return resolved

    def system_policy(self, domain: str = DEFAULT_DOMAIN) -> str:
        if not self._terms:
            return ""
        pairs = "; ".join(f"{acronym}: {definition}" for acronym, definition in sorted(self._terms.items()))
        return (
            f"Acronym Policy (Domain: {domain.capitalize()}):\n"
            "- Use the following glossary when interpreting acronyms.\n"
            "- If an acronym is not in the glossary or is ambiguous, ask a brief clarification question instead of guessing.\n"
            '- On first use, expand the acronym in parentheses, e.g. "PRD (Product Requirements Document)".\n'
            f"Glossary: {pairs}"
        )
