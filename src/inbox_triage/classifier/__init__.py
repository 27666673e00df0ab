"""Heuristic thread classification.

This package provides the pure, never-raising classification layer:
- Pattern library of case-insensitive regular expressions
- Direction resolver and organization address set
- Intent classifier for received threads
- Category suggester with a declarative scoring table
"""

from inbox_triage.classifier.category import (
    CATEGORY_LABELS,
    CategoryRule,
    CategorySuggester,
    CategorySuggestion,
)
from inbox_triage.classifier.direction import (
    OrgAddressBook,
    TeamMember,
    build_org_addresses,
    resolve_direction,
)
from inbox_triage.classifier.intent import IntentResult, classify_intent, classify_thread_intent
from inbox_triage.classifier.patterns import (
    ACTIONABLE_PATTERNS,
    CATEGORY_PATTERNS,
    IMPORTANT_FYI_PATTERNS,
    LOW_VALUE_ACK_PATTERNS,
    matches_any,
)

__all__ = [
    # Category
    "CATEGORY_LABELS",
    "CategoryRule",
    "CategorySuggester",
    "CategorySuggestion",
    # Direction
    "OrgAddressBook",
    "TeamMember",
    "build_org_addresses",
    "resolve_direction",
    # Intent
    "IntentResult",
    "classify_intent",
    "classify_thread_intent",
    # Patterns
    "ACTIONABLE_PATTERNS",
    "CATEGORY_PATTERNS",
    "IMPORTANT_FYI_PATTERNS",
    "LOW_VALUE_ACK_PATTERNS",
    "matches_any",
]
