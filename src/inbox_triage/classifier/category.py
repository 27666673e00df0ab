"""Category suggester: best-guess subject-matter category for a thread.

Scoring is a declarative table of CategoryRule rows. Each row names a
category, whether its patterns run against the subject alone or the
combined subject + snippet, and the score a match contributes. One loop
evaluates the table; adding a category or signal is a data change.

The highest-scoring candidate wins. Ties keep table order (stable sort,
first declared wins). A winner below the confidence threshold falls back
to "uncategorised" but keeps its score as the confidence, so near misses
remain visible in logs.

Usage:
    from inbox_triage.classifier.category import CategorySuggester

    suggester = CategorySuggester()
    result = suggester.suggest("Tax Invoice #55", "please pay by Friday")
    # CategorySuggestion(value="supplier_invoice", reason="subject looks like invoice",
    #                    confidence=85)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Literal

from inbox_triage.classifier.intent import combined_text
from inbox_triage.classifier.patterns import CATEGORY_PATTERNS, matches_any
from inbox_triage.core.logging import get_logger
from inbox_triage.engine.threads import Thread

logger = get_logger(__name__)

Category = Literal[
    "uncategorised",
    "supplier_quote",
    "supplier_invoice",
    "payment",
    "booking",
    "client_query",
    "order_confirmation",
]

CATEGORY_LABELS: Mapping[Category, str] = {
    "uncategorised": "Uncategorised",
    "supplier_quote": "Supplier Quote",
    "supplier_invoice": "Supplier Invoice",
    "payment": "Payment / Receipt",
    "booking": "Booking / Scheduling",
    "client_query": "Client Query",
    "order_confirmation": "Order / Confirmation",
}

# Candidates scoring below this fall back to "uncategorised"
CATEGORY_CONFIDENCE_THRESHOLD = 45


@dataclass(frozen=True, slots=True)
class CategoryRule:
    """One row of the scoring table.

    Attributes:
        name: Stable rule identifier (used for score overrides in config)
        category: Category this rule votes for
        scope: "subject" to match the subject alone, "combined" for subject + snippet
        score: Score contributed when any of the category's patterns match
        reason: Human-readable explanation surfaced with the suggestion
    """

    name: str
    category: Category
    scope: Literal["subject", "combined"]
    score: int
    reason: str


DEFAULT_CATEGORY_RULES: tuple[CategoryRule, ...] = (
    # Strong signals from the subject
    CategoryRule(
        "order_confirmation_subject",
        "order_confirmation",
        "subject",
        90,
        "subject looks like order/confirmation",
    ),
    CategoryRule(
        "supplier_invoice_subject", "supplier_invoice", "subject", 85, "subject looks like invoice"
    ),
    CategoryRule(
        "supplier_quote_subject", "supplier_quote", "subject", 75, "subject looks like quote"
    ),
    # Medium signals from subject + snippet
    CategoryRule(
        "order_confirmation_content",
        "order_confirmation",
        "combined",
        60,
        "content mentions dispatch/ETA/tracking",
    ),
    CategoryRule(
        "supplier_invoice_content",
        "supplier_invoice",
        "combined",
        55,
        "content mentions invoice/payment terms",
    ),
    CategoryRule("payment_content", "payment", "combined", 50, "content mentions payment/receipt"),
    CategoryRule(
        "booking_content", "booking", "combined", 45, "content mentions booking/scheduling"
    ),
    CategoryRule(
        "client_query_content", "client_query", "combined", 40, "question/request detected"
    ),
)


@dataclass(frozen=True, slots=True)
class CategorySuggestion:
    """Suggested category with its confidence score (0-100) and reason."""

    value: Category
    reason: str
    confidence: int

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self.value]


class CategorySuggester:
    """Score a thread against the category rule table.

    Attributes:
        rules: Scoring table, evaluated in order
        threshold: Minimum winning score to report a category
    """

    def __init__(
        self,
        rules: Sequence[CategoryRule] = DEFAULT_CATEGORY_RULES,
        threshold: int = CATEGORY_CONFIDENCE_THRESHOLD,
        score_overrides: Mapping[str, int] | None = None,
    ) -> None:
        """Initialize the suggester.

        Args:
            rules: Scoring table (defaults to DEFAULT_CATEGORY_RULES)
            threshold: Minimum winning score to report a category
            score_overrides: Optional rule name -> score replacements
        """
        overrides = score_overrides or {}
        unknown = set(overrides) - {r.name for r in rules}
        if unknown:
            logger.warning("category_score_override_unknown_rules", rules=sorted(unknown))
        self.rules = tuple(
            replace(r, score=overrides[r.name]) if r.name in overrides else r for r in rules
        )
        self.threshold = threshold

    def suggest(self, subject: str, snippet: str) -> CategorySuggestion:
        """Suggest a category from subject and snippet text.

        Args:
            subject: Thread subject
            snippet: Preview text of the latest message

        Returns:
            CategorySuggestion; "uncategorised" when nothing matches or the
            best score is below the threshold
        """
        subject = subject if isinstance(subject, str) else ""
        snippet = snippet if isinstance(snippet, str) else ""
        texts = {"subject": subject, "combined": combined_text(subject, snippet)}

        candidates = [
            rule
            for rule in self.rules
            if matches_any(texts[rule.scope], CATEGORY_PATTERNS.get(rule.category, ()))
        ]
        if not candidates:
            return CategorySuggestion("uncategorised", "no strong match", 0)

        best = sorted(candidates, key=lambda r: r.score, reverse=True)[0]
        if best.score < self.threshold:
            return CategorySuggestion("uncategorised", "low confidence", best.score)

        return CategorySuggestion(best.category, best.reason, best.score)

    def suggest_for_thread(self, thread: Thread) -> CategorySuggestion:
        return self.suggest(thread.subject, thread.snippet)
