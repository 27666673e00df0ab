"""Pattern library for heuristic thread classification.

Immutable groups of case-insensitive regular expressions, one group per
semantic intent:

- ACTIONABLE_PATTERNS: questions, requests, urgency, problems, scheduling, pricing
- IMPORTANT_FYI_PATTERNS: order confirmations, invoices, shipping/tracking/ETA,
  backorders, pickup-ready notices
- LOW_VALUE_ACK_PATTERNS: thanks, confirmations, short affirmations
- CATEGORY_PATTERNS: per-category signal groups used by the category suggester

Matching uses the `regex` library with a per-match timeout. A timeout counts
as "no match" so classification can never raise.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import regex

from inbox_triage.core.logging import get_logger

logger = get_logger(__name__)

# Regex timeout for security (seconds, passed at match time)
REGEX_TIMEOUT = 1.0

PatternGroup = tuple[regex.Pattern, ...]


def compile_group(*patterns: str) -> PatternGroup:
    """Compile raw pattern strings into an immutable case-insensitive group."""
    return tuple(regex.compile(p, regex.IGNORECASE) for p in patterns)


IMPORTANT_FYI_PATTERNS = compile_group(
    r"order confirmation",
    r"\bpurchase order\b",
    r"\bpo\b",
    r"invoice",
    r"tax invoice",
    r"receipt",
    r"payment (received|successful|confirmation)",
    r"dispatch(ed)?",
    r"shipping",
    r"tracking",
    r"delivery (update|scheduled|eta)",
    r"\beta\b",
    r"\bbackorder(ed)?\b",
    r"\bready for pickup\b",
    r"\bready for collection\b",
)

LOW_VALUE_ACK_PATTERNS = compile_group(
    r"\ball paid\b",
    r"\bpaid in full\b",
    r"\bpayment done\b",
    r"\bpayment sent\b",
    r"\bthanks\b",
    r"\bthank you\b",
    r"\bcheers\b",
    r"\bno worries\b",
    r"\ball good\b",
    r"\bokay\b",
    r"\bok\b",
    r"\bperfect\b",
    r"\bgreat\b",
    r"\blooks good\b",
    r"\bconfirmed\b",
    r"\bapproved\b",
)

ACTIONABLE_PATTERNS = compile_group(
    r"\?",
    r"\bcan you\b",
    r"\bcould you\b",
    r"\bplease\b",
    r"\burgent\b",
    r"\basap\b",
    r"\bcall me\b",
    r"\bwhen\b",
    r"\bhow\b",
    r"\bquote\b",
    r"\bprice\b",
    r"\bcost\b",
    r"\bschedule\b",
    r"\bbooking\b",
    r"\binstall\b",
    r"\brepair\b",
    r"\bissue\b",
    r"\bproblem\b",
    r"\bnot working\b",
    r"\bbroken\b",
    r"\bleak\b",
    r"\brefund\b",
    r"\bwarranty\b",
    r"\bcomplaint\b",
    r"\bchange\b",
    r"\bupdate\b",
    r"\bcancel\b",
    r"\breschedule\b",
)

CATEGORY_PATTERNS: Mapping[str, PatternGroup] = MappingProxyType(
    {
        "supplier_invoice": compile_group(
            r"\btax invoice\b",
            r"\binvoice\b",
            r"\bstatement\b",
            r"\bamount due\b",
            r"\bpayable\b",
            r"\bremit(tance)?\b",
            r"\bpro[- ]?forma\b",
        ),
        "supplier_quote": compile_group(
            r"\bquote\b",
            r"\bquotation\b",
            r"\bpricing\b",
            r"\bestimate\b",
            r"\bprice\b",
        ),
        "payment": compile_group(
            r"\bpayment received\b",
            r"\bpaid\b",
            r"\bpaid in full\b",
            r"\breceipt\b",
            r"\bdeposit\b",
            r"\bremittance\b",
            r"\btransfer\b",
        ),
        "booking": compile_group(
            r"\bbooking\b",
            r"\bschedule\b",
            r"\bappointment\b",
            r"\bsite visit\b",
            r"\binstall\b",
            r"\breschedule\b",
            r"\bconfirm (a )?time\b",
            r"\bwhat time\b",
            r"\bdate\b",
            r"\bavailability\b",
        ),
        "order_confirmation": compile_group(
            r"\border confirmation\b",
            r"\bpurchase order\b",
            r"\bpo\b",
            r"\border (has been )?(placed|confirmed)\b",
            r"\bdispatch(ed)?\b",
            r"\btracking\b",
            r"\bready for pickup\b",
            r"\bcollection\b",
            r"\bdelivery\b",
            r"\beta\b",
            r"\bback[- ]?order(ed)?\b",
        ),
        "client_query": compile_group(
            r"\?",
            r"\bcan you\b",
            r"\bcould you\b",
            r"\bplease\b",
            r"\bhow\b",
            r"\bwhen\b",
            r"\bwhy\b",
            r"\bissue\b",
            r"\bproblem\b",
            r"\bnot working\b",
            r"\bbroken\b",
            r"\bwarranty\b",
            r"\bchange\b",
            r"\bupdate\b",
            r"\bcancel\b",
        ),
    }
)


def matches_any(text: object, patterns: Iterable[regex.Pattern]) -> bool:
    """Check whether any pattern matches somewhere in the text.

    Args:
        text: Text to search; non-strings are treated as empty
        patterns: Compiled patterns to try in order

    Returns:
        True on the first match. Patterns that time out are skipped.
    """
    s = text if isinstance(text, str) else ""
    for pattern in patterns:
        try:
            if pattern.search(s, timeout=REGEX_TIMEOUT):
                return True
        except TimeoutError:
            logger.warning("pattern_match_timeout", pattern=pattern.pattern, text_length=len(s))
    return False
