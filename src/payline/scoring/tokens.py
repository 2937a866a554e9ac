"""Token overlap scoring used to bind plan components to data types.

Both the binding matcher and the shared-base filter picker score names the
same way: split both sides into tokens, count how many tokens of the source
side have a partner on the other side (either token containing the other),
and divide by the number of source tokens.
"""

from __future__ import annotations

import re
import unicodedata

STOP_WORDS = frozenset({
    "the", "and", "for", "per", "ins", "cfg", "q1", "q2", "q3", "q4",
    "2024", "2025", "2026", "plan", "program",
})

MIN_TOKEN_LENGTH = 3

_CAMEL_BOUNDARY = re.compile(r"([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(name: str) -> list[str]:
    """Split a component, metric, data type or category name into match tokens.

    camelCase is split into words, everything is lowercased, any run of
    non-alphanumerics separates tokens, and stop words plus tokens shorter
    than three characters are dropped.

    >>> tokenize("optical_salesIndividual Q4")
    ['optical', 'sales', 'individual']
    """
    if not name:
        return []
    text = _CAMEL_BOUNDARY.sub(r"_\1", _strip_accents(str(name))).lower()
    parts = _NON_ALNUM.sub("_", text).split("_")
    return [t for t in parts if len(t) >= MIN_TOKEN_LENGTH and t not in STOP_WORDS]


def tokens_related(a: str, b: str) -> bool:
    return a in b or b in a


def token_overlap(source: list[str], target: list[str]) -> float:
    """Fraction of ``source`` tokens that relate to at least one ``target`` token.

    Returns 0.0 when either side has no tokens.
    """
    if not source or not target:
        return 0.0
    matched = sum(1 for s in source if any(tokens_related(s, t) for t in target))
    return matched / len(source)
