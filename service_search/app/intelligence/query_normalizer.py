"""Query normalization for lexical and semantic matching.

Turns a raw query into the canonical variants every retriever reads:
trimmed and whitespace-collapsed text, lowercase forms, "condensed" forms
(letters and digits only) and an expanded token list.

Token expansion keeps compound technical terms searchable both whole and in
parts: ``"nodejs"`` yields ``nodejs``, ``node`` and ``js``; ``"python3"``
yields ``python3``, ``python`` and ``3``.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import List, Tuple

TECHNICAL_SUFFIXES: Tuple[str, ...] = ("js", "ts", "py", "rb", "go", "net", "sql", "db")

_DIGITS_THEN_LETTERS = re.compile(r"([0-9]+)([a-z]+)", re.IGNORECASE)
_LETTERS_THEN_DIGITS = re.compile(r"([a-z]+)([0-9]+)", re.IGNORECASE)


@dataclass(frozen=True)
class QueryVariants:
    """Derived forms of one raw query; created per request."""

    trimmed: str = ""
    collapsed: str = ""
    normalized: str = ""
    lower_trimmed: str = ""
    lower_normalized: str = ""
    condensed_trimmed: str = ""
    condensed_normalized: str = ""
    tokens: Tuple[str, ...] = ()
    lower_tokens: Tuple[str, ...] = ()
    embedding_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.trimmed

    def match_terms(self) -> List[str]:
        """Distinct lowercase strings used to select keyword candidates."""
        terms: List[str] = []
        for term in (self.lower_trimmed, self.lower_normalized, *self.lower_tokens):
            if term and term not in terms:
                terms.append(term)
        return terms


EMPTY_VARIANTS = QueryVariants()


def condense(value: str) -> str:
    """Lowercase ``value`` and drop every character that is not a letter or digit."""
    return "".join(ch for ch in value.lower() if ch.isalnum())


def _is_punctuation_or_symbol(ch: str) -> bool:
    return unicodedata.category(ch)[0] in ("P", "S")


def _punctuation_as_space(value: str) -> str:
    return "".join(" " if _is_punctuation_or_symbol(ch) else ch for ch in value)


def expand_tokens(lower_tokens: List[str]) -> List[str]:
    """Expand lowercase tokens with suffix and letter/digit splits.

    Order is preserved and duplicates are dropped.
    """
    expanded: List[str] = []

    def add(token: str) -> None:
        token = token.strip()
        if token and token not in expanded:
            expanded.append(token)

    for token in lower_tokens:
        if not token:
            continue
        add(token)

        for suffix in TECHNICAL_SUFFIXES:
            if token.endswith(suffix) and len(token) > len(suffix):
                add(token[: -len(suffix)])
                add(suffix)

        split = _DIGITS_THEN_LETTERS.sub(r"\1 \2", token)
        split = _LETTERS_THEN_DIGITS.sub(r"\1 \2", split)
        for part in split.split():
            if part != token:
                add(part)

    return expanded


def normalize(raw: str) -> QueryVariants:
    """Build the ``QueryVariants`` for ``raw``.

    Blank input returns ``EMPTY_VARIANTS``; callers treat it as a query with
    no candidates.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return EMPTY_VARIANTS

    collapsed = " ".join(trimmed.split())
    tokens = _punctuation_as_space(trimmed).split()
    lower_tokens = expand_tokens([token.lower() for token in tokens])

    normalized = " ".join(lower_tokens)
    lower_trimmed = trimmed.lower()
    lower_normalized = normalized.lower()

    return QueryVariants(
        trimmed=trimmed,
        collapsed=collapsed,
        normalized=normalized,
        lower_trimmed=lower_trimmed,
        lower_normalized=lower_normalized,
        condensed_trimmed=condense(lower_trimmed),
        condensed_normalized=condense(lower_normalized),
        tokens=tuple(tokens),
        lower_tokens=tuple(lower_tokens),
        embedding_text=normalized or collapsed or trimmed,
    )
