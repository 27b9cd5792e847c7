# src/labelgate/normalization/form_tokens.py — v1
"""Canonicalization of ingredient form tokens for reference-taxonomy matching.

Free-text form descriptors ("Aerial Parts", "Standardized Extract") are
reduced to a deduplicated, order-preserving sequence of canonical tokens.
Rewriting can expand one token into several, so dosage and stopword
filtering runs as a second pass after expansion.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from types import MappingProxyType

FORM_TOKEN_REWRITE: MappingProxyType[str, str | tuple[str, ...]] = MappingProxyType({
    "rhizome": "root",
    "tuber": "root",
    "bulb": "root",
    "seed": "seed",
    "seeds": "seed",
    "aerial_parts": ("whole", "plant"),
    "aerial": ("whole", "plant"),
    "herb": ("whole", "plant"),
    "standardized": "std",
    "standardised": "std",
    "tincture": "extract",
    "fluidextract": "extract",
    "powdered": "powder",
    "hydrochloride": "hcl",
})

NOISE_TOKENS: frozenset[str] = frozenset({"and", "dhe"})

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_NUMERIC_RE = re.compile(r"^\d+$")
_DOSAGE_RE = re.compile(r"^\d+(?:mg|mcg|g|iu|ml|cfu)$")


def normalize_token(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to spaces, trim."""
    return _NON_ALNUM_RE.sub(" ", value.lower()).strip()


def is_valid_token(value: str) -> bool:
    """Tokens must be longer than one character and not purely numeric."""
    return len(value) > 1 and not _NUMERIC_RE.match(value)


def canonicalize_form_tokens(tokens: Iterable[str]) -> list[str]:
    """Canonicalize raw form tokens.

    Args:
        tokens: Raw tokens, each possibly multi-word.

    Returns:
        Canonical tokens, first occurrence wins.

    Example:
        >>> canonicalize_form_tokens(["Aerial Parts", "Standardized Extract", "500mg"])
        ['whole', 'plant', 'std', 'extract']
    """
    expanded: list[str] = []
    seen: set[str] = set()
    for token in tokens:
        parts = normalize_token(token).split()
        for rewritten in _rewrite(parts):
            _append(rewritten, seen, expanded)

    cleaned: list[str] = []
    cleaned_seen: set[str] = set()
    for token in expanded:
        if token in NOISE_TOKENS or _DOSAGE_RE.match(token):
            continue
        _append(token, cleaned_seen, cleaned)
    return cleaned


def _rewrite(parts: list[str]) -> Iterator[str]:
    """Apply the rewrite table, matching two-word keys before single words."""
    i = 0
    while i < len(parts):
        if i + 1 < len(parts):
            pair = f"{parts[i]}_{parts[i + 1]}"
            if pair in FORM_TOKEN_REWRITE:
                yield from _as_tuple(FORM_TOKEN_REWRITE[pair])
                i += 2
                continue
        yield from _as_tuple(FORM_TOKEN_REWRITE.get(parts[i], parts[i]))
        i += 1


def _as_tuple(rewrite: str | tuple[str, ...]) -> tuple[str, ...]:
    return (rewrite,) if isinstance(rewrite, str) else rewrite


def _append(token: str, seen: set[str], output: list[str]) -> None:
    normalized = normalize_token(token)
    if not is_valid_token(normalized) or normalized in seen:
        return
    seen.add(normalized)
    output.append(normalized)
