# src/labelgate/search/quality.py — v1
"""Web-search result quality scoring and fallback query construction.

Used when label data is missing and the product is looked up on the web:
results are scored for how likely they are to carry an authoritative
supplement-facts panel, and a cleaner re-query is built from the first
result's title when none qualify.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

from labelgate.core.models import SearchItem, SearchQualitySummary

HIGH_QUALITY_DOMAINS: tuple[str, ...] = (
    # Major retailers
    "amazon.com", "amazon.ca", "amazon.co.uk", "amazon.de",
    "iherb.com",
    "costco.com", "costco.ca",
    "walmart.com", "walmart.ca",
    "target.com",
    "cvs.com",
    "walgreens.com",
    "gnc.com",
    "vitaminshoppe.com",
    "vitacost.com",
    "luckyvitamin.com",
    "pipingrock.com",
    "puritan.com",
    "swansonvitamins.com",
    # Sports / fitness
    "bodybuilding.com",
    "myprotein.com",
    "bulksupplements.com",
    # Brand sites
    "nowfoods.com",
    "thorne.com",
    "pureencapsulations.com",
    "lifeextension.com",
    "gardenoflife.com",
    "nordicnaturals.com",
    "jarrow.com",
    "doctorsbest.com",
    "solgar.com",
    "naturemade.com",
    "naturesway.com",
    "solaray.com",
    "countrylifevitamins.com",
    # Canada
    "well.ca",
    "nationalnutrition.ca",
    "supplementscanada.com",
    "jamieson.com",
    "webbernaturals.com",
    # Reference
    "examine.com",
    "consumerlab.com",
    "labdoor.com",
    "nih.gov",
    "pubmed.gov",
)

KEYWORDS: tuple[str, ...] = ("ingredients", "supplement facts", "nutrition facts")

KEYWORD_POINTS = 30
DOSAGE_POINTS = 40
DOMAIN_POINTS = 30
MAX_SCORE = 100

FALLBACK_SUFFIX = "supplement facts ingredients"

_DOSAGE_RE = re.compile(r"\b\d+\s?(mg|g|mcg|iu)\b", re.IGNORECASE)
_JUNK_WORDS_RE = re.compile(
    r"\b(pack of \d+|lot of \d+|exp \d+|expiration|expires|best by|capsules|tablets"
    r"|softgels|pills|count|ct|oz|lb|kg|g|mg|mcg|iu)\b",
    re.IGNORECASE,
)
_UNIT_COUNT_RE = re.compile(
    r"\b\d+\s*(capsules|caps|tablets|tabs|softgels|gummies|pills|count|ct)\b",
    re.IGNORECASE,
)
_RETAILER_RE = re.compile(
    r"\b(amazon|walmart|iherb|costco|ebay|target|gnc|vitaminshoppe|walgreens|cvs)"
    r"(\s?\.?\s?(com|ca|co|uk|net|org))?\b",
    re.IGNORECASE,
)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def extract_domain(url: str) -> str:
    """Hostname without a leading www., or the input when it does not parse."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return url
    if not hostname:
        return url
    return hostname.removeprefix("www.")


def is_high_quality_domain(url: str) -> bool:
    """True when the URL's domain (or a parent domain) is allow-listed."""
    domain = extract_domain(url).lower()
    return any(
        domain == hq or domain.endswith(f".{hq}") for hq in HIGH_QUALITY_DOMAINS
    )


def score_search_item(item: SearchItem) -> int:
    """Score one result from 0 to 100."""
    score = 0
    text = f"{item.title} {item.snippet}".lower()

    if any(kw in text for kw in KEYWORDS):
        score += KEYWORD_POINTS

    if _DOSAGE_RE.search(text):
        score += DOSAGE_POINTS

    if is_high_quality_domain(item.link):
        score += DOMAIN_POINTS
    else:
        brand = _potential_brand(item.title)
        if brand and brand in extract_domain(item.link).lower():
            score += DOMAIN_POINTS

    return min(MAX_SCORE, score)


def score_search_quality(items: list[SearchItem]) -> int:
    """Best item score across candidates; 0 for no candidates."""
    if not items:
        return 0
    return max(0, min(MAX_SCORE, max(score_search_item(i) for i in items)))


def summarize_search_quality(items: list[SearchItem]) -> SearchQualitySummary:
    """Score plus the supporting breakdown, for logging and diagnostics."""
    scores = sorted((score_search_item(i) for i in items), reverse=True)
    return SearchQualitySummary(
        score=score_search_quality(items),
        top_scores=scores[:3],
        high_quality_count=sum(1 for i in items if is_high_quality_domain(i.link)),
        unique_domains=len({extract_domain(i.link).lower() for i in items}),
    )


def construct_fallback_query(items: list[SearchItem]) -> str | None:
    """Build a re-query from the first result's title.

    Retailer mentions, pack counts, junk and dosage-form words are stripped.
    Returns None when less than 3 characters of title survive.
    """
    if not items:
        return None

    title = _RETAILER_RE.sub("", items[0].title)
    title = _UNIT_COUNT_RE.sub("", title)
    title = _JUNK_WORDS_RE.sub("", title)
    title = _NON_ALNUM_RE.sub(" ", title)
    title = _WHITESPACE_RE.sub(" ", title).strip()

    if len(title) < 3:
        return None
    return f"{title} {FALLBACK_SUFFIX}"


def _potential_brand(title: str) -> str | None:
    """First word of the cleaned title, if long enough to look like a brand."""
    cleaned = _NON_ALNUM_RE.sub(" ", _JUNK_WORDS_RE.sub("", title)).split()
    if not cleaned:
        return None
    first = cleaned[0].lower()
    return first if len(first) > 3 else None
