# src/labelgate/quality/gate.py — v1
"""Quality gate for extracted label drafts.

Classifies a LabelDraft into a trust tier and decides whether a numeric
score may be shown from the label alone or whether human review is needed.
Pure functions: every input, including a missing draft, maps to a verdict.

Thresholds are fixed constants. Changing one changes gate behavior and
must not be exposed as configuration.
"""

from __future__ import annotations

from labelgate.core.models import (
    BarcodeQuality,
    DraftIssue,
    ExtractionQuality,
    LabelDraft,
    QualityVerdict,
)

HIGH_RISK_ISSUES: frozenset[str] = frozenset({
    "unit_invalid",
    "value_anomaly",
    "low_coverage",
    "incomplete_ingredients",
})

REVIEW_MIN_CONFIDENCE = 0.75
REVIEW_MIN_COVERAGE = 0.70
LABEL_ONLY_MIN_CONFIDENCE = 0.85
LABEL_ONLY_MIN_COVERAGE = 0.85


def count_valid_ingredients(draft: LabelDraft | None) -> int:
    """Count ingredients carrying both an amount and a non-empty unit."""
    if draft is None:
        return 0
    return sum(
        1 for ing in draft.ingredients
        if ing.amount is not None and ing.unit
    )


def evaluate_label_draft(
    draft: LabelDraft | None,
    issues: list[DraftIssue] | None = None,
) -> QualityVerdict:
    """Evaluate a label draft.

    Args:
        draft: Extracted draft, or None when extraction produced nothing.
        issues: Explicit issue list. Defaults to draft.issues.

    Returns:
        QualityVerdict. muted_score is True whenever the score must be
        suppressed in the UI.
    """
    if issues is not None:
        effective_issues = issues
    elif draft is not None:
        effective_issues = draft.issues
    else:
        effective_issues = []

    blocking = _blocking_issues(effective_issues)
    valid_count = count_valid_ingredients(draft)
    confidence = draft.confidence_score if draft is not None else 0.0
    coverage = draft.parse_coverage if draft is not None else 0.0
    has_draft = draft is not None

    review_recommended = (
        not has_draft
        or valid_count == 0
        or confidence < REVIEW_MIN_CONFIDENCE
        or coverage < REVIEW_MIN_COVERAGE
        or bool(blocking)
    )

    label_only_eligible = (
        has_draft
        and confidence >= LABEL_ONLY_MIN_CONFIDENCE
        and coverage >= LABEL_ONLY_MIN_COVERAGE
        and not blocking
        and valid_count >= 1
    )

    return QualityVerdict(
        review_recommended=review_recommended,
        muted_score=not label_only_eligible or review_recommended,
        blocking_issues=blocking,
        label_only_score_eligible=label_only_eligible,
        extraction_quality=_extraction_quality(
            has_draft, bool(blocking), confidence, coverage
        ),
        valid_count=valid_count,
    )


def _blocking_issues(issues: list[DraftIssue]) -> list[DraftIssue]:
    """High-risk issues, one per type, first occurrence kept."""
    seen: set[str] = set()
    blocking: list[DraftIssue] = []
    for issue in issues:
        if issue.type in HIGH_RISK_ISSUES and issue.type not in seen:
            seen.add(issue.type)
            blocking.append(issue)
    return blocking


def _extraction_quality(
    has_draft: bool, has_blocking: bool, confidence: float, coverage: float
) -> ExtractionQuality:
    if not has_draft or has_blocking:
        return "Low"
    if confidence >= LABEL_ONLY_MIN_CONFIDENCE and coverage >= LABEL_ONLY_MIN_COVERAGE:
        return "High"
    if confidence >= REVIEW_MIN_CONFIDENCE and coverage >= REVIEW_MIN_COVERAGE:
        return "Medium"
    return "Low"


def evaluate_barcode(
    status: str | None = None, error: str | None = None
) -> BarcodeQuality:
    """Barcode lookups are in error when flagged so or carrying an error string."""
    return BarcodeQuality(error_state=status == "error" or bool(error))
