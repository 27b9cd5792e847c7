# src/labelgate/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Label drafts come from the external vision/OCR collaborator, analysis
payloads from the external AI analyzer, search items from the web-search
provider. No module redefines these types; all imports come from core.models.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# === LABEL EXTRACTION ===


class ParsedIngredient(BaseModel):
    """Single ingredient row extracted from a label."""

    model_config = ConfigDict(frozen=True)

    name: str
    amount: float | None = None
    unit: str | None = None
    dv_percent: float | None = None
    confidence: float = 0.0
    raw_line: str = ""


class DraftIssue(BaseModel):
    """Validation issue tag attached to a label draft."""

    model_config = ConfigDict(frozen=True)

    type: str
    message: str | None = None


class LabelDraft(BaseModel):
    """Structured, possibly incomplete extraction of a supplement facts panel."""

    model_config = ConfigDict(frozen=True)

    serving_size: str | None = None
    ingredients: list[ParsedIngredient] = Field(default_factory=list)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    parse_coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    issues: list[DraftIssue] = Field(default_factory=list)


# === QUALITY VERDICTS ===


ExtractionQuality = Literal["High", "Medium", "Low"]


class QualityVerdict(BaseModel):
    """Trust classification of a label draft. Derived, never persisted."""

    review_recommended: bool
    muted_score: bool
    blocking_issues: list[DraftIssue]
    label_only_score_eligible: bool
    extraction_quality: ExtractionQuality
    valid_count: int


class BarcodeQuality(BaseModel):
    """Error gate for barcode lookups."""

    error_state: bool


# === AI ANALYSIS ===


class AnalysisIngredient(BaseModel):
    """Ingredient as reported by the AI analyzer."""

    name: str
    amount: float | None = None
    unit: str | None = None


class AnalysisSource(BaseModel):
    """Reference link backing an analysis."""

    title: str
    link: str


class SupplementAnalysis(BaseModel):
    """Completed AI analysis of a supplement. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    status: Literal["success", "partial", "error"] = "success"
    barcode: str | None = None
    brand: str | None = None
    product_name: str | None = None
    summary: str | None = None
    confidence: float = 0.0
    ingredients: list[AnalysisIngredient] = Field(default_factory=list)
    sources: list[AnalysisSource] = Field(default_factory=list)


# === WEB SEARCH ===


class SearchItem(BaseModel):
    """Candidate result returned by the web-search provider."""

    title: str = ""
    snippet: str = ""
    link: str = ""
    image: str | None = None


class SearchQualitySummary(BaseModel):
    """Aggregate view over a set of scored search results."""

    score: int
    top_scores: list[int]
    high_quality_count: int
    unique_domains: int
