# src/labelgate/pipeline/label_pipeline.py — v1
"""Label scan flow: fingerprint, cache lookup, extraction, gating, caching.

Usage:
    pipeline = LabelScanPipeline(extractor, cache=ResultCache(store))
    result = await pipeline.scan(image_bytes)
    if result.source == "cache_draft" or result.analysis is None:
        analysis = await pipeline.complete_analysis(result.image_hash, result.draft)

The vision extractor and the AI analyzer are external collaborators; only
their call contracts are defined here. Cache failures never block a scan.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

from pydantic import BaseModel, Field

from labelgate.cache.fingerprint import compute_image_hash, short_hash
from labelgate.cache.models import VisionPayload
from labelgate.cache.result_cache import ResultCache, has_completed_analysis
from labelgate.core.models import LabelDraft, QualityVerdict, SupplementAnalysis
from labelgate.logging.context import clear_context, set_scan_context
from labelgate.normalization.form_tokens import canonicalize_form_tokens
from labelgate.quality.gate import evaluate_label_draft

logger = logging.getLogger(__name__)

ScanSource = Literal["cache", "cache_draft", "fresh"]


class LabelExtraction(BaseModel):
    """What the vision extractor returns for one image."""

    draft: LabelDraft
    vision_raw: VisionPayload | None = None


class LabelExtractor(Protocol):
    """Vision/OCR collaborator turning image bytes into a label draft."""

    async def extract(self, image_bytes: bytes) -> LabelExtraction: ...


class LabelAnalyzer(Protocol):
    """AI collaborator turning a confirmed draft into a supplement analysis."""

    async def analyze(self, draft: LabelDraft) -> SupplementAnalysis: ...


class LabelScanResult(BaseModel):
    """Outcome of a single label scan."""

    image_hash: str
    source: ScanSource
    draft: LabelDraft
    verdict: QualityVerdict
    form_tokens: list[str] = Field(default_factory=list)
    analysis: SupplementAnalysis | None = None
    cached: bool = False


class LabelScanPipeline:
    """Composes the quality gate, the canonicalizer and the result cache."""

    def __init__(
        self,
        extractor: LabelExtractor,
        cache: ResultCache | None = None,
        analyzer: LabelAnalyzer | None = None,
    ) -> None:
        self._extractor = extractor
        self._cache = cache
        self._analyzer = analyzer

    async def scan(self, image_bytes: bytes) -> LabelScanResult:
        """Scan a label image, reusing cached work for identical bytes.

        Raises:
            ValueError: If image_bytes is empty.
        """
        if not image_bytes:
            raise ValueError("image_bytes is empty")

        image_hash = compute_image_hash(image_bytes)
        set_scan_context(image_hash, operation="scan")
        try:
            return await self._scan(image_hash, image_bytes)
        finally:
            clear_context()

    async def complete_analysis(
        self, image_hash: str, draft: LabelDraft
    ) -> SupplementAnalysis | None:
        """Run the analyzer on a draft and persist the analysis.

        The verdict does not gate analysis; it only controls whether a
        numeric score is shown.

        Returns:
            The analysis, or None when no analyzer is configured or it failed.
        """
        if self._analyzer is None:
            return None

        set_scan_context(image_hash, operation="analyze")
        try:
            try:
                analysis = await self._analyzer.analyze(draft)
            except Exception:
                logger.exception("Analysis failed for %s", short_hash(image_hash))
                return None

            if self._cache is not None:
                updated = await self._cache.update_analysis(image_hash, analysis)
                if not updated:
                    await self._cache.set(
                        image_hash,
                        parsed_ingredients=draft,
                        confidence=draft.confidence_score,
                        analysis=analysis,
                    )
            return analysis
        finally:
            clear_context()

    async def _scan(self, image_hash: str, image_bytes: bytes) -> LabelScanResult:
        if self._cache is not None:
            record = await self._cache.get(image_hash)
            if record is not None:
                completed = has_completed_analysis(record)
                logger.info(
                    "Reusing cached %s for %s",
                    "analysis" if completed else "draft", short_hash(image_hash),
                )
                return _build_result(
                    image_hash,
                    "cache" if completed else "cache_draft",
                    record.parsed_ingredients,
                    analysis=record.analysis if completed else None,
                    cached=True,
                )

        extraction = await self._extractor.extract(image_bytes)
        draft = extraction.draft

        cached = False
        if self._cache is not None:
            cached = await self._cache.set(
                image_hash,
                parsed_ingredients=draft,
                confidence=draft.confidence_score,
                vision_raw=extraction.vision_raw,
            )
        result = _build_result(image_hash, "fresh", draft, cached=cached)
        logger.info(
            "Fresh scan for %s: quality=%s valid=%d review=%s",
            short_hash(image_hash), result.verdict.extraction_quality,
            result.verdict.valid_count, result.verdict.review_recommended,
        )
        return result


def _build_result(
    image_hash: str,
    source: ScanSource,
    draft: LabelDraft,
    analysis: SupplementAnalysis | None = None,
    cached: bool = False,
) -> LabelScanResult:
    return LabelScanResult(
        image_hash=image_hash,
        source=source,
        draft=draft,
        verdict=evaluate_label_draft(draft),
        form_tokens=canonicalize_form_tokens(i.name for i in draft.ingredients),
        analysis=analysis,
        cached=cached,
    )
