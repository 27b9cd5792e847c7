# src/labelgate/cache/models.py — v1
"""Cache domain models: CachedResult, SupplementSnapshot, SnapshotCacheRecord.

Raw vision output is a tagged union: known producers get a structured
variant, anything else is wrapped in an explicit opaque variant.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from labelgate.core.models import LabelDraft, SupplementAnalysis

SnapshotSource = Literal["barcode", "label", "mixed"]
SNAPSHOT_SOURCES: tuple[str, ...] = ("barcode", "label", "mixed")


class VisionToken(BaseModel):
    """Word-level OCR token with its bounding box."""

    text: str
    confidence: float = 0.0
    x_min: float = 0.0
    x_max: float = 0.0
    y_min: float = 0.0
    y_max: float = 0.0


class VisionTextPayload(BaseModel):
    """OCR text output: full text plus word tokens."""

    kind: Literal["text"] = "text"
    full_text: str = ""
    tokens: list[VisionToken] = Field(default_factory=list)


class OpaquePayload(BaseModel):
    """Provider output with no known schema, kept verbatim."""

    kind: Literal["opaque"] = "opaque"
    data: dict[str, Any] = Field(default_factory=dict)


VisionPayload = Annotated[
    Union[VisionTextPayload, OpaquePayload], Field(discriminator="kind")
]


class CachedResult(BaseModel):
    """Cached extraction/analysis for one image fingerprint."""

    image_hash: str
    vision_raw: VisionPayload | None = None
    parsed_ingredients: LabelDraft
    analysis: SupplementAnalysis | None = None
    confidence: float = 0.0
    created_at: datetime


class SupplementSnapshot(BaseModel):
    """Resolved product snapshot. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    snapshot_id: str
    schema_version: int = 1
    status: Literal["resolved", "partial", "unknown_product", "error"] = "resolved"
    source: SnapshotSource
    created_at: datetime | None = None
    updated_at: datetime | None = None
    product: dict[str, Any] = Field(default_factory=dict)


class SnapshotCacheRecord(BaseModel):
    """Snapshot cache hit."""

    snapshot: SupplementSnapshot
    analysis_payload: dict[str, Any] | None = None
    expires_at: datetime | None = None
