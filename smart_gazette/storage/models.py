from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal

from smart_gazette.pipeline.types import FailureStage

ProcessingStatus = Literal["SUCCESS", "FAILED"]


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    status: ProcessingStatus
    category: str
    source_order: int
    raw_content: str
    title: str
    summary: str
    article: str
    short_social_summary: str
    actionable_info: str
    notice_number: str = ""
    signatory: str = ""
    published_date: date | None = None
    gazette_volume: str = ""
    gazette_number: str = ""
    gazette_date: date | None = None
    significance: int | None = None
    original_document_path: str | None = None
    failure_stage: FailureStage | None = None
    failure_reason: str | None = None
    extracted_json: str | None = None
    retry_count: int = 0
    view_count: int = 0
    thumbs_up: int = 0
    thumbs_down: int = 0
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True, slots=True)
class GazetteBatch:
    original_document_path: str
    gazette_date: date | None
    gazette_number: str
    notice_count: int
    failed_count: int
