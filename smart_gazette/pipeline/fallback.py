from __future__ import annotations

from datetime import date

from smart_gazette.pipeline.types import FALLBACK_CATEGORY, FailureStage, GazetteHeader
from smart_gazette.storage.models import ProcessingResult

FALLBACK_TITLE = "[PROCESSING FAILED] Review Needed"
FALLBACK_SHORT_SUMMARY = "Processing error. Needs manual review."


def build_fallback_result(
    text: str,
    source_order: int,
    header: GazetteHeader | None,
    reason: str,
    stage: FailureStage,
    *,
    document_path: str | None = None,
) -> ProcessingResult:
    """Placeholder record for a notice the pipeline gave up on."""
    header = header or GazetteHeader()
    return ProcessingResult(
        status="FAILED",
        category=FALLBACK_CATEGORY,
        source_order=source_order,
        raw_content=scrub(text),
        title=FALLBACK_TITLE,
        summary=f"The AI failed during processing. Reason: {reason}",
        article=(
            f"This notice could not be processed automatically.\n\nReason: {reason}\n\n"
            "The original notice text is kept for manual review."
        ),
        short_social_summary=FALLBACK_SHORT_SUMMARY,
        actionable_info="Review needed",
        published_date=date.today(),
        gazette_volume=header.volume,
        gazette_number=header.issue_number,
        gazette_date=header.date,
        original_document_path=document_path,
        failure_stage=stage,
        failure_reason=reason,
    )


def scrub(value: str) -> str:
    """Drop NUL characters from text bound for storage."""
    return value.replace("\x00", "")
