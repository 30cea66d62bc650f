"""Re-drive FAILED notices through the pipeline.

Records that failed only at Generation and still carry their extracted data
resume at Generation; everything else runs the full pipeline again with the
header stored on the record.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

from smart_gazette.logging import set_log_context
from smart_gazette.pipeline.fallback import build_fallback_result
from smart_gazette.pipeline.job_state import (
    JobProgress,
    JobState,
    JobStatus,
    log_cancellation,
)
from smart_gazette.pipeline.notice_pipeline import NoticePipeline
from smart_gazette.pipeline.types import CATEGORIES, FailureStage, GazetteHeader, RawNotice
from smart_gazette.storage.models import ProcessingResult
from smart_gazette.storage.repo import NoticeRepo
from smart_gazette.utils.error_taxonomy import is_storage_error_exception

logger = logging.getLogger("smart_gazette.retry_failed")

RETRY_FAILED_MARKER = "--- RETRY FAILED ---"


def retry_failed_notices(
    *,
    repo: NoticeRepo,
    pipeline: NoticePipeline,
    state: JobState,
    progress: JobProgress,
    pacing_seconds: float = 0.5,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> JobStatus:
    failed_records = repo.list_by_status("FAILED")
    progress.notices_total = len(failed_records)
    if not failed_records:
        logger.info("No FAILED notices found to retry")
        return "completed"

    logger.info("Found %d FAILED notice(s) to retry", len(failed_records))
    for index, record in enumerate(failed_records):
        if index > 0:
            sleep_fn(pacing_seconds)
        if state.stop_requested:
            log_cancellation("Retry job", remaining=len(failed_records) - index)
            return "stopped"

        set_log_context(source_order=record.source_order, document=record.original_document_path)
        retried = _retry_one(pipeline, record)
        if retried.status == "SUCCESS":
            repo.update_result(merge_success(record, retried))
            logger.info("Retry of notice #%s succeeded", record.id)
        else:
            repo.update_result(annotate_failure(record, retried))
            logger.warning(
                "Retry of notice #%s failed again: %s", record.id, retried.failure_reason
            )
        progress.record(retried.status)

    return "completed"


def resumes_at_generation(record: ProcessingResult) -> bool:
    return (
        record.failure_stage is FailureStage.GENERATION
        and bool(record.extracted_json)
        and record.category in CATEGORIES
    )


def merge_success(record: ProcessingResult, retried: ProcessingResult) -> ProcessingResult:
    """New content on the old row; identity, counters, and history are kept."""
    return replace(
        retried,
        id=record.id,
        original_document_path=record.original_document_path or retried.original_document_path,
        failure_stage=None,
        failure_reason=None,
        retry_count=record.retry_count,
        view_count=record.view_count,
        thumbs_up=record.thumbs_up,
        thumbs_down=record.thumbs_down,
        created_at=record.created_at,
    )


def annotate_failure(record: ProcessingResult, retried: ProcessingResult) -> ProcessingResult:
    reason = retried.failure_reason or retried.summary
    # A retry that resumes at Generation reuses this category.
    category = (
        retried.category
        if retried.failure_stage is FailureStage.GENERATION
        else record.category
    )
    return replace(
        record,
        category=category,
        article=f"{record.article}\n\n{RETRY_FAILED_MARKER}\n{reason}",
        failure_stage=retried.failure_stage,
        failure_reason=reason,
        extracted_json=retried.extracted_json or record.extracted_json,
        retry_count=record.retry_count + 1,
    )


def _retry_one(pipeline: NoticePipeline, record: ProcessingResult) -> ProcessingResult:
    header = GazetteHeader(
        volume=record.gazette_volume,
        issue_number=record.gazette_number,
        date=record.gazette_date,
    )
    try:
        if resumes_at_generation(record):
            logger.info("Retrying notice #%s from Generation", record.id)
            return pipeline.process_generation_only(record)

        logger.info("Retrying notice #%s through the full pipeline", record.id)
        return pipeline.process(
            RawNotice(text=record.raw_content, source_order=record.source_order),
            header,
            record.original_document_path,
        )
    except Exception as error:
        if is_storage_error_exception(error):
            raise
        logger.exception("Unhandled error while retrying notice #%s", record.id)
        return build_fallback_result(
            record.raw_content,
            record.source_order,
            header,
            f"Unhandled error: {error}",
            FailureStage.PIPELINE,
            document_path=record.original_document_path,
        )
