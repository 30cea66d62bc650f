"""Document and retry jobs with single-flight admission.

Only one job runs at a time. A stop request is honoured at the next notice
boundary; notices already persisted stay, the rest are left unprocessed.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Literal

from smart_gazette.config.settings import Settings
from smart_gazette.llm_client.base import GenerativeClient
from smart_gazette.llm_client.gateway import GenerativeGateway
from smart_gazette.logging import clear_log_context, set_log_context
from smart_gazette.notify.webhook import WebhookNotifier
from smart_gazette.ocr_client.text_extractor import TextExtractor
from smart_gazette.pipeline.fallback import build_fallback_result
from smart_gazette.pipeline.header import extract_gazette_header
from smart_gazette.pipeline.job_state import (
    JobOutcome,
    JobProgress,
    JobState,
    JobStatus,
    log_cancellation,
)
from smart_gazette.pipeline.notice_pipeline import NoticePipeline
from smart_gazette.pipeline.retry_failed import retry_failed_notices
from smart_gazette.pipeline.segmenter import segment_notices
from smart_gazette.pipeline.types import FailureStage, GazetteHeader, RawNotice
from smart_gazette.prompts.manager import PromptManager
from smart_gazette.storage.models import ProcessingResult
from smart_gazette.storage.repo import NoticeRepo
from smart_gazette.utils.error_taxonomy import (
    build_error_details,
    classify_generation_error,
    is_storage_error_exception,
)

logger = logging.getLogger("smart_gazette.job_controller")

JobKind = Literal["process", "retry"]


class JobController:
    def __init__(
        self,
        *,
        repo: NoticeRepo,
        extractor: TextExtractor,
        pipeline: NoticePipeline,
        gateway: Any,
        prompt_manager: PromptManager,
        state: JobState | None = None,
        pacing_seconds: float = 0.5,
        header_char_limit: int = 2_000,
        header_prompt_version: str | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repo = repo
        self.extractor = extractor
        self.pipeline = pipeline
        self.gateway = gateway
        self.prompt_manager = prompt_manager
        self.state = state or JobState()
        self.pacing_seconds = pacing_seconds
        self.header_char_limit = header_char_limit
        self.header_prompt_version = header_prompt_version
        self.sleep_fn = sleep_fn

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: GenerativeClient | None = None,
        notifier: WebhookNotifier | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> "JobController":
        gateway = GenerativeGateway.from_settings(settings, client=client, sleep_fn=sleep_fn)
        prompt_manager = PromptManager(settings.resolved_prompts_root)
        prompt_versions = settings.pipeline_config.get("prompt_versions") or {}
        return cls(
            repo=NoticeRepo(settings.resolved_sqlite_path),
            extractor=TextExtractor(
                gateway=gateway,
                prompt_manager=prompt_manager,
                prompt_version=prompt_versions.get("ocr"),
                dpi=settings.ocr_dpi,
            ),
            pipeline=NoticePipeline.from_settings(
                settings,
                gateway=gateway,
                notifier=notifier or WebhookNotifier.from_settings(settings),
            ),
            gateway=gateway,
            prompt_manager=prompt_manager,
            pacing_seconds=settings.notice_pacing_seconds,
            header_char_limit=settings.header_char_limit,
            header_prompt_version=prompt_versions.get("header"),
            sleep_fn=sleep_fn,
        )

    def process_document(
        self, pdf_bytes: bytes, *, document_path: str | None = None
    ) -> JobOutcome:
        if not self.state.try_start():
            logger.warning("Cannot start document job: another job is already in progress")
            return JobOutcome(status="already_running")
        return self._run_admitted("process", pdf_bytes=pdf_bytes, document_path=document_path)

    def retry_failed(self) -> JobOutcome:
        if not self.state.try_start():
            logger.warning("Cannot start retry job: another job is already in progress")
            return JobOutcome(status="already_running")
        return self._run_admitted("retry")

    def start_in_background(
        self,
        job: JobKind = "process",
        *,
        pdf_bytes: bytes | None = None,
        document_path: str | None = None,
    ) -> threading.Thread | None:
        """Admit a job now and run it on a daemon thread; None if one is running."""
        if job == "process" and pdf_bytes is None:
            raise ValueError("pdf_bytes is required for a document job")
        if not self.state.try_start():
            logger.warning("Cannot start %s job: another job is already in progress", job)
            return None

        thread = threading.Thread(
            target=self._run_admitted,
            args=(job,),
            kwargs={"pdf_bytes": pdf_bytes, "document_path": document_path},
            name=f"smart-gazette-{job}",
            daemon=True,
        )
        thread.start()
        return thread

    def request_stop(self) -> str:
        if self.state.request_stop():
            logger.warning("Stop requested; the job halts after the current notice")
            return "Stop request received. Processing will halt after the current notice."
        return "No processing job is currently running."

    def _run_admitted(
        self,
        job: JobKind,
        *,
        pdf_bytes: bytes | None = None,
        document_path: str | None = None,
    ) -> JobOutcome:
        progress = JobProgress()
        self.gateway.reset_usage()
        set_log_context(job_id=uuid.uuid4().hex[:12], document=document_path)
        started_at = time.perf_counter()
        try:
            if job == "retry":
                status = retry_failed_notices(
                    repo=self.repo,
                    pipeline=self.pipeline,
                    state=self.state,
                    progress=progress,
                    pacing_seconds=self.pacing_seconds,
                    sleep_fn=self.sleep_fn,
                )
            else:
                status = self._process_document(pdf_bytes or b"", document_path, progress)
            outcome = JobOutcome.from_progress(
                status, progress, usage=self.gateway.usage_totals
            )
        except Exception as error:  # noqa: BLE001
            kind = (
                "STORAGE_ERROR"
                if is_storage_error_exception(error)
                else classify_generation_error(error)
            )
            logger.exception("%s job failed (%s)", job, kind)
            outcome = JobOutcome.from_progress(
                "failed",
                progress,
                error=build_error_details(error),
                usage=self.gateway.usage_totals,
            )
        finally:
            self.state.finish()

        logger.info(
            "%s job finished with status %s",
            job,
            outcome.status,
            extra={
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 1),
                "metrics": {
                    "notices_total": outcome.notices_total,
                    "notices_processed": outcome.notices_processed,
                    "succeeded": outcome.succeeded,
                    "failed": outcome.failed,
                    "usage": outcome.usage,
                },
            },
        )
        clear_log_context()
        return outcome

    def _process_document(
        self,
        pdf_bytes: bytes,
        document_path: str | None,
        progress: JobProgress,
    ) -> JobStatus:
        extraction = self.extractor.extract(pdf_bytes)
        logger.info(
            "Text extracted (%s, %d page(s))",
            extraction.method,
            extraction.pages_count,
        )

        header = None
        if extraction.text.strip():
            header = extract_gazette_header(
                extraction.text,
                gateway=self.gateway,
                prompt_manager=self.prompt_manager,
                char_limit=self.header_char_limit,
                prompt_version=self.header_prompt_version,
            )
        notices = segment_notices(extraction.text)
        progress.notices_total = len(notices)
        logger.info("Processing %d notice(s)", len(notices))

        for index, notice in enumerate(notices):
            if index > 0:
                self.sleep_fn(self.pacing_seconds)
            if self.state.stop_requested:
                log_cancellation("Document job", remaining=len(notices) - index)
                return "stopped"

            set_log_context(source_order=notice.source_order)
            result = self._process_notice(notice, header, document_path)
            self.repo.create_result(result)
            progress.record(result.status)

        clear_log_context(["source_order", "stage"])
        return "completed"

    def _process_notice(
        self,
        notice: RawNotice,
        header: GazetteHeader | None,
        document_path: str | None,
    ) -> ProcessingResult:
        try:
            return self.pipeline.process(notice, header, document_path)
        except Exception as error:
            if is_storage_error_exception(error):
                raise
            logger.exception("Unhandled error while processing notice")
            return build_fallback_result(
                notice.text,
                notice.source_order,
                header,
                f"Unhandled error: {error}",
                FailureStage.PIPELINE,
                document_path=document_path,
            )
