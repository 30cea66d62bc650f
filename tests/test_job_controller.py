from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

from conftest import (
    GENERATION_JSON,
    PROMPTS_ROOT,
    ScriptedGateway,
    build_pipeline,
    happy_responses,
    make_pdf,
)

from smart_gazette.ocr_client.text_extractor import TextExtractor
from smart_gazette.pipeline.job_controller import JobController
from smart_gazette.pipeline.job_state import JobState
from smart_gazette.pipeline.types import FailureStage
from smart_gazette.prompts.manager import PromptManager
from smart_gazette.storage.repo import NoticeRepo

DOCUMENT = "data/gazettes/gazette-test.pdf"
TWO_NOTICE_PAGE_ONE = "THE KENYA GAZETTE\n\nGAZETTE NOTICE NO. 100\nFirst notice body"
TWO_NOTICE_PDF_PAGES = [TWO_NOTICE_PAGE_ONE, "GAZETTE NOTICE NO. 101\nSecond notice body"]


def _controller(
    tmp_path: Path,
    gateway: ScriptedGateway,
    *,
    state: JobState | None = None,
    pipeline=None,
    repo=None,
    sleeps: list[float] | None = None,
) -> JobController:
    prompt_manager = PromptManager(PROMPTS_ROOT)
    return JobController(
        repo=repo or NoticeRepo(tmp_path / "gazette.sqlite3"),
        extractor=TextExtractor(gateway=gateway, prompt_manager=prompt_manager),
        pipeline=pipeline or build_pipeline(gateway),
        gateway=gateway,
        prompt_manager=prompt_manager,
        state=state,
        sleep_fn=(sleeps if sleeps is not None else []).append,
    )


def test_each_notice_yields_one_record_in_source_order(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses(ocr=TWO_NOTICE_PAGE_ONE))
    sleeps: list[float] = []
    controller = _controller(tmp_path, gateway, sleeps=sleeps)

    outcome = controller.process_document(make_pdf(TWO_NOTICE_PDF_PAGES), document_path=DOCUMENT)

    records = controller.repo.list_by_document_path(DOCUMENT)
    assert outcome.status == "completed"
    assert (outcome.notices_total, outcome.notices_processed, outcome.succeeded) == (2, 2, 2)
    assert [record.source_order for record in records] == [1, 2]
    assert "First notice body" in records[0].raw_content
    assert "Second notice body" in records[1].raw_content
    assert all(record.gazette_number == "No. 36" for record in records)
    assert sleeps == [0.5]
    assert gateway.stages()[:2] == ["ocr", "header"]
    assert controller.state.running is False


def test_two_page_document_without_markers_is_one_notice(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses(ocr="THE KENYA GAZETTE\nVol. CXXVII-No. 36"))
    controller = _controller(tmp_path, gateway)

    outcome = controller.process_document(
        make_pdf(["THE KENYA GAZETTE", "Second page text"]), document_path=DOCUMENT
    )

    records = controller.repo.list_by_document_path(DOCUMENT)
    assert outcome.status == "completed"
    assert len(records) == 1
    assert records[0].source_order == 1
    assert "Vol. CXXVII-No. 36" in records[0].raw_content
    assert "Second page text" in records[0].raw_content


def test_empty_items_object_is_stored_as_failed(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses(extraction='{"items": {}}'))
    controller = _controller(tmp_path, gateway)

    controller.process_document(make_pdf(["GAZETTE NOTICE NO. 7\nbody"]), document_path=DOCUMENT)

    (record,) = controller.repo.list_by_document_path(DOCUMENT)
    assert record.status == "FAILED"
    assert record.failure_stage is FailureStage.EXTRACTION
    assert "empty" in record.failure_reason


def test_exhausted_generation_does_not_stop_the_job(tmp_path: Path) -> None:
    gateway = ScriptedGateway(
        happy_responses(ocr=TWO_NOTICE_PAGE_ONE, generation=[None, GENERATION_JSON])
    )
    controller = _controller(tmp_path, gateway)

    outcome = controller.process_document(make_pdf(TWO_NOTICE_PDF_PAGES), document_path=DOCUMENT)

    first, second = controller.repo.list_by_document_path(DOCUMENT)
    assert outcome.status == "completed"
    assert (outcome.succeeded, outcome.failed) == (1, 1)
    assert first.failure_stage is FailureStage.GENERATION
    assert second.status == "SUCCESS"


def test_second_job_is_rejected_while_one_runs(tmp_path: Path) -> None:
    state = JobState()
    assert state.try_start() is True
    gateway = ScriptedGateway(happy_responses())
    controller = _controller(tmp_path, gateway, state=state)

    outcome = controller.process_document(make_pdf(["GAZETTE NOTICE NO. 1"]))
    retry_outcome = controller.retry_failed()

    assert outcome.status == "already_running"
    assert retry_outcome.status == "already_running"
    assert gateway.calls == []
    assert controller.repo.list_by_status("SUCCESS") == []
    assert state.running is True
    assert controller.start_in_background("retry") is None


def test_stop_request_halts_at_next_notice(tmp_path: Path) -> None:
    holder: list[JobController] = []

    def triage_and_stop(prompt: str) -> str:
        holder[0].request_stop()
        return "Land_Property"

    gateway = ScriptedGateway(happy_responses(ocr=TWO_NOTICE_PAGE_ONE, triage=triage_and_stop))
    controller = _controller(tmp_path, gateway)
    holder.append(controller)

    outcome = controller.process_document(make_pdf(TWO_NOTICE_PDF_PAGES), document_path=DOCUMENT)

    assert outcome.status == "stopped"
    assert outcome.notices_total == 2
    assert outcome.notices_processed == 1
    assert len(controller.repo.list_by_document_path(DOCUMENT)) == 1
    assert controller.state.running is False
    assert controller.state.stop_requested is False


def test_request_stop_without_running_job() -> None:
    controller = _controller(Path("/nonexistent"), ScriptedGateway(), repo=object())

    assert controller.request_stop() == "No processing job is currently running."


def test_unopenable_pdf_fails_the_job_and_releases_lock(tmp_path: Path) -> None:
    controller = _controller(tmp_path, ScriptedGateway(happy_responses()))

    outcome = controller.process_document(b"this is not a pdf")

    assert outcome.status == "failed"
    assert outcome.error
    assert controller.state.running is False
    assert controller.process_document(b"still not a pdf").status == "failed"


class ExplodingPipeline:
    def __init__(self, inner) -> None:
        self.inner = inner

    def process(self, notice, header, document_path=None):
        if notice.source_order == 1:
            raise ValueError("boom")
        return self.inner.process(notice, header, document_path)


def test_unhandled_notice_error_becomes_pipeline_fallback(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses(ocr=TWO_NOTICE_PAGE_ONE))
    controller = _controller(
        tmp_path, gateway, pipeline=ExplodingPipeline(build_pipeline(gateway))
    )

    outcome = controller.process_document(make_pdf(TWO_NOTICE_PDF_PAGES), document_path=DOCUMENT)

    first, second = controller.repo.list_by_document_path(DOCUMENT)
    assert outcome.status == "completed"
    assert first.failure_stage is FailureStage.PIPELINE
    assert "boom" in first.failure_reason
    assert second.status == "SUCCESS"


class BrokenRepo:
    def create_result(self, result):
        raise sqlite3.OperationalError("database is locked")


def test_storage_error_fails_the_job(tmp_path: Path) -> None:
    controller = _controller(tmp_path, ScriptedGateway(happy_responses()), repo=BrokenRepo())

    outcome = controller.process_document(make_pdf(["GAZETTE NOTICE NO. 1\nbody"]))

    assert outcome.status == "failed"
    assert "database is locked" in outcome.error
    assert controller.state.running is False


def test_background_job_runs_on_daemon_thread(tmp_path: Path) -> None:
    controller = _controller(tmp_path, ScriptedGateway(happy_responses()))

    thread = controller.start_in_background(
        "process", pdf_bytes=make_pdf(["GAZETTE NOTICE NO. 9\nbody"]), document_path=DOCUMENT
    )

    assert thread is not None
    assert thread.daemon is True
    thread.join(timeout=10)
    assert not thread.is_alive()
    assert len(controller.repo.list_by_document_path(DOCUMENT)) == 1
    assert controller.state.running is False


def test_concurrent_start_requests_admit_exactly_one(tmp_path: Path) -> None:
    barrier = threading.Barrier(2)
    release = threading.Event()
    outcomes = []

    def blocking_ocr(prompt: str) -> str:
        release.wait(timeout=10)
        return "GAZETTE NOTICE NO. 1\nbody"

    controller = _controller(tmp_path, ScriptedGateway(happy_responses(ocr=blocking_ocr)))
    pdf_bytes = make_pdf(["GAZETTE NOTICE NO. 1\nbody"])

    def start() -> None:
        barrier.wait(timeout=10)
        outcomes.append(controller.process_document(pdf_bytes, document_path=DOCUMENT))

    threads = [threading.Thread(target=start) for _ in range(2)]
    for thread in threads:
        thread.start()
    deadline = time.monotonic() + 10
    while not outcomes and time.monotonic() < deadline:
        time.sleep(0.01)
    release.set()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(outcome.status for outcome in outcomes) == ["already_running", "completed"]
    assert len(controller.repo.list_by_document_path(DOCUMENT)) == 1
    assert controller.state.running is False


def test_stop_requested_during_pacing_starts_no_new_notice(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses(ocr=TWO_NOTICE_PAGE_ONE))
    controller = _controller(tmp_path, gateway)
    controller.sleep_fn = lambda seconds: controller.request_stop()
    pages = TWO_NOTICE_PDF_PAGES + ["GAZETTE NOTICE NO. 102\nThird notice body"]

    outcome = controller.process_document(make_pdf(pages), document_path=DOCUMENT)

    assert outcome.status == "stopped"
    assert outcome.notices_total == 3
    assert outcome.notices_processed == 1
    assert gateway.stages().count("triage") == 1
    assert len(controller.repo.list_by_document_path(DOCUMENT)) == 1


def test_blank_document_skips_header_extraction(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses())
    controller = _controller(tmp_path, gateway)

    outcome = controller.process_document(make_pdf([""]), document_path=DOCUMENT)

    assert outcome.status == "completed"
    assert outcome.notices_total == 0
    assert "header" not in gateway.stages()


def test_usage_totals_are_reported_per_job(tmp_path: Path) -> None:
    gateway = ScriptedGateway(happy_responses())
    gateway.usage_totals = {"total_tokens": 999}
    controller = _controller(tmp_path, gateway)

    outcome = controller.process_document(make_pdf(["GAZETTE NOTICE NO. 5\nbody"]))

    assert outcome.status == "completed"
    assert outcome.usage == {}
