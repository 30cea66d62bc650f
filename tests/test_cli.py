from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path

import pytest

from smart_gazette.config.settings import Settings, get_settings
from smart_gazette.ops import cli
from smart_gazette.pipeline.job_state import JobOutcome
from smart_gazette.storage.models import ProcessingResult
from smart_gazette.storage.repo import NoticeRepo


class FakeController:
    def __init__(self) -> None:
        self.calls: list[tuple[bytes, str | None]] = []

    def process_document(self, pdf_bytes: bytes, *, document_path: str | None = None) -> JobOutcome:
        self.calls.append((pdf_bytes, document_path))
        return JobOutcome(status="completed", notices_total=1, notices_processed=1, succeeded=1)


@pytest.fixture
def settings(monkeypatch, tmp_path: Path) -> Settings:
    monkeypatch.setenv("SMART_GAZETTE_SQLITE_PATH", str(tmp_path / "gazette.sqlite3"))
    monkeypatch.setenv("SMART_GAZETTE_PDF_STORAGE_DIR", str(tmp_path / "gazettes"))
    get_settings.cache_clear()
    yield get_settings()
    logging.getLogger("smart_gazette").handlers.clear()
    get_settings.cache_clear()


def test_process_copies_pdf_to_storage(settings: Settings, tmp_path: Path) -> None:
    source = tmp_path / "upload.pdf"
    source.write_bytes(b"%PDF-1.7 fake")
    controller = FakeController()

    outcome = cli.run_process(source, settings=settings, controller=controller)

    pdf_bytes, document_path = controller.calls[0]
    stored = Path(document_path)
    assert outcome.status == "completed"
    assert pdf_bytes == b"%PDF-1.7 fake"
    assert stored.parent == tmp_path / "gazettes"
    assert stored.name.startswith("gazette-") and stored.suffix == ".pdf"
    assert source.exists()


def test_batches_command_prints_summary(settings: Settings, capsys) -> None:
    NoticeRepo(settings.resolved_sqlite_path).create_result(
        ProcessingResult(
            status="FAILED",
            category="Uncategorized",
            source_order=1,
            raw_content="text",
            title="[PROCESSING FAILED] Review Needed",
            summary="s",
            article="a",
            short_social_summary="",
            actionable_info="",
            gazette_number="No. 36",
            gazette_date=date(2025, 2, 21),
            original_document_path="gazette-a.pdf",
        )
    )

    exit_code = cli.main(["batches"])

    batches = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert batches == [
        {
            "original_document_path": "gazette-a.pdf",
            "gazette_date": "2025-02-21",
            "gazette_number": "No. 36",
            "notice_count": 1,
            "failed_count": 1,
        }
    ]
