from __future__ import annotations

import argparse
import json
import logging
import shutil
import signal
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from smart_gazette.config.settings import Settings, get_settings
from smart_gazette.logging import setup_logging
from smart_gazette.pipeline.job_controller import JobController
from smart_gazette.pipeline.job_state import JobOutcome
from smart_gazette.storage.repo import NoticeRepo


def store_original_pdf(source: Path, storage_dir: Path) -> Path:
    """Copy the PDF into permanent storage under a unique timestamped name."""
    storage_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    destination = storage_dir / f"gazette-{stamp}.pdf"
    shutil.copyfile(source, destination)
    return destination


def run_process(pdf_path: Path, *, settings: Settings, controller: JobController) -> JobOutcome:
    stored_path = store_original_pdf(pdf_path, settings.resolved_pdf_storage_dir)
    return controller.process_document(
        stored_path.read_bytes(), document_path=str(stored_path)
    )


def list_batches(settings: Settings) -> list[dict[str, Any]]:
    repo = NoticeRepo(settings.resolved_sqlite_path)
    return [
        {
            "original_document_path": batch.original_document_path,
            "gazette_date": batch.gazette_date.isoformat() if batch.gazette_date else None,
            "gazette_number": batch.gazette_number,
            "notice_count": batch.notice_count,
            "failed_count": batch.failed_count,
        }
        for batch in repo.list_batches()
    ]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Turn gazette PDFs into categorized, readable notice articles."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process_parser = subparsers.add_parser("process", help="Process one gazette PDF.")
    process_parser.add_argument("pdf", type=Path, help="Path to the gazette PDF.")

    subparsers.add_parser("retry-failed", help="Retry every FAILED notice.")
    subparsers.add_parser("batches", help="List processed gazettes with notice counts.")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        log_file=str(settings.log_file) if settings.log_file else None,
    )

    if args.command == "batches":
        print(json.dumps(list_batches(settings), indent=2, ensure_ascii=False))
        return 0

    if args.command == "process" and not args.pdf.is_file():
        parser.error(f"PDF not found: {args.pdf}")

    controller = JobController.from_settings(settings)
    signal.signal(signal.SIGINT, lambda signum, frame: controller.request_stop())

    if args.command == "process":
        outcome = run_process(args.pdf, settings=settings, controller=controller)
    else:
        outcome = controller.retry_failed()

    print(json.dumps(asdict(outcome), indent=2, ensure_ascii=False))
    return 0 if outcome.status in ("completed", "stopped") else 1


if __name__ == "__main__":
    raise SystemExit(main())
