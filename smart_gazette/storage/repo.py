from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path

from smart_gazette.pipeline.types import FailureStage
from smart_gazette.storage.db import connection, init_db
from smart_gazette.storage.models import (
    GazetteBatch,
    ProcessingResult,
    ProcessingStatus,
)

_CONTENT_COLUMNS = (
    "status",
    "category",
    "source_order",
    "raw_content",
    "title",
    "summary",
    "article",
    "short_social_summary",
    "actionable_info",
    "notice_number",
    "signatory",
    "published_date",
    "gazette_volume",
    "gazette_number",
    "gazette_date",
    "significance",
    "original_document_path",
    "failure_stage",
    "failure_reason",
    "extracted_json",
    "retry_count",
    "view_count",
    "thumbs_up",
    "thumbs_down",
)
_SELECT_COLUMNS = ", ".join(("id", *_CONTENT_COLUMNS, "created_at", "updated_at"))
_ORDERING = "gazette_date DESC, source_order ASC, id ASC"


class NoticeRepo:
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        init_db(self.db_path)

    def create_result(self, result: ProcessingResult) -> ProcessingResult:
        now = _utc_now()
        placeholders = ", ".join("?" for _ in range(len(_CONTENT_COLUMNS) + 2))
        columns = ", ".join((*_CONTENT_COLUMNS, "created_at", "updated_at"))

        with connection(self.db_path) as conn:
            cursor = conn.execute(
                f"INSERT INTO gazette_notices ({columns}) VALUES ({placeholders})",
                (*_content_values(result), now, now),
            )
            result_id = cursor.lastrowid

        if result_id is None:
            raise RuntimeError("Failed to create notice record")
        return replace(result, id=int(result_id), created_at=now, updated_at=now)

    def update_result(self, result: ProcessingResult) -> ProcessingResult:
        if result.id is None:
            raise ValueError("Cannot update a notice record without an id")

        now = _utc_now()
        assignments = ", ".join(f"{column} = ?" for column in _CONTENT_COLUMNS)
        with connection(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE gazette_notices SET {assignments}, updated_at = ? WHERE id = ?",
                (*_content_values(result), now, result.id),
            )

        if cursor.rowcount == 0:
            raise KeyError(f"Notice not found: {result.id}")
        return replace(result, updated_at=now)

    def get_result(self, result_id: int) -> ProcessingResult | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM gazette_notices WHERE id = ?",
                (result_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_result(row)

    def list_by_status(self, status: ProcessingStatus) -> list[ProcessingResult]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM gazette_notices
                WHERE status = ?
                ORDER BY {_ORDERING}
                """,
                (status,),
            ).fetchall()

        return [_row_to_result(row) for row in rows]

    def list_by_document_path(self, document_path: str) -> list[ProcessingResult]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM gazette_notices
                WHERE original_document_path = ?
                ORDER BY source_order ASC, id ASC
                """,
                (document_path,),
            ).fetchall()

        return [_row_to_result(row) for row in rows]

    def list_batches(self) -> list[GazetteBatch]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT
                    original_document_path,
                    MAX(gazette_date) AS gazette_date,
                    MAX(gazette_number) AS gazette_number,
                    COUNT(*) AS notice_count,
                    SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END) AS failed_count
                FROM gazette_notices
                WHERE original_document_path IS NOT NULL
                GROUP BY original_document_path
                ORDER BY gazette_date DESC, gazette_number DESC
                """
            ).fetchall()

        return [
            GazetteBatch(
                original_document_path=str(row["original_document_path"]),
                gazette_date=_parse_date(row["gazette_date"]),
                gazette_number=str(row["gazette_number"] or ""),
                notice_count=int(row["notice_count"]),
                failed_count=int(row["failed_count"] or 0),
            )
            for row in rows
        ]


def _content_values(result: ProcessingResult) -> tuple[object, ...]:
    return (
        result.status,
        result.category,
        result.source_order,
        result.raw_content,
        result.title,
        result.summary,
        result.article,
        result.short_social_summary,
        result.actionable_info,
        result.notice_number,
        result.signatory,
        _format_date(result.published_date),
        result.gazette_volume,
        result.gazette_number,
        _format_date(result.gazette_date),
        result.significance,
        result.original_document_path,
        result.failure_stage.value if result.failure_stage is not None else None,
        result.failure_reason,
        result.extracted_json,
        result.retry_count,
        result.view_count,
        result.thumbs_up,
        result.thumbs_down,
    )


def _row_to_result(row: sqlite3.Row) -> ProcessingResult:
    failure_stage = row["failure_stage"]
    return ProcessingResult(
        id=int(row["id"]),
        status=row["status"],
        category=str(row["category"]),
        source_order=int(row["source_order"]),
        raw_content=str(row["raw_content"]),
        title=str(row["title"]),
        summary=str(row["summary"]),
        article=str(row["article"]),
        short_social_summary=str(row["short_social_summary"]),
        actionable_info=str(row["actionable_info"]),
        notice_number=str(row["notice_number"]),
        signatory=str(row["signatory"]),
        published_date=_parse_date(row["published_date"]),
        gazette_volume=str(row["gazette_volume"]),
        gazette_number=str(row["gazette_number"]),
        gazette_date=_parse_date(row["gazette_date"]),
        significance=row["significance"],
        original_document_path=row["original_document_path"],
        failure_stage=FailureStage(failure_stage) if failure_stage else None,
        failure_reason=row["failure_reason"],
        extracted_json=row["extracted_json"],
        retry_count=int(row["retry_count"]),
        view_count=int(row["view_count"]),
        thumbs_up=int(row["thumbs_up"]),
        thumbs_down=int(row["thumbs_down"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _format_date(value: date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _parse_date(value: object) -> date | None:
    if not value:
        return None
    return date.fromisoformat(str(value))


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
