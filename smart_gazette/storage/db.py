from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS gazette_notices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    status TEXT NOT NULL CHECK (status IN ('SUCCESS', 'FAILED')),
    category TEXT NOT NULL,
    source_order INTEGER NOT NULL,
    raw_content TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT NOT NULL,
    article TEXT NOT NULL,
    short_social_summary TEXT NOT NULL DEFAULT '',
    actionable_info TEXT NOT NULL DEFAULT '',
    notice_number TEXT NOT NULL DEFAULT '',
    signatory TEXT NOT NULL DEFAULT '',
    published_date TEXT,
    gazette_volume TEXT NOT NULL DEFAULT '',
    gazette_number TEXT NOT NULL DEFAULT '',
    gazette_date TEXT,
    significance INTEGER CHECK (significance IS NULL OR significance BETWEEN 1 AND 10),
    original_document_path TEXT,
    failure_stage TEXT CHECK (
        failure_stage IS NULL
        OR failure_stage IN ('TRIAGE', 'SCHEMA', 'EXTRACTION', 'GENERATION', 'PIPELINE')
    ),
    failure_reason TEXT,
    extracted_json TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    view_count INTEGER NOT NULL DEFAULT 0,
    thumbs_up INTEGER NOT NULL DEFAULT 0,
    thumbs_down INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_gazette_notices_status ON gazette_notices (status);
CREATE INDEX IF NOT EXISTS idx_gazette_notices_document
    ON gazette_notices (original_document_path);
"""


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with connection(db_path) as conn:
        conn.executescript(SCHEMA_SQL)


@contextmanager
def connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
