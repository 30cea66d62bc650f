from __future__ import annotations

import logging
from datetime import date
from typing import Any

from smart_gazette.pipeline.json_recovery import parse_model_json
from smart_gazette.pipeline.types import GazetteHeader
from smart_gazette.prompts.manager import PromptManager

logger = logging.getLogger("smart_gazette.header")


def extract_gazette_header(
    text: str,
    *,
    gateway: Any,
    prompt_manager: PromptManager,
    char_limit: int = 2_000,
    prompt_version: str | None = None,
) -> GazetteHeader | None:
    """Read volume, issue number, and date from the start of the gazette.

    Returns None when the call fails or its output cannot be parsed; callers
    carry on without header data.
    """
    prompt = prompt_manager.load("header", prompt_version).render(
        header_text=text[:char_limit]
    )
    result = gateway.generate_text(prompt, stage="header")
    if result.text is None:
        logger.warning("Header extraction call failed: %s", result.failure, extra={"stage": "header"})
        return None

    data = parse_model_json(result.text)
    if data is None:
        logger.warning("Header extraction returned unparseable JSON", extra={"stage": "header"})
        return None

    header = GazetteHeader(
        volume=_clean(data.get("volume")),
        issue_number=_clean(data.get("issue_number")),
        date=parse_iso_date(data.get("date")),
    )
    logger.info(
        "Extracted gazette header",
        extra={
            "stage": "header",
            "metrics": {
                "volume": header.volume,
                "issue_number": header.issue_number,
                "date": header.date.isoformat() if header.date else None,
            },
        },
    )
    return header


def parse_iso_date(value: Any) -> date | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
