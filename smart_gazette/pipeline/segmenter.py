from __future__ import annotations

import logging
import re

from smart_gazette.pipeline.types import RawNotice

logger = logging.getLogger("smart_gazette.segmenter")

NOTICE_MARKER_RE = re.compile(r"^[ \t]*GAZETTE NOTICE NO\.\s*\d+", re.IGNORECASE | re.MULTILINE)


def segment_notices(text: str) -> list[RawNotice]:
    """Split gazette text into notices at each `GAZETTE NOTICE NO. <n>` line.

    Text before the first marker is masthead noise and is dropped. Text with
    no marker at all is kept as a single notice.
    """
    if not text or not text.strip():
        return []

    starts = [match.start() for match in NOTICE_MARKER_RE.finditer(text)]
    if not starts:
        logger.warning(
            "No notice markers found; treating the whole document as one notice",
            extra={"stage": "segmentation", "metrics": {"failure": "SEGMENTATION_EMPTY"}},
        )
        return [RawNotice(text=text.strip(), source_order=1)]

    spans: list[str] = []
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else len(text)
        span = text[start:end].strip()
        if span:
            spans.append(span)

    logger.info(
        "Segmented %d notice(s)", len(spans), extra={"stage": "segmentation"}
    )
    return [RawNotice(text=span, source_order=order) for order, span in enumerate(spans, start=1)]


def join_notices(notices: list[RawNotice]) -> str:
    return "\n\n".join(notice.text for notice in notices)
