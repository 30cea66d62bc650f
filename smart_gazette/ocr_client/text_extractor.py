"""Recover the text of a gazette PDF.

Page 1 is usually a scanned cover with the masthead, so it is rendered and
read by the vision model; the remaining pages carry a text layer and are
stripped directly. Anything going wrong in that hybrid pass falls back to
stripping every page.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

import fitz

from smart_gazette.ocr_client.types import TextExtractionResult
from smart_gazette.prompts.manager import PromptManager
from smart_gazette.utils.error_taxonomy import failure_message

logger = logging.getLogger("smart_gazette.text_extractor")

DEFAULT_OCR_INSTRUCTION = (
    "Extract all text from the following page image, preserving line breaks. "
    "Return ONLY the extracted text."
)


class VisionGateway(Protocol):
    def generate_vision(self, prompt: str, image_bytes: bytes, mime_type: str = ...): ...


class TextExtractor:
    def __init__(
        self,
        *,
        gateway: VisionGateway,
        prompt_manager: PromptManager | None = None,
        prompt_version: str | None = None,
        dpi: int = 300,
    ) -> None:
        self.gateway = gateway
        self.prompt_manager = prompt_manager
        self.prompt_version = prompt_version
        self.dpi = dpi

    def extract(self, pdf_bytes: bytes) -> TextExtractionResult:
        # Unopenable bytes propagate; everything after this point degrades instead.
        document = fitz.open(stream=pdf_bytes, filetype="pdf")
        try:
            pages_count = document.page_count
            started_at = time.perf_counter()
            try:
                text = self._hybrid_text(document)
            except Exception as error:  # noqa: BLE001
                logger.warning(
                    "Hybrid extraction failed, stripping text instead: %s",
                    error,
                    extra={"stage": "ocr"},
                )
                text = None

            if text is not None:
                logger.info(
                    "Extracted text with vision OCR on page 1",
                    extra={
                        "stage": "ocr",
                        "duration_ms": round((time.perf_counter() - started_at) * 1000, 1),
                        "metrics": {"pages": pages_count, "chars": len(text)},
                    },
                )
                return TextExtractionResult(
                    text=text, method="hybrid", pages_count=pages_count
                )

            text = _strip_pages(document, start=0)
            logger.info(
                "Extracted text by stripping all pages: %s",
                failure_message("EXTRACTION_IO_FAILURE"),
                extra={
                    "stage": "ocr",
                    "metrics": {
                        "failure": "EXTRACTION_IO_FAILURE",
                        "pages": pages_count,
                        "chars": len(text),
                    },
                },
            )
            return TextExtractionResult(
                text=text, method="strip_only", pages_count=pages_count
            )
        finally:
            document.close()

    def _hybrid_text(self, document: fitz.Document) -> str | None:
        if document.page_count == 0:
            logger.warning("PDF has no pages", extra={"stage": "ocr"})
            return None

        image_bytes = document[0].get_pixmap(dpi=self.dpi).tobytes("jpg")
        result = self.gateway.generate_vision(
            self._instruction(), image_bytes, "image/jpeg"
        )
        first_page = (result.text or "").strip()
        if not first_page:
            logger.warning(
                "Vision OCR returned no text for page 1 (failure=%s)",
                result.failure,
                extra={"stage": "ocr"},
            )
            return None

        rest = _strip_pages(document, start=1)
        if not rest:
            return first_page
        return f"{first_page}\n\n{rest}"

    def _instruction(self) -> str:
        if self.prompt_manager is None:
            return DEFAULT_OCR_INSTRUCTION
        return self.prompt_manager.load("ocr", self.prompt_version).render()


def _strip_pages(document: fitz.Document, *, start: int) -> str:
    parts = [document[index].get_text("text") for index in range(start, document.page_count)]
    return "".join(parts).strip()
