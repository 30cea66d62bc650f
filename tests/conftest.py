from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Optional, Union

import fitz
import pytest

from smart_gazette.llm_client.gateway import GatewayResult
from smart_gazette.pipeline.notice_pipeline import NoticePipeline
from smart_gazette.prompts.manager import PromptManager, SchemaProvider

PROJECT_ROOT = Path(__file__).resolve().parents[1]
PROMPTS_ROOT = PROJECT_ROOT / "smart_gazette" / "prompts"
SCHEMAS_DIR = PROMPTS_ROOT / "schemas" / "field"

HEADER_JSON = json.dumps(
    {"volume": "Vol. CXXVII", "issue_number": "No. 36", "date": "2025-02-21"}
)
EXTRACTION_JSON = json.dumps(
    {
        "items": {
            "notice_id": "1234",
            "land_reference": "L.R. No. 209/10393",
            "objection_period": "sixty (60) days",
            "signatory": "J. K. Registrar",
            "publication_date": "2025-02-20",
        }
    }
)
GENERATION_JSON = json.dumps(
    {
        "title": "Lost Title Deed to Be Replaced",
        "summary": "A replacement title will be issued for a Nairobi parcel.",
        "article": "The Land Registrar intends to issue a replacement title.",
        "short_social_summary": "Own land near L.R. 209/10393? Objections close in 60 days.",
        "actionable_info": "Submit objections within sixty (60) days from the notice date.",
        "significance": 4,
    }
)

Response = Union[str, None, Callable[[str], Optional[str]]]


class ScriptedGateway:
    """Answers each stage from a queue; the last queued answer repeats."""

    def __init__(self, responses: dict[str, Response | list[Response]] | None = None) -> None:
        self.responses: dict[str, list[Response]] = {}
        for stage, value in (responses or {}).items():
            self.responses[stage] = list(value) if isinstance(value, list) else [value]
        self.calls: list[tuple[str, str]] = []
        self.usage_totals: dict[str, int] = {}

    def generate_text(self, prompt: str, *, stage: str) -> GatewayResult:
        self.calls.append((stage, prompt))
        return self._answer(stage, prompt)

    def generate_vision(
        self, prompt: str, image_bytes: bytes, mime_type: str = "image/jpeg"
    ) -> GatewayResult:
        self.calls.append(("ocr", prompt))
        return self._answer("ocr", prompt)

    def reset_usage(self) -> None:
        self.usage_totals = {}

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    def _answer(self, stage: str, prompt: str) -> GatewayResult:
        queue = self.responses.get(stage)
        if not queue:
            return GatewayResult(text=None, failure="NETWORK_OR_SERVER_ERROR", attempts=3)
        value = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(value):
            value = value(prompt)
        if value is None:
            return GatewayResult(text=None, failure="NETWORK_OR_SERVER_ERROR", attempts=3)
        return GatewayResult(text=value, attempts=1)


class RecordingNotifier:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.messages: list[str] = []
        self.error = error

    def notify(self, text: str) -> bool:
        self.messages.append(text)
        if self.error is not None:
            raise self.error
        return True


def happy_responses(**overrides: Any) -> dict[str, Any]:
    responses: dict[str, Any] = {
        "ocr": None,
        "header": HEADER_JSON,
        "triage": "Land_Property",
        "extraction": EXTRACTION_JSON,
        "generation": GENERATION_JSON,
    }
    responses.update(overrides)
    return responses


def make_pdf(pages: list[str]) -> bytes:
    document = fitz.open()
    for text in pages:
        page = document.new_page()
        page.insert_text((72, 72), text, fontsize=10)
    data = document.tobytes()
    document.close()
    return data


def build_pipeline(
    gateway: ScriptedGateway,
    *,
    notifier: RecordingNotifier | None = None,
    schemas_dir: Path = SCHEMAS_DIR,
    digest_categories: tuple[str, ...] = ("Land_Property", "Tenders"),
) -> NoticePipeline:
    return NoticePipeline(
        gateway=gateway,
        prompt_manager=PromptManager(PROMPTS_ROOT),
        schema_provider=SchemaProvider(schemas_dir),
        digest_categories=digest_categories,
        notifier=notifier,
    )


@pytest.fixture
def prompt_manager() -> PromptManager:
    return PromptManager(PROMPTS_ROOT)
