"""Triage, Extraction, and Generation for one gazette notice.

Every expected failure ends in a stored record: the fallback placeholder for
Triage/Schema/Extraction problems, or a FAILED record that keeps the
extracted data when only Generation failed.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Iterable, Protocol

from smart_gazette.config.settings import Settings
from smart_gazette.pipeline.fallback import build_fallback_result, scrub
from smart_gazette.pipeline.header import parse_iso_date
from smart_gazette.pipeline.json_recovery import parse_model_json
from smart_gazette.pipeline.types import (
    CATCH_ALL_CATEGORY,
    CATEGORIES,
    ExtractedPayload,
    FailureStage,
    GazetteHeader,
    GeneratedContent,
    ItemList,
    RawNotice,
    SingleItem,
    payload_from_json,
)
from smart_gazette.prompts.manager import PromptManager, SchemaProvider
from smart_gazette.storage.models import ProcessingResult
from smart_gazette.utils.error_taxonomy import FailureKind, failure_message

logger = logging.getLogger("smart_gazette.notice_pipeline")

SOCIAL_SUMMARY_LIMIT = 276
DEADLINE_KEYS = (
    "objection_period",
    "deadline",
    "closing_date",
    "response_period",
    "submission_deadline",
)
DEFLECTION_PHRASES = (
    "check the gazette",
    "refer to the gazette",
    "see the gazette",
    "consult the gazette",
    "check the notice",
    "refer to the notice",
    "see the notice for details",
)
NOTICE_NUMBER_RE = re.compile(r"GAZETTE NOTICE NO\.\s*(\d+)", re.IGNORECASE)

_CANONICAL_CATEGORIES = {category.lower(): category for category in CATEGORIES}
_NON_CATEGORY_CHARS_RE = re.compile(r"[^A-Za-z_]")

_DIGEST_RULE = (
    "    - The structured data lists several like-kind items. Write ONE digest\n"
    "      article that covers all of them together, and give it a title that\n"
    '      describes the group (e.g., "12 Land Title Replacements Announced").'
)
_LIST_RULE = (
    "    - The structured data lists several items. Write a normal article and\n"
    "      cover each item in turn."
)
_SINGLE_RULE = "    - The structured data describes one notice. Write a normal article about it."


class TextGateway(Protocol):
    def generate_text(self, prompt: str, *, stage: str): ...


class Notifier(Protocol):
    def notify(self, text: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class ExtractionOutcome:
    payload: ExtractedPayload | None
    reason: str | None = None
    stage: FailureStage = FailureStage.EXTRACTION
    kind: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.payload is not None


class NoticePipeline:
    def __init__(
        self,
        *,
        gateway: TextGateway,
        prompt_manager: PromptManager,
        schema_provider: SchemaProvider,
        digest_categories: Iterable[str] = (),
        prompt_versions: dict[str, str] | None = None,
        notifier: Notifier | None = None,
        significance_threshold: int = 8,
        triage_char_limit: int = 4_000,
    ) -> None:
        self.gateway = gateway
        self.prompt_manager = prompt_manager
        self.schema_provider = schema_provider
        self.digest_categories = {category.lower() for category in digest_categories}
        self.prompt_versions = prompt_versions or {}
        self.notifier = notifier
        self.significance_threshold = significance_threshold
        self.triage_char_limit = triage_char_limit

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        gateway: TextGateway,
        notifier: Notifier | None = None,
    ) -> "NoticePipeline":
        pipeline_config = settings.pipeline_config
        return cls(
            gateway=gateway,
            prompt_manager=PromptManager(settings.resolved_prompts_root),
            schema_provider=SchemaProvider(settings.resolved_schemas_dir),
            digest_categories=pipeline_config.get("digest_categories") or (),
            prompt_versions={
                str(stage): str(version)
                for stage, version in (pipeline_config.get("prompt_versions") or {}).items()
            },
            notifier=notifier,
            significance_threshold=settings.significance_threshold,
            triage_char_limit=settings.triage_char_limit,
        )

    def process(
        self,
        notice: RawNotice,
        header: GazetteHeader | None,
        document_path: str | None = None,
    ) -> ProcessingResult:
        started_at = time.perf_counter()
        category = self.triage(notice.text)
        if category is None:
            logger.warning(
                "Triage failed; creating fallback: %s",
                failure_message("TRIAGE_FAILED"),
                extra={"stage": "triage", "metrics": {"failure": "TRIAGE_FAILED"}},
            )
            return build_fallback_result(
                notice.text,
                notice.source_order,
                header,
                "Triage failed",
                FailureStage.TRIAGE,
                document_path=document_path,
            )
        logger.info("Triage complete: %s", category, extra={"stage": "triage"})

        extraction = self.extract(notice.text, category)
        if extraction.payload is None:
            reason = extraction.reason or "Extraction failed"
            return build_fallback_result(
                notice.text,
                notice.source_order,
                header,
                reason,
                extraction.stage,
                document_path=document_path,
            )
        logger.info("Extraction complete", extra={"stage": "extraction"})

        generated = self.generate(extraction.payload, category)
        result = self._build_result(
            payload=extraction.payload,
            generated=generated,
            raw_text=notice.text,
            category=category,
            source_order=notice.source_order,
            header=header,
            document_path=document_path,
        )
        logger.info(
            "Notice processed with status %s",
            result.status,
            extra={
                "stage": "generation",
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 1),
                "metrics": {"category": category, "significance": result.significance},
            },
        )
        return result

    def process_generation_only(self, record: ProcessingResult) -> ProcessingResult:
        """Re-run Generation for a record whose extracted data was kept."""
        payload = payload_from_json(record.extracted_json)
        header = GazetteHeader(
            volume=record.gazette_volume,
            issue_number=record.gazette_number,
            date=record.gazette_date,
        )
        if payload is None:
            return build_fallback_result(
                record.raw_content,
                record.source_order,
                header,
                "Extraction failed: stored extracted data is unusable",
                FailureStage.EXTRACTION,
                document_path=record.original_document_path,
            )

        generated = self.generate(payload, record.category)
        return self._build_result(
            payload=payload,
            generated=generated,
            raw_text=record.raw_content,
            category=record.category,
            source_order=record.source_order,
            header=header,
            document_path=record.original_document_path,
        )

    def triage(self, text: str) -> str | None:
        """Classify a notice; None only when there is no text to classify."""
        if not text.strip():
            return None

        prompt = self._prompt("triage").render(notice_text=text[: self.triage_char_limit])
        result = self.gateway.generate_text(prompt, stage="triage")
        if result.text is None:
            logger.warning(
                "Triage call failed (%s); defaulting to %s",
                result.failure,
                CATCH_ALL_CATEGORY,
                extra={"stage": "triage"},
            )
            return CATCH_ALL_CATEGORY
        return normalize_category(result.text)

    def extract(self, text: str, category: str) -> ExtractionOutcome:
        schema = self.schema_provider.load(category)
        if schema is None:
            logger.error(
                "Schema file not found for %s: %s",
                category,
                failure_message("SCHEMA_MISSING"),
                extra={"stage": "extraction", "metrics": {"failure": "SCHEMA_MISSING"}},
            )
            return ExtractionOutcome(
                payload=None,
                reason="Schema file not found",
                stage=FailureStage.SCHEMA,
                kind="SCHEMA_MISSING",
            )

        prompt = self._prompt("extraction").render(schema=schema, notice_text=text)
        result = self.gateway.generate_text(prompt, stage="extraction")
        wrapper = parse_model_json(result.text)
        outcome = payload_from_wrapper(wrapper)
        if outcome.payload is None:
            if result.text is None and result.failure:
                outcome = replace(outcome, kind=result.failure)
            elif wrapper is None:
                outcome = replace(outcome, kind="JSON_UNRECOVERABLE")
            logger.error(
                "%s (%s)",
                outcome.reason,
                failure_message(outcome.kind),
                extra={"stage": "extraction", "metrics": {"failure": outcome.kind}},
            )
        return outcome

    def generate(self, payload: ExtractedPayload, category: str) -> GeneratedContent | None:
        prompt = self._prompt("generation").render(
            category=category,
            grouping_rule=self._grouping_rule(payload, category),
            structured_data=json.dumps(
                payload.items if isinstance(payload, ItemList) else payload.item,
                ensure_ascii=False,
                indent=2,
            ),
        )
        result = self.gateway.generate_text(prompt, stage="generation")
        data = parse_model_json(result.text)
        if data is None:
            logger.error(
                "Generation failed (%s); keeping extracted data: %s",
                result.failure or "JSON_UNRECOVERABLE",
                failure_message("GENERATION_FAILED"),
                extra={"stage": "generation", "metrics": {"failure": "GENERATION_FAILED"}},
            )
            return None
        return generated_content_from_json(data, payload)

    def is_digest(self, payload: ExtractedPayload, category: str) -> bool:
        return isinstance(payload, ItemList) and category.lower() in self.digest_categories

    def _grouping_rule(self, payload: ExtractedPayload, category: str) -> str:
        if self.is_digest(payload, category):
            return _DIGEST_RULE
        if isinstance(payload, ItemList) and len(payload.items) > 1:
            return _LIST_RULE
        return _SINGLE_RULE

    def _prompt(self, stage: str):
        return self.prompt_manager.load(stage, self.prompt_versions.get(stage))

    def _build_result(
        self,
        *,
        payload: ExtractedPayload,
        generated: GeneratedContent | None,
        raw_text: str,
        category: str,
        source_order: int,
        header: GazetteHeader | None,
        document_path: str | None,
    ) -> ProcessingResult:
        header = header or GazetteHeader()
        first = payload.first()
        payload_json = payload.to_json()

        notice_number = _first_text(first, "notice_id", "reference_number")
        if not notice_number:
            notice_number = recover_notice_number(raw_text)
        published_date = (
            parse_iso_date(_first_text(first, "publication_date", "effective_date"))
            or header.date
            or date.today()
        )

        common: dict[str, Any] = {
            "category": category,
            "source_order": source_order,
            "raw_content": scrub(raw_text),
            "notice_number": scrub(notice_number),
            "signatory": scrub(_first_text(first, "signatory")),
            "published_date": published_date,
            "gazette_volume": header.volume,
            "gazette_number": header.issue_number,
            "gazette_date": header.date,
            "original_document_path": document_path,
            "extracted_json": scrub(payload_json),
        }

        if generated is None:
            return ProcessingResult(
                status="FAILED",
                title=f"[GENERATION FAILED] {category} Notice (Review Extracted Data)",
                summary="AI failed to generate summary. Review extracted data below.",
                article=(
                    "## Extracted Data (Generation Failed):\n\n```json\n"
                    f"{scrub(payload_json)}\n```"
                ),
                short_social_summary="",
                actionable_info="Review needed",
                failure_stage=FailureStage.GENERATION,
                failure_reason="Generation failed",
                **common,
            )

        result = ProcessingResult(
            status="SUCCESS",
            title=scrub(generated.title),
            summary=scrub(generated.summary),
            article=scrub(generated.article),
            short_social_summary=scrub(generated.short_social_summary),
            actionable_info=scrub(generated.actionable_info),
            significance=generated.significance,
            **common,
        )
        self._maybe_notify(result)
        return result

    def _maybe_notify(self, result: ProcessingResult) -> None:
        if self.notifier is None or result.significance is None:
            return
        if result.significance < self.significance_threshold:
            return
        try:
            self.notifier.notify(result.short_social_summary)
        except Exception as error:  # noqa: BLE001
            logger.warning("Notification failed: %s", error, extra={"stage": "notify"})


def normalize_category(raw: str) -> str:
    cleaned = _NON_CATEGORY_CHARS_RE.sub("", raw or "")
    category = _CANONICAL_CATEGORIES.get(cleaned.lower())
    if category is None:
        logger.warning(
            "Triage returned an unexpected value %r; defaulting to %s",
            (raw or "")[:80],
            CATCH_ALL_CATEGORY,
            extra={"stage": "triage"},
        )
        return CATCH_ALL_CATEGORY
    return category


def payload_from_wrapper(wrapper: dict[str, Any] | None) -> ExtractionOutcome:
    if wrapper is None or "items" not in wrapper:
        return ExtractionOutcome(
            payload=None,
            reason="Extraction failed: no 'items' wrapper",
            kind="EXTRACTION_WRAPPER_INVALID",
        )

    items = wrapper["items"]
    if items is None or items == {}:
        return ExtractionOutcome(
            payload=None,
            reason="Extraction failed: 'items' was null or empty",
            kind="EXTRACTION_EMPTY",
        )
    if isinstance(items, dict):
        return ExtractionOutcome(payload=SingleItem(item=items))
    if isinstance(items, list):
        objects = [item for item in items if isinstance(item, dict) and item]
        if not objects:
            return ExtractionOutcome(
                payload=None,
                reason="Extraction failed: 'items' was an empty list",
                kind="EXTRACTION_EMPTY",
            )
        return ExtractionOutcome(payload=ItemList(items=objects))
    return ExtractionOutcome(
        payload=None,
        reason="Extraction failed: 'items' has unsupported type",
        kind="EXTRACTION_WRAPPER_INVALID",
    )


def generated_content_from_json(
    data: dict[str, Any], payload: ExtractedPayload
) -> GeneratedContent:
    actionable = _first_text(data, "actionable_info", "actionableInfo")
    period = find_deadline_period(payload)
    return GeneratedContent(
        title=_first_text(data, "title") or "Untitled Notice",
        summary=_first_text(data, "summary") or "No summary provided.",
        article=_first_text(data, "article") or payload.to_json(),
        short_social_summary=cap_social_summary(
            _first_text(data, "short_social_summary", "xSummary")
        ),
        actionable_info=enforce_deadline_action(actionable, period),
        significance=clamp_significance(data.get("significance")),
    )


def find_deadline_period(payload: ExtractedPayload) -> str | None:
    items = payload.items if isinstance(payload, ItemList) else [payload.item]
    for item in items:
        value = _first_text(item, *DEADLINE_KEYS)
        if value:
            return value.rstrip(". ")
    return None


def is_deflection(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in DEFLECTION_PHRASES)


def enforce_deadline_action(actionable: str, period: str | None) -> str:
    """Make sure a notice with a concrete deadline says what it is."""
    text = actionable.strip()
    if not period:
        return text

    mentions_period = period.lower() in text.lower()
    if not text or (is_deflection(text) and not mentions_period):
        return f"Submit objections or responses within {period}."
    if not mentions_period:
        return f"{text.rstrip('.')}. Deadline: {period}."
    return text


def cap_social_summary(text: str) -> str:
    text = text.strip()
    if len(text) <= SOCIAL_SUMMARY_LIMIT:
        return text
    return text[: SOCIAL_SUMMARY_LIMIT - 3].rstrip() + "..."


def clamp_significance(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return min(10, max(1, score))


def recover_notice_number(text: str) -> str:
    match = NOTICE_NUMBER_RE.search(text)
    return match.group(1) if match else ""


def _first_text(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""
