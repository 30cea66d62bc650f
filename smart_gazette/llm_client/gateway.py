"""Uniform retry/backoff wrapper around the generative capability.

Every stage of the pipeline goes through :class:`GenerativeGateway`. A call
either yields text or a :class:`GatewayResult` with ``text=None`` and the
failure kind; provider exceptions never escape to the caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from smart_gazette.config.settings import Settings
from smart_gazette.llm_client.base import (
    GenerationRequest,
    GenerationResponse,
    GenerativeClient,
)
from smart_gazette.llm_client.gemini_client import GeminiGenerativeClient
from smart_gazette.llm_client.normalize_usage import sum_usage
from smart_gazette.llm_client.openai_client import OpenAIGenerativeClient
from smart_gazette.utils.error_taxonomy import (
    EmptyResponseError,
    FailureKind,
    build_error_details,
    classify_generation_error,
    is_auth_failure,
)
from smart_gazette.utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger("smart_gazette.gateway")

Stage = Literal["ocr", "header", "triage", "extraction", "generation"]
ModelTier = Literal["fast", "strong", "vision"]

_STAGE_TIERS: dict[str, ModelTier] = {
    "ocr": "vision",
    "header": "fast",
    "triage": "fast",
    "extraction": "strong",
    "generation": "strong",
}


@dataclass(frozen=True, slots=True)
class GatewayResult:
    text: str | None
    failure: FailureKind | None = None
    attempts: int = 0
    error_details: str | None = None

    @property
    def ok(self) -> bool:
        return self.text is not None


@dataclass(slots=True)
class GatewayModels:
    strong: str
    fast: str
    vision: str

    def for_stage(self, stage: str) -> str:
        tier = _STAGE_TIERS.get(stage, "strong")
        return getattr(self, tier)


@dataclass(slots=True)
class _CallCounter:
    attempts: int = 0
    last_response: GenerationResponse | None = field(default=None)


class GenerativeGateway:
    def __init__(
        self,
        *,
        client: GenerativeClient,
        models: GatewayModels,
        text_policy: RetryPolicy | None = None,
        vision_policy: RetryPolicy | None = None,
        stage_params: dict[str, dict[str, Any]] | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.models = models
        self.text_policy = text_policy or RetryPolicy(
            base_delay_seconds=2.0, is_non_retryable=is_auth_failure
        )
        self.vision_policy = vision_policy or RetryPolicy(
            base_delay_seconds=5.0, is_non_retryable=is_auth_failure
        )
        self.stage_params = stage_params or {}
        self.sleep_fn = sleep_fn
        self.usage_totals: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: GenerativeClient | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> "GenerativeGateway":
        pipeline_config = settings.pipeline_config
        stage_params = pipeline_config.get("stages") or {}
        return cls(
            client=client or build_generative_client(settings),
            models=GatewayModels(
                strong=settings.text_model,
                fast=settings.fast_model,
                vision=settings.vision_model,
            ),
            text_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay_seconds=settings.text_retry_base_delay_seconds,
                is_non_retryable=is_auth_failure,
            ),
            vision_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay_seconds=settings.vision_retry_base_delay_seconds,
                is_non_retryable=is_auth_failure,
            ),
            stage_params={
                str(name): dict(params or {}) for name, params in stage_params.items()
            },
            sleep_fn=sleep_fn,
        )

    def reset_usage(self) -> None:
        self.usage_totals = {}

    def generate_text(self, prompt: str, *, stage: Stage) -> GatewayResult:
        return self._call(
            request=GenerationRequest(prompt=prompt),
            stage=stage,
            policy=self.text_policy,
            require_text=False,
        )

    def generate_vision(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
    ) -> GatewayResult:
        return self._call(
            request=GenerationRequest(
                prompt=prompt,
                image_bytes=image_bytes,
                image_mime_type=mime_type,
            ),
            stage="ocr",
            policy=self.vision_policy,
            require_text=True,
        )

    def _call(
        self,
        *,
        request: GenerationRequest,
        stage: str,
        policy: RetryPolicy,
        require_text: bool,
    ) -> GatewayResult:
        model = self.models.for_stage(stage)
        params = self.stage_params.get(stage, {})
        counter = _CallCounter()

        def _operation() -> str:
            counter.attempts += 1
            logger.debug(
                "Sending %s request to model %s (attempt %d)",
                stage,
                model,
                counter.attempts,
                extra={"stage": stage},
            )
            response = self.client.generate(request=request, model=model, params=params)
            counter.last_response = response
            if require_text and not response.text.strip():
                raise EmptyResponseError(f"{stage} response had no text content")
            return response.text

        def _on_retry(attempt: int, delay: float, error: BaseException) -> None:
            logger.warning(
                "Generative call failed (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                policy.max_attempts,
                error,
                delay,
                extra={"stage": stage},
            )

        started_at = time.perf_counter()
        try:
            text = run_with_retry(
                operation=_operation,
                policy=policy,
                sleep_fn=self.sleep_fn,
                on_retry=_on_retry,
            )
        except Exception as error:  # noqa: BLE001
            failure = classify_generation_error(error)
            if failure == "AUTH_FAILURE":
                logger.error(
                    "Authentication error from generative service; not retrying: %s",
                    error,
                    extra={"stage": stage},
                )
            else:
                logger.error(
                    "Generative call gave up after %d attempt(s): %s",
                    counter.attempts,
                    error,
                    extra={"stage": stage},
                )
            return GatewayResult(
                text=None,
                failure=failure,
                attempts=counter.attempts,
                error_details=build_error_details(error),
            )

        if counter.last_response is not None:
            self.usage_totals = sum_usage(
                self.usage_totals, counter.last_response.usage_normalized
            )
        logger.debug(
            "Generative call succeeded",
            extra={
                "stage": stage,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 1),
                "metrics": {"attempts": counter.attempts, "model": model},
            },
        )
        return GatewayResult(text=text, attempts=counter.attempts)


def build_generative_client(settings: Settings) -> GenerativeClient:
    provider = settings.default_provider.strip().lower()
    if provider in {"google", "gemini"}:
        return GeminiGenerativeClient(api_key=settings.google_api_key)
    if provider == "openai":
        return OpenAIGenerativeClient(api_key=settings.openai_api_key)
    raise ValueError(f"Generative client not configured for provider: {provider}")
