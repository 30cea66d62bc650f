from __future__ import annotations

import time
from typing import Any, Protocol

from smart_gazette.llm_client.base import GenerationRequest, GenerationResponse
from smart_gazette.llm_client.normalize_usage import normalize_gemini_usage
from smart_gazette.utils.error_taxonomy import BlockedResponseError

_BLOCKING_FINISH_REASONS = {
    "SAFETY",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "RECITATION",
}


class GeminiGenerateService(Protocol):
    def generate_content(self, **kwargs: Any) -> Any: ...


class GeminiGenerativeClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        generate_service: GeminiGenerateService | None = None,
    ) -> None:
        self._api_key = api_key
        self._generate_service = generate_service

    def generate(
        self,
        *,
        request: GenerationRequest,
        model: str,
        params: dict[str, Any],
    ) -> GenerationResponse:
        service = self._resolve_service()
        payload = self.build_request_payload(
            request=request,
            model=model,
            params=params,
        )

        start_time = time.perf_counter()
        response = service.generate_content(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = _to_dict(response)
        _raise_if_blocked(response=response, payload=response_payload)
        text = _extract_gemini_output_text(response=response, payload=response_payload)

        usage_raw = _extract_usage(response=response, payload=response_payload)
        return GenerationResponse(
            text=text.strip(),
            raw_response=response_payload,
            usage_normalized=normalize_gemini_usage(usage_raw),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    @staticmethod
    def build_request_payload(
        *,
        request: GenerationRequest,
        model: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if request.prompt:
            parts.append({"text": request.prompt})
        if request.image_bytes is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": request.image_mime_type or "image/jpeg",
                        "data": request.image_bytes,
                    }
                }
            )
        if not parts:
            raise ValueError("Generation request needs a prompt or an image")

        config: dict[str, Any] = {}

        temperature = params.get("temperature")
        if temperature is not None:
            config["temperature"] = float(temperature)

        top_p = params.get("top_p")
        if top_p is not None:
            config["top_p"] = float(top_p)

        max_output_tokens = params.get("max_output_tokens")
        if max_output_tokens is not None:
            config["max_output_tokens"] = int(max_output_tokens)

        payload: dict[str, Any] = {
            "model": model,
            "contents": [{"role": "user", "parts": parts}],
        }
        if config:
            payload["config"] = config
        return payload

    def _resolve_service(self) -> GeminiGenerateService:
        if self._generate_service is not None:
            return self._generate_service

        if self._api_key is None:
            raise ValueError("Google API key is required when service is not injected")

        try:
            from google import genai
        except ImportError as error:
            raise RuntimeError("google-genai package is not installed") from error

        # Hold the client so its HTTP session outlives this call.
        client = getattr(self, "_genai_client", None)
        if client is None:
            client = genai.Client(api_key=self._api_key)
            self._genai_client = client

        self._generate_service = client.models
        return self._generate_service


def _raise_if_blocked(*, response: Any, payload: dict[str, Any]) -> None:
    prompt_feedback = payload.get("prompt_feedback") or payload.get("promptFeedback")
    if isinstance(prompt_feedback, dict):
        block_reason = prompt_feedback.get("block_reason") or prompt_feedback.get(
            "blockReason"
        )
        if block_reason:
            raise BlockedResponseError(
                f"Gemini blocked the prompt: {_enum_text(block_reason)}"
            )

    candidates = payload.get("candidates")
    if candidates is None:
        candidates = getattr(response, "candidates", None)
    if not candidates:
        raise BlockedResponseError("Gemini response has no candidates")

    first = candidates[0]
    finish_reason = (
        first.get("finish_reason") or first.get("finishReason")
        if isinstance(first, dict)
        else getattr(first, "finish_reason", None)
    )
    if finish_reason and _enum_text(finish_reason) in _BLOCKING_FINISH_REASONS:
        raise BlockedResponseError(
            f"Gemini candidate was blocked: {_enum_text(finish_reason)}"
        )


def _extract_usage(*, response: Any, payload: dict[str, Any]) -> dict[str, Any]:
    usage = payload.get("usage_metadata")
    if isinstance(usage, dict):
        return usage

    usage_camel = payload.get("usageMetadata")
    if isinstance(usage_camel, dict):
        return usage_camel

    response_usage = getattr(response, "usage_metadata", None)
    if response_usage is not None:
        return _to_dict(response_usage)

    return {}


def _extract_gemini_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    direct_text = getattr(response, "text", None)
    if isinstance(direct_text, str) and direct_text.strip():
        return direct_text

    chunks: list[str] = []
    candidates = payload.get("candidates")
    if isinstance(candidates, list):
        for candidate in candidates[:1]:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            if not isinstance(content, dict):
                continue
            parts = content.get("parts")
            if not isinstance(parts, list):
                continue
            for part in parts:
                if not isinstance(part, dict):
                    continue
                text = part.get("text")
                if isinstance(text, str):
                    chunks.append(text)

    return "".join(chunks)


def _enum_text(value: Any) -> str:
    return str(getattr(value, "value", value)).upper()


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}
