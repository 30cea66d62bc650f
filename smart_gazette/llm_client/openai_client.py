from __future__ import annotations

import base64
import time
from typing import Any, Protocol

from smart_gazette.llm_client.base import GenerationRequest, GenerationResponse
from smart_gazette.llm_client.normalize_usage import normalize_openai_usage
from smart_gazette.utils.error_taxonomy import BlockedResponseError


class OpenAIResponsesService(Protocol):
    def create(self, **kwargs: Any) -> Any: ...


class OpenAIGenerativeClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        responses_service: OpenAIResponsesService | None = None,
    ) -> None:
        self._api_key = api_key
        self._responses_service = responses_service

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
        response = service.create(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = _to_dict(response)
        _raise_if_blocked(payload=response_payload)
        text = _extract_openai_output_text(response=response, payload=response_payload)

        usage_raw = _extract_usage(response=response, payload=response_payload)
        return GenerationResponse(
            text=text.strip(),
            raw_response=response_payload,
            usage_normalized=normalize_openai_usage(usage_raw),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    @staticmethod
    def build_request_payload(
        *,
        request: GenerationRequest,
        model: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        if request.prompt:
            content.append({"type": "input_text", "text": request.prompt})
        if request.image_bytes is not None:
            mime_type = request.image_mime_type or "image/jpeg"
            encoded = base64.b64encode(request.image_bytes).decode("ascii")
            content.append(
                {
                    "type": "input_image",
                    "image_url": f"data:{mime_type};base64,{encoded}",
                }
            )
        if not content:
            raise ValueError("Generation request needs a prompt or an image")

        payload: dict[str, Any] = {
            "model": model,
            "input": [{"role": "user", "content": content}],
            "tools": [],
            "tool_choice": "none",
        }

        reasoning_effort = str(
            params.get("openai_reasoning_effort")
            or params.get("reasoning_effort")
            or "auto"
        )
        if reasoning_effort in {"low", "medium", "high"}:
            payload["reasoning"] = {"effort": reasoning_effort}

        temperature = params.get("temperature")
        if temperature is not None:
            payload["temperature"] = temperature

        max_output_tokens = params.get("max_output_tokens")
        if max_output_tokens is not None:
            payload["max_output_tokens"] = int(max_output_tokens)

        return payload

    def _resolve_service(self) -> OpenAIResponsesService:
        if self._responses_service is not None:
            return self._responses_service

        if self._api_key is None:
            raise ValueError("OpenAI API key is required when service is not injected")

        try:
            from openai import OpenAI
        except ImportError as error:
            raise RuntimeError("openai package is not installed") from error

        client = OpenAI(api_key=self._api_key)
        self._responses_service = client.responses
        return self._responses_service


def _raise_if_blocked(*, payload: dict[str, Any]) -> None:
    details = payload.get("incomplete_details")
    if isinstance(details, dict) and details.get("reason") == "content_filter":
        raise BlockedResponseError("OpenAI response was cut by the content filter")

    output = payload.get("output")
    if not isinstance(output, list):
        return
    for item in output:
        if not isinstance(item, dict):
            continue
        for content_item in item.get("content") or []:
            if isinstance(content_item, dict) and content_item.get("type") == "refusal":
                raise BlockedResponseError(
                    f"OpenAI refused the request: {content_item.get('refusal', '')}"
                )


def _extract_usage(*, response: Any, payload: dict[str, Any]) -> dict[str, Any]:
    usage = payload.get("usage")
    if isinstance(usage, dict):
        return usage

    response_usage = getattr(response, "usage", None)
    if response_usage is None:
        return {}

    return _to_dict(response_usage)


def _extract_openai_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    payload_text = payload.get("output_text")
    if isinstance(payload_text, str) and payload_text.strip():
        return payload_text

    output = payload.get("output")
    if not isinstance(output, list) or not output:
        raise BlockedResponseError("OpenAI response has no output items")

    chunks: list[str] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for content_item in content:
            if not isinstance(content_item, dict):
                continue
            text = content_item.get("text")
            if isinstance(text, str):
                chunks.append(text)

    return "".join(chunks)


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}
