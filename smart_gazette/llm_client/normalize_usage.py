from __future__ import annotations

from typing import Any

USAGE_KEYS = ("prompt_tokens", "completion_tokens", "total_tokens")


def normalize_openai_usage(usage: dict[str, Any] | None) -> dict[str, int | None]:
    return _normalized(
        usage or {},
        prompt=("input_tokens",),
        completion=("output_tokens",),
        total=("total_tokens",),
    )


def normalize_gemini_usage(usage: dict[str, Any] | None) -> dict[str, int | None]:
    return _normalized(
        usage or {},
        prompt=("promptTokenCount", "prompt_token_count"),
        completion=("candidatesTokenCount", "candidates_token_count"),
        total=("totalTokenCount", "total_token_count"),
    )


def sum_usage(
    totals: dict[str, int], usage_normalized: dict[str, int | None]
) -> dict[str, int]:
    """Fold one call's normalized usage into running job totals."""
    merged = dict(totals)
    for key in USAGE_KEYS:
        value = usage_normalized.get(key)
        if value is not None:
            merged[key] = merged.get(key, 0) + int(value)
    return merged


def _normalized(
    usage: dict[str, Any],
    *,
    prompt: tuple[str, ...],
    completion: tuple[str, ...],
    total: tuple[str, ...],
) -> dict[str, int | None]:
    prompt_tokens = _first_int(usage, prompt)
    completion_tokens = _first_int(usage, completion)
    total_tokens = _first_int(usage, total)
    if total_tokens is None and (prompt_tokens is not None or completion_tokens is not None):
        total_tokens = (prompt_tokens or 0) + (completion_tokens or 0)
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
    }


def _first_int(usage: dict[str, Any], keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = usage.get(key)
        if value is not None:
            return int(value)
    return None
