from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    prompt: str | None = None
    image_bytes: bytes | None = None
    image_mime_type: str | None = None

    @property
    def has_image(self) -> bool:
        return self.image_bytes is not None


@dataclass(frozen=True, slots=True)
class GenerationResponse:
    text: str
    raw_response: dict[str, Any] = field(default_factory=dict)
    usage_normalized: dict[str, int | None] = field(default_factory=dict)
    timings: dict[str, float] = field(default_factory=dict)


class GenerativeClient(Protocol):
    def generate(
        self,
        *,
        request: GenerationRequest,
        model: str,
        params: dict[str, Any],
    ) -> GenerationResponse: ...
