from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ExtractionMethod = Literal["hybrid", "strip_only"]


@dataclass(frozen=True, slots=True)
class TextExtractionResult:
    text: str
    method: ExtractionMethod
    pages_count: int
