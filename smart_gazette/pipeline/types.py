from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Union

CATEGORIES: tuple[str, ...] = (
    "Appointments",
    "Legislation",
    "Tenders",
    "Land_Property",
    "Court_Legal",
    "Public_Service_HR",
    "Licensing",
    "Company_Registrations",
    "Miscellaneous",
)
CATCH_ALL_CATEGORY = CATEGORIES[-1]
FALLBACK_CATEGORY = "Uncategorized"


class FailureStage(str, Enum):
    TRIAGE = "TRIAGE"
    SCHEMA = "SCHEMA"
    EXTRACTION = "EXTRACTION"
    GENERATION = "GENERATION"
    PIPELINE = "PIPELINE"


@dataclass(frozen=True, slots=True)
class RawNotice:
    text: str
    source_order: int


@dataclass(frozen=True, slots=True)
class GazetteHeader:
    volume: str = ""
    issue_number: str = ""
    date: date | None = None


@dataclass(frozen=True, slots=True)
class SingleItem:
    item: dict[str, Any]

    def first(self) -> dict[str, Any]:
        return self.item

    def to_json(self) -> str:
        return json.dumps(self.item, ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class ItemList:
    items: list[dict[str, Any]]

    def first(self) -> dict[str, Any]:
        return self.items[0]

    def to_json(self) -> str:
        return json.dumps(self.items, ensure_ascii=False)


ExtractedPayload = Union[SingleItem, ItemList]


def payload_from_json(text: str | None) -> ExtractedPayload | None:
    """Rebuild a stored payload; returns None for anything that is not one."""
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict) and data:
        return SingleItem(item=data)
    if isinstance(data, list):
        items = [item for item in data if isinstance(item, dict)]
        if items:
            return ItemList(items=items)
    return None


@dataclass(frozen=True, slots=True)
class GeneratedContent:
    title: str
    summary: str
    article: str
    short_social_summary: str
    actionable_info: str
    significance: int | None = None
