from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any

import yaml
from jsonschema import SchemaError, validators

VERSION_RE = re.compile(r"^v(\d{3})$")

logger = logging.getLogger("smart_gazette.prompts")


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    stage: str
    version: str
    text: str
    meta: dict[str, Any] = field(default_factory=dict)

    def render(self, **values: str) -> str:
        # `$name` placeholders leave JSON braces in the templates untouched.
        return Template(self.text).safe_substitute(values)


class PromptManager:
    def __init__(self, prompts_root: Path | str) -> None:
        self.prompts_root = Path(prompts_root)
        self._cache: dict[tuple[str, str], PromptTemplate] = {}

    def list_versions(self, stage: str) -> list[str]:
        stage_dir = self.prompts_root / stage
        if not stage_dir.exists() or not stage_dir.is_dir():
            return []

        versions: list[str] = []
        for child in stage_dir.iterdir():
            if not child.is_dir():
                continue
            if VERSION_RE.match(child.name):
                versions.append(child.name)

        return sorted(versions, key=_version_to_int)

    def load(self, stage: str, version: str | None = None) -> PromptTemplate:
        if version is None:
            versions = self.list_versions(stage)
            if not versions:
                raise FileNotFoundError(f"no prompt versions for stage: {stage}")
            version = versions[-1]

        cache_key = (stage, version)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        prompt_dir = self._prompt_dir(stage=stage, version=version)
        prompt_path = prompt_dir / "prompt.txt"
        meta_path = prompt_dir / "meta.yaml"

        if not prompt_path.exists():
            raise FileNotFoundError(f"prompt not found: {prompt_path}")

        meta: dict[str, Any] = {}
        if meta_path.exists():
            parsed_meta = yaml.safe_load(meta_path.read_text(encoding="utf-8")) or {}
            if isinstance(parsed_meta, dict):
                meta = parsed_meta

        template = PromptTemplate(
            stage=stage,
            version=version,
            text=prompt_path.read_text(encoding="utf-8"),
            meta=meta,
        )
        self._cache[cache_key] = template
        return template

    def _prompt_dir(self, *, stage: str, version: str) -> Path:
        if not VERSION_RE.match(version):
            raise ValueError(f"Invalid prompt version format: {version}")
        return self.prompts_root / stage / version


class SchemaProvider:
    """Category name -> extraction schema text, matched case-insensitively."""

    def __init__(self, schemas_dir: Path | str) -> None:
        self.schemas_dir = Path(schemas_dir)

    def load(self, category: str) -> str | None:
        path = self._find_schema_path(category)
        if path is None:
            logger.error("Schema file not found for category '%s'", category)
            return None

        schema_text = path.read_text(encoding="utf-8")
        try:
            _validate_schema_text(schema_text)
        except ValueError as error:
            logger.error("Schema file %s is not usable: %s", path, error)
            return None
        return schema_text

    def _find_schema_path(self, category: str) -> Path | None:
        if not category or not self.schemas_dir.is_dir():
            return None

        wanted = f"{category.strip().lower()}.json"
        for child in sorted(self.schemas_dir.iterdir()):
            if child.is_file() and child.name.lower() == wanted:
                return child
        return None


def _validate_schema_text(schema_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(schema_text)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid schema JSON: {error}") from error

    if not isinstance(parsed, dict):
        raise ValueError("Schema JSON root must be an object")

    validator_cls = validators.validator_for(parsed)
    try:
        validator_cls.check_schema(parsed)
    except SchemaError as error:
        raise ValueError(f"Invalid JSON schema: {error.message}") from error

    return parsed


def _version_to_int(version: str) -> int:
    match = VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid version format: {version}")
    return int(match.group(1))
