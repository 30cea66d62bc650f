from __future__ import annotations

import json

import pytest

from smart_gazette.pipeline.json_recovery import (
    aggressive_json_clean,
    fix_common_json_errors,
    parse_model_json,
    strip_code_fences,
)


def test_valid_object_parses_unchanged() -> None:
    original = {"items": [{"a": "x, }", "b": [1, 2]}], "note": "key: value"}

    assert parse_model_json(json.dumps(original)) == original


def test_code_fences_and_surrounding_prose_are_dropped() -> None:
    text = 'Here you go:\n```json\n{"title": "Notice"}\n```'

    assert parse_model_json(text) == {"title": "Notice"}
    assert strip_code_fences('```json\n{"a": 1}\n```').strip() == '{"a": 1}'


def test_trailing_commas_are_removed() -> None:
    assert parse_model_json('{"items": [{"a": 1,}, {"b": 2},],}') == {
        "items": [{"a": 1}, {"b": 2}]
    }


def test_bare_keys_are_quoted_outside_strings_only() -> None:
    text = '{items: {notice_id: "12", note: "ratio 3:1, per {unit}"}}'

    assert parse_model_json(text) == {
        "items": {"notice_id": "12", "note": "ratio 3:1, per {unit}"}
    }


def test_trailing_comma_inside_string_is_preserved() -> None:
    assert fix_common_json_errors('{"a": "x,}"}') == '{"a": "x,}"}'


def test_raw_newlines_inside_strings_are_escaped() -> None:
    text = '{"article": "line one\nline two\tend",}'

    assert parse_model_json(text) == {"article": "line one\nline two\tend"}
    assert "\\n" in aggressive_json_clean('{"a": "x\ny"}')


@pytest.mark.parametrize(
    "text",
    [None, "", "   ", "no braces here", "} inverted {", "[1, 2, 3]", '{"a": }'],
)
def test_unrecoverable_input_returns_none(text: str | None) -> None:
    assert parse_model_json(text) is None


def test_failure_log_is_truncated(caplog: pytest.LogCaptureFixture) -> None:
    text = "{" + '"a": ' + "x" * 2000 + "}"

    with caplog.at_level("ERROR", logger="smart_gazette.json_recovery"):
        assert parse_model_json(text) is None

    assert caplog.records
    assert "x" * 501 not in caplog.text
