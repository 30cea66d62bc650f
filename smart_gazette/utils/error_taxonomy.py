from __future__ import annotations

import json
import socket
import sqlite3
from typing import Any, Literal

FailureKind = Literal[
    "EXTRACTION_IO_FAILURE",
    "SEGMENTATION_EMPTY",
    "TRIAGE_FAILED",
    "SCHEMA_MISSING",
    "EXTRACTION_WRAPPER_INVALID",
    "EXTRACTION_EMPTY",
    "GENERATION_FAILED",
    "JSON_UNRECOVERABLE",
    "NETWORK_OR_SERVER_ERROR",
    "AUTH_FAILURE",
    "BLOCKED_RESPONSE",
    "CANCELLATION_REQUESTED",
    "STORAGE_ERROR",
    "UNKNOWN_ERROR",
]

FAILURE_FRIENDLY_MESSAGES: dict[FailureKind, str] = {
    "EXTRACTION_IO_FAILURE": "Vision OCR failed; text was stripped from the PDF instead.",
    "SEGMENTATION_EMPTY": "No notice markers found; the document was treated as one notice.",
    "TRIAGE_FAILED": "Notice could not be classified.",
    "SCHEMA_MISSING": "No extraction schema exists for the notice category.",
    "EXTRACTION_WRAPPER_INVALID": "Model did not return a valid 'items' wrapper.",
    "EXTRACTION_EMPTY": "Model returned empty extracted data.",
    "GENERATION_FAILED": "Article generation failed; extracted data kept for review.",
    "JSON_UNRECOVERABLE": "Model output could not be repaired into JSON.",
    "NETWORK_OR_SERVER_ERROR": "Generative service request failed. Please retry.",
    "AUTH_FAILURE": "Generative service rejected the credentials.",
    "BLOCKED_RESPONSE": "Generative service blocked the request or returned no candidates.",
    "CANCELLATION_REQUESTED": "Processing was stopped on request.",
    "STORAGE_ERROR": "Storage operation failed while saving notice data.",
    "UNKNOWN_ERROR": "Unexpected error occurred during processing.",
}

_AUTH_MARKERS = ("permission_denied", "unauthenticated", "api key not valid")


def failure_message(kind: FailureKind) -> str:
    return FAILURE_FRIENDLY_MESSAGES.get(kind, FAILURE_FRIENDLY_MESSAGES["UNKNOWN_ERROR"])


class AuthenticationFailedError(RuntimeError):
    """Raised when a provider rejects the request credentials."""


class BlockedResponseError(RuntimeError):
    """Raised when a response is blocked or carries no candidates."""


class EmptyResponseError(RuntimeError):
    """Raised when a vision response succeeds but carries no text."""


def classify_generation_error(error: Exception) -> FailureKind:
    if is_auth_failure(error):
        return "AUTH_FAILURE"
    if isinstance(error, BlockedResponseError):
        return "BLOCKED_RESPONSE"
    if isinstance(error, json.JSONDecodeError):
        return "JSON_UNRECOVERABLE"
    if is_storage_error_exception(error):
        return "STORAGE_ERROR"
    if isinstance(error, EmptyResponseError):
        return "NETWORK_OR_SERVER_ERROR"
    if extract_http_status_code(error) is not None:
        return "NETWORK_OR_SERVER_ERROR"
    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout, RuntimeError)):
        return "NETWORK_OR_SERVER_ERROR"
    return "UNKNOWN_ERROR"


def is_auth_failure(error: Exception) -> bool:
    if isinstance(error, AuthenticationFailedError):
        return True

    status_code = extract_http_status_code(error)
    if status_code in (401, 403):
        return True

    message = str(error).lower()
    return any(marker in message for marker in _AUTH_MARKERS)


def extract_http_status_code(error: Exception) -> int | None:
    for field_name in ("status_code", "status", "http_status", "code"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def build_error_details(error: Exception) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value is None:
            continue
        details.append(f"{field_name}={value}")
    return "\n".join(details)


def is_storage_error_exception(error: Exception) -> bool:
    if isinstance(error, sqlite3.Error):
        return True
    if isinstance(error, OSError) and not isinstance(
        error, (ConnectionError, TimeoutError, socket.timeout)
    ):
        return True
    return False


def _to_int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
