"""
Response classification for the request pipeline.

Turns an httpx.Response into either a payload (raw text for file
downloads, otherwise unwrapped and optionally validated JSON) or a
classified PhozosError.
"""

import json
import logging
from typing import Any, Optional

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import PhozosError, ResponseParseError, ResponseShapeError, error_from_response
from .types import (
    RAW_CONTENT_TYPE_PREFIXES,
    RAW_CONTENT_TYPES,
    EnvelopeFailure,
    ErrorBody,
    decode_envelope,
    unwrap_envelope,
)


logger = logging.getLogger("phozos_client.response")


def resolve_schema(schema: Any) -> Optional[TypeAdapter]:
    """Accept a pydantic model, any type annotation, or a ready TypeAdapter."""
    if schema is None or isinstance(schema, TypeAdapter):
        return schema
    return TypeAdapter(schema)


def is_raw_content_type(content_type: str) -> bool:
    content_type = content_type.lower()
    return any(t in content_type for t in RAW_CONTENT_TYPES) or content_type.startswith(
        RAW_CONTENT_TYPE_PREFIXES
    )


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def error_from_http_response(response: httpx.Response) -> PhozosError:
    """Build the typed error for a non-2xx response."""
    text = response.text
    body = ErrorBody()
    try:
        parsed = json.loads(text)
        envelope = decode_envelope(parsed)
        if isinstance(envelope, EnvelopeFailure):
            body = envelope.error
        elif isinstance(parsed, dict):
            body = ErrorBody.from_dict(parsed)
    except ValueError:
        pass

    message = body.message or text or response.reason_phrase or f"HTTP {response.status_code}"
    return error_from_response(
        status_code=response.status_code,
        code=body.code or "REQUEST_FAILED",
        message=message,
        details=body.details,
        field=body.field,
        hint=body.hint,
        retry_after=_retry_after(response),
    )


def validate_payload(payload: Any, adapter: TypeAdapter, url: str) -> Any:
    """Validate an unwrapped payload. Invalid data is never returned."""
    try:
        return adapter.validate_python(payload)
    except PydanticValidationError as e:
        logger.error(
            "Response validation failed for %s: %s (received %r)",
            url,
            e,
            payload,
        )
        raise ResponseShapeError(str(e)) from e


def handle_response(
    response: httpx.Response,
    url: str,
    adapter: Optional[TypeAdapter] = None,
) -> Any:
    """Handle HTTP response and convert to the caller's result or a typed error."""
    if not response.is_success:
        raise error_from_http_response(response)

    text = response.text
    content_type = response.headers.get("content-type", "")
    if is_raw_content_type(content_type):
        return text

    try:
        data = json.loads(text) if text else None
    except ValueError:
        raise ResponseParseError(response.status_code)

    data = unwrap_envelope(data)

    if adapter is not None:
        return validate_payload(data, adapter, url)
    return data
