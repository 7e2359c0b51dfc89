"""Extraction orchestrator: validate input, call the vision model, parse JSON.

The model reply is free text that should contain one JSON value. Parsing is
strict first (the whole reply), then lenient (the first balanced JSON span
found by bracket matching). Whatever parses must then match the requested
schema shape; anything else is ExtractionUnparseable, a user-actionable
failure that is never retried here.
"""

import json
import logging
import math
import re
import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from config import settings
from errors import (
    ExtractionUnparseable,
    PayloadTooLarge,
    UnsupportedMimeType,
    ValidationError,
)
from models import (
    ExtractedField,
    ExtractedRow,
    ExtractionResult,
    ExtractRequest,
    FieldDefinition,
    FlatExtraction,
    RowExtraction,
)
from prompts import build_flat_prompt, build_row_prompt
from vision_client import VisionClient

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_CLOSERS = {"[": "]", "{": "}"}


@dataclass(frozen=True)
class FieldConfidence:
    """Confidence assigned when the model's own score is not used."""

    header: float
    worker: float
    optional: float

    @classmethod
    def from_settings(cls) -> "FieldConfidence":
        return cls(
            header=settings.HEADER_FIELD_CONFIDENCE,
            worker=settings.WORKER_FIELD_CONFIDENCE,
            optional=settings.OPTIONAL_FIELD_CONFIDENCE,
        )


@dataclass(frozen=True)
class ValidatedImage:
    data: str  # base64 payload without any data-url prefix
    mime_type: str
    header_fields: list[FieldDefinition]
    worker_fields: list[FieldDefinition] | None


def strip_data_url(image: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix if present."""
    _, sep, payload = image.partition(",")
    return payload if sep and payload else image


def decoded_size(image_b64: str) -> float:
    """Decoded byte count implied by the base64 length (3/4 ratio)."""
    return len(image_b64) * 3 / 4


def validate_extract_request(request: ExtractRequest, max_image_bytes: int | None = None) -> ValidatedImage:
    """Reject bad input before anything is sent to the provider."""
    limit = max_image_bytes if max_image_bytes is not None else settings.MAX_IMAGE_BYTES

    missing = [
        name
        for name, value in (
            ("image", request.image),
            ("mimeType", request.mime_type),
            ("fieldDefinitions", request.field_definitions),
        )
        if not value
    ]
    if missing:
        raise ValidationError.missing(missing)

    if request.mime_type not in ALLOWED_MIME_TYPES:
        raise UnsupportedMimeType(request.mime_type)

    image_b64 = strip_data_url(request.image)
    if decoded_size(image_b64) > limit:
        raise PayloadTooLarge(f"Decoded image would be {decoded_size(image_b64):.0f} bytes (limit {limit})")

    worker_fields = request.worker_fields or None
    names = [f.name for f in request.field_definitions + (worker_fields or [])]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        message = f"Duplicate field names: {', '.join(duplicates)}"
        raise ValidationError(message, user_message=message)

    return ValidatedImage(
        data=image_b64,
        mime_type=request.mime_type,
        header_fields=request.field_definitions,
        worker_fields=worker_fields,
    )


async def extract_from_image(
    request: ExtractRequest,
    vision_client: VisionClient,
    confidence: FieldConfidence | None = None,
    max_image_bytes: int | None = None,
) -> ExtractionResult:
    """Run extraction: validate -> vision model -> parse -> shape to schema."""
    start = time.monotonic()
    confidence = confidence or FieldConfidence.from_settings()
    image = validate_extract_request(request, max_image_bytes)

    # Log size and type only, never image content
    logger.info(
        "Processing extraction: mime=%s size=%d bytes fields=%d worker_fields=%d",
        image.mime_type,
        int(decoded_size(image.data)),
        len(image.header_fields),
        len(image.worker_fields or []),
    )

    if image.worker_fields:
        prompt = build_row_prompt(image.header_fields, image.worker_fields)
        max_tokens = settings.VISION_MAX_TOKENS_ROWS
    else:
        prompt = build_flat_prompt(image.header_fields)
        max_tokens = settings.VISION_MAX_TOKENS

    raw_text = await vision_client.complete(image.data, image.mime_type, prompt, max_tokens)

    parsed = try_parse_json(raw_text)
    if parsed is None:
        raise ExtractionUnparseable("Model response contained no parseable JSON")

    if image.worker_fields:
        header_fields, rows = normalize_rows(parsed, image.header_fields, image.worker_fields, confidence)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info("Extracted %d worker row(s) in %dms", len(rows), elapsed_ms)
        return RowExtraction(
            header_fields=header_fields,
            rows=rows,
            total_workers=len(rows),
            processing_time=elapsed_ms,
            model=vision_client.model,
        )

    fields = normalize_flat(parsed, image.header_fields, confidence.header)
    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Extracted %d/%d field(s) in %dms",
        sum(1 for f in fields if f.extracted_value is not None),
        len(fields),
        elapsed_ms,
    )
    return FlatExtraction(fields=fields, processing_time=elapsed_ms, model=vision_client.model)


# JSON recovery


def try_parse_json(raw: str) -> dict | list | None:
    """Recover one JSON object or array from the model output.

    Handles: direct JSON, preamble/trailing prose, markdown fences and
    ``<think>...</think>`` blocks.
    """
    if not raw:
        return None

    cleaned = _THINK_BLOCK.sub("", raw).strip()
    if not cleaned:
        return None

    try:
        result = json.loads(cleaned)
        if isinstance(result, (dict, list)):
            return result
    except (json.JSONDecodeError, RecursionError):
        pass

    for span in iter_json_spans(cleaned):
        try:
            return json.loads(span)
        except (json.JSONDecodeError, RecursionError):
            continue

    logger.warning("Could not parse JSON from model response (%d chars)", len(cleaned))
    return None


def iter_json_spans(text: str) -> Iterator[str]:
    """Yield the outermost balanced ``[...]``/``{...}`` spans, left to right.

    One pass with a single bracket stack. A closer that does not match its
    opener invalidates every span still open. Spans nested inside a closed
    span are not yielded on their own.
    """
    spans: list[tuple[int, int]] = []
    stack: list[tuple[int, str]] = []
    in_string = False
    escaped = False

    for pos, char in enumerate(text):
        if not stack:
            if char in _CLOSERS:
                stack.append((pos, _CLOSERS[char]))
            continue

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append((pos, _CLOSERS[char]))
        elif char in "]}":
            start, closer = stack.pop()
            if char != closer:
                stack.clear()
                continue
            while spans and spans[-1][0] > start:
                spans.pop()
            spans.append((start, pos))

    for start, end in spans:
        yield text[start:end + 1]


# Shaping to the requested schema


def _clean_value(value: Any) -> str | None:
    """Present-but-falsy values count as unreadable."""
    if isinstance(value, (dict, list)):
        raise ExtractionUnparseable(f"Field value must be a scalar, got {type(value).__name__}")
    if not value:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool):
        return "true"
    return str(value)


def _model_confidence(score: Any, default: float) -> float:
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
        return default
    return min(1.0, max(0.0, float(score)))


def _unreadable(name: str) -> ExtractedField:
    return ExtractedField(field_name=name, extracted_value=None, confidence=0.0)


def _field_from_value(name: str, value: Any, confidence: float) -> ExtractedField:
    cleaned = _clean_value(value)
    if cleaned is None:
        return _unreadable(name)
    return ExtractedField(field_name=name, extracted_value=cleaned, confidence=confidence)


def normalize_flat(parsed: Any, fields: list[FieldDefinition], default_confidence: float) -> list[ExtractedField]:
    """Return exactly one ExtractedField per definition, in schema order."""
    if not isinstance(parsed, list):
        raise ExtractionUnparseable(f"Expected a JSON array of fields, got {type(parsed).__name__}")

    entries: dict[str, dict] = {}
    for entry in parsed:
        if not isinstance(entry, dict) or not isinstance(entry.get("field_name"), str):
            raise ExtractionUnparseable("Array entry is not a field object with a field_name")
        entries.setdefault(entry["field_name"], entry)

    # A label is only a lookup key when no definition uses it as a name
    names = {f.name for f in fields}
    result = []
    for field in fields:
        entry = entries.get(field.name)
        if entry is None and field.label not in names:
            entry = entries.get(field.label)
        if entry is None:
            result.append(_unreadable(field.name))
            continue

        value = _clean_value(entry.get("extracted_value"))
        if value is None:
            result.append(_unreadable(field.name))
        else:
            confidence = _model_confidence(entry.get("confidence"), default_confidence)
            result.append(ExtractedField(field_name=field.name, extracted_value=value, confidence=confidence))

    known = {f.name for f in fields} | {f.label for f in fields}
    ignored = sorted(set(entries) - known)
    if ignored:
        logger.debug("Ignoring fields not in schema: %s", ", ".join(ignored))

    return result


def normalize_rows(
    parsed: Any,
    header_fields: list[FieldDefinition],
    worker_fields: list[FieldDefinition],
    confidence: FieldConfidence,
) -> tuple[list[ExtractedField], list[ExtractedRow]]:
    """Shape a ``{"header": {...}, "workers": [...]}`` reply to the schema.

    Worker rows with no readable value are dropped and the survivors are
    re-indexed from zero.
    """
    if not isinstance(parsed, dict):
        raise ExtractionUnparseable(f"Expected a JSON object, got {type(parsed).__name__}")

    header = parsed.get("header")
    workers = parsed.get("workers")
    if not isinstance(header, dict) or not isinstance(workers, list):
        raise ExtractionUnparseable("Expected 'header' object and 'workers' array")

    header_out = [_field_from_value(f.name, header.get(f.name), confidence.header) for f in header_fields]

    rows: list[ExtractedRow] = []
    for worker in workers:
        if not isinstance(worker, dict):
            raise ExtractionUnparseable("Worker row is not a JSON object")
        cells = [
            _field_from_value(
                f.name,
                worker.get(f.name),
                confidence.worker if f.required else confidence.optional,
            )
            for f in worker_fields
        ]
        if all(cell.extracted_value is None for cell in cells):
            continue
        rows.append(ExtractedRow(row_index=len(rows), fields=cells))

    return header_out, rows
