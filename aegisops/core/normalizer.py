"""Request normalization and validation.

Turns a deserialized analyze/follow-up payload into bounded, immutable
request objects. Anything malformed fails fast with a ValidationFailure
subclass; excess images are dropped rather than rejected.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from aegisops.core.errors import (
    InvalidImageEncoding,
    MissingField,
    PayloadTooLarge,
    UnsupportedMediaType,
)

logger = structlog.get_logger(__name__)

ALLOWED_IMAGE_MIME_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/gif",
    "image/bmp",
})

DEFAULT_MIME_TYPE = "image/png"

_DATA_URL_PREFIX = re.compile(r"^data:([^;,]+);base64,", re.IGNORECASE)
_BASE64_PAYLOAD = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_WHITESPACE = re.compile(r"\s+")

MAX_HISTORY_TURNS = 20
MAX_HISTORY_CHARS = 4_000


@dataclass(frozen=True)
class NormalizedImage:
    """A validated image ready to hand to a backend."""
    mime_type: str
    data: str


@dataclass(frozen=True)
class AnalyzeRequest:
    """Immutable, bounded analyze request.

    Attributes:
        log_text: Log text, cut to the configured maximum (with marker).
        images: Validated images in caller order.
        grounding_enabled: Whether the backend may cite web sources.
        backend_identity: ``provider:model`` of the backend that serves it.
        log_truncated: True when log_text was cut.
    """
    log_text: str
    images: tuple[NormalizedImage, ...] = field(default_factory=tuple)
    grounding_enabled: bool = False
    backend_identity: str = ""
    log_truncated: bool = False


@dataclass(frozen=True)
class ChatTurn:
    role: str  # "user" or "assistant"
    content: str


def clamp_text(text: str | None, max_chars: int) -> str:
    """Trim and cut text, leaving a visible marker when anything was dropped."""
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return f"{value[:max(0, max_chars - 20)]}\n\n...[truncated {len(value) - max_chars} chars]"


def estimate_base64_bytes(value: str) -> int:
    """Decoded size of a base64 payload, computed from its length alone."""
    payload = _WHITESPACE.sub("", value or "")
    if not payload:
        return 0
    padding = 2 if payload.endswith("==") else 1 if payload.endswith("=") else 0
    return max(0, (len(payload) * 3) // 4 - padding)


def _split_data_url(value: str) -> tuple[str | None, str]:
    raw = value.strip()
    match = _DATA_URL_PREFIX.match(raw)
    if not match:
        return None, raw
    return match.group(1).strip().lower(), raw[match.end():]


def normalize_images(
    raw_images: Sequence[Mapping[str, Any] | None] | None,
    max_images: int,
    max_image_bytes: int,
) -> tuple[NormalizedImage, ...]:
    """Validate and normalize the raw image list.

    Args:
        raw_images: Items shaped like ``{"mimeType": ..., "data": ...}``;
            ``data`` may be bare base64 or a data URL.
        max_images: Count cap. Images past the cap are dropped.
        max_image_bytes: Per-image decoded size cap.

    Returns:
        Tuple of NormalizedImage in input order.

    Raises:
        UnsupportedMediaType: Mime type outside the allowlist.
        InvalidImageEncoding: Payload is not valid base64.
        PayloadTooLarge: Decoded size over max_image_bytes.
    """
    max_images = max(0, int(max_images or 0))
    max_image_bytes = max(1, int(max_image_bytes or 1))
    out: list[NormalizedImage] = []
    dropped = 0

    for row in raw_images or []:
        if not isinstance(row, Mapping):
            continue
        data = row.get("data")
        if not isinstance(data, str) or not data.strip():
            continue

        if len(out) >= max_images:
            dropped += 1
            continue

        embedded_mime, payload = _split_data_url(data)
        declared = row.get("mimeType") if isinstance(row.get("mimeType"), str) else ""
        mime_type = (embedded_mime or declared or DEFAULT_MIME_TYPE).strip().lower() or DEFAULT_MIME_TYPE
        if mime_type not in ALLOWED_IMAGE_MIME_TYPES:
            raise UnsupportedMediaType(f"Unsupported image mimeType: {mime_type}")

        payload = _WHITESPACE.sub("", payload)
        if not payload:
            continue
        if len(payload) % 4 != 0 or not _BASE64_PAYLOAD.match(payload):
            raise InvalidImageEncoding("Invalid image base64 payload.")

        size = estimate_base64_bytes(payload)
        if size > max_image_bytes:
            raise PayloadTooLarge(
                f"Image payload too large ({size} bytes > {max_image_bytes} bytes)."
            )

        out.append(NormalizedImage(mime_type=mime_type, data=payload))

    if dropped:
        logger.warning("normalize.images_dropped", dropped=dropped, max_images=max_images)
    return tuple(out)


def normalize_analyze_request(
    log_text: str | None,
    raw_images: Sequence[Mapping[str, Any] | None] | None,
    grounding_enabled: bool,
    backend_identity: str,
    *,
    max_log_chars: int,
    max_images: int,
    max_image_bytes: int,
) -> AnalyzeRequest:
    """Build an AnalyzeRequest or raise a ValidationFailure."""
    raw_text = (log_text or "").strip()
    text = clamp_text(raw_text, max_log_chars)
    truncated = len(raw_text) > max_log_chars
    if truncated:
        logger.info("normalize.logs_truncated", original=len(raw_text), limit=max_log_chars)

    images = normalize_images(raw_images, max_images=max_images, max_image_bytes=max_image_bytes)
    if not text and not images:
        raise MissingField("Provide log text or at least one image.")

    return AnalyzeRequest(
        log_text=text,
        images=images,
        grounding_enabled=bool(grounding_enabled),
        backend_identity=backend_identity,
        log_truncated=truncated,
    )


def normalize_history(raw_history: Sequence[Any] | None) -> list[ChatTurn]:
    """Keep the last well-formed user/assistant turns, trimmed."""
    turns = [
        item for item in (raw_history or [])
        if isinstance(item, Mapping)
        and item.get("role") in ("user", "assistant")
        and isinstance(item.get("content"), str)
    ]
    out = []
    for item in turns[-MAX_HISTORY_TURNS:]:
        content = item["content"].strip()[:MAX_HISTORY_CHARS]
        if content:
            out.append(ChatTurn(role=item["role"], content=content))
    return out


def normalize_question(question: str | None, max_log_chars: int) -> str:
    """Trim and bound a follow-up question; empty is a MissingField."""
    text = (question or "").strip()[:max(200, max_log_chars)]
    if not text:
        raise MissingField("Missing question.")
    return text
