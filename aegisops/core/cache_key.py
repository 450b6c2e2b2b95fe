"""Deterministic fingerprint for analyze requests.

Image order is part of the key: it changes the prompt and the narrative
the backend produces.
"""

import hashlib

from aegisops.core.normalizer import AnalyzeRequest, NormalizedImage


def _image_digest(image: NormalizedImage) -> str:
    payload = f"{image.mime_type or 'image/png'}|{image.data or ''}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_cache_key(request: AnalyzeRequest) -> str:
    """Return a 64-char hex SHA-256 digest over every field that shapes the result."""
    digest = hashlib.sha256()
    digest.update(f"model:{request.backend_identity}\n".encode("utf-8"))
    digest.update(f"grounding:{1 if request.grounding_enabled else 0}\n".encode("utf-8"))
    digest.update(f"logs:{request.log_text}\n".encode("utf-8"))
    digest.update(f"images:{len(request.images)}\n".encode("utf-8"))
    for image in request.images:
        digest.update(f"{_image_digest(image)}\n".encode("utf-8"))
    return digest.hexdigest()
