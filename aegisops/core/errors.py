"""Failure taxonomy for the analysis gateway.

Every error carries a machine-classifiable ``kind`` plus the original
human-readable message so the HTTP layer can pick a status code without
string matching.
"""


class GatewayError(Exception):
    """Base class for all gateway failures."""

    kind = "gateway_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(GatewayError):
    """Caller sent something we refuse to process. Never retried."""

    kind = "validation_failure"


class UnsupportedMediaType(ValidationFailure):
    kind = "unsupported_media_type"


class PayloadTooLarge(ValidationFailure):
    kind = "payload_too_large"


class InvalidImageEncoding(ValidationFailure):
    kind = "invalid_image_encoding"


class MissingField(ValidationFailure):
    kind = "missing_field"


class UpstreamTransient(GatewayError):
    """Rate limit, 5xx, network blip or timeout. Retried with backoff."""

    kind = "upstream_transient"


class UpstreamTimeout(UpstreamTransient):
    kind = "upstream_timeout"


class UpstreamFatal(GatewayError):
    """Bad credentials, safety rejection, malformed request. Never retried."""

    kind = "upstream_fatal"


class BackendMisconfigured(UpstreamFatal):
    kind = "backend_misconfigured"


class MalformedModelOutput(GatewayError):
    """The repair parser ran out of strategies."""

    kind = "malformed_model_output"

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(message)
        self.excerpt = excerpt


class RateLimited(GatewayError):
    kind = "rate_limited"


class BackendUnavailable(GatewayError):
    """No backend was built at startup; operations cannot be served."""

    kind = "backend_unavailable"
