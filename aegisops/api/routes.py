"""FastAPI endpoints for the AegisOps API.

GET /api/healthz - component health and active limits
POST /api/analyze - logs + screenshots -> IncidentReport
POST /api/followup - question about an existing report
POST /api/tts - audio briefing for a summary
"""

import base64

import structlog
from fastapi import APIRouter, Request, Response

from aegisops.api.schemas import (
    AnalyzeBody,
    FollowUpBody,
    FollowUpResponse,
    IncidentReport,
    TtsBody,
    TtsResponse,
)
from aegisops.core.errors import BackendUnavailable
from aegisops.core.gateway import AnalysisGateway

logger = structlog.get_logger(__name__)

router = APIRouter()


def _gateway(req: Request) -> AnalysisGateway:
    gateway = getattr(req.app.state, "gateway", None)
    if gateway is None:
        raise BackendUnavailable("Backend not available. Check LLM provider settings and restart.")
    return gateway


@router.get("/api/healthz")
def healthz(req: Request):
    """Report provider, limits and cache state."""
    settings = req.app.state.settings
    gateway = getattr(req.app.state, "gateway", None)
    return {
        "ok": gateway is not None and gateway.backend.is_healthy(),
        "requestId": getattr(req.state, "request_id", None),
        "provider": settings.provider,
        "backend": gateway.backend.identity if gateway else None,
        "limits": {
            "maxImages": settings.max_images,
            "maxLogChars": settings.max_log_chars,
            "maxImageBytes": settings.max_image_bytes,
        },
        "defaults": {"grounding": settings.grounding_default},
        "cache": {
            "enabled": gateway.cache.enabled if gateway else False,
            "size": len(gateway.cache) if gateway else 0,
        },
        "inFlight": len(gateway.coalescer) if gateway else 0,
    }


@router.post("/api/analyze", response_model=IncidentReport)
async def analyze(body: AnalyzeBody, req: Request, response: Response):
    """Normalize, dedupe and analyze an incident."""
    gateway = _gateway(req)
    outcome = await gateway.analyze(body.logs, body.images, body.options.enable_grounding)
    response.headers["x-analyze-cache"] = "hit" if outcome.cache_hit else "miss"
    logger.info("analyze.response", request_id=getattr(req.state, "request_id", None),
                severity=outcome.report.severity, cached=outcome.cache_hit)
    return outcome.report


@router.post("/api/followup", response_model=FollowUpResponse)
async def follow_up(body: FollowUpBody, req: Request):
    gateway = _gateway(req)
    answer = await gateway.follow_up(body.report, body.history, body.question, body.options.enable_grounding)
    return FollowUpResponse(answer=answer)


@router.post("/api/tts", response_model=TtsResponse)
async def tts(body: TtsBody, req: Request):
    gateway = _gateway(req)
    result = await gateway.speak(body.text)
    audio = base64.b64encode(result.audio).decode("ascii") if result.audio else None
    return TtsResponse(audio_base64=audio, mime_type=result.mime_type, supported=result.supported)


@router.get("/")
@router.head("/")
def root_health():
    """Basic root health check for deployment platforms."""
    return {"status": "ok", "service": "aegisops-api"}
