"""Hosted multimodal backend on the google-genai SDK.

Sends logs plus inline screenshots, optionally with Google Search
grounding, and turns grounding chunks into report references.
"""

import base64
from typing import Any

import structlog
from google import genai
from google.genai import types

from aegisops.api.schemas import IncidentReport, ReferenceSource
from aegisops.backends.base import Backend, SpeechResult
from aegisops.backends.prompts import (
    ANALYZE_SYSTEM_PROMPT,
    SPEECH_PROMPT_TEMPLATE,
    build_analyze_prompt,
    build_incident_context,
)
from aegisops.core.errors import BackendMisconfigured, UpstreamFatal
from aegisops.core.normalizer import AnalyzeRequest, ChatTurn
from aegisops.core.repair import parse_report

logger = structlog.get_logger(__name__)

# Incident logs are full of "kill", "attack", "crash"; only block high-confidence hits.
SAFETY_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_ONLY_HIGH)
    for category in (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]

VOICE_NAME = "Kore"


def _grounding_tools(enabled: bool) -> list[types.Tool] | None:
    return [types.Tool(google_search=types.GoogleSearch())] if enabled else None


def _response_text(response: Any) -> str:
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None)
    if block_reason:
        raise UpstreamFatal(f"Gemini blocked the request by safety filters ({block_reason}).")
    return (getattr(response, "text", None) or "").strip()


def _first_candidate(response: Any) -> Any:
    candidates = getattr(response, "candidates", None) or []
    return candidates[0] if candidates else None


def _references(response: Any) -> list[ReferenceSource]:
    candidate = _first_candidate(response)
    metadata = getattr(candidate, "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    refs = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = (getattr(web, "uri", None) or "").strip()
        if uri:
            refs.append(ReferenceSource(title=getattr(web, "title", None) or "Reference", uri=uri))
    return refs


class GeminiBackend(Backend):
    """Gemini via google-genai's async client."""

    name = "gemini"

    def __init__(self, api_key: str, model: str, tts_model: str, client: genai.Client | None = None):
        if not api_key and client is None:
            raise BackendMisconfigured("Server misconfigured: GEMINI_API_KEY missing.")
        super().__init__(model)
        self.tts_model = tts_model
        self._client = client or genai.Client(api_key=api_key)

    async def analyze(self, request: AnalyzeRequest) -> IncidentReport:
        parts = [types.Part.from_text(text=build_analyze_prompt(request))]
        for image in request.images:
            parts.append(types.Part.from_bytes(data=base64.b64decode(image.data), mime_type=image.mime_type))

        config = types.GenerateContentConfig(
            system_instruction=ANALYZE_SYSTEM_PROMPT,
            temperature=0.2,
            top_k=30,
            safety_settings=SAFETY_SETTINGS,
            tools=_grounding_tools(request.grounding_enabled),
        )
        logger.debug("gemini.analyze", model=self.model, images=len(request.images),
                     grounding=request.grounding_enabled)
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=[types.Content(role="user", parts=parts)],
            config=config,
        )
        references = _references(response) if request.grounding_enabled else []
        return parse_report(_response_text(response), references=references)

    async def follow_up(
        self,
        report: IncidentReport,
        history: list[ChatTurn],
        question: str,
        enable_grounding: bool = False,
    ) -> str:
        contents = [
            types.Content(role="user", parts=[types.Part.from_text(text=build_incident_context(report))]),
            types.Content(role="model", parts=[types.Part.from_text(text="Understood. Ask me anything about this incident.")]),
        ]
        for turn in history:
            role = "model" if turn.role == "assistant" else "user"
            contents.append(types.Content(role=role, parts=[types.Part.from_text(text=turn.content)]))
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=question)]))

        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                safety_settings=SAFETY_SETTINGS,
                tools=_grounding_tools(enable_grounding),
            ),
        )
        return _response_text(response)

    async def speak(self, text: str) -> SpeechResult:
        response = await self._client.aio.models.generate_content(
            model=self.tts_model,
            contents=SPEECH_PROMPT_TEMPLATE.format(text=text.strip()),
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=VOICE_NAME),
                    ),
                ),
                safety_settings=SAFETY_SETTINGS,
            ),
        )
        candidate = _first_candidate(response)
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or []
        inline = getattr(parts[0], "inline_data", None) if parts else None
        if inline is None or not inline.data:
            logger.warning("gemini.tts_empty", model=self.tts_model)
            return SpeechResult(audio=None)
        return SpeechResult(audio=inline.data, mime_type=getattr(inline, "mime_type", None))
