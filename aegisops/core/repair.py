"""Extraction and repair of JSON objects from free-form model output.

Models wrap their JSON in code fences, sprinkle commentary around it,
leave trailing commas, or forget to quote keys. repair_json() tries a
bounded sequence of fixes; parse_report() then defaults and clamps every
field so a partially valid object still renders.
"""

import json
import math
import re
from collections.abc import Iterator
from typing import Any

import structlog

from aegisops.api.schemas import (
    ActionItem,
    IncidentImpact,
    IncidentReport,
    ReferenceSource,
    TimelineEvent,
)
from aegisops.core.errors import MalformedModelOutput
from aegisops.core.normalizer import clamp_text

logger = structlog.get_logger(__name__)

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z0-9_]+)\s*:")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

MAX_SCAN_CANDIDATES = 16
EXCERPT_CHARS = 200

SEVERITIES = ("SEV1", "SEV2", "SEV3")
PRIORITIES = ("HIGH", "MEDIUM", "LOW")
TONES = ("critical", "warning", "info", "success")
IMPACT_FIELDS = ("estimatedUsersAffected", "duration", "peakLatency", "peakErrorRate")


def strip_code_fences(text: str) -> str:
    """Remove a leading ``` / ```json fence and a trailing ``` fence."""
    clean = _LEADING_FENCE.sub("", text or "", count=1)
    clean = _TRAILING_FENCE.sub("", clean, count=1)
    return clean.strip()


def apply_repairs(text: str) -> str:
    """Trailing commas, bare keys, stray control characters (keeps \\n \\r \\t)."""
    fixed = _TRAILING_COMMA.sub(r"\1", text)
    fixed = _BARE_KEY.sub(r'\1"\2":', fixed)
    return _CONTROL_CHARS.sub("", fixed)


def _try_object(text: str) -> dict | None:
    try:
        value = json.loads(text)
    except ValueError:
        try:
            value = json.loads(apply_repairs(text), strict=False)
        except ValueError:
            return None
    return value if isinstance(value, dict) else None


def _iter_brace_blocks(text: str) -> Iterator[str]:
    """Yield top-level balanced ``{...}`` blocks, ignoring braces inside string literals.

    Scanning stops at the first block that never closes: a truncated object
    yields nothing, rather than one of its nested fragments.
    """
    emitted = 0
    start = text.find("{")
    while start != -1 and emitted < MAX_SCAN_CANDIDATES:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end == -1:
            return
        yield text[start:end + 1]
        emitted += 1
        start = text.find("{", end + 1)


def repair_json(raw_text: str) -> dict:
    """Parse the first JSON object found in raw_text.

    Raises:
        MalformedModelOutput: No strategy produced an object.
    """
    clean = strip_code_fences(raw_text)

    try:
        value = json.loads(clean)
        if isinstance(value, dict):
            return value
    except ValueError:
        pass

    try:
        value = json.loads(apply_repairs(clean), strict=False)
        if isinstance(value, dict):
            logger.debug("repair.fixed", strategy="textual")
            return value
    except ValueError:
        pass

    for candidate in _iter_brace_blocks(clean):
        value = _try_object(candidate)
        if value is not None:
            logger.debug("repair.fixed", strategy="brace_scan")
            return value

    excerpt = (raw_text or "")[:EXCERPT_CHARS]
    logger.warning("repair.failed", length=len(raw_text or ""))
    raise MalformedModelOutput("Model output did not contain a parseable JSON object.", excerpt=excerpt)


# -- field coercion ---------------------------------------------------------

def as_text(value: Any, fallback: str = "", max_chars: int = 2_000) -> str:
    return clamp_text(value if isinstance(value, str) else fallback, max_chars)


def as_text_list(value: Any, max_items: int = 12, max_chars: int = 400) -> list[str]:
    if not isinstance(value, list):
        return []
    items = (as_text(item, "", max_chars) for item in value[:max_items])
    return [item for item in items if item]


def _confidence(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 50
    if not math.isfinite(number):
        return 50
    return max(0, min(100, round(number)))


def _timeline(value: Any) -> list[TimelineEvent]:
    if not isinstance(value, list):
        return []
    events = []
    for item in value[:30]:
        if not isinstance(item, dict):
            continue
        description = as_text(item.get("description"), "", 400)
        if not description:
            continue
        tone = item.get("severity") if item.get("severity") in TONES else None
        events.append(TimelineEvent(
            time=as_text(item.get("time"), "Unknown", 32) or "Unknown",
            description=description,
            severity=tone,
        ))
    return events


def _action_items(value: Any) -> list[ActionItem]:
    if not isinstance(value, list):
        return []
    items = []
    for item in value[:20]:
        if not isinstance(item, dict):
            continue
        task = as_text(item.get("task"), "", 500)
        if not task:
            continue
        owner = as_text(item.get("owner"), "", 120)
        priority = item.get("priority") if item.get("priority") in PRIORITIES else "MEDIUM"
        items.append(ActionItem(task=task, owner=owner or None, priority=priority))
    return items


def _impact(value: Any) -> IncidentImpact:
    if not isinstance(value, dict):
        return IncidentImpact()
    fields = {name: as_text(value.get(name), "", 200) or None for name in IMPACT_FIELDS}
    return IncidentImpact.model_validate(fields)


def dedupe_references(references: list[ReferenceSource] | None) -> list[ReferenceSource]:
    seen: dict[str, ReferenceSource] = {}
    for ref in references or []:
        uri = as_text(ref.uri, "", 1_000)
        if uri and uri not in seen:
            seen[uri] = ReferenceSource(title=as_text(ref.title, "Reference", 180) or "Reference", uri=uri)
    return list(seen.values())[:20]


def coerce_report(raw: dict, references: list[ReferenceSource] | None = None) -> IncidentReport:
    """Default and clamp every field of a parsed report object."""
    severity = raw.get("severity") if raw.get("severity") in SEVERITIES else "UNKNOWN"
    tags = [tag.lower() for tag in as_text_list(raw.get("tags"), 20, 60)]
    return IncidentReport(
        title=as_text(raw.get("title"), "Untitled Incident", 180) or "Untitled Incident",
        summary=as_text(raw.get("summary"), "No summary available.", 4_000) or "No summary available.",
        severity=severity,
        root_causes=as_text_list(raw.get("rootCauses"), 12, 500),
        reasoning=as_text(raw.get("reasoning"), "", 6_000),
        confidence_score=_confidence(raw.get("confidenceScore")),
        timeline=_timeline(raw.get("timeline")),
        action_items=_action_items(raw.get("actionItems")),
        mitigation_steps=as_text_list(raw.get("mitigationSteps"), 20, 500),
        impact=_impact(raw.get("impact")),
        tags=tags,
        lessons_learned=as_text(raw.get("lessonsLearned"), "", 2_000),
        prevention_recommendations=as_text_list(raw.get("preventionRecommendations"), 20, 500),
        references=dedupe_references(references),
    )


def parse_report(raw_text: str, references: list[ReferenceSource] | None = None) -> IncidentReport:
    """Repair raw model text into a bounded IncidentReport."""
    if not (raw_text or "").strip():
        raise MalformedModelOutput("Empty response from model.", excerpt="")
    return coerce_report(repair_json(raw_text), references=references)
