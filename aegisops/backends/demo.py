"""Deterministic offline backend.

Derives a plausible report from keyword heuristics over the log text so
the UI works without credentials. No network calls; images are counted
but never parsed.
"""

import re

from aegisops.api.schemas import ActionItem, IncidentImpact, IncidentReport, TimelineEvent
from aegisops.backends.base import Backend
from aegisops.core.normalizer import AnalyzeRequest, ChatTurn

_LOG_LINE = re.compile(r"^\[([^\]]+)\]\s*(INFO|WARN|ERROR|ALERT)?:?\s*(.*)$", re.IGNORECASE)

_TAG_RULES = [
    ("redis", ("redis",)),
    ("oom", ("oom", "out of memory")),
    ("latency", ("latency",)),
    ("errors", ("error rate", "5xx")),
    ("circuit-breaker", ("circuit breaker",)),
    ("autoscaling", ("autoscaling", "auto-scaling")),
    ("queue", ("queue",)),
    ("memory", ("memory",)),
]

_SEV1_SIGNALS = ("sev1", "slo breach", "circuit breaker open", "quorum lost", "fail")


def guess_severity(logs: str) -> str:
    text = logs.lower()
    if any(signal in text for signal in _SEV1_SIGNALS):
        return "SEV1"
    if "error" in text:
        return "SEV2"
    if "warn" in text:
        return "SEV3"
    return "UNKNOWN"


def extract_timeline(logs: str, limit: int = 8) -> list[TimelineEvent]:
    """Pick ``[timestamp] LEVEL: message`` lines out of the logs."""
    events = []
    for line in (raw.strip() for raw in logs.splitlines()):
        match = _LOG_LINE.match(line) if line else None
        if not match:
            continue
        level = (match.group(2) or "INFO").upper()
        tone = "critical" if level in ("ALERT", "ERROR") else "warning" if level == "WARN" else "info"
        events.append(TimelineEvent(
            time=match.group(1)[-8:],
            description=match.group(3) or line,
            severity=tone,
        ))
        if len(events) >= limit:
            break
    return events


def derive_tags(logs: str) -> list[str]:
    text = logs.lower()
    return [tag for tag, needles in _TAG_RULES if any(n in text for n in needles)][:8]


def _action_items(severity: str) -> list[ActionItem]:
    items = [
        ActionItem(task="Add a runbook section for fast triage (symptom -> likely causes -> safe mitigations).",
                   owner="SRE", priority="HIGH"),
        ActionItem(task="Create an SLO burn-rate alert and a latency/error budget dashboard snapshot for incident comms.",
                   owner="Observability", priority="MEDIUM"),
        ActionItem(task="Add a regression guard (load test + alert replay) to catch recurrence before rollout.",
                   owner="Platform", priority="MEDIUM"),
    ]
    if severity == "SEV1":
        items.insert(0, ActionItem(
            task="Define an on-call escalation checklist and stakeholder update cadence for SEV1.",
            owner="Incident Commander", priority="HIGH",
        ))
    return items


class DemoBackend(Backend):
    """Offline, deterministic backend used when no provider is configured."""

    name = "demo"

    def __init__(self, model: str = "offline"):
        super().__init__(model)

    async def analyze(self, request: AnalyzeRequest) -> IncidentReport:
        logs = request.log_text
        severity = guess_severity(logs)
        tags = derive_tags(logs)
        timeline = extract_timeline(logs)

        if "redis" in tags and "oom" in tags:
            title = "Redis master OOM -> cache miss storm and downstream saturation"
        elif "latency" in tags and "queue" in tags:
            title = "Latency spike driven by request queue saturation and backpressure"
        else:
            title = "Service degradation requiring investigation"

        if severity == "SEV1":
            summary = ("High-severity degradation with clear signals in logs. Immediate mitigation "
                       "focused on stabilizing traffic and restoring capacity.")
        else:
            summary = ("Incident signals detected from logs/screenshots. This report summarizes the most "
                       "likely causes and next actions based on available evidence.")

        reasoning = "\n".join([
            "**Observations**",
            f"- Received {len(request.images)} monitoring screenshot(s) (demo mode: images are not parsed).",
            *(f"- {event.time}: {event.description}" for event in timeline[:4]),
            "",
            "**Hypotheses**",
            "- Memory pressure / OOM kill cascaded into availability issues." if "oom" in tags
            else "- Capacity/traffic mismatch increased latency and errors.",
            "- Queue depth growth indicates backpressure and saturation." if "queue" in tags
            else "- Client retries may have amplified load.",
            "",
            "**Decision Path**",
            "- Prioritize containment: reduce load, shed non-critical traffic, and restore healthy capacity.",
            "- Validate root cause with targeted checks (node memory, GC, cache hit rate, recent config/deploy diffs).",
            "- Capture evidence and open follow-up tasks to prevent recurrence.",
        ])

        return IncidentReport(
            title=title,
            summary=summary,
            severity=severity,
            root_causes=[
                "Memory pressure leading to OOM kill / process restarts" if "oom" in tags
                else "Resource saturation under load",
                "Backpressure and queue growth during peak traffic" if "queue" in tags
                else "Insufficient autoscaling / guardrails",
            ],
            reasoning=reasoning,
            confidence_score=68,
            timeline=timeline,
            action_items=_action_items(severity),
            mitigation_steps=[
                "Stabilize traffic via rate limiting / circuit breaker tuning (if applicable).",
                "Scale out critical components and verify health checks before re-enabling full traffic.",
            ],
            impact=IncidentImpact(
                estimated_users_affected="Significant (estimate required)" if severity == "SEV1" else "Unknown",
                duration="Unknown (needs incident window)",
                peak_latency="Observed in logs (exact value TBD)" if "latency" in tags else "N/A",
                peak_error_rate="Observed in logs (exact value TBD)" if "errors" in tags else "N/A",
            ),
            tags=tags,
            lessons_learned=("Even with abundant telemetry, the bottleneck is consolidating evidence "
                             "into a decision-ready narrative."),
            prevention_recommendations=[
                "Add capacity tests for peak scenarios and validate autoscaling thresholds.",
                "Add memory/circuit-breaker guardrails and standardize runbook escalation steps.",
            ],
        )

    async def follow_up(
        self,
        report: IncidentReport,
        history: list[ChatTurn],
        question: str,
        enable_grounding: bool = False,
    ) -> str:
        return "\n".join([
            "Demo mode response (no external LLM calls).",
            "",
            f"Question: {question.strip()}",
            "",
            "Suggested next steps:",
            "- Clarify the incident window (start/end) and confirm top KPIs (latency, error rate, queue depth).",
            "- Identify the most probable failure domain (resource, dependency, config/deploy, traffic shift).",
            "- Add 1-2 concrete prevention items tied to measurable guardrails (SLO alerts, load tests, rollback criteria).",
        ])
