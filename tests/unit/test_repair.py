"""Tests for JSON extraction/repair and report coercion."""

import json

import pytest

from aegisops.api.schemas import ReferenceSource
from aegisops.core.errors import MalformedModelOutput
from aegisops.core.repair import (
    apply_repairs,
    coerce_report,
    parse_report,
    repair_json,
    strip_code_fences,
)


class TestStripCodeFences:

    @pytest.mark.parametrize("raw", [
        '```json\n{"a": 1}\n```',
        '```JSON\n{"a": 1}\n```',
        '```\n{"a": 1}\n```',
        '  {"a": 1}  ',
    ])
    def test_strips_fences(self, raw):
        assert strip_code_fences(raw) == '{"a": 1}'


class TestRepairJson:

    def test_valid_json_matches_direct_parse(self, raw_report):
        text = json.dumps(raw_report)
        assert repair_json(text) == json.loads(text)

    def test_commentary_fence_and_trailing_comma(self):
        raw = 'Here you go:\n```json\n{"title":"X",}\n```'
        assert repair_json(raw) == {"title": "X"}

    def test_trailing_comma_in_array(self):
        assert repair_json('{"tags": ["a", "b",],}') == {"tags": ["a", "b"]}

    def test_quotes_bare_keys(self):
        assert repair_json('{title: "X", severity: "SEV2"}') == {"title": "X", "severity": "SEV2"}

    def test_strips_control_chars_keeps_newlines(self):
        raw = '{"reasoning": "line one\nline\x07 two\ttabbed"}'
        assert repair_json(raw) == {"reasoning": "line one\nline two\ttabbed"}

    def test_brace_scan_ignores_braces_in_strings(self):
        raw = 'Sure! {"title": "closing } brace", "summary": "ok {"} trailing notes {not json}'
        assert repair_json(raw) == {"title": "closing } brace", "summary": "ok {"}

    def test_brace_scan_skips_invalid_candidates(self):
        raw = 'prefix {not: [json} then {"title": "second"} end'
        assert repair_json(raw) == {"title": "second"}

    def test_truncated_object_is_rejected(self):
        raw = ('{"title":"Redis OOM","summary":"Cache tier died","severity":"SEV1",'
               '"timeline":[{"time":"10:00:05","description":"OOM kill"}')
        with pytest.raises(MalformedModelOutput):
            repair_json(raw)
        with pytest.raises(MalformedModelOutput):
            parse_report(f"Here is the report:\n```json\n{raw}")

    def test_blocks_after_a_closed_object_are_still_scanned(self):
        raw = 'notes {"a": {"b": 1} broken} more {"title": "X"}'
        assert repair_json(raw) == {"title": "X"}

    def test_non_object_json_is_rejected(self):
        with pytest.raises(MalformedModelOutput):
            repair_json("[1, 2, 3]")

    def test_failure_carries_excerpt(self):
        raw = "I could not analyze these logs. " * 20
        with pytest.raises(MalformedModelOutput) as exc:
            repair_json(raw)
        assert exc.value.kind == "malformed_model_output"
        assert exc.value.excerpt == raw[:200]


class TestApplyRepairs:

    def test_leaves_valid_json_parseable(self, raw_report):
        text = json.dumps(raw_report)
        assert json.loads(apply_repairs(text)) == raw_report


class TestCoerceReport:

    def test_full_report(self, raw_report):
        report = coerce_report(raw_report)
        assert report.title == "Redis OOM"
        assert report.severity == "SEV1"
        assert report.confidence_score == 82
        assert report.tags == ["redis", "oom"]
        assert report.timeline[0].severity == "critical"
        assert report.action_items[0].priority == "HIGH"
        assert report.impact.estimated_users_affected == "~10k"
        assert report.impact.peak_latency is None

    def test_empty_object_gets_defaults(self):
        report = coerce_report({})
        assert report.title == "Untitled Incident"
        assert report.summary == "No summary available."
        assert report.severity == "UNKNOWN"
        assert report.confidence_score == 50
        assert report.root_causes == []
        assert report.references == []

    @pytest.mark.parametrize("value, expected", [
        (150, 100), (-3, 0), (71.6, 72), ("64", 64), ("high", 50), (None, 50), (float("nan"), 50),
    ])
    def test_confidence_clamped(self, value, expected):
        assert coerce_report({"confidenceScore": value}).confidence_score == expected

    def test_unknown_enums_fall_back(self):
        report = coerce_report({
            "severity": "CRITICAL",
            "timeline": [{"time": "10:00", "description": "x", "severity": "panic"}],
            "actionItems": [{"task": "do it", "priority": "URGENT"}],
        })
        assert report.severity == "UNKNOWN"
        assert report.timeline[0].severity is None
        assert report.action_items[0].priority == "MEDIUM"
        assert report.action_items[0].owner is None

    def test_drops_entries_without_required_text(self):
        report = coerce_report({
            "timeline": [{"time": "10:00"}, "junk", {"description": "kept"}],
            "actionItems": [{"owner": "SRE"}, {"task": "kept"}],
            "rootCauses": ["", 5, "real cause"],
        })
        assert [e.description for e in report.timeline] == ["kept"]
        assert report.timeline[0].time == "Unknown"
        assert [a.task for a in report.action_items] == ["kept"]
        assert report.root_causes == ["real cause"]

    def test_long_text_clamped(self):
        report = coerce_report({"title": "t" * 1000, "tags": ["x" * 100] + ["tag"] * 30})
        assert len(report.title) < 1000
        assert "[truncated" in report.title
        assert len(report.tags) == 20

    def test_references_deduped(self):
        refs = [
            ReferenceSource(title="A", uri="https://a.example"),
            ReferenceSource(title="A again", uri="https://a.example"),
            ReferenceSource(title="", uri="https://b.example"),
            ReferenceSource(title="empty", uri="  "),
        ]
        report = coerce_report({}, references=refs)
        assert [(r.title, r.uri) for r in report.references] == [
            ("A", "https://a.example"), ("Reference", "https://b.example"),
        ]


class TestParseReport:

    def test_empty_text_is_malformed(self):
        with pytest.raises(MalformedModelOutput, match="Empty response"):
            parse_report("   ")

    def test_fenced_report(self, raw_report):
        report = parse_report(f"```json\n{json.dumps(raw_report)}\n```")
        assert report.title == "Redis OOM"
