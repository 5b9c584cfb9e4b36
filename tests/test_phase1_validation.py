"""
Tests for Phase 1: Structural Validation.

These tests verify:
1. Issues carry dotted camelCase paths and readable messages
2. validate_* entry points never raise on malformed input
3. Strict parsers and constructors raise ValidationError
4. Timestamps are normalized to UTC
"""

import pytest
from datetime import datetime, timedelta, timezone
from enum import Enum

from labbook.domain import ensure_utc, format_timestamp, parse_timestamp
from labbook.identifiers import IdKind
from labbook.validation import (
    IssueCollector,
    RawReader,
    ValidationError,
    ValidationIssue,
    ValidationResult,
    join_path,
    run_validation,
)


class Color(Enum):
    RED = "red"
    BLUE = "blue"


# =============================================================================
# ISSUE / RESULT TYPES
# =============================================================================

class TestIssueTypes:

    def test_issue_string_form(self):
        assert str(ValidationIssue("load.description", "Required")) == "load.description: Required"
        assert str(ValidationIssue("", "Expected an object")) == "Expected an object"

    def test_error_joins_issues(self):
        error = ValidationError([
            ValidationIssue("id", "Required"),
            ValidationIssue("statement", "Must be at least 10 characters"),
        ])
        assert "id: Required" in str(error)
        assert "; " in str(error)
        assert isinstance(error.issues, tuple)

    def test_result_unwrap(self):
        assert ValidationResult.success(42).unwrap() == 42

        failed = ValidationResult.failure([ValidationIssue("id", "Required")])
        assert not failed.valid
        with pytest.raises(ValidationError, match="id: Required"):
            failed.unwrap()

    def test_join_path_skips_empty(self):
        assert join_path("", "load", 0) == "load.0"


# =============================================================================
# COLLECTOR TESTS
# =============================================================================

class TestIssueCollector:

    def test_text_bounds(self):
        issues = IssueCollector()
        issues.text("a", None)
        issues.text("b", 12)
        issues.text("c", "", min_length=1)
        issues.text("d", "short", min_length=10)
        issues.text("e", "x" * 11, max_length=10)
        issues.text("f", None, required=False)

        messages = {i.path: i.message for i in issues.issues}
        assert messages == {
            "a": "Required",
            "b": "Expected a string",
            "c": "Must not be empty",
            "d": "Must be at least 10 characters",
            "e": "Must be at most 10 characters",
        }

    def test_duplicate_issues_collapsed(self):
        issues = IssueCollector()
        issues.add("id", "Required")
        issues.add("id", "Required")
        assert len(issues.issues) == 1

    def test_identifier_paths_are_indexed(self):
        issues = IssueCollector()
        issues.identifiers("load.affectedHypotheses", ["H-RS1-001", "nope"], IdKind.HYPOTHESIS)
        assert [i.path for i in issues.issues] == ["load.affectedHypotheses.1"]

    def test_anchor_and_session_checks(self):
        issues = IssueCollector()
        issues.anchors("anchors", ["§1", "12"])
        issues.session("sessions.0", "session-1")
        paths = [i.path for i in issues.issues]
        assert paths == ["anchors.1", "sessions.0"]

    def test_raise_if_any(self):
        issues = IssueCollector()
        issues.raise_if_any()

        issues.add("x", "bad")
        with pytest.raises(ValidationError):
            issues.raise_if_any()


# =============================================================================
# RAW READER TESTS
# =============================================================================

def parse_palette(reader: RawReader) -> dict:
    data = {
        "name": reader.string("name"),
        "color": reader.choice("color", Color, Color.RED),
        "tags": reader.string_list("tags"),
        "size": reader.integer("size"),
        "at": reader.timestamp("at", required=False),
        "parts": [p.string("label") for p in reader.children("parts")],
    }
    reader.collector.raise_if_any()
    return data


class TestRawReader:

    def test_valid_record(self):
        result = run_validation(
            {"name": "warm", "color": "blue", "tags": ["a"], "size": 3,
             "at": "2025-12-30T10:00:00Z", "parts": [{"label": "x"}]},
            parse_palette,
        )
        assert result.valid
        assert result.data["color"] == Color.BLUE
        assert result.data["tags"] == ("a",)
        assert result.data["at"].tzinfo is not None
        assert result.data["parts"] == ["x"]

    def test_default_choice(self):
        result = run_validation({"name": "warm"}, parse_palette)
        assert result.data["color"] == Color.RED

    def test_every_problem_reported(self):
        result = run_validation(
            {"color": "green", "tags": "a", "size": True, "at": "yesterday", "parts": [{"label": 1}, 3]},
            parse_palette,
        )
        assert not result.valid
        paths = {i.path for i in result.errors}
        assert paths == {"name", "color", "tags", "size", "at", "parts.0.label", "parts.1"}

    def test_invalid_choice_lists_allowed_values(self):
        result = run_validation({"name": "x", "color": "green"}, parse_palette)
        assert "expected one of 'red', 'blue'" in result.errors[0].message

    def test_non_mapping_input(self):
        result = run_validation(["not", "a", "record"], parse_palette)
        assert not result.valid
        assert result.errors == (ValidationIssue("", "Expected an object"),)


# =============================================================================
# TIMESTAMP TESTS
# =============================================================================

class TestTimestamps:

    def test_naive_treated_as_utc(self):
        naive = datetime(2025, 12, 30, 10, 0)
        assert ensure_utc(naive).tzinfo == timezone.utc
        assert ensure_utc(naive).hour == 10

    def test_aware_converted(self):
        plus_two = datetime(2025, 12, 30, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc(plus_two).hour == 10

    def test_format_has_offset(self):
        assert format_timestamp(datetime(2025, 12, 30, 10, 0)).endswith("+00:00")

    def test_parse_z_suffix(self):
        assert parse_timestamp("2025-12-30T10:00:00Z") == datetime(2025, 12, 30, 10, 0, tzinfo=timezone.utc)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_timestamp("not a date")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
