"""Tests for output extraction and the auto-filter."""

import pytest

from stepwise.extraction import OutputExtractor, auto_filter, extract_output, is_filtered_key


RAW = {
    "user": {"id": "u1"},
    "trigger": {"type": "manual"},
    "openai": {"key": "sk"},
    "github_api_key": "gh",
    "slack_apikey": "sl",
    "summary": "done",
    "rows": [1, 2],
}


@pytest.mark.parametrize(
    "key,expected",
    [
        ("user", True),
        ("trigger", True),
        ("openai", True),
        ("reddit", True),
        ("my_api_key", True),
        ("service_apikey", True),
        ("summary", False),
        ("openai_result", False),
    ],
)
def test_is_filtered_key(key, expected):
    assert is_filtered_key(key) is expected


def test_auto_filter_removes_internal_and_credential_keys():
    assert extract_output(RAW) == {"summary": "done", "rows": [1, 2]}


def test_auto_filter_keeps_everything_when_all_keys_filtered():
    raw = {"user": {"id": "u1"}, "trigger": {"type": "cron"}}
    assert auto_filter(raw) == raw


def test_return_value_extracts_path():
    assert extract_output(RAW, "{{summary}}") == "done"
    assert extract_output(RAW, "{{user.id}}") == "u1"


def test_return_value_missing_falls_back_to_full_output():
    assert extract_output(RAW, "{{nope.deeper}}") == RAW


def test_return_value_not_a_template_leaves_output():
    assert extract_output(RAW, "summary") == RAW


def test_already_extracted_sequence_passes_through():
    assert extract_output([1, 2, 3], "{{rows}}") == [1, 2, 3]


def test_scalars_pass_through():
    assert extract_output("text") == "text"
    assert extract_output(None, "{{x}}") is None
    assert extract_output(7) == 7


@pytest.mark.parametrize("return_value", [None, "{{summary}}", "{{rows}}", "{{missing}}"])
def test_extraction_is_idempotent(return_value):
    extractor = OutputExtractor(return_value)
    once = extractor(RAW)
    assert extractor(once) == once
