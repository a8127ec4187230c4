"""Tests for docsum/prompts.py: prompt builders and text truncation."""

from docsum.prompts import (
    DEFAULT_PROMPT,
    DEFAULT_TEXT_PROMPT,
    DEFAULT_VISION_PROMPT,
    JSON_INSTRUCTION,
    build_openai_prompt,
    build_text_prompt,
    build_vision_prompt,
    truncate_text,
)


# ---------------------------------------------------------------------------
# build_openai_prompt
# ---------------------------------------------------------------------------


def test_openai_prompt_uses_default_when_custom_is_empty():
    prompt = build_openai_prompt("", "body")
    assert prompt.startswith(DEFAULT_PROMPT)
    assert prompt.endswith("Text to process:\nbody")


def test_openai_prompt_appends_json_instruction_when_missing():
    prompt = build_openai_prompt("Summarize this.", "body")
    assert JSON_INSTRUCTION in prompt


def test_openai_prompt_keeps_custom_prompt_that_mentions_json():
    prompt = build_openai_prompt("Reply as Json with summary and keywords.", "body")
    assert JSON_INSTRUCTION not in prompt
    assert prompt.startswith("Reply as Json")


def test_default_prompt_already_asks_for_json():
    assert JSON_INSTRUCTION not in build_openai_prompt("", "body")


# ---------------------------------------------------------------------------
# Local backend prompts
# ---------------------------------------------------------------------------


def test_text_prompt_default_and_custom():
    assert build_text_prompt("", "abc").startswith(DEFAULT_TEXT_PROMPT)
    assert build_text_prompt("Custom", "abc") == "Custom\n\nText to analyze:\nabc"


def test_vision_prompt_default_and_custom():
    assert build_vision_prompt("  ") == DEFAULT_VISION_PROMPT
    assert build_vision_prompt("Describe the chart") == "Describe the chart"


# ---------------------------------------------------------------------------
# truncate_text
# ---------------------------------------------------------------------------


def test_truncate_leaves_short_text_alone():
    assert truncate_text("short", 100) == "short"
    assert truncate_text("x" * 100, 100) == "x" * 100


def test_truncate_keeps_both_ends():
    text = "HEAD" + "m" * 1000 + "TAIL"
    result = truncate_text(text, 100)
    assert result.startswith("HEAD")
    assert result.endswith("TAIL")
    assert "..." in result


def test_truncate_is_bounded():
    for max_chars in (1, 2, 11, 100, 8000):
        result = truncate_text("z" * 20_000, max_chars)
        assert len(result) <= max_chars + 3


def test_truncate_exact_shape():
    assert truncate_text("abcdefghij", 4) == "ab...ij"
