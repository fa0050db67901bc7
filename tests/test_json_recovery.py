"""Tests for progressive JSON recovery.

Tests the individual rewrite strategies, level gating, and the guarantees
of the recovery chain (idempotence, fixed point, monotonic levels).
"""

from __future__ import annotations

import pytest

from artguard.recovery.json_recovery import (
    DEFAULT_MAX_ATTEMPTS,
    JsonRecoveryParser,
    RecoveryResult,
    canonical_json,
    recover,
)
from artguard.recovery.strategies import (
    STRATEGIES,
    RecoveryLevel,
    close_unbalanced_brackets,
    convert_single_quotes,
    decode,
    extract_balanced_json,
    extract_code_block,
    find_balanced_span,
    infer_wrapper,
    insert_missing_commas,
    iter_segments,
    normalize_whitespace,
    quote_unquoted_keys,
    reconstruct_from_pairs,
    remove_trailing_commas,
    strategies_for,
    strip_ai_preamble,
    strip_comments,
)

# Inputs that conservative recovery must handle, with the decoded value.
CONSERVATIVE_CASES = [
    ('{"name": "test", "value": 42,}', {"name": "test", "value": 42}),
    ('Here is the result:\n```json\n{"a": 1}\n```', {"a": 1}),
    ('Here is the JSON output:\n{"a": 1}', {"a": 1}),
    ('{\n  // name\n  "a": 1 /* one */\n}', {"a": 1}),
    ('# comment\n{"a": 1}', {"a": 1}),
    ('\ufeff{"a": 1}', {"a": 1}),
    ('[1, 2, 3,]', [1, 2, 3]),
]


# =============================================================================
# Recovery Level Tests
# =============================================================================


class TestRecoveryLevel:
    """Tests for RecoveryLevel."""

    def test_levels_are_ordered(self):
        """Levels compare by how much rewriting they allow."""
        assert RecoveryLevel.CONSERVATIVE < RecoveryLevel.PROGRESSIVE < RecoveryLevel.AGGRESSIVE

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("conservative", RecoveryLevel.CONSERVATIVE),
            ("Aggressive", RecoveryLevel.AGGRESSIVE),
            (" progressive ", RecoveryLevel.PROGRESSIVE),
            (1, RecoveryLevel.PROGRESSIVE),
            (RecoveryLevel.AGGRESSIVE, RecoveryLevel.AGGRESSIVE),
        ],
    )
    def test_parse(self, value, expected):
        """Levels parse from names, integers and members."""
        assert RecoveryLevel.parse(value) == expected

    def test_parse_unknown_name(self):
        """Unknown names raise ValueError listing the valid ones."""
        with pytest.raises(ValueError, match="conservative, progressive, aggressive"):
            RecoveryLevel.parse("reckless")

    def test_strategies_for_is_prefix_chain(self):
        """Each level's chain starts with the full chain of the level below."""
        conservative = strategies_for(RecoveryLevel.CONSERVATIVE)
        progressive = strategies_for(RecoveryLevel.PROGRESSIVE)
        aggressive = strategies_for(RecoveryLevel.AGGRESSIVE)

        assert len(conservative) == 5
        assert len(progressive) == 9
        assert aggressive == STRATEGIES
        assert progressive[: len(conservative)] == conservative
        assert aggressive[: len(progressive)] == progressive

    def test_strategy_names_unique(self):
        """Strategy names identify a strategy."""
        names = [s.name for s in STRATEGIES]
        assert len(names) == len(set(names))


# =============================================================================
# Helper Tests
# =============================================================================


class TestHelpers:
    """Tests for decoding and scanning helpers."""

    def test_decode_rejects_nan(self):
        """Non-standard constants are not valid JSON."""
        assert decode("NaN") == (False, None)
        assert decode("[Infinity]") == (False, None)

    def test_decode_valid(self):
        """Valid JSON decodes to its value."""
        assert decode('{"a": [1]}') == (True, {"a": [1]})

    def test_iter_segments_splits_strings(self):
        """String literals come out as separate segments."""
        segments = list(iter_segments('{"a": "x\\"y"}'))
        assert segments == [
            (False, "{"),
            (True, '"a"'),
            (False, ": "),
            (True, '"x\\"y"'),
            (False, "}"),
        ]

    def test_iter_segments_unterminated_string(self):
        """An unterminated string runs to the end of the text."""
        assert list(iter_segments('[ "abc')) == [(False, "[ "), (True, '"abc')]

    def test_find_balanced_span_ignores_brackets_in_strings(self):
        """Brackets inside string literals do not count."""
        assert find_balanced_span('{"a": "}"} tail', 0) == 10

    def test_find_balanced_span_mismatch(self):
        """Mismatched or unclosed values return -1."""
        assert find_balanced_span("{]", 0) == -1
        assert find_balanced_span('{"a": 1', 0) == -1

    def test_canonical_json_is_compact(self):
        """Recovered output uses compact separators and keeps unicode."""
        assert canonical_json({"a": [1, 2], "b": "é"}) == '{"a":[1,2],"b":"é"}'


# =============================================================================
# Conservative Strategy Tests
# =============================================================================


class TestConservativeStrategies:
    """Tests for conservative strategies."""

    def test_preamble_pattern(self):
        """An introducing phrase right before the JSON is removed."""
        rewrite = strip_ai_preamble('Here is the JSON output:\n{"a": 1}')
        assert rewrite.text == '{"a": 1}'
        assert rewrite.fixes == ["removed_ai_explanation_text"]

    def test_preamble_explanation_paragraph(self):
        """An explanatory line followed by a JSON line is dropped."""
        rewrite = strip_ai_preamble('I analyzed the data and produced this output\n{"a": 1}')
        assert rewrite.text == '{"a": 1}'
        assert rewrite.fixes == ["extracted_json_after_explanation"]

    def test_preamble_leaves_fenced_output(self):
        """Fenced output is left for code block extraction."""
        text = 'Here is the result:\n```json\n{"a": 1}\n```'
        assert strip_ai_preamble(text).text == text

    def test_preamble_no_json(self):
        """Text without a bracket is unchanged."""
        assert strip_ai_preamble("no json here").fixes == []

    def test_code_block_prefers_json_block(self):
        """A json-looking block is picked over other code blocks."""
        text = '```python\nprint(1)\n```\n```json\n{"a": 1}\n```'
        rewrite = extract_code_block(text)
        assert rewrite.text == '{"a": 1}'
        assert rewrite.fixes == ["extracted_from_markdown_code_block"]

    def test_code_block_unterminated_fence(self):
        """An unterminated fence is still extracted, with a warning."""
        rewrite = extract_code_block('```json\n{"a": 1}')
        assert rewrite.text == '{"a": 1}'
        assert rewrite.warnings == ["unterminated_code_fence"]

    def test_inline_code(self):
        """JSON in inline backticks is extracted."""
        rewrite = extract_code_block('use `{"a": 1}` here')
        assert rewrite.text == '{"a": 1}'
        assert rewrite.fixes == ["extracted_from_inline_code"]

    @pytest.mark.parametrize(
        "text",
        [
            '{"doc": "call `[]` first", "n": 1,}',
            '{"hint": "returns `{}` on empty", "items": [1, 2],}',
        ],
    )
    def test_inline_code_inside_string_ignored(self, text):
        """Backticks inside a string value are not inline code."""
        rewrite = extract_code_block(text)
        assert rewrite.text == text
        assert rewrite.fixes == []

    def test_strip_comments_kinds(self):
        """Each comment style is reported once, in a fixed order."""
        rewrite = strip_comments('{\n  // name\n  "a": 1 /* one */\n}')
        assert rewrite.fixes == ["removed_single_line_comments", "removed_multi_line_comments"]
        assert decode(rewrite.text) == (True, {"a": 1})

    def test_strip_comments_keeps_urls_in_strings(self):
        """Comment markers inside strings are content."""
        rewrite = strip_comments('{"url": "http://x.io/#top"} // c')
        assert decode(rewrite.text) == (True, {"url": "http://x.io/#top"})

    def test_trailing_commas_outside_strings_only(self):
        """Commas inside strings are never removed."""
        rewrite = remove_trailing_commas('["a,]", 1,]')
        assert rewrite.text == '["a,]", 1]'
        assert rewrite.fixes == ["removed_trailing_commas"]

    def test_normalize_whitespace_strips_bom(self):
        """A leading byte order mark is removed."""
        rewrite = normalize_whitespace('\ufeff{"a": 1}')
        assert rewrite.text == '{"a": 1}'
        assert rewrite.fixes == ["normalized_whitespace"]

    def test_normalize_whitespace_keeps_string_content(self):
        """Whitespace inside string literals is untouched."""
        rewrite = normalize_whitespace('{"a":   "x   y"}\r\n')
        assert rewrite.text == '{"a": "x   y"}'


# =============================================================================
# Progressive Strategy Tests
# =============================================================================


class TestProgressiveStrategies:
    """Tests for progressive strategies."""

    def test_quote_unquoted_keys(self):
        """Bare identifier keys are quoted, including nested ones."""
        rewrite = quote_unquoted_keys("{a: 1, b_2: {c: true}}")
        assert decode(rewrite.text) == (True, {"a": 1, "b_2": {"c": True}})
        assert rewrite.fixes == ["quoted_unquoted_keys"]

    def test_quote_unquoted_keys_ignores_strings(self):
        """Colons inside strings are not keys."""
        assert quote_unquoted_keys('{"note": "x, y: z"}').fixes == []

    def test_convert_single_quotes(self):
        """Single-quoted strings become double-quoted."""
        rewrite = convert_single_quotes("{'a': 'b'}")
        assert rewrite.text == '{"a": "b"}'
        assert rewrite.fixes == ["converted_single_quotes_to_double_quotes"]

    def test_convert_single_quotes_keeps_apostrophes(self):
        """Apostrophes inside double-quoted strings are left alone."""
        assert convert_single_quotes('{"a": "it\'s"}').fixes == []

    def test_convert_single_quotes_failed(self):
        """A conversion that does not decode is discarded with a warning."""
        rewrite = convert_single_quotes("{'a': 1")
        assert rewrite.text == "{'a': 1"
        assert rewrite.warnings == ["single_quotes_found_but_conversion_failed"]

    def test_extract_balanced_json(self):
        """The first decodable value is pulled out of prose."""
        rewrite = extract_balanced_json('result {"a": [1, 2]} done')
        assert rewrite.text == '{"a": [1, 2]}'
        assert rewrite.fixes == ["extracted_json_from_text"]

    def test_extract_balanced_json_invalid_structure(self):
        """A balanced but invalid structure only warns."""
        rewrite = extract_balanced_json("see {a: 1}")
        assert rewrite.text == "see {a: 1}"
        assert rewrite.warnings == ["found_json_structure_but_still_invalid"]

    def test_extract_balanced_json_skips_invalid_span(self):
        """Scanning resumes after a closed but invalid value."""
        rewrite = extract_balanced_json('see {a: 1} and {"b": 2}')
        assert rewrite.text == '{"b": 2}'

    def test_extract_balanced_json_ignores_nested_values(self):
        """Values nested in a closed outer value are never extracted alone."""
        rewrite = extract_balanced_json('{"items": [1, 2], bad}')
        assert rewrite.text == '{"items": [1, 2], bad}'
        assert rewrite.warnings == ["found_json_structure_but_still_invalid"]

    def test_extract_balanced_json_truncated_document(self):
        """Nothing is extracted from inside an unclosed document."""
        text = '{"user": {"name": "x"}, "age": 3'
        rewrite = extract_balanced_json(text)
        assert rewrite.text == text
        assert rewrite.fixes == []
        assert rewrite.warnings == []

    def test_insert_missing_commas_between_properties(self):
        """Adjacent properties get a comma."""
        rewrite = insert_missing_commas('{"a": 1\n"b": 2}')
        assert decode(rewrite.text) == (True, {"a": 1, "b": 2})
        assert rewrite.fixes == ["added_missing_commas_between_properties"]

    def test_insert_missing_commas_between_elements(self):
        """Adjacent string elements get a comma."""
        rewrite = insert_missing_commas('["a" "b"]')
        assert rewrite.text == '["a", "b"]'
        assert rewrite.fixes == ["added_missing_commas_between_array_elements"]


# =============================================================================
# Aggressive Strategy Tests
# =============================================================================


class TestAggressiveStrategies:
    """Tests for aggressive strategies."""

    def test_close_unbalanced_brackets(self):
        """Missing closers are appended innermost first."""
        rewrite = close_unbalanced_brackets('{"a": [1, 2')
        assert rewrite.text == '{"a": [1, 2]}'
        assert rewrite.fixes == ["added_1_missing_closing_braces", "added_1_missing_closing_brackets"]

    def test_close_unterminated_string(self):
        """An unterminated string is closed before the brackets."""
        rewrite = close_unbalanced_brackets('{"a": "hel')
        assert rewrite.text == '{"a": "hel"}'
        assert rewrite.fixes[0] == "closed_unterminated_string"

    def test_close_drops_dangling_comma(self):
        """A dangling comma before the added closer is removed."""
        assert close_unbalanced_brackets("[1, 2,").text == "[1, 2]"

    def test_extra_closers_warn(self):
        """Extra closers are reported, not removed."""
        rewrite = close_unbalanced_brackets('{"a": 1}}')
        assert rewrite.fixes == []
        assert rewrite.warnings == ["detected_extra_closing_braces_or_brackets"]

    def test_reconstruct_from_pairs(self):
        """Key/value fragments are rebuilt into an object."""
        rewrite = reconstruct_from_pairs('garbled "a": 1 junk "b": "x" more')
        assert rewrite.text == '{"a":1,"b":"x"}'
        assert rewrite.warnings == ["aggressive_reconstruction_applied"]

    def test_infer_object_wrapper(self):
        """Bare properties are wrapped in an object."""
        rewrite = infer_wrapper('"a": 1, "b": 2')
        assert decode(rewrite.text) == (True, {"a": 1, "b": 2})
        assert rewrite.fixes == ["inferred_missing_object_wrapper"]

    def test_infer_array_wrapper(self):
        """Comma-separated values are wrapped in an array."""
        rewrite = infer_wrapper("1, 2, 3")
        assert rewrite.text == "[1, 2, 3]"
        assert rewrite.fixes == ["inferred_missing_array_wrapper"]

    def test_infer_wrapper_skips_structured_input(self):
        """Input that already opens a value is left alone."""
        assert infer_wrapper('{"a": 1').fixes == []


# =============================================================================
# Recovery Chain Tests
# =============================================================================


class TestJsonRecoveryParser:
    """Tests for the recovery chain."""

    def test_valid_input_untouched(self):
        """Valid JSON is returned as given, without fixes."""
        text = '{ "a" : 1 }'
        result = JsonRecoveryParser(RecoveryLevel.CONSERVATIVE).recover(text)
        assert result.is_valid
        assert result.recovered_text == text
        assert result.applied_fixes == ()
        assert not result.was_modified

    def test_trailing_comma_scenario(self):
        """A trailing comma is fixed at the conservative level."""
        result = recover('{"name": "test", "value": 42,}', RecoveryLevel.CONSERVATIVE)
        assert result.is_valid
        assert result.recovered_text == '{"name":"test","value":42}'
        assert result.applied_fixes == ("removed_trailing_commas",)
        assert result.parsed_value == {"name": "test", "value": 42}

    def test_markdown_scenario(self):
        """JSON inside a fenced block is extracted."""
        result = recover('Here is the result:\n```json\n{"a": 1}\n```', "conservative")
        assert result.recovered_text == '{"a":1}'
        assert "extracted_from_markdown_code_block" in result.applied_fixes

    def test_unquoted_keys_need_progressive(self):
        """Unquoted keys are out of reach for conservative recovery."""
        text = '{name: "x", count: 2}'
        conservative = recover(text, RecoveryLevel.CONSERVATIVE)
        progressive = recover(text, RecoveryLevel.PROGRESSIVE)

        assert not conservative.is_valid
        assert conservative.recovered_text == text
        assert progressive.is_valid
        assert progressive.parsed_value == {"name": "x", "count": 2}
        assert progressive.applied_fixes == ("quoted_unquoted_keys",)

    def test_single_quotes(self):
        """Single-quoted objects are fixed at the progressive level."""
        result = recover("{'name': 'test'}", RecoveryLevel.PROGRESSIVE)
        assert result.parsed_value == {"name": "test"}
        assert result.applied_fixes == ("converted_single_quotes_to_double_quotes",)

    def test_balanced_extraction(self):
        """A value embedded in prose is extracted."""
        result = recover('The answer {"a": 1} is final', RecoveryLevel.PROGRESSIVE)
        assert result.parsed_value == {"a": 1}
        assert result.applied_fixes == ("extracted_json_from_text",)

    def test_missing_commas(self):
        """A missing comma between properties is inserted."""
        result = recover('{"a": 1\n"b": 2}', RecoveryLevel.PROGRESSIVE)
        assert result.parsed_value == {"a": 1, "b": 2}
        assert "added_missing_commas_between_properties" in result.applied_fixes

    def test_truncated_needs_aggressive(self):
        """Truncated output is only closed at the aggressive level."""
        text = '{"a": 1, "b": [1, 2'
        assert not recover(text, RecoveryLevel.PROGRESSIVE).is_valid

        result = recover(text, RecoveryLevel.AGGRESSIVE)
        assert result.is_valid
        assert result.parsed_value == {"a": 1, "b": [1, 2]}
        assert result.applied_fixes == (
            "added_1_missing_closing_braces",
            "added_1_missing_closing_brackets",
        )

    @pytest.mark.parametrize(
        "text,expected,fixes",
        [
            (
                '{"items": [1, 2], "count": 2',
                {"items": [1, 2], "count": 2},
                ("added_1_missing_closing_braces",),
            ),
            (
                '{"user": {"name": "x"}, "age": 3',
                {"user": {"name": "x"}, "age": 3},
                ("added_1_missing_closing_braces",),
            ),
            (
                '{"a": {"b": 1}, "c": 2, "d": [1,',
                {"a": {"b": 1}, "c": 2, "d": [1]},
                ("added_1_missing_closing_braces", "added_1_missing_closing_brackets"),
            ),
        ],
    )
    def test_truncated_with_nested_value(self, text, expected, fixes):
        """A complete nested value never stands in for a truncated document."""
        progressive = recover(text, RecoveryLevel.PROGRESSIVE)
        assert not progressive.is_valid
        assert "extracted_json_from_text" not in progressive.applied_fixes

        result = recover(text, RecoveryLevel.AGGRESSIVE)
        assert result.is_valid
        assert result.parsed_value == expected
        assert result.applied_fixes == fixes

    @pytest.mark.parametrize(
        "text,expected",
        [
            ('{"doc": "call `[]` first", "n": 1,}', {"doc": "call `[]` first", "n": 1}),
            (
                '{"hint": "returns `{}` on empty", "items": [1, 2],}',
                {"hint": "returns `{}` on empty", "items": [1, 2]},
            ),
        ],
    )
    def test_backticks_in_string_values_kept(self, text, expected):
        """Inline code inside a string value does not replace the document."""
        result = recover(text, RecoveryLevel.CONSERVATIVE)
        assert result.parsed_value == expected
        assert result.applied_fixes == ("removed_trailing_commas",)

    def test_array_inference(self):
        """Bare comma-separated values become an array."""
        result = recover("1, 2, 3", RecoveryLevel.AGGRESSIVE)
        assert result.recovered_text == "[1,2,3]"
        assert "inferred_missing_array_wrapper" in result.applied_fixes

    def test_unrecoverable(self):
        """Hopeless input fails and keeps the original text."""
        result = recover("not json at all", RecoveryLevel.AGGRESSIVE)
        assert not result.is_valid
        assert result.recovered_text == "not json at all"
        assert result.parsed_value is None

    def test_partial_text_on_failure(self):
        """Without preservation the partially rewritten text is returned."""
        text = '// note\n{"a": '
        parser = JsonRecoveryParser(RecoveryLevel.CONSERVATIVE, preserve_original_on_failure=False)
        result = parser.recover(text)
        assert not result.is_valid
        assert result.recovered_text != text
        assert "removed_single_line_comments" in result.applied_fixes

    def test_max_attempts_limits_chain(self):
        """Only the first max_attempts strategies run."""
        parser = JsonRecoveryParser(RecoveryLevel.PROGRESSIVE, max_attempts=1)
        assert not parser.recover('{"a": 1,}').is_valid

    def test_default_max_attempts_covers_every_strategy(self):
        """The default budget reaches the last aggressive strategy."""
        assert DEFAULT_MAX_ATTEMPTS == len(STRATEGIES)
        parser = JsonRecoveryParser(RecoveryLevel.AGGRESSIVE)
        assert len(parser.strategies[: parser.max_attempts]) == len(STRATEGIES)

    def test_string_level_accepted(self):
        """Levels may be given by name."""
        assert JsonRecoveryParser("aggressive").level == RecoveryLevel.AGGRESSIVE

    def test_unknown_level_rejected(self):
        """Unknown level names raise ValueError."""
        with pytest.raises(ValueError):
            JsonRecoveryParser("reckless")

    def test_result_is_frozen(self):
        """Results cannot be mutated after return."""
        result = recover("[1]")
        with pytest.raises(AttributeError):
            result.is_valid = False  # type: ignore[misc]


class TestRecoveryGuarantees:
    """Properties that hold for every input."""

    @pytest.mark.parametrize("text,expected", CONSERVATIVE_CASES)
    def test_idempotent(self, text, expected):
        """Recovering the same input twice gives equal results."""
        assert recover(text, RecoveryLevel.CONSERVATIVE) == recover(text, RecoveryLevel.CONSERVATIVE)

    @pytest.mark.parametrize("text,expected", CONSERVATIVE_CASES)
    def test_fixed_point(self, text, expected):
        """Recovered text recovers to itself without fixes."""
        first = recover(text, RecoveryLevel.CONSERVATIVE)
        assert first.parsed_value == expected

        second = recover(first.recovered_text, RecoveryLevel.CONSERVATIVE)
        assert second.recovered_text == first.recovered_text
        assert second.applied_fixes == ()

    @pytest.mark.parametrize("text,expected", CONSERVATIVE_CASES)
    def test_monotonic_levels(self, text, expected):
        """Whatever a lower level recovers, higher levels recover the same way."""
        results = [recover(text, level) for level in RecoveryLevel]
        assert all(r.is_valid for r in results)
        assert {canonical_json(r.parsed_value) for r in results} == {canonical_json(expected)}


class TestRecoveryReport:
    """Tests for RecoveryResult.format_report."""

    def test_success_report(self):
        """A successful recovery lists its fixes."""
        report = recover('{"a": 1,}', RecoveryLevel.CONSERVATIVE).format_report()
        assert "=== JSON Recovery Report ===" in report
        assert "✓ Successfully recovered valid JSON" in report
        assert "Recovery Level: conservative" in report
        assert "Fixes Applied:" in report
        assert "  1. removed_trailing_commas" in report
        assert "Original vs Recovered:" in report

    def test_failure_report(self):
        """A failed recovery says so."""
        result = RecoveryResult(
            original_input="x",
            recovered_text="x",
            is_valid=False,
            applied_fixes=(),
            warnings=("w",),
            level=RecoveryLevel.AGGRESSIVE,
        )
        report = result.format_report()
        assert "✗ Failed to recover valid JSON" in report
        assert "  1. w" in report
        assert "Original vs Recovered:" not in report
