"""JSON rewrite strategies for artifact recovery.

Each strategy is a named pure function ``text -> Rewrite``:
- Conservative: preamble, code blocks, comments, trailing commas, whitespace
- Progressive: unquoted keys, single quotes, balanced span, missing commas
- Aggressive: unbalanced brackets, key/value reconstruction, wrapper inference

Strategies are composed by ``json_recovery.JsonRecoveryParser`` in the order
given by ``STRATEGIES``. Rewrites that are only safe when the outcome is known
to be valid JSON check ``decodes()`` before returning new text.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class RecoveryLevel(IntEnum):
    """How far recovery may go in rewriting the input."""

    CONSERVATIVE = 0  # Safe, obvious fixes only
    PROGRESSIVE = 1  # Structural fixes validated by decoding
    AGGRESSIVE = 2  # Reconstruction and inference

    @classmethod
    def parse(cls, value: str | int | RecoveryLevel) -> RecoveryLevel:
        """Parse a level from its name ("progressive") or integer value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[value.strip().upper()]
        except KeyError:
            valid = ", ".join(level.name.lower() for level in cls)
            raise ValueError(f"Unknown recovery level '{value}' (expected one of: {valid})") from None


@dataclass(frozen=True)
class Rewrite:
    """Outcome of a single strategy."""

    text: str
    fixes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RecoveryStrategy:
    """A named rewrite, gated by the minimum level that enables it."""

    name: str
    level: RecoveryLevel
    rewrite: Callable[[str], Rewrite]

    def __call__(self, text: str) -> Rewrite:
        return self.rewrite(text)


# =============================================================================
# Decoding helpers
# =============================================================================


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def decode(text: str) -> tuple[bool, Any]:
    """Decode strict JSON. Returns (ok, value); NaN/Infinity are rejected."""
    try:
        return True, json.loads(text, parse_constant=_reject_constant)
    except (ValueError, TypeError, RecursionError):
        return False, None


def decodes(text: str) -> bool:
    """Check whether text is valid JSON."""
    return decode(text)[0]


def _looks_like_json_start(text: str) -> bool:
    return text[:1] in ("{", "[")


def iter_segments(text: str) -> Iterator[tuple[bool, str]]:
    """Split text into (is_string_literal, chunk) pieces.

    Double-quoted strings honour backslash escapes; an unterminated string
    runs to the end of the text.
    """
    buf: list[str] = []
    in_string = False
    escaped = False

    for ch in text:
        if in_string:
            buf.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                yield True, "".join(buf)
                buf = []
                in_string = False
        elif ch == '"':
            if buf:
                yield False, "".join(buf)
            buf = [ch]
            in_string = True
        else:
            buf.append(ch)

    if buf:
        yield in_string, "".join(buf)


def map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply fn to every chunk of text that is not inside a string literal."""
    return "".join(chunk if is_string else fn(chunk) for is_string, chunk in iter_segments(text))


# =============================================================================
# Conservative strategies
# =============================================================================

# Phrases an agent uses to introduce its output. Each must end right before
# the first JSON bracket (only whitespace in between).
_PREAMBLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bhere(?:'s| is| are)\b[^\n{\[]*:",
        r"\b(?:enhanced |final |corrected )?(?:data|results?|output|analysis|response)\s*(?:is|are)?\s*:",
        r"\bbased on (?:the|my) analysis\b[^{\[]*:",
        r"\blet me (?:extract|provide|output)\b[^{\[]*:",
        r"\b(?:clean|corrected|valid|the) json(?: output| structure| format)?\b[^{\[]*:",
        r"\b(?:matches|required) (?:the )?schema\b[^{\[]*:",
    )
]

_EXPLANATION_KEYWORDS = ("analysis", "provide", "output", "json", "extract", "data", "result", "schema")


def strip_ai_preamble(text: str) -> Rewrite:
    """Drop explanatory prose that precedes a JSON document."""
    stripped = text.strip()
    first = min((i for i in (stripped.find("{"), stripped.find("[")) if i >= 0), default=-1)
    if first <= 0:
        return Rewrite(text)

    suffix = stripped[first:]
    # Fenced output is handled by extract_code_block.
    if "```" in suffix:
        return Rewrite(text)

    head = stripped[:first]
    for pattern in _PREAMBLE_PATTERNS:
        for match in pattern.finditer(head):
            if not head[match.end() :].strip():
                return Rewrite(suffix, ["removed_ai_explanation_text"])

    # An explanatory paragraph followed by a line that opens a JSON document
    lines = stripped.split("\n")
    for index, line in enumerate(lines):
        if _looks_like_json_start(line.strip()):
            break
    else:
        return Rewrite(text)

    if index == 0:
        return Rewrite(text)

    for line in lines[:index]:
        candidate = line.strip().lower()
        if len(candidate) > 15 and any(word in candidate for word in _EXPLANATION_KEYWORDS):
            return Rewrite("\n".join(lines[index:]).strip(), ["extracted_json_after_explanation"])

    return Rewrite(text)


_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\r?\n(.*?)\r?\n?[ \t]*```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*[ \t]*\r?\n(.*)\Z", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")


def extract_code_block(text: str) -> Rewrite:
    """Extract JSON from a fenced or inline markdown code block."""
    blocks = [(m.group(1).lower(), m.group(2).strip()) for m in _FENCE_RE.finditer(text)]
    json_blocks = [body for _, body in blocks if _looks_like_json_start(body)]
    if json_blocks:
        # Prefer an explicitly tagged json block
        tagged = [body for tag, body in blocks if tag == "json" and _looks_like_json_start(body)]
        return Rewrite((tagged or json_blocks)[0], ["extracted_from_markdown_code_block"])

    if not blocks:
        match = _OPEN_FENCE_RE.search(text)
        if match and _looks_like_json_start(match.group(1).strip()):
            return Rewrite(
                match.group(1).strip(),
                ["extracted_from_markdown_code_block"],
                ["unterminated_code_fence"],
            )

    literals = _string_literal_spans(text)
    for match in _INLINE_CODE_RE.finditer(text):
        # Backticks inside a JSON string value are content, not markdown.
        if any(lo <= match.start() < hi for lo, hi in literals):
            continue
        body = match.group(1).strip()
        if _looks_like_json_start(body):
            return Rewrite(body, ["extracted_from_inline_code"])

    return Rewrite(text)


def _string_literal_spans(text: str) -> list[tuple[int, int]]:
    spans = []
    position = 0
    for is_string, chunk in iter_segments(text):
        if is_string:
            spans.append((position, position + len(chunk)))
        position += len(chunk)
    return spans


def strip_comments(text: str) -> Rewrite:
    """Remove //, /* */ and line-leading # comments outside string literals."""
    out: list[str] = []
    kinds: set[str] = set()
    in_string = False
    escaped = False
    line_blank = True  # only whitespace seen since the last newline
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            line_blank = False
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
            kinds.add("removed_single_line_comments")
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
            kinds.add("removed_multi_line_comments")
        elif ch == "#" and line_blank:
            end = text.find("\n", i)
            i = n if end == -1 else end
            kinds.add("removed_hash_comments")
        else:
            if ch == "\n":
                line_blank = True
            elif not ch.isspace():
                line_blank = False
            out.append(ch)
            i += 1

    if not kinds:
        return Rewrite(text)

    order = ("removed_single_line_comments", "removed_multi_line_comments", "removed_hash_comments")
    return Rewrite("".join(out), [kind for kind in order if kind in kinds])


_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def remove_trailing_commas(text: str) -> Rewrite:
    """Remove commas directly before a closing brace or bracket."""
    output = map_outside_strings(text, lambda chunk: _TRAILING_COMMA_RE.sub(r"\1", chunk))
    if output == text:
        return Rewrite(text)
    return Rewrite(output, ["removed_trailing_commas"])


def _normalize_chunk(chunk: str) -> str:
    chunk = chunk.replace("\r\n", "\n").replace("\r", "\n")
    chunk = re.sub(r"[ \t]+", " ", chunk)
    return re.sub(r" ?\n[\s]*", "\n", chunk)


def normalize_whitespace(text: str) -> Rewrite:
    """Normalize line endings and collapse blank runs outside strings."""
    output = map_outside_strings(text.lstrip("\ufeff"), _normalize_chunk).strip()
    if output == text:
        return Rewrite(text)
    return Rewrite(output, ["normalized_whitespace"])


# =============================================================================
# Progressive strategies
# =============================================================================

_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][A-Za-z0-9_$-]*)(\s*:)")


def quote_unquoted_keys(text: str) -> Rewrite:
    """Quote bare identifier keys: {key: 1} -> {"key": 1}."""
    output = map_outside_strings(text, lambda chunk: _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', chunk))
    if output == text:
        return Rewrite(text)
    return Rewrite(output, ["quoted_unquoted_keys"])


def _convert_single_quoted(text: str) -> tuple[str, bool]:
    """Turn 'single quoted' literals into "double quoted" ones.

    Double-quoted strings are copied verbatim, so apostrophes inside
    legitimate strings are never touched.
    """
    out: list[str] = []
    found = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if ch == '"':
            j = i + 1
            while j < n:
                if text[j] == "\\":
                    j += 2
                    continue
                if text[j] == '"':
                    break
                j += 1
            out.append(text[i : j + 1])
            i = j + 1
        elif ch == "'":
            j = i + 1
            body: list[str] = []
            while j < n and text[j] != "'":
                if text[j] == "\\" and j + 1 < n:
                    nxt = text[j + 1]
                    body.append("'" if nxt == "'" else "\\" + nxt)
                    j += 2
                    continue
                body.append('\\"' if text[j] == '"' else text[j])
                j += 1
            if j >= n:
                # Unterminated: leave the rest alone
                out.append(text[i:])
                break
            out.append('"' + "".join(body) + '"')
            found = True
            i = j + 1
        else:
            out.append(ch)
            i += 1

    return "".join(out), found


def convert_single_quotes(text: str) -> Rewrite:
    """Convert single-quoted strings, but only when the result decodes."""
    output, found = _convert_single_quoted(text)
    if not found:
        return Rewrite(text)
    if decodes(output):
        return Rewrite(output, ["converted_single_quotes_to_double_quotes"])
    return Rewrite(text, warnings=["single_quotes_found_but_conversion_failed"])


_CLOSERS = {"{": "}", "[": "]"}


def find_balanced_span(text: str, start: int) -> int:
    """Return the end index (exclusive) of the bracketed value at ``start``.

    Tracks nesting with a stack and ignores brackets inside string literals.
    Returns -1 if the value never closes or closes with a mismatched bracket.
    """
    stack: list[str] = []
    in_string = False
    escaped = False

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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return -1
            if not stack:
                return i + 1
    return -1


def _next_opener(text: str, start: int) -> int:
    return min((i for i in (text.find("{", start), text.find("[", start)) if i >= 0), default=-1)


def extract_balanced_json(text: str) -> Rewrite:
    """Pull the first complete, decodable {...} or [...] out of surrounding prose.

    Only top-level values are candidates: the scan resumes after each closed
    span, and stops at the first opening bracket that never closes, since
    everything after it belongs to an unfinished value.
    """
    found_structure = False
    start = _next_opener(text, 0)
    while start != -1:
        end = find_balanced_span(text, start)
        if end == -1:
            break
        found_structure = True
        candidate = text[start:end]
        if candidate != text and decodes(candidate):
            return Rewrite(candidate, ["extracted_json_from_text"])
        start = _next_opener(text, end)

    if found_structure:
        return Rewrite(text, warnings=["found_json_structure_but_still_invalid"])
    return Rewrite(text)


_STRING = r'"(?:[^"\\\n]|\\.)*"'
_MISSING_PROPERTY_COMMA_RE = re.compile(
    r"(" + _STRING + r"|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null|[}\]])(\s+)(" + _STRING + r"\s*:)"
)
_MISSING_ELEMENT_COMMA_RE = re.compile(r"(" + _STRING + r")(\s+)(" + _STRING + r")")


def insert_missing_commas(text: str) -> Rewrite:
    """Insert commas between adjacent values, only when the result decodes."""
    for pattern, label in (
        (_MISSING_PROPERTY_COMMA_RE, "added_missing_commas_between_properties"),
        (_MISSING_ELEMENT_COMMA_RE, "added_missing_commas_between_array_elements"),
    ):
        output = pattern.sub(r"\1,\2\3", text)
        if output != text and decodes(output):
            return Rewrite(output, [label])

    if _MISSING_PROPERTY_COMMA_RE.search(text) or _MISSING_ELEMENT_COMMA_RE.search(text):
        return Rewrite(text, warnings=["missing_comma_insertion_failed_validation"])
    return Rewrite(text)


# =============================================================================
# Aggressive strategies
# =============================================================================


def close_unbalanced_brackets(text: str) -> Rewrite:
    """Close an unterminated string and pad missing closing braces/brackets."""
    stack: list[str] = []
    extra_closers = 0
    in_string = False
    escaped = False

    for ch in text:
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if stack and stack[-1] == ch:
                stack.pop()
            else:
                extra_closers += 1

    fixes: list[str] = []
    warnings: list[str] = []
    output = text

    if in_string:
        output += '"'
        fixes.append("closed_unterminated_string")

    if stack:
        output = output.rstrip()
        if output.endswith(","):
            output = output[:-1]
        braces = stack.count("}")
        brackets = stack.count("]")
        output += "".join(reversed(stack))
        if braces:
            fixes.append(f"added_{braces}_missing_closing_braces")
        if brackets:
            fixes.append(f"added_{brackets}_missing_closing_brackets")

    if extra_closers:
        warnings.append("detected_extra_closing_braces_or_brackets")

    return Rewrite(output, fixes, warnings)


_KEY_VALUE_RE = re.compile(
    r'"([^"\\\n]+)"\s*:\s*(' + _STRING + r"|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null)"
)


def reconstruct_from_pairs(text: str) -> Rewrite:
    """Rebuild an object from "key": value fragments found anywhere in the text."""
    pairs = [f'"{key}":{value}' for key, value in _KEY_VALUE_RE.findall(text)]
    if not pairs:
        return Rewrite(text)

    reconstructed = "{" + ",".join(pairs) + "}"
    if reconstructed != text and decodes(reconstructed):
        return Rewrite(
            reconstructed,
            ["reconstructed_from_key_value_pairs"],
            ["aggressive_reconstruction_applied"],
        )
    return Rewrite(text)


def infer_wrapper(text: str) -> Rewrite:
    """Wrap bare "key": value or comma-separated fragments in {} or []."""
    trimmed = text.strip()
    if not trimmed or _looks_like_json_start(trimmed):
        return Rewrite(text)

    if trimmed.startswith('"') and ":" in trimmed:
        candidate = "{" + trimmed + "}"
        if decodes(candidate):
            return Rewrite(
                candidate,
                ["inferred_missing_object_wrapper"],
                ["aggressive_structure_inference_applied"],
            )

    if "," in trimmed:
        candidate = "[" + trimmed + "]"
        if decodes(candidate):
            return Rewrite(
                candidate,
                ["inferred_missing_array_wrapper"],
                ["aggressive_structure_inference_applied"],
            )

    return Rewrite(text)


# =============================================================================
# Registry
# =============================================================================

STRATEGIES: list[RecoveryStrategy] = [
    RecoveryStrategy("strip_ai_preamble", RecoveryLevel.CONSERVATIVE, strip_ai_preamble),
    RecoveryStrategy("extract_code_block", RecoveryLevel.CONSERVATIVE, extract_code_block),
    RecoveryStrategy("strip_comments", RecoveryLevel.CONSERVATIVE, strip_comments),
    RecoveryStrategy("remove_trailing_commas", RecoveryLevel.CONSERVATIVE, remove_trailing_commas),
    RecoveryStrategy("normalize_whitespace", RecoveryLevel.CONSERVATIVE, normalize_whitespace),
    RecoveryStrategy("quote_unquoted_keys", RecoveryLevel.PROGRESSIVE, quote_unquoted_keys),
    RecoveryStrategy("convert_single_quotes", RecoveryLevel.PROGRESSIVE, convert_single_quotes),
    RecoveryStrategy("extract_balanced_json", RecoveryLevel.PROGRESSIVE, extract_balanced_json),
    RecoveryStrategy("insert_missing_commas", RecoveryLevel.PROGRESSIVE, insert_missing_commas),
    RecoveryStrategy("close_unbalanced_brackets", RecoveryLevel.AGGRESSIVE, close_unbalanced_brackets),
    RecoveryStrategy("reconstruct_from_pairs", RecoveryLevel.AGGRESSIVE, reconstruct_from_pairs),
    RecoveryStrategy("infer_wrapper", RecoveryLevel.AGGRESSIVE, infer_wrapper),
]


def strategies_for(level: RecoveryLevel) -> list[RecoveryStrategy]:
    """Get the ordered strategies enabled at a level.

    Lower-level strategies always come first, so every level's chain starts
    with the full chain of the level below it.
    """
    return [s for s in STRATEGIES if s.level <= level]
