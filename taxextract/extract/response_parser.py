"""
Recovery parser for free-form model output.

Model responses may be wrapped in markdown, carry comments, trail off
mid-object or use JavaScript-style quoting. parse() turns any such text into
a canonical record through a strictly staged cascade:

1. DIRECT   - json.loads on the raw text
2. CLEANED  - strip code fences and comments, trim surrounding prose,
              drop trailing commas
3. RESCUE   - strip control characters, collapse whitespace, quote bare keys
              and values, convert single quotes, close truncated brackets
4. TEXT_FALLBACK - regex extraction straight from the document text

A later stage runs only when the previous one raised. The first stage that
yields a JSON object wins. parse() never raises.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from .observability import DiagnosticLevel, DiagnosticSink, LoggingSink
from .schemas import NOT_PROVIDED, ExtractedTaxRecord, ParseStage, ShapeTag
from .shape_normalizer import ShapeNormalizer
from .text_heuristics import (
    CompanyDetailsExtractor,
    HeuristicCompanyDetailsExtractor,
    extract_tax_amounts,
    extract_tax_year,
)
from .validation_rules import ValidationReport, apply_validation_rules

logger = logging.getLogger(__name__)


class ParseFailure(ValueError):
    """A cascade stage could not produce a JSON object."""


# =============================================================================
# STAGE 2: CLEANING
# =============================================================================

_FENCE_RE = re.compile(r"```[a-zA-Z]*[ \t]*\n?|\n?[ \t]*```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_DOUBLE_QUOTED_RE = re.compile(r'("(?:[^"\\]|\\.)*")', re.DOTALL)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text)


def strip_comments(text: str) -> str:
    """Remove // and /* */ comments that are not inside a string."""
    out = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        c = text[i]
        if in_string:
            out.append(c)
            if c == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if c == '"':
                in_string = False
            i += 1
            continue
        if c == '"':
            in_string = True
            out.append(c)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(c)
            i += 1
    return "".join(out)


def trim_to_object(text: str) -> str:
    """Keep the text between the first '{' and the last '}'."""
    start = text.find("{")
    if start == -1:
        return text
    end = text.rfind("}")
    if end < start:
        return text[start:]
    return text[start:end + 1]


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def clean_response(text: str) -> str:
    cleaned = strip_code_fences(text.strip())
    cleaned = strip_comments(cleaned)
    cleaned = trim_to_object(cleaned.strip())
    return remove_trailing_commas(cleaned)


# =============================================================================
# STAGE 3: RESCUE
# =============================================================================

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f​﻿]")
_SMART_QUOTES = {"“": '"', "”": '"', "‘": "'", "’": "'"}
_SINGLE_QUOTED_RE = re.compile(r"'((?:[^'\\]|\\.)*)'")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][\w\-]*)\s*:")
_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}
_PY_LITERAL_RE = re.compile(r"\b(True|False|None)\b")
_GROUPED_NUMBER_RE = re.compile(r"(:\s*)(\()?(-?\d{1,3}(?:,\d{3})+(?:\.\d+)?)(\))?(?=\s*[,}\]]|\s*$)")
_BARE_VALUE_RE = re.compile(r"(:\s*)([A-Za-z][^,}\]]*?)(\s*)(?=[,}\]]|$)")
_JSON_WORDS = {"true", "false", "null", "NaN", "Infinity"}


def _map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply fn to the parts of text that are not double-quoted strings."""
    parts = _DOUBLE_QUOTED_RE.split(text)
    # re.split with one group alternates: outside, string, outside, ...
    return "".join(part if i % 2 else fn(part) for i, part in enumerate(parts))


def _single_to_double(match: re.Match) -> str:
    inner = match.group(1).replace("\\'", "'").replace('"', '\\"')
    return f'"{inner}"'


def _ungroup_number(match: re.Match) -> str:
    number = match.group(3).replace(",", "")
    if match.group(2) and match.group(4):
        number = f"-{number.lstrip('-')}"
    return f"{match.group(1)}{number}"


def _quote_bare_value(match: re.Match) -> str:
    word = match.group(2).strip()
    if word in _JSON_WORDS:
        return match.group(0)
    escaped = word.replace("\\", "\\\\").replace('"', '\\"')
    return f'{match.group(1)}"{escaped}"{match.group(3)}'


def close_truncated(text: str) -> str:
    """Close an unterminated string and any brackets left open."""
    stack = []
    in_string = False
    escaped = False
    for c in text:
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c in "{[":
            stack.append("}" if c == "{" else "]")
        elif c in "}]" and stack and stack[-1] == c:
            stack.pop()

    if in_string:
        text += '"'
    if not stack:
        return text

    text = text.rstrip()
    if text.endswith(","):
        text = text[:-1]
    elif text.endswith(":"):
        text += " null"
    return text + "".join(reversed(stack))


def rescue_response(text: str) -> str:
    """Aggressive repairs applied on top of clean_response()."""
    repaired = clean_response(text)
    for smart, plain in _SMART_QUOTES.items():
        repaired = repaired.replace(smart, plain)
    repaired = _CONTROL_CHARS_RE.sub("", repaired)
    repaired = re.sub(r"\s+", " ", repaired).strip()

    repaired = _map_outside_strings(repaired, lambda s: _SINGLE_QUOTED_RE.sub(_single_to_double, s))
    repaired = _map_outside_strings(repaired, lambda s: _BARE_KEY_RE.sub(r'\1"\2":', s))
    repaired = _map_outside_strings(repaired, lambda s: _PY_LITERAL_RE.sub(lambda m: _PY_LITERALS[m.group(1)], s))
    repaired = _map_outside_strings(repaired, lambda s: _GROUPED_NUMBER_RE.sub(_ungroup_number, s))
    repaired = _map_outside_strings(repaired, lambda s: _BARE_VALUE_RE.sub(_quote_bare_value, s))

    repaired = close_truncated(repaired)
    return remove_trailing_commas(repaired)


# =============================================================================
# CASCADE
# =============================================================================

_STAGES: list[tuple[ParseStage, Callable[[str], str]]] = [
    (ParseStage.DIRECT, lambda text: text),
    (ParseStage.CLEANED, clean_response),
    (ParseStage.RESCUE, rescue_response),
]


def _load_object(text: str) -> dict:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError) as e:
        raise ParseFailure(str(e)) from e
    if not isinstance(data, dict):
        raise ParseFailure(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_json_object(raw_text: str) -> tuple[dict, ParseStage]:
    """
    Run the structured stages of the cascade.

    Returns:
        Tuple of (parsed object, stage that produced it)

    Raises:
        ParseFailure: If every structured stage fails
    """
    errors = []
    for stage, prepare in _STAGES:
        try:
            return _load_object(prepare(raw_text)), stage
        except ParseFailure as e:
            logger.debug(f"{stage.value} parse failed: {e}")
            errors.append(f"{stage.value}: {e}")
    raise ParseFailure("; ".join(errors))


# =============================================================================
# PARSER
# =============================================================================

@dataclass
class ParseOutcome:
    """Record produced by parse() and how it was obtained."""
    record: ExtractedTaxRecord
    stage: ParseStage
    shape: Optional[ShapeTag] = None
    report: Optional[ValidationReport] = None


class ResponseParser:
    """
    Converts raw model output to a validated canonical record.

    Args:
        normalizer: Shape normalizer (built with `company_details` if omitted)
        company_details: Strategy for company name / business type lookup
    """

    def __init__(
        self,
        normalizer: Optional[ShapeNormalizer] = None,
        company_details: Optional[CompanyDetailsExtractor] = None,
    ):
        self.company_details = company_details or HeuristicCompanyDetailsExtractor()
        self.normalizer = normalizer or ShapeNormalizer(self.company_details)

    def parse(
        self,
        raw_text: str,
        original_document_text: Optional[str] = None,
        sink: Optional[DiagnosticSink] = None,
    ) -> ParseOutcome:
        """
        Parse raw model output. Never raises.

        Args:
            raw_text: Model output
            original_document_text: Document the model was asked about;
                used for text heuristics (raw_text is used when absent)
            sink: Receives warnings and corrections

        Returns:
            ParseOutcome with the record, stage and detected shape
        """
        if sink is None:
            sink = LoggingSink()
        if not isinstance(raw_text, str):
            raw_text = ""
        document_text = original_document_text if original_document_text else raw_text

        try:
            data, stage = load_json_object(raw_text)
        except ParseFailure as e:
            sink.emit(DiagnosticLevel.WARNING, "Failed to parse AI response, extracting from document text", error=str(e))
            return self._text_fallback(document_text, sink)

        try:
            normalized = self.normalizer.normalize(data, document_text)
        except (ValueError, TypeError) as e:
            sink.emit(DiagnosticLevel.WARNING, "Failed to normalize AI response, extracting from document text", error=str(e))
            return self._text_fallback(document_text, sink)

        sink.emit(DiagnosticLevel.DEBUG, "Parsed AI response", stage=stage, shape=normalized.shape)
        record, report = apply_validation_rules(normalized.record, normalized.validation, sink)
        return ParseOutcome(record=record, stage=stage, shape=normalized.shape, report=report)

    def _text_fallback(self, document_text: str, sink: DiagnosticSink) -> ParseOutcome:
        details = self.company_details.extract(document_text)
        amounts = extract_tax_amounts(document_text)
        record = ExtractedTaxRecord(
            taxpayer_name=details.company_name,
            tax_year=extract_tax_year(document_text),
            total_income=amounts.total_income,
            total_expenses=amounts.total_expenses,
            total_deductions=amounts.total_deductions,
            taxable_amount=amounts.taxable_amount,
            tax_id=NOT_PROVIDED,
            business_type=details.business_type,
        )
        record, report = apply_validation_rules(record, None, sink)
        return ParseOutcome(record=record, stage=ParseStage.TEXT_FALLBACK, report=report)


def parse_ai_response(
    raw_text: str,
    original_document_text: Optional[str] = None,
    sink: Optional[DiagnosticSink] = None,
) -> ExtractedTaxRecord:
    """Convenience wrapper returning only the record."""
    return ResponseParser().parse(raw_text, original_document_text, sink).record
