"""
Tests for the response recovery parser.

Tests cover:
1. Each stage of the recovery cascade (direct, cleaned, rescue)
2. Text-extraction fallback when no stage yields a JSON object
3. Totality: any input produces a complete, finite record
4. Validation rules applied to parsed responses
"""

import json
import math

import pytest

from taxextract.extract.observability import ExtractionTrace
from taxextract.extract.response_parser import (
    ParseFailure,
    ResponseParser,
    clean_response,
    close_truncated,
    load_json_object,
    parse_ai_response,
    strip_comments,
)
from taxextract.extract.schemas import (
    NOT_PROVIDED,
    NOT_SPECIFIED,
    ExtractedTaxRecord,
    ParseStage,
    ShapeTag,
    current_year,
)


def assert_well_formed(record: ExtractedTaxRecord):
    """Every field is present, typed and finite."""
    assert isinstance(record.taxpayer_name, str)
    assert isinstance(record.tax_year, int)
    assert isinstance(record.tax_id, str)
    assert isinstance(record.business_type, str)
    for name in ("total_income", "total_expenses", "total_deductions", "taxable_amount"):
        value = getattr(record, name)
        assert isinstance(value, float)
        assert math.isfinite(value)


class TestCleaningHelpers:
    """Tests for the individual cleaning steps."""

    def test_strip_comments_keeps_strings(self):
        """Comment markers inside strings are not comments."""
        text = '{"url": "http://example.com", // trailing\n "a": 1 /* block */}'
        cleaned = strip_comments(text)
        assert '"http://example.com"' in cleaned
        assert "trailing" not in cleaned
        assert "block" not in cleaned

    def test_strip_comments_unterminated_block(self):
        """An unterminated block comment swallows the rest."""
        assert strip_comments('{"a": 1} /* never closed') == '{"a": 1} '

    def test_clean_response_trims_prose(self):
        """Leading and trailing prose is removed."""
        cleaned = clean_response('Here you go: {"a": 1} Let me know!')
        assert cleaned == '{"a": 1}'

    def test_clean_response_removes_trailing_commas(self):
        """Trailing commas before closers are dropped."""
        assert json.loads(clean_response('{"a": [1, 2,], "b": 3,}')) == {"a": [1, 2], "b": 3}

    def test_close_truncated(self):
        """Open strings and brackets are closed."""
        assert json.loads(close_truncated('{"a": [1, 2')) == {"a": [1, 2]}
        assert json.loads(close_truncated('{"name": "ACM')) == {"name": "ACM"}
        assert json.loads(close_truncated('{"a": 1,')) == {"a": 1}
        assert json.loads(close_truncated('{"a":')) == {"a": None}


class TestRecoveryCascade:
    """Tests for stage selection in the cascade."""

    def test_direct_parse(self):
        """Valid JSON parses at the direct stage."""
        data, stage = load_json_object('{"totalIncome": 500, "totalExpenses": 300}')
        assert stage == ParseStage.DIRECT
        assert data == {"totalIncome": 500, "totalExpenses": 300}

    def test_fenced_trailing_comma_parses_cleaned(self):
        """Markdown fences and a trailing comma are repaired by cleaning."""
        raw = '```json\n{"totalIncome": 500, "totalExpenses": 300,}\n```'
        outcome = ResponseParser().parse(raw)
        assert outcome.stage == ParseStage.CLEANED
        assert outcome.record.total_income == 500
        assert outcome.record.total_expenses == 300

    def test_comments_parse_cleaned(self):
        """Line and block comments are stripped by cleaning."""
        raw = '{"totalIncome": 1000, // revenue\n "totalExpenses": 400 /* opex */}'
        data, stage = load_json_object(raw)
        assert stage == ParseStage.CLEANED
        assert data["totalExpenses"] == 400

    def test_surrounding_prose_parses_cleaned(self):
        """JSON embedded in prose is found by cleaning."""
        data, stage = load_json_object('Here is the data: {"totalIncome": 10} Hope this helps')
        assert stage == ParseStage.CLEANED
        assert data == {"totalIncome": 10}

    def test_unquoted_keys_and_bare_values_parse_rescue(self):
        """JavaScript-style objects are rescued."""
        raw = "{totalIncome: 2500, taxpayerName: 'ACME LTD', businessType: Trading}"
        data, stage = load_json_object(raw)
        assert stage == ParseStage.RESCUE
        assert data == {"totalIncome": 2500, "taxpayerName": "ACME LTD", "businessType": "Trading"}

    def test_python_literals_parse_rescue(self):
        """Python-style dicts are rescued."""
        data, stage = load_json_object("{'totalIncome': 100, 'flag': True, 'taxId': None}")
        assert stage == ParseStage.RESCUE
        assert data == {"totalIncome": 100, "flag": True, "taxId": None}

    def test_grouped_numbers_parse_rescue(self):
        """Thousands separators and parenthesized negatives are rescued."""
        data, stage = load_json_object('{"totalIncome": 13,247, "taxableAmount": (1,680)}')
        assert stage == ParseStage.RESCUE
        assert data == {"totalIncome": 13247, "taxableAmount": -1680}

    def test_truncated_response_parses_rescue(self):
        """A response cut off mid-string is closed and parsed."""
        raw = '{"totalIncome": 1200, "totalExpenses": 700, "taxpayerName": "ACME'
        outcome = ResponseParser().parse(raw)
        assert outcome.stage == ParseStage.RESCUE
        assert outcome.record.total_income == 1200
        assert outcome.record.total_expenses == 700
        assert outcome.record.taxpayer_name == "ACME"

    def test_first_successful_stage_wins(self):
        """Valid JSON with prose-like content is not re-parsed by later stages."""
        data, stage = load_json_object('{"note": "see // not a comment", "a": 1}')
        assert stage == ParseStage.DIRECT
        assert data["note"] == "see // not a comment"

    @pytest.mark.parametrize("raw", ["", "not json at all", "[1, 2, 3]", "42", "null", '"string"'])
    def test_non_objects_raise_parse_failure(self, raw):
        """Anything that is not a JSON object fails every stage."""
        with pytest.raises(ParseFailure):
            load_json_object(raw)


class TestTextFallback:
    """Tests for regex extraction when parsing fails."""

    def test_parenthesized_profit_before_tax(self):
        """Profit before tax (1,680) yields a negative taxable amount."""
        outcome = ResponseParser().parse("Profit before tax (1,680)")
        assert outcome.stage == ParseStage.TEXT_FALLBACK
        assert outcome.record.taxable_amount == -1680

    def test_uses_original_document_text(self):
        """The original document is scanned, not the failed response."""
        document = "ACME TRADING LIMITED\nYear ended 31 December 2022\nRevenue 13,247\nProfit before tax (1,680)"
        outcome = ResponseParser().parse("Sorry, I cannot help with that.", document)

        record = outcome.record
        assert outcome.stage == ParseStage.TEXT_FALLBACK
        assert outcome.shape is None
        assert record.taxpayer_name == "ACME TRADING LIMITED"
        assert record.business_type == "Trading"
        assert record.tax_year == 2022
        assert record.total_income == 13247
        assert record.taxable_amount == -1680
        assert record.tax_id == NOT_PROVIDED

    def test_empty_input_returns_defaults(self):
        """Empty input gives a zeroed record with default strings."""
        record = parse_ai_response("")
        assert record.taxpayer_name == NOT_PROVIDED
        assert record.business_type == NOT_SPECIFIED
        assert record.tax_year == current_year()
        assert record.total_income == 0
        assert record.taxable_amount == 0

    def test_fallback_warning_is_emitted(self):
        """A parse failure is visible in the trace."""
        trace = ExtractionTrace()
        ResponseParser().parse("garbage", None, trace)
        assert any("Failed to parse AI response" in w for w in trace.warnings)


class TestTotality:
    """parse() returns a well-formed record for any input."""

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "not json",
            "\x00\x01\x02\xff\xfe garbage \x7f",
            "[1, 2, 3]",
            "null",
            "{",
            "}{",
            '{"totalIncome": "abc", "taxYear": "soon", "taxpayerName": 7}',
            '{"totalIncome": 1e999, "totalExpenses": -1e999}',
            '{"totalIncome": NaN, "taxableAmount": Infinity}',
            '{"Profit_and_Loss": "not a list"}',
            '{"Profit_and_Loss": [1, null, {"Account": 5}, {"Account": "Revenue", "Amount": "x"}]}',
            '{"validationData": {"revenue": "lots", "profitBeforeTax": null}}',
            '{"totalIncome": true, "totalExpenses": [1], "taxableAmount": {"a": 1}}',
            "[" * 500,
            "{'a': 'unterminated",
        ],
    )
    def test_always_well_formed(self, raw):
        """No input makes parse() raise or return non-finite numbers."""
        record = parse_ai_response(raw)
        assert_well_formed(record)

    def test_non_string_input(self):
        """Non-string input is treated as empty."""
        record = ResponseParser().parse(None).record
        assert_well_formed(record)

    def test_non_finite_values_reset(self):
        """Infinite figures are reset to zero."""
        trace = ExtractionTrace()
        outcome = ResponseParser().parse('{"totalIncome": 1e999, "totalExpenses": 10}', None, trace)
        assert outcome.stage == ParseStage.DIRECT
        assert outcome.record.total_income == 0
        assert any("total_income" in c for c in trace.corrections)


class TestParsedResponses:
    """End-to-end parsing of well-formed responses of each shape."""

    def test_standard_response(self):
        """Canonical fields are carried into the record."""
        raw = json.dumps({
            "taxpayerName": "ACME LTD",
            "taxYear": 2023,
            "totalIncome": 50000,
            "totalExpenses": 30000,
            "totalDeductions": 5000,
            "taxableAmount": 15000,
            "taxId": "TIN12345",
            "businessType": "Technology Services",
        })
        outcome = ResponseParser().parse(raw)
        assert outcome.shape == ShapeTag.STANDARD
        assert outcome.record.to_dict() == {
            "taxpayerName": "ACME LTD",
            "taxYear": 2023,
            "totalIncome": 50000,
            "totalExpenses": 30000,
            "totalDeductions": 5000,
            "taxableAmount": 15000,
            "taxId": "TIN12345",
            "businessType": "Technology Services",
        }
        assert outcome.report.correction_count == 0

    def test_enhanced_response_cross_validated(self):
        """Validation figures correct income and taxable amount."""
        raw = json.dumps({
            "totalIncome": 0,
            "taxableAmount": 0,
            "validationData": {"revenue": 50000, "profitBeforeTax": 15000},
        })
        trace = ExtractionTrace()
        outcome = ResponseParser().parse(raw, None, trace)

        assert outcome.shape == ShapeTag.ENHANCED
        assert outcome.record.total_income == 50000
        assert outcome.record.taxable_amount == 15000
        assert outcome.report.correction_count == 2
        assert len(trace.corrections) == 2
        assert "validationData" not in outcome.record.to_dict()

    def test_financial_statement_response(self):
        """Statement line items and document-derived company details."""
        raw = json.dumps({
            "Profit_and_Loss": [
                {"Account": "Revenue", "Amount": 13247},
                {"Account": "General & admin expenses", "Expenses": 14927},
            ]
        })
        document = "CACHE TECHNOLOGY COMPANY LIMITED\nStatement of profit or loss for the year ended 31 December 2023"
        outcome = ResponseParser().parse(raw, document)

        record = outcome.record
        assert outcome.shape == ShapeTag.FINANCIAL_STATEMENT
        assert "CACHE TECHNOLOGY COMPANY LIMITED" in record.taxpayer_name
        assert record.total_income == 13247
        assert record.total_expenses == 14927
        assert record.taxable_amount == -1680
        assert record.business_type == "Technology"
        assert record.tax_year == 2023
