"""
Shape classification and mapping of parsed model responses.

Models answer the extraction prompt in several layouts. classify() decides
which one a parsed object uses before any field is read, then a dedicated
mapper converts it to the canonical ExtractedTaxRecord:

- ENHANCED: canonical fields plus a validationData payload
- FINANCIAL_STATEMENT: Balance_Sheet / Profit_and_Loss line-item arrays
- SIMPLIFIED: ad-hoc keys such as Revenue / ProfitBeforeTax
- STANDARD: canonical field names
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .schemas import (
    NOT_PROVIDED,
    NOT_SPECIFIED,
    ExtractedTaxRecord,
    ShapeTag,
    ValidationPayload,
    coerce_number,
    current_year,
)
from .text_heuristics import (
    CompanyDetailsExtractor,
    HeuristicCompanyDetailsExtractor,
    extract_amount_from_text,
    extract_tax_year,
)

logger = logging.getLogger(__name__)


VALIDATION_KEY = "validationData"
STATEMENT_KEYS = ("Balance_Sheet", "Profit_and_Loss")
CANONICAL_KEYS = (
    "taxpayerName",
    "taxYear",
    "totalIncome",
    "totalExpenses",
    "totalDeductions",
    "taxableAmount",
    "taxId",
    "businessType",
)

# Simplified layout: {"Revenue": 1680, "ProfitBeforeTax": 1680}
SIMPLIFIED_INCOME_KEYS = ("Revenue", "Income", "Sales", "Turnover")
SIMPLIFIED_EXPENSE_KEYS = ("Expenses", "TotalExpenses")
SIMPLIFIED_PBT_KEYS = ("ProfitBeforeTax", "Profit_Before_Tax")
SIMPLIFIED_DEDUCTION_KEYS = ("Deductions", "CapitalAllowances")
SIMPLIFIED_KEYS = (
    SIMPLIFIED_INCOME_KEYS + SIMPLIFIED_EXPENSE_KEYS + SIMPLIFIED_PBT_KEYS + SIMPLIFIED_DEDUCTION_KEYS
)

# Text-scan fallbacks for simplified keys that are missing
TEXT_INCOME_RE = re.compile(r"revenue|sales|turnover", re.IGNORECASE)
TEXT_EXPENSE_RE = re.compile(r"expenses|costs", re.IGNORECASE)
TEXT_PBT_RE = re.compile(r"profit.*before.*tax", re.IGNORECASE)
TEXT_DEDUCTION_RE = re.compile(r"capital.*allowances?|deductions?", re.IGNORECASE)

# Profit_and_Loss account labels
ACCOUNT_REVENUE_RE = re.compile(r"revenue|income|sales|turnover", re.IGNORECASE)
ACCOUNT_EXPENSE_RE = re.compile(
    r"(?:general|administrative|operating|total).*expenses?|expenses?.*(?:general|administrative|operating|total)",
    re.IGNORECASE,
)
ACCOUNT_PBT_RE = re.compile(r"profit.*before.*tax|income.*before.*tax", re.IGNORECASE)
ACCOUNT_DEDUCTION_RE = re.compile(r"capital.*allowances?|depreciation|deductions?|tax.*relief", re.IGNORECASE)

# Value fields tried on each line item, in priority order
LINE_ITEM_AMOUNT_KEYS = ("Amount", "Expenses", "Cost")


def classify(data: dict) -> ShapeTag:
    """
    Decide the layout of a parsed response.

    Order matters: a validation payload wins, then statement arrays, then
    simplified keys (only when no canonical or statement keys exist).
    """
    if isinstance(data.get(VALIDATION_KEY), dict):
        return ShapeTag.ENHANCED
    if any(key in data for key in STATEMENT_KEYS):
        return ShapeTag.FINANCIAL_STATEMENT
    has_simplified = any(key in data for key in SIMPLIFIED_KEYS)
    has_canonical = any(key in data for key in CANONICAL_KEYS)
    if has_simplified and not has_canonical:
        return ShapeTag.SIMPLIFIED
    return ShapeTag.STANDARD


@dataclass
class NormalizedResponse:
    """Canonical record plus whatever auxiliary data the response carried."""
    shape: ShapeTag
    record: ExtractedTaxRecord
    validation: Optional[ValidationPayload] = None


def _string_field(data: dict, key: str, default: str) -> str:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _year_field(data: dict, key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool):
        return current_year()
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return current_year()


def _number_field(data: dict, key: str) -> float:
    number = coerce_number(data.get(key))
    return 0.0 if number is None else number


def _first_number(data: dict, keys: tuple) -> Optional[float]:
    for key in keys:
        number = coerce_number(data.get(key))
        if number is not None:
            return number
    return None


def _line_items(data: dict, key: str) -> list[dict]:
    items = data.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict) and isinstance(item.get("Account"), str)]


def _item_amount(item: dict) -> Optional[float]:
    return _first_number(item, LINE_ITEM_AMOUNT_KEYS)


def _find_account_amount(
    items: list[dict],
    pattern: re.Pattern,
    exclude: Optional[re.Pattern] = None,
) -> Optional[float]:
    """Amount of the first line item whose account matches `pattern`."""
    for item in items:
        account = item["Account"]
        if not pattern.search(account):
            continue
        if exclude is not None and exclude.search(account):
            continue
        amount = _item_amount(item)
        if amount is not None:
            return amount
    return None


class ShapeNormalizer:
    """
    Maps a parsed response of any known shape to the canonical record.

    Company name, business type and tax year for the statement and simplified
    shapes come from the document text via the company-details strategy,
    never from the parsed object.
    """

    def __init__(self, company_details: Optional[CompanyDetailsExtractor] = None):
        self.company_details = company_details or HeuristicCompanyDetailsExtractor()

    def normalize(self, data: dict, document_text: str) -> NormalizedResponse:
        shape = classify(data)
        logger.debug(f"Response shape: {shape.value}")

        if shape == ShapeTag.ENHANCED:
            return NormalizedResponse(
                shape=shape,
                record=self.map_standard(data),
                validation=ValidationPayload.model_validate(data[VALIDATION_KEY]),
            )
        if shape == ShapeTag.FINANCIAL_STATEMENT:
            return NormalizedResponse(shape=shape, record=self.map_financial_statement(data, document_text))
        if shape == ShapeTag.SIMPLIFIED:
            return NormalizedResponse(shape=shape, record=self.map_simplified(data, document_text))
        return NormalizedResponse(shape=shape, record=self.map_standard(data))

    def map_standard(self, data: dict) -> ExtractedTaxRecord:
        """Take each canonical field when present and well-typed, else default it."""
        return ExtractedTaxRecord(
            taxpayer_name=_string_field(data, "taxpayerName", NOT_PROVIDED),
            tax_year=_year_field(data, "taxYear"),
            total_income=_number_field(data, "totalIncome"),
            total_expenses=_number_field(data, "totalExpenses"),
            total_deductions=_number_field(data, "totalDeductions"),
            taxable_amount=_number_field(data, "taxableAmount"),
            tax_id=_string_field(data, "taxId", NOT_PROVIDED),
            business_type=_string_field(data, "businessType", NOT_SPECIFIED),
        )

    def map_financial_statement(self, data: dict, document_text: str) -> ExtractedTaxRecord:
        """Read figures from the Profit_and_Loss line items."""
        items = _line_items(data, "Profit_and_Loss")

        revenue = _find_account_amount(items, ACCOUNT_REVENUE_RE, exclude=ACCOUNT_PBT_RE) or 0.0
        expenses = _find_account_amount(items, ACCOUNT_EXPENSE_RE) or 0.0
        profit_before_tax = _find_account_amount(items, ACCOUNT_PBT_RE) or 0.0
        deductions = _find_account_amount(items, ACCOUNT_DEDUCTION_RE) or 0.0

        logger.debug(
            f"Financial statement figures: revenue={revenue}, expenses={expenses}, "
            f"deductions={deductions}, profit_before_tax={profit_before_tax}"
        )
        return self._record_from_text(
            document_text, revenue, expenses, deductions, profit_before_tax,
        )

    def map_simplified(self, data: dict, document_text: str) -> ExtractedTaxRecord:
        """Map ad-hoc keys, scanning the document text for any that are missing."""

        def pick(keys: tuple, text_pattern: re.Pattern) -> float:
            value = _first_number(data, keys)
            if value is None:
                value = extract_amount_from_text(document_text, text_pattern)
            return 0.0 if value is None else value

        revenue = pick(SIMPLIFIED_INCOME_KEYS, TEXT_INCOME_RE)
        expenses = pick(SIMPLIFIED_EXPENSE_KEYS, TEXT_EXPENSE_RE)
        profit_before_tax = pick(SIMPLIFIED_PBT_KEYS, TEXT_PBT_RE)
        deductions = pick(SIMPLIFIED_DEDUCTION_KEYS, TEXT_DEDUCTION_RE)

        logger.debug(
            f"Simplified figures: revenue={revenue}, expenses={expenses}, "
            f"deductions={deductions}, profit_before_tax={profit_before_tax}"
        )
        return self._record_from_text(
            document_text, revenue, expenses, deductions, profit_before_tax,
        )

    def _record_from_text(
        self,
        document_text: str,
        revenue: float,
        expenses: float,
        deductions: float,
        profit_before_tax: float,
    ) -> ExtractedTaxRecord:
        details = self.company_details.extract(document_text)
        taxable = profit_before_tax if profit_before_tax != 0 else revenue - expenses - deductions
        return ExtractedTaxRecord(
            taxpayer_name=details.company_name,
            tax_year=extract_tax_year(document_text),
            total_income=revenue,
            total_expenses=expenses,
            total_deductions=deductions,
            taxable_amount=taxable,
            tax_id=NOT_PROVIDED,
            business_type=details.business_type,
        )

