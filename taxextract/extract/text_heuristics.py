"""
Regex heuristics for reading figures straight out of document text.

Used when a model response cannot be parsed at all, and to fill gaps in
partial responses. All functions are best-effort: a missing match yields a
default, never an exception.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from .schemas import NOT_PROVIDED, NOT_SPECIFIED, current_year

logger = logging.getLogger(__name__)


# =============================================================================
# AMOUNT PARSING
# =============================================================================

# "1,680", "-250.5", "(1,680)"; parentheses mean negative
AMOUNT_RE = re.compile(r"\(?-?[\d,]*\d(?:\.\d+)?\)?")

# Gap between a label and its figure: stays on one line and stops at "("
_LABEL_GAP = r"[^\d(\n]*?"

_CURRENCY_RE = re.compile(r"(GH¢|GHS|₵|\$|£|€)")


def parse_amount(token: str) -> Optional[float]:
    """
    Parse a printed amount.

    Strips currency symbols and thousands separators; "(1,680)" becomes -1680.
    """
    cleaned = _CURRENCY_RE.sub("", token).replace(",", "").replace(" ", "").strip()
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    cleaned = cleaned.strip("()")
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return -abs(value) if negative else value


def find_labeled_amount(text: str, label: str) -> Optional[float]:
    """Return the first figure printed after `label` on the same line."""
    pattern = re.compile(rf"{label}{_LABEL_GAP}({AMOUNT_RE.pattern})", re.IGNORECASE)
    match = pattern.search(text)
    if not match:
        return None
    return parse_amount(match.group(1))


def extract_amount_from_text(text: str, pattern: re.Pattern) -> Optional[float]:
    """
    Scan lines for `pattern` and return the figure on the first matching line.

    The figure after the match is preferred; otherwise any figure on the line.
    """
    for line in text.splitlines():
        match = pattern.search(line)
        if not match:
            continue
        amount = AMOUNT_RE.search(line, match.end()) or AMOUNT_RE.search(line)
        if amount:
            value = parse_amount(amount.group(0))
            if value is not None:
                return value
    return None


# =============================================================================
# FULL-TEXT AMOUNT EXTRACTION
# =============================================================================

INCOME_LABELS = [
    r"\bRevenue",
    r"\bOther\s+income",
]

EXPENSE_LABELS = [
    r"\b(?:General|Administrative|Operating)[A-Za-z &.,/]*?expenses?",
    r"\bCost\s+of\s+sales",
    r"\bDirect\s+expenses?",
]

DEDUCTION_LABELS = [
    r"\bCapital\s+allowances?",
    r"\bDepreciation",
    r"\bTax\s+relief",
    r"\bAllowable\s+deductions?",
]

PROFIT_BEFORE_TAX_LABEL = r"\b(?:Profit|Loss)(?:\s*/\s*\(?loss\)?)?\s+before\s+tax(?:ation)?"


@dataclass
class TaxAmounts:
    """Figures read directly from document text."""
    total_income: float = 0.0
    total_expenses: float = 0.0
    total_deductions: float = 0.0
    taxable_amount: float = 0.0


def _sum_labels(text: str, labels: list[str]) -> float:
    total = 0.0
    for label in labels:
        value = find_labeled_amount(text, label)
        if value is not None:
            total += value
    return total


def extract_tax_amounts(text: str) -> TaxAmounts:
    """
    Pattern-match income, expense, deduction and profit-before-tax lines.

    When no profit-before-tax line exists, the taxable amount is computed as
    income - expenses - deductions.
    """
    income = _sum_labels(text, INCOME_LABELS)
    expenses = _sum_labels(text, EXPENSE_LABELS)
    deductions = _sum_labels(text, DEDUCTION_LABELS)

    profit_before_tax = find_labeled_amount(text, PROFIT_BEFORE_TAX_LABEL)
    if profit_before_tax is None:
        taxable = income - expenses - deductions
    else:
        taxable = profit_before_tax

    return TaxAmounts(
        total_income=income,
        total_expenses=expenses,
        total_deductions=deductions,
        taxable_amount=taxable,
    )


# =============================================================================
# TAX YEAR
# =============================================================================

_YEAR_RE = re.compile(r"(?<!\d)(20\d{2})(?!\d)")


def extract_tax_year(text: str) -> int:
    """First 20xx year in the text, else the current year."""
    match = _YEAR_RE.search(text)
    if match:
        return int(match.group(1))
    return current_year()


# =============================================================================
# COMPANY DETAILS
# =============================================================================

@dataclass
class CompanyDetails:
    company_name: str = NOT_PROVIDED
    business_type: str = NOT_SPECIFIED


class CompanyDetailsExtractor(Protocol):
    """Strategy for finding the taxpayer name and business type in a document."""

    def extract(self, text: str) -> CompanyDetails:
        ...


BUSINESS_TYPE_KEYWORDS = [
    (re.compile(r"\b(?:TECHNOLOG\w*|TECH|SOFTWARE|IT)\b", re.IGNORECASE), "Technology"),
    (re.compile(r"\b(?:TRADING|TRADERS?|TRADE)\b", re.IGNORECASE), "Trading"),
    (re.compile(r"\b(?:CONSTRUCTION|BUILD\w*)\b", re.IGNORECASE), "Construction"),
]

_TRAILING_LIMITED_RE = re.compile(r"^(?P<prefix>.*\S)\s+(?:LIMITED|Limited)\.?$")
_ALL_CAPS_COMPANY_RE = re.compile(r"^([A-Z][A-Z &]*?(?:COMPANY|LIMITED|LTD|INC|CORP))\.?\s*$", re.MULTILINE)
_HEADER_PATTERNS = [
    re.compile(r"Statement\s+of.*for\s+(.+)", re.IGNORECASE),
    re.compile(r"Financial\s+Statements.*of\s+(.+)", re.IGNORECASE),
    re.compile(r"(.+)\s+Financial\s+Statements", re.IGNORECASE),
]
_MIN_NAME_LENGTH = 4
_MAX_NAME_LENGTH = 99


def infer_business_type(company_name: str) -> Optional[str]:
    """Map keywords in a company name to a business type."""
    for pattern, business_type in BUSINESS_TYPE_KEYWORDS:
        if pattern.search(company_name):
            return business_type
    return None


class HeuristicCompanyDetailsExtractor:
    """
    Ranked cascade of name patterns; the first match wins.

    1. A line ending in "LIMITED" - the line is the name, the words before
       LIMITED are the business type.
    2. An all-caps line ending in COMPANY/LIMITED/LTD/INC/CORP.
    3. Common statement headers ("Statement of ... for X",
       "Financial Statements of X", "X Financial Statements").

    Keywords in the matched name (TECH, TRADING, CONSTRUCTION...) take
    precedence for the business type.
    """

    def extract(self, text: str) -> CompanyDetails:
        details = CompanyDetails()

        for line in text.splitlines():
            stripped = line.strip()
            match = _TRAILING_LIMITED_RE.match(stripped)
            if match:
                details.company_name = stripped
                details.business_type = infer_business_type(stripped) or match.group("prefix").strip()
                return details

        match = _ALL_CAPS_COMPANY_RE.search(text)
        if match:
            details.company_name = match.group(1).strip()
            details.business_type = infer_business_type(details.company_name) or NOT_SPECIFIED
            return details

        for pattern in _HEADER_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            candidate = match.group(1).strip()
            if _MIN_NAME_LENGTH <= len(candidate) <= _MAX_NAME_LENGTH:
                details.company_name = candidate
                details.business_type = infer_business_type(candidate) or NOT_SPECIFIED
                return details

        return details
