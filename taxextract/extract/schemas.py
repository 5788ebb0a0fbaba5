"""
Pydantic schemas for tax extraction.

The canonical output is ExtractedTaxRecord - the only structure the rest of
the system depends on. Field names are snake_case in Python and serialize to
the camelCase names used by downstream consumers (taxpayerName, totalIncome...).
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


NOT_PROVIDED = "Not provided"
NOT_SPECIFIED = "Not specified"

NUMERIC_FIELDS = ("total_income", "total_expenses", "total_deductions", "taxable_amount")


def current_year() -> int:
    """Calendar year used for defaulted tax years."""
    return datetime.now().year


def coerce_number(value: Any) -> Optional[float]:
    """
    Return value as a float if it is a real JSON number, else None.

    Booleans are rejected even though bool is an int subclass.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        return value
    if isinstance(value, int):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    return None


class ShapeTag(str, Enum):
    """Layout of a parsed model response, decided before any field access."""
    ENHANCED = "enhanced"                    # carries validationData
    FINANCIAL_STATEMENT = "financial_statement"  # Balance_Sheet / Profit_and_Loss arrays
    SIMPLIFIED = "simplified"                # ad-hoc keys like Revenue / ProfitBeforeTax
    STANDARD = "standard"                    # canonical field names


class ParseStage(str, Enum):
    """Which stage of the recovery cascade produced the parsed object."""
    DIRECT = "direct"
    CLEANED = "cleaned"
    RESCUE = "rescue"
    TEXT_FALLBACK = "text_fallback"


class ExtractionSource(str, Enum):
    """Where the returned record came from."""
    PROVIDER = "provider"            # a provider answered and the answer parsed
    TEXT_FALLBACK = "text_fallback"  # a provider answered but only regex extraction succeeded
    DEFAULT = "default"              # no provider produced an answer


class ExtractedTaxRecord(BaseModel):
    """Canonical tax record. Every field always has a value."""

    model_config = ConfigDict(populate_by_name=True)

    taxpayer_name: str = Field(NOT_PROVIDED, alias="taxpayerName")
    tax_year: int = Field(default_factory=current_year, alias="taxYear")
    total_income: float = Field(0.0, alias="totalIncome")
    total_expenses: float = Field(0.0, alias="totalExpenses")
    total_deductions: float = Field(0.0, alias="totalDeductions")
    taxable_amount: float = Field(0.0, alias="taxableAmount")
    tax_id: str = Field(NOT_PROVIDED, alias="taxId")
    business_type: str = Field(NOT_SPECIFIED, alias="businessType")

    def to_dict(self) -> dict:
        """Serialize with the camelCase field names."""
        return self.model_dump(by_alias=True)

    def has_non_finite(self) -> bool:
        return any(not math.isfinite(getattr(self, name)) for name in NUMERIC_FIELDS)

    @classmethod
    def default(cls) -> "ExtractedTaxRecord":
        """Fully defaulted placeholder record."""
        return cls()


class ValidationPayload(BaseModel):
    """
    Auxiliary cross-check figures a model may emit next to the primary record.

    Consumed by the cross-validator and never part of the canonical output.
    Non-numeric values are treated as absent.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    revenue: Optional[float] = None
    profit_before_tax: Optional[float] = Field(None, alias="profitBeforeTax")
    net_profit_after_tax: Optional[float] = Field(None, alias="netProfitAfterTax")
    retained_earnings: Optional[float] = Field(None, alias="retainedEarnings")
    cost_of_sales: Optional[float] = Field(None, alias="costOfSales")
    operating_expenses: Optional[float] = Field(None, alias="operatingExpenses")

    @field_validator("*", mode="before")
    @classmethod
    def drop_non_numeric(cls, v: Any) -> Optional[float]:
        number = coerce_number(v)
        if number is None or not math.isfinite(number):
            return None
        return number
