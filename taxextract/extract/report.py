"""
Template annual report, used when no provider can write one.
"""

from .prompts import format_money
from .schemas import ExtractedTaxRecord


def profit_margin(record: ExtractedTaxRecord) -> float:
    """(income - expenses) / income as a percentage; 0 when income is not positive."""
    if record.total_income <= 0:
        return 0.0
    return (record.total_income - record.total_expenses) / record.total_income * 100


def render_default_annual_report(record: ExtractedTaxRecord) -> str:
    """Deterministic markdown report built only from the record's figures."""
    gross_profit = record.total_income - record.total_expenses
    outcome = "profitable" if record.taxable_amount > 0 else "loss-making"

    return f"""# ANNUAL FINANCIAL REPORT
## {record.taxpayer_name}
### Tax Year: {record.tax_year}

---

## EXECUTIVE SUMMARY

This annual financial report provides an overview of {record.taxpayer_name}'s financial performance for the tax year {record.tax_year}. The company, operating in the {record.business_type} sector, has reported the following key financial metrics.

## FINANCIAL PERFORMANCE

**Revenue & Income:**
- Total Income: {format_money(record.total_income)}

**Expenses & Costs:**
- Total Expenses: {format_money(record.total_expenses)}

**Profitability:**
- Gross Profit: {format_money(gross_profit)}
- Profit Margin: {profit_margin(record):.2f}%

## TAX POSITION

**Tax Assessment:**
- Total Deductions: {format_money(record.total_deductions)}
- Taxable Amount: {format_money(record.taxable_amount)}
- Tax ID: {record.tax_id}

## CONCLUSION

Based on the extracted financial data, {record.taxpayer_name} shows {outcome} operations for the tax year {record.tax_year}. Further detailed analysis is recommended for comprehensive business insights.

---
*Report generated automatically from extracted tax data. For detailed analysis, please consult with a financial advisor.*
"""
