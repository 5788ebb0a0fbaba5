"""
Prompts for tax-document extraction and annual report generation.

Both builders are pure: the same inputs always give the same prompt. Nothing
in here reads the clock or the environment.

Document text is embedded verbatim. The only truncation is the explicit
token cap in cap_document_tokens(), which is off unless configured and always
leaves a visible marker.
"""

import logging
from functools import lru_cache
from typing import Optional

import tiktoken

from .schemas import ExtractedTaxRecord

logger = logging.getLogger(__name__)


# =============================================================================
# SYSTEM PROMPTS
# =============================================================================

SYSTEM_PROMPT = "You are a tax document processing assistant."

REPORT_SYSTEM_PROMPT = (
    "You are a financial analyst and tax expert specializing in generating comprehensive annual reports."
)


# =============================================================================
# EXTRACTION PROMPT
# =============================================================================

EXTRACTION_PROMPT = """You are a tax document analysis expert. Extract tax-related information from this financial statement.
Return ONLY a single flat JSON object with the extracted values. No explanations, no comments, no markdown code fences.

CRITICAL FIELD REQUIREMENTS:
Identify these key financial fields with high priority:
- Revenue / Sales / Turnover (primary income source)
- Profit Before Tax (essential for tax calculations)
- Operating Expenses (total operational costs)
- Cost of Sales / Cost of Goods Sold (if applicable)
- Net Profit / Loss After Tax
- Retained Earnings (accumulated profits)

FIELD DETECTION STRATEGIES:
1. Revenue - look for:
   - "Revenue", "Sales", "Turnover", "Income from operations"
   - "Gross receipts", "Service income", "Trading income"
   - Usually the largest positive number in the profit and loss statement
2. Expenses - look for:
   - "General and administrative expenses", "Operating expenses", "Administrative expenses"
   - "Cost of sales", "Direct expenses"
3. Profit Before Tax - look for:
   - "Profit before tax", "Income before tax", "Earnings before tax"
   - "Pre-tax profit", "Profit/(loss) before taxation"
4. Deductions - look for:
   - "Capital allowances", "Depreciation", "Tax relief", "Allowable deductions"
5. Cross-reference:
   - Net profit + tax paid should approximate profit before tax
   - Revenue - cost of sales = gross profit

NUMBER FORMATTING RULES:
1. Numbers in parentheses are negative: (1,680) means -1680
2. Remove currency symbols (GH¢, GHS, $, £, €) from numbers
3. Remove thousands separators: 13,247 becomes 13247
4. Write numbers without quotes (1000, not "1000")
5. Prefix negative numbers with a minus sign

JSON FORMATTING RULES:
1. Use double quotes for all keys and string values
2. Do not include comments, trailing commas or explanations
3. Do not wrap the JSON in code blocks or markdown

FIELD GUIDELINES:
1. taxpayerName: company name from the header or title of the statements
2. taxYear: year of the statement period ("year ended 31st December 2023" = 2023)
3. totalIncome: primary revenue figure plus other income
4. totalExpenses: sum of operating, administrative and other expenses
5. totalDeductions: capital allowances, tax relief, depreciation and other allowable deductions
6. taxableAmount: "Profit before tax" (preferred), else totalIncome - totalExpenses - totalDeductions
7. taxId: TIN, tax reference number or similar identifier
8. businessType: from the company name, nature of business or principal activities

Response format, with validation figures:
{{
  "taxpayerName": "COMPANY NAME LTD",
  "taxYear": 2024,
  "totalIncome": 50000,
  "totalExpenses": 30000,
  "totalDeductions": 5000,
  "taxableAmount": 15000,
  "taxId": "TIN12345",
  "businessType": "Technology Services",
  "validationData": {{
    "revenue": 50000,
    "profitBeforeTax": 15000,
    "netProfitAfterTax": 12000,
    "retainedEarnings": 45000,
    "costOfSales": 15000,
    "operatingExpenses": 20000
  }}
}}

Additional context:
{context}

Document text:
{document_text}

Remember: return ONLY a valid JSON object. Focus on accurate detection of Revenue and Profit Before Tax."""


def build_extraction_prompt(document_text: str, context: str = "") -> str:
    """
    Render the extraction instruction for one document.

    Args:
        document_text: Plain text of the document, embedded verbatim
        context: Optional caller-supplied context, embedded verbatim

    Returns:
        Prompt string
    """
    return EXTRACTION_PROMPT.format(
        context=context or "None",
        document_text=document_text,
    )


# =============================================================================
# DOCUMENT LENGTH POLICY
# =============================================================================

TRUNCATION_MARKER = "\n\n[document truncated: {kept} of {total} tokens kept]"


@lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    return len(_encoding().encode(text))


def cap_document_tokens(document_text: str, max_tokens: Optional[int]) -> tuple[str, bool]:
    """
    Apply the configured token cap to document text.

    With max_tokens None the text is returned untouched. Otherwise text
    beyond the cap is cut at a token boundary and a truncation marker is
    appended.

    Returns:
        Tuple of (text, was_truncated)
    """
    if max_tokens is None:
        return document_text, False

    tokens = _encoding().encode(document_text)
    if len(tokens) <= max_tokens:
        return document_text, False

    kept = _encoding().decode(tokens[:max_tokens])
    logger.debug(f"Document truncated to {max_tokens} of {len(tokens)} tokens")
    return kept + TRUNCATION_MARKER.format(kept=max_tokens, total=len(tokens)), True


# =============================================================================
# REPORT GENERATION PROMPT
# =============================================================================

REPORT_PROMPT = """You are a senior financial analyst and tax expert. Based on the following extracted tax data, generate a comprehensive annual financial report. The report should be professional, detailed, and provide meaningful insights for business decision-making.

EXTRACTED TAX DATA:
- Company Name: {taxpayer_name}
- Tax Year: {tax_year}
- Total Income: {total_income}
- Total Expenses: {total_expenses}
- Total Deductions: {total_deductions}
- Taxable Amount: {taxable_amount}
- Tax ID: {tax_id}
- Business Type: {business_type}

Generate a report with these sections:

1. **EXECUTIVE SUMMARY**
   - Brief overview of financial performance
   - Key highlights, challenges and opportunities

2. **FINANCIAL PERFORMANCE ANALYSIS**
   - Revenue analysis
   - Expense breakdown
   - Profitability metrics and ratios

3. **TAX POSITION ANALYSIS**
   - Tax liability assessment
   - Deductions and allowances utilized
   - Tax efficiency recommendations

4. **BUSINESS INSIGHTS**
   - Financial health indicators
   - Risk assessment
   - Growth potential

5. **RECOMMENDATIONS**
   - Strategic financial recommendations
   - Tax optimization opportunities
   - Cost management suggestions

6. **CONCLUSION**
   - Overall financial position summary
   - Key takeaways for stakeholders

FORMAT REQUIREMENTS:
- Use clear markdown headings and subheadings
- Use bullet points for key insights
- Give specific numbers and percentages where relevant
- Keep the tone professional and analytical
- Keep the report between 800 and 1200 words

Generate the annual report now:"""


def format_money(value: float) -> str:
    """1234567.5 -> '$1,234,567.50'; negatives keep their sign."""
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def build_report_generation_prompt(record: ExtractedTaxRecord) -> str:
    """Render the narrative-report instruction for a canonical record."""
    return REPORT_PROMPT.format(
        taxpayer_name=record.taxpayer_name,
        tax_year=record.tax_year,
        total_income=format_money(record.total_income),
        total_expenses=format_money(record.total_expenses),
        total_deductions=format_money(record.total_deductions),
        taxable_amount=format_money(record.taxable_amount),
        tax_id=record.tax_id,
        business_type=record.business_type,
    )
