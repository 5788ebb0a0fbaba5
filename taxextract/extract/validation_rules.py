"""
Post-extraction validation rules for tax records.

This module applies deterministic rules to a normalized record:
1. Cross-validation against the optional validation payload a model may emit
   (revenue and profit-before-tax corrections, consistency warnings)
2. Soft constraints applied to every record (finite numbers, expense cap,
   taxable-amount gap filling, non-positive revenue warning)

Rules never raise and never reject a record. Every change is recorded as a
ValidationCorrection so the caller can see what was adjusted and why.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from .observability import DiagnosticLevel, DiagnosticSink
from .schemas import NUMERIC_FIELDS, ExtractedTaxRecord, ValidationPayload

logger = logging.getLogger(__name__)


# Cross-validation tolerances
REVENUE_RELATIVE_TOLERANCE = 0.10
PROFIT_BEFORE_TAX_ABSOLUTE_TOLERANCE = 100.0
GROSS_PROFIT_RELATIVE_TOLERANCE = 0.20
HIGH_TAX_RATE_THRESHOLD = 0.50

# Soft constraints
EXPENSE_WARNING_RATIO = 3.0
EXPENSE_CAP_RATIO = 5.0
TAXABLE_ABSOLUTE_TOLERANCE = 1000.0
TAXABLE_RELATIVE_TOLERANCE = 0.10
HOLDING_COMPANY = "Holding Company"


@dataclass
class ValidationCorrection:
    """Record of a correction made by validation rules."""
    field_path: str
    original_value: Any
    corrected_value: Any
    rule_name: str
    reason: str


@dataclass
class ValidationReport:
    """Report of all validation warnings and corrections applied."""
    corrections: list[ValidationCorrection] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def correction_count(self) -> int:
        return len(self.corrections)

    def add_correction(
        self,
        field_path: str,
        original_value: Any,
        corrected_value: Any,
        rule_name: str,
        reason: str,
    ) -> None:
        self.corrections.append(ValidationCorrection(
            field_path=field_path,
            original_value=original_value,
            corrected_value=corrected_value,
            rule_name=rule_name,
            reason=reason,
        ))

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def publish(self, sink: DiagnosticSink) -> None:
        """Emit every warning and correction to a diagnostic sink."""
        for warning in self.warnings:
            sink.emit(DiagnosticLevel.WARNING, warning)
        for c in self.corrections:
            sink.emit(
                DiagnosticLevel.CORRECTION,
                c.reason,
                field=c.field_path,
                original=c.original_value,
                corrected=c.corrected_value,
                rule=c.rule_name,
            )

    def to_dict(self) -> dict:
        return {
            "correction_count": self.correction_count,
            "warnings": list(self.warnings),
            "corrections": [
                {
                    "field_path": c.field_path,
                    "original_value": c.original_value,
                    "corrected_value": c.corrected_value,
                    "rule_name": c.rule_name,
                    "reason": c.reason,
                }
                for c in self.corrections
            ],
        }


def _fmt(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


# =============================================================================
# CROSS-VALIDATION
# =============================================================================

@dataclass
class CrossValidationResult:
    """Outcome of reconciling a record against its validation payload."""
    corrected_income: Optional[float] = None
    corrected_taxable: Optional[float] = None
    warnings: list[str] = field(default_factory=list)
    corrections: list[str] = field(default_factory=list)


def cross_validate(validation: ValidationPayload, record: ExtractedTaxRecord) -> CrossValidationResult:
    """
    Reconcile primary figures against the validation payload.

    Corrections: revenue (more than 10% off, or income missing) and profit
    before tax (more than 100 off). Everything else is advisory.
    """
    result = CrossValidationResult()

    revenue = validation.revenue
    if revenue is not None and revenue > 0:
        income = record.total_income
        if income == 0 or abs(revenue - income) / revenue > REVENUE_RELATIVE_TOLERANCE:
            result.corrected_income = revenue
            result.corrections.append(f"Revenue corrected from {_fmt(income)} to {_fmt(revenue)}")

    pbt = validation.profit_before_tax
    if pbt is not None and abs(pbt - record.taxable_amount) > PROFIT_BEFORE_TAX_ABSOLUTE_TOLERANCE:
        result.corrected_taxable = pbt
        result.corrections.append(
            f"Profit Before Tax corrected from {_fmt(record.taxable_amount)} to {_fmt(pbt)}"
        )

    effective_revenue = result.corrected_income if result.corrected_income is not None else record.total_income

    # Revenue - expenses should line up with revenue - cost of sales
    if effective_revenue > 0 and record.total_expenses > 0 and validation.cost_of_sales is not None:
        gross_profit = effective_revenue - record.total_expenses
        expected_gross_profit = effective_revenue - validation.cost_of_sales
        if abs(gross_profit - expected_gross_profit) / effective_revenue > GROSS_PROFIT_RELATIVE_TOLERANCE:
            result.warnings.append("Gross profit calculation may be inconsistent. Check cost of sales.")

    retained = validation.retained_earnings
    npat = validation.net_profit_after_tax
    if retained is not None and npat is not None and retained > 0 and npat <= 0:
        result.warnings.append(
            "Retained earnings positive but net profit is not positive - "
            "check for dividends or prior year adjustments"
        )

    if pbt is not None and npat is not None:
        tax_amount = pbt - npat
        if tax_amount < 0:
            result.warnings.append(
                "Net profit after tax exceeds profit before tax - this may indicate tax credits or errors"
            )
        elif pbt > 0 and tax_amount / pbt > HIGH_TAX_RATE_THRESHOLD:
            result.warnings.append(f"Tax rate appears unusually high ({tax_amount / pbt * 100:.1f}%)")

    return result


# =============================================================================
# SOFT CONSTRAINTS
# =============================================================================

def reset_non_finite(
    record: ExtractedTaxRecord,
    report: Optional[ValidationReport] = None,
) -> ExtractedTaxRecord:
    """Reset NaN and infinite numeric fields to 0. Returns a new record."""
    if report is None:
        report = ValidationReport()

    updates = {}
    for name in NUMERIC_FIELDS:
        value = getattr(record, name)
        if not math.isfinite(value):
            updates[name] = 0.0
            report.add_warning(f"Invalid numeric value for {name}, reset to 0")
            report.add_correction(name, value, 0.0, "non_finite_reset", f"Non-finite {name} reset to 0")

    return record.model_copy(update=updates) if updates else record


def apply_soft_constraints(
    record: ExtractedTaxRecord,
    report: Optional[ValidationReport] = None,
) -> ExtractedTaxRecord:
    """
    Apply plausibility rules to a record. Returns a new record.

    - non-finite numbers are reset to 0
    - expenses above 3x income are flagged; above 5x they are capped at 5x
    - a zero taxable amount far from income - expenses - deductions is
      replaced by the computed residual; a non-zero one is only flagged
    - non-positive income is flagged unless the entity is a holding company

    Applying the rules twice gives the same record as applying them once.
    """
    if report is None:
        report = ValidationReport()

    record = reset_non_finite(record, report)
    values = {name: getattr(record, name) for name in NUMERIC_FIELDS}

    income = values["total_income"]
    expenses = values["total_expenses"]

    if income > 0 and expenses > income * EXPENSE_WARNING_RATIO:
        report.add_warning(
            f"Expenses ({_fmt(expenses)}) are significantly higher than revenue ({_fmt(income)}) - "
            "verify extraction accuracy"
        )
        cap = income * EXPENSE_CAP_RATIO
        if expenses > cap:
            values["total_expenses"] = cap
            report.add_correction(
                "total_expenses", expenses, cap, "expense_ratio_cap",
                f"Expenses capped from {_fmt(expenses)} to {_fmt(cap)} ({EXPENSE_CAP_RATIO:g}x revenue)",
            )

    computed_taxable = values["total_income"] - values["total_expenses"] - values["total_deductions"]
    taxable = values["taxable_amount"]
    tolerance = max(TAXABLE_ABSOLUTE_TOLERANCE, values["total_income"] * TAXABLE_RELATIVE_TOLERANCE)
    # A residual that overflows is never written back
    if math.isfinite(computed_taxable) and abs(computed_taxable - taxable) > tolerance:
        report.add_warning(
            f"Taxable amount ({_fmt(taxable)}) differs significantly from calculated value "
            f"({_fmt(computed_taxable)})"
        )
        if taxable == 0 and computed_taxable != 0:
            values["taxable_amount"] = computed_taxable
            report.add_correction(
                "taxable_amount", taxable, computed_taxable, "taxable_gap_fill",
                f"Taxable amount corrected to calculated value: {_fmt(computed_taxable)}",
            )

    if values["total_income"] <= 0 and record.business_type != HOLDING_COMPANY:
        report.add_warning(
            "Revenue is zero or negative for operational company - this may indicate extraction error"
        )

    return record.model_copy(update=values)


# =============================================================================
# COMBINED
# =============================================================================

def apply_validation_rules(
    record: ExtractedTaxRecord,
    validation: Optional[ValidationPayload] = None,
    sink: Optional[DiagnosticSink] = None,
) -> tuple[ExtractedTaxRecord, ValidationReport]:
    """
    Cross-validate (when a payload is present) and apply soft constraints.

    Args:
        record: Normalized record
        validation: Optional validation payload from the model response
        sink: Where to publish warnings and corrections

    Returns:
        Tuple of (corrected record, validation report)
    """
    report = ValidationReport()
    record = reset_non_finite(record, report)

    if validation is not None:
        result = cross_validate(validation, record)
        updates = {}
        if result.corrected_income is not None:
            report.add_correction(
                "total_income", record.total_income, result.corrected_income,
                "cross_validation_revenue", result.corrections[0],
            )
            updates["total_income"] = result.corrected_income
        if result.corrected_taxable is not None:
            report.add_correction(
                "taxable_amount", record.taxable_amount, result.corrected_taxable,
                "cross_validation_profit_before_tax", result.corrections[-1],
            )
            updates["taxable_amount"] = result.corrected_taxable
        for warning in result.warnings:
            report.add_warning(warning)
        if updates:
            record = record.model_copy(update=updates)

    record = apply_soft_constraints(record, report)

    if sink is not None:
        report.publish(sink)

    if report.correction_count > 0:
        logger.info(f"[Validation] Applied {report.correction_count} corrections")
    else:
        logger.debug("[Validation] No corrections needed")

    return record, report
