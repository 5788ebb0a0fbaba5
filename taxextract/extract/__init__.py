"""
LLM extraction package for tax documents.

This package turns plain document text into a canonical tax record using
one of several LLM providers, with malformed-response recovery, shape
normalization, cross-validation and soft-constraint correction.
"""

from .schemas import (
    NOT_PROVIDED,
    NOT_SPECIFIED,
    ExtractedTaxRecord,
    ValidationPayload,
    ShapeTag,
    ParseStage,
    ExtractionSource,
)

from .llm_provider import (
    ProviderName,
    ProviderError,
    ProviderUnavailableError,
    ProviderCallError,
    ProviderAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    ClaudeAdapter,
    create_adapters,
)

from .registry import ProviderRegistry

from .prompts import (
    SYSTEM_PROMPT,
    build_extraction_prompt,
    build_report_generation_prompt,
    cap_document_tokens,
)

from .response_parser import (
    ResponseParser,
    ParseOutcome,
    parse_ai_response,
)

from .shape_normalizer import (
    ShapeNormalizer,
    classify,
)

from .text_heuristics import (
    CompanyDetails,
    CompanyDetailsExtractor,
    HeuristicCompanyDetailsExtractor,
    extract_tax_amounts,
)

from .validation_rules import (
    ValidationCorrection,
    ValidationReport,
    cross_validate,
    reset_non_finite,
    apply_soft_constraints,
    apply_validation_rules,
)

from .observability import (
    DiagnosticLevel,
    DiagnosticSink,
    LoggingSink,
    ExtractionTrace,
)

from .report import render_default_annual_report

from .extractor import (
    TaxExtractor,
    ExtractionResult,
)

__all__ = [
    # Schemas
    "NOT_PROVIDED",
    "NOT_SPECIFIED",
    "ExtractedTaxRecord",
    "ValidationPayload",
    "ShapeTag",
    "ParseStage",
    "ExtractionSource",
    # Providers
    "ProviderName",
    "ProviderError",
    "ProviderUnavailableError",
    "ProviderCallError",
    "ProviderAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "ClaudeAdapter",
    "create_adapters",
    "ProviderRegistry",
    # Prompts
    "SYSTEM_PROMPT",
    "build_extraction_prompt",
    "build_report_generation_prompt",
    "cap_document_tokens",
    # Parsing and normalization
    "ResponseParser",
    "ParseOutcome",
    "parse_ai_response",
    "ShapeNormalizer",
    "classify",
    "CompanyDetails",
    "CompanyDetailsExtractor",
    "HeuristicCompanyDetailsExtractor",
    "extract_tax_amounts",
    # Validation
    "ValidationCorrection",
    "ValidationReport",
    "cross_validate",
    "reset_non_finite",
    "apply_soft_constraints",
    "apply_validation_rules",
    # Observability
    "DiagnosticLevel",
    "DiagnosticSink",
    "LoggingSink",
    "ExtractionTrace",
    # Orchestration
    "render_default_annual_report",
    "TaxExtractor",
    "ExtractionResult",
]
