"""
Tax document extraction.

This package provides tools for turning tax documents into structured data:
- Multi-provider LLM extraction (Ollama, OpenAI, Claude) with fallback
- Recovery of malformed model output
- Cross-validation and plausibility correction
- Annual report generation
"""

from .config import AISettings, load_settings, validate_settings
from .extract import ExtractedTaxRecord, ExtractionResult, TaxExtractor

__version__ = "0.1.0"

__all__ = [
    "AISettings",
    "load_settings",
    "validate_settings",
    "ExtractedTaxRecord",
    "ExtractionResult",
    "TaxExtractor",
]
