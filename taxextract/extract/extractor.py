"""
Tax extraction orchestration.

This module handles:
1. Rendering the extraction prompt for a document
2. Trying live providers one at a time, preferred first
3. Parsing and normalizing the first successful response
4. Returning a default record when every provider fails

Usage:
    extractor = await TaxExtractor.from_settings(load_settings())
    record = await extractor.extract(document_text)
    result = await extractor.extract_with_outcome(document_text, context="FY2023 audit")
    print(result.source, result.trace.corrections)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..config import AISettings, ExtractionSettings
from .llm_provider import ProviderError, create_adapters
from .observability import DiagnosticSink, ExtractionTrace, LoggingSink
from .prompts import (
    REPORT_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    build_extraction_prompt,
    build_report_generation_prompt,
    cap_document_tokens,
)
from .registry import ProviderRegistry
from .report import render_default_annual_report
from .response_parser import ResponseParser
from .schemas import ExtractedTaxRecord, ExtractionSource, ParseStage, ShapeTag

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Record plus where it came from and what was adjusted on the way."""
    record: ExtractedTaxRecord
    source: ExtractionSource
    provider: Optional[str] = None
    parse_stage: Optional[ParseStage] = None
    shape: Optional[ShapeTag] = None
    trace: ExtractionTrace = field(default_factory=ExtractionTrace)

    @property
    def from_provider(self) -> bool:
        return self.source == ExtractionSource.PROVIDER

    def to_dict(self) -> dict:
        return {
            "record": self.record.to_dict(),
            "source": self.source.value,
            "provider": self.provider,
            "parse_stage": self.parse_stage.value if self.parse_stage else None,
            "shape": self.shape.value if self.shape else None,
            "diagnostics": self.trace.to_dict(),
        }


class TaxExtractor:
    """
    Extracts canonical tax records from document text through LLM providers.

    Providers are attempted sequentially in the registry's order; the first
    that answers wins. Provider failures are logged and never reach the caller.

    Args:
        registry: Registry holding the (already initialized) adapters
        settings: Generation parameters
        parser: Response parser (default heuristics if omitted)
        sink: Parent sink every extraction trace forwards to
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: Optional[ExtractionSettings] = None,
        parser: Optional[ResponseParser] = None,
        sink: Optional[DiagnosticSink] = None,
    ):
        self.registry = registry
        self.settings = settings or ExtractionSettings()
        self.parser = parser or ResponseParser()
        self.sink = sink if sink is not None else LoggingSink()

    @classmethod
    async def from_settings(
        cls,
        settings: AISettings,
        sink: Optional[DiagnosticSink] = None,
    ) -> "TaxExtractor":
        """Build adapters for every enabled provider and probe them once."""
        registry = ProviderRegistry(settings.preferred_provider, create_adapters(settings))
        await registry.initialize_all()
        return cls(registry, settings.extraction, sink=sink)

    # -------------------------------------------------------------------------
    # Provider status
    # -------------------------------------------------------------------------

    @property
    def available_providers(self) -> list[str]:
        return self.registry.live_providers

    @property
    def preferred_provider(self) -> str:
        return self.registry.preferred_provider

    def is_enabled(self) -> bool:
        return self.registry.is_enabled()

    async def test_connection(self) -> dict[str, bool]:
        """Probe every configured provider. Non-live providers report False."""
        results = {}
        for adapter in self.registry.adapters:
            results[adapter.provider] = await adapter.check_connection()
            logger.info(f"{adapter.provider} connection: {'ok' if results[adapter.provider] else 'failed'}")
        return results

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    async def extract(self, document_text: str, context: str = "") -> ExtractedTaxRecord:
        """Extract a record. Always returns a well-formed record."""
        result = await self.extract_with_outcome(document_text, context)
        return result.record

    async def extract_with_outcome(self, document_text: str, context: str = "") -> ExtractionResult:
        """
        Extract a record and report how it was obtained.

        Args:
            document_text: Plain text of the document
            context: Optional caller context added to the prompt

        Returns:
            ExtractionResult (source is DEFAULT when no provider answered)
        """
        trace = ExtractionTrace(parent=self.sink)
        document_text = document_text or ""

        prompt_text, truncated = cap_document_tokens(document_text, self.settings.max_document_tokens)
        if truncated:
            trace.warn(
                "Document text exceeded the token cap and was truncated",
                max_document_tokens=self.settings.max_document_tokens,
            )
        prompt = build_extraction_prompt(prompt_text, context)

        for name in self.registry.ordered_candidates():
            adapter = self.registry.adapter(name)
            if adapter is None:
                continue

            trace.debug("Trying provider", provider=name)
            try:
                raw = await adapter.invoke(
                    prompt,
                    system=SYSTEM_PROMPT,
                    max_tokens=self.settings.max_tokens,
                    temperature=self.settings.temperature,
                )
            except ProviderError as e:
                trace.warn(f"{name} extraction failed, trying next provider", error=str(e))
                continue

            outcome = self.parser.parse(raw, document_text, trace)
            source = (
                ExtractionSource.TEXT_FALLBACK
                if outcome.stage == ParseStage.TEXT_FALLBACK
                else ExtractionSource.PROVIDER
            )
            trace.info(f"Extraction completed with {name}", stage=outcome.stage, shape=outcome.shape)
            return ExtractionResult(
                record=outcome.record,
                source=source,
                provider=name,
                parse_stage=outcome.stage,
                shape=outcome.shape,
                trace=trace,
            )

        if self.registry.is_enabled():
            trace.warn("All AI providers failed, returning default record")
        else:
            trace.warn("No AI providers available, returning default record")
        return ExtractionResult(record=ExtractedTaxRecord.default(), source=ExtractionSource.DEFAULT, trace=trace)

    # -------------------------------------------------------------------------
    # Annual report
    # -------------------------------------------------------------------------

    async def generate_annual_report(self, record: ExtractedTaxRecord) -> str:
        """
        Write a narrative annual report for a record.

        Uses the same provider fallback as extraction and falls back to the
        template report when no provider answers.
        """
        prompt = build_report_generation_prompt(record)

        for name in self.registry.ordered_candidates():
            adapter = self.registry.adapter(name)
            if adapter is None:
                continue
            try:
                report = await adapter.invoke(
                    prompt,
                    system=REPORT_SYSTEM_PROMPT,
                    max_tokens=self.settings.report_max_tokens,
                    temperature=self.settings.report_temperature,
                )
            except ProviderError as e:
                logger.warning(f"{name} report generation failed: {e}")
                continue
            logger.info(f"Annual report generated with {name}")
            return report

        logger.info("Using template annual report")
        return render_default_annual_report(record)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        await self.registry.aclose()

    async def __aenter__(self) -> "TaxExtractor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
