"""
CLI interface for tax extraction.

Usage:
    python -m taxextract extract statement.txt
    python -m taxextract extract statement.txt --context "FY2023 audited accounts" --report
    python -m taxextract --config configs/ai.yaml extract statement.txt --output record.json
    python -m taxextract providers
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import load_settings, validate_settings
from .extract import TaxExtractor

logger = logging.getLogger(__name__)


async def _extract(args) -> int:
    settings = load_settings(args.config)
    for warning in validate_settings(settings):
        logger.warning(f"Config warning: {warning}")

    document_text = Path(args.file).read_text(encoding="utf-8", errors="replace")

    async with await TaxExtractor.from_settings(settings) as extractor:
        result = await extractor.extract_with_outcome(document_text, args.context)
        report = await extractor.generate_annual_report(result.record) if args.report else None

    output = result.to_dict()
    if report is not None:
        output["annual_report"] = report

    if args.output:
        Path(args.output).write_text(json.dumps(output, indent=2))
        print(f"Saved to {args.output}")
    else:
        print(json.dumps(output, indent=2))

    print(f"\n{'='*60}")
    print(f"Source: {result.source.value}"
          + (f" ({result.provider}, {result.parse_stage.value})" if result.provider else ""))
    print(f"Warnings: {len(result.trace.warnings)}  Corrections: {len(result.trace.corrections)}")
    for correction in result.trace.corrections:
        print(f"  - {correction}")
    return 0


async def _providers(args) -> int:
    settings = load_settings(args.config)
    for warning in validate_settings(settings):
        logger.warning(f"Config warning: {warning}")

    async with await TaxExtractor.from_settings(settings) as extractor:
        status = await extractor.test_connection()

    print(f"\n{'='*60}")
    print("PROVIDERS")
    print(f"{'='*60}")
    print(f"Preferred: {settings.preferred_provider}")
    if not status:
        print("No providers configured")
        return 1
    for name, ok in status.items():
        print(f"  {name:<10} {'OK' if ok else 'UNAVAILABLE'}")
    return 0 if any(status.values()) else 1


def cmd_extract(args) -> int:
    """Extract a tax record from a plain-text document."""
    return asyncio.run(_extract(args))


def cmd_providers(args) -> int:
    """Test connectivity of every configured provider."""
    return asyncio.run(_providers(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Tax document extraction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        help="Path to YAML settings file (environment variables override it)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Extract command
    extract_parser = subparsers.add_parser("extract", help="Extract a tax record from a text file")
    extract_parser.add_argument(
        "file",
        help="Plain-text document (already converted from PDF/DOCX/XLSX/CSV)",
    )
    extract_parser.add_argument(
        "--context",
        default="",
        help="Additional context passed to the model",
    )
    extract_parser.add_argument(
        "--report",
        action="store_true",
        help="Also generate an annual report",
    )
    extract_parser.add_argument(
        "--output",
        help="Path to save the JSON result (default: stdout)",
    )

    # Providers command
    subparsers.add_parser("providers", help="Test connectivity of configured providers")

    return parser


def main(argv=None):
    """Main CLI entrypoint."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "extract":
        sys.exit(cmd_extract(args))
    elif args.command == "providers":
        sys.exit(cmd_providers(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
