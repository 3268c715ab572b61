"""
Command-line interface for the essay extraction pipeline.

Usage:
    essay-ocr --input <essay_file> [--title TITLE] [--output result.json] [options]

Examples:
    # Handwritten essay photo with a declared title
    essay-ocr --input essay.jpg --title "My Summer Vacation"

    # Local OCR only, JSON written to a file
    essay-ocr --input essay.png --no-cloud --output result.json
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from . import __version__

logger = logging.getLogger("essay_ocr")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Essay OCR Extraction - Convert submitted essays to structured records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Process a photographed essay:
    essay-ocr --input essay.jpg --title "My Summer Vacation"

  Process a Word document and save the record:
    essay-ocr --input essay.docx --output result.json

  Skip Google Cloud Vision:
    essay-ocr --input essay.png --no-cloud
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Essay file (JPG, PNG, PDF, DOCX or TXT)"
    )

    # Optional arguments
    parser.add_argument(
        "--title", "-t",
        default=None,
        help="Title declared by the student, validated against the detected title"
    )

    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Write the extracted record as JSON to this file (default: print to stdout)"
    )

    parser.add_argument(
        "--no-cloud",
        action="store_true",
        help="Disable Google Cloud Vision and use Tesseract only"
    )

    parser.add_argument(
        "--cloud-timeout",
        type=float,
        default=None,
        help="Timeout in seconds for the cloud OCR call (default: 30)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    missing = []
    optional_missing = []

    # Required
    for module, package in (
        ("cv2", "opencv-python"),
        ("numpy", "numpy"),
        ("pytesseract", "pytesseract"),
        ("pdfplumber", "pdfplumber"),
        ("docx", "python-docx"),
        ("rapidfuzz", "rapidfuzz"),
    ):
        try:
            __import__(module)
        except ImportError:
            missing.append(package)

    try:
        import pytesseract
        pytesseract.get_tesseract_version()
    except Exception:
        optional_missing.append("tesseract-ocr (system package, local OCR fallback)")

    # Optional
    try:
        import pdf2image  # noqa: F401
    except ImportError:
        optional_missing.append("pdf2image (for scanned PDF support)")

    try:
        from google.cloud import vision  # noqa: F401
    except ImportError:
        optional_missing.append("google-cloud-vision (for cloud OCR)")

    try:
        import spellchecker  # noqa: F401
    except ImportError:
        optional_missing.append("pyspellchecker (for rn/m correction)")

    # Report
    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install -e .")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some features may be limited):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def run_pipeline(args) -> int:
    """Run the essay extraction pipeline."""
    import json

    from .config import get_config
    from .errors import EssayOCRError
    from .utils.assembler import DocumentAssembler
    from .utils.io import EnhancedJSONEncoder, save_json

    start_time = time.time()

    config = get_config()
    if config.debug_mode and not args.quiet:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled by ESSAY_OCR_DEBUG")
    if args.no_cloud:
        config.ocr.cloud_enabled = False
    if args.cloud_timeout is not None:
        config.ocr.cloud_timeout = args.cloud_timeout

    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input file not found: {input_path}")
        return 1

    with DocumentAssembler(config) as assembler:
        try:
            document = assembler.process(input_path, title=args.title)
        except EssayOCRError as e:
            logger.error(f"Processing failed: {e.message}")
            print(f"Error: {e.message}", file=sys.stderr)
            print(f"Suggestion: {e.suggestion}", file=sys.stderr)
            if args.output:
                save_json(e.to_dict(), args.output)
            return 1

    if args.output:
        save_json(document.to_dict(), args.output)
        logger.info(f"Saved JSON: {args.output}")
    else:
        print(json.dumps(document.to_dict(), indent=2, ensure_ascii=False, cls=EnhancedJSONEncoder))

    # Print summary
    elapsed = time.time() - start_time

    if not args.quiet:
        validation = document.title_validation
        print("\n" + "=" * 60, file=sys.stderr)
        print("ESSAY EXTRACTION COMPLETE", file=sys.stderr)
        print("=" * 60, file=sys.stderr)
        print(f"Source: {input_path} ({document.source_format.value})", file=sys.stderr)
        print(f"Engine: {document.engine}", file=sys.stderr)
        print(f"Confidence: {document.confidence:.1f}%", file=sys.stderr)
        print(f"Processing time: {elapsed:.2f}s", file=sys.stderr)
        print(file=sys.stderr)
        print(f"  Title: {document.title or 'None'}", file=sys.stderr)
        print(f"  Sections: {', '.join(document.sections) or 'None'}", file=sys.stderr)
        print(f"  Paragraphs: {len(document.paragraphs)}", file=sys.stderr)
        print(f"  Corrections: {len(document.corrections)}", file=sys.stderr)
        print(f"  Title match: {validation.match_type} ({validation.matched})", file=sys.stderr)
        for warning in document.warnings:
            print(f"  Warning [{warning.severity}] {warning.type}: {warning.message}", file=sys.stderr)
        print("=" * 60, file=sys.stderr)

    return 0


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    # Check dependencies
    if not check_dependencies():
        sys.exit(1)

    # Run pipeline
    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.verbose:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
