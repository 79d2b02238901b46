"""Command-line interface for identity document extraction.

Provides subcommands for extracting a single document, processing a
folder of documents into a CSV, and classifying recognized text. Output
only ever contains masked identifiers.
"""

import argparse
import csv
import json
import sys
import time
from pathlib import Path

from kyc_onboarding.errors import OnboardingError
from kyc_onboarding.extraction.document_types import DocumentType
from kyc_onboarding.extraction.pipeline import DocumentPipeline, ExtractionResult
from kyc_onboarding.utils.config import load_config
from kyc_onboarding.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.pdf")
_META_COLUMNS = [
    "filename",
    "status",
    "document_type",
    "confidence",
    "review_status",
    "processing_time_s",
    "validation_issues",
    "error",
]
_TYPE_CHOICES = ["auto"] + [t.value for t in DocumentType]


def _declared_type(doc_type: str) -> DocumentType | None:
    return None if doc_type == "auto" else DocumentType(doc_type)


def _find_documents(input_dir: Path) -> list[Path]:
    """Find all supported document files in a directory.

    Args:
        input_dir: Directory to scan for documents.

    Returns:
        Sorted list of document file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _summarize(
    file_path: Path, result: ExtractionResult, pipeline: DocumentPipeline
) -> dict[str, object]:
    return {
        "filename": file_path.name,
        "document_type": result.document_type.value if result.document_type else None,
        "confidence": result.confidence,
        "review_status": pipeline.review_status(result).value,
        "engine": result.engine,
        "fields": {k: v for k, v in result.fields.items() if v is not None},
        "detections": result.detections,
        "validation_issues": result.validation_issues,
    }


def process_folder(
    input_dir: Path,
    output_csv: Path,
    document_type: str = "auto",
    verbose: bool = False,
    pipeline: DocumentPipeline | None = None,
) -> dict[str, int]:
    """Process all documents in a folder and export results to CSV.

    Args:
        input_dir: Directory containing document files.
        output_csv: Path for the output CSV file.
        document_type: Declared document type, or ``auto`` to classify.
        verbose: Whether to print per-file progress.
        pipeline: Extraction pipeline; built from configuration if omitted.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_documents(input_dir)
    if not files:
        logger.warning("No documents found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d documents to process", len(files))
    pipeline = pipeline or DocumentPipeline(load_config())
    declared = _declared_type(document_type)

    results: list[dict[str, object]] = []
    successful = 0
    failed = 0

    with pipeline.ocr_adapter:
        for i, file_path in enumerate(files, 1):
            if verbose:
                print(f"Processing [{i}/{len(files)}]: {file_path.name}")

            start_time = time.time()
            try:
                result = pipeline.process(file_path.read_bytes(), declared)
            except (OnboardingError, OSError) as exc:
                logger.error("Failed to process %s: %s", file_path.name, exc)
                results.append(
                    {"filename": file_path.name, "status": "failed", "error": str(exc)}
                )
                failed += 1
                continue

            row: dict[str, object] = {
                "filename": file_path.name,
                "status": "success",
                "document_type": (
                    result.document_type.value if result.document_type else None
                ),
                "confidence": result.confidence,
                "review_status": pipeline.review_status(result).value,
                "processing_time_s": round(time.time() - start_time, 2),
                "validation_issues": "; ".join(result.validation_issues),
                "error": None,
            }
            row.update({k: v for k, v in result.fields.items() if v is not None})
            results.append(row)
            successful += 1

    _write_csv(results, output_csv)
    logger.info("Results written to %s", output_csv)

    summary_counts = {"total": len(files), "successful": successful, "failed": failed}
    _print_summary(summary_counts, output_csv)
    return summary_counts


def _write_csv(results: list[dict[str, object]], output_path: Path) -> None:
    """Write extraction results to a CSV file.

    Args:
        results: List of result dictionaries.
        output_path: Path for the output CSV file.
    """
    if not results:
        return

    all_keys: set[str] = set()
    for r in results:
        all_keys.update(r.keys())

    field_columns = sorted(all_keys - set(_META_COLUMNS))
    columns = [c for c in _META_COLUMNS if c in all_keys] + field_columns

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(results)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    """Print batch processing summary to stdout."""
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_csv}")


def extract_single(
    file_path: Path,
    document_type: str = "auto",
    pipeline: DocumentPipeline | None = None,
) -> dict[str, object]:
    """Process a single document and return its masked extraction summary.

    Args:
        file_path: Path to the document file.
        document_type: Declared document type, or ``auto`` to classify.
        pipeline: Extraction pipeline; built from configuration if omitted.

    Returns:
        Dictionary with filename, document type, fields and confidence.
    """
    pipeline = pipeline or DocumentPipeline(load_config())
    with pipeline.ocr_adapter:
        result = pipeline.process(file_path.read_bytes(), _declared_type(document_type))
    return _summarize(file_path, result, pipeline)


def classify_text(text: str, pipeline: DocumentPipeline | None = None) -> dict[str, object]:
    """Classify recognized text and run field extraction when a type is found."""
    pipeline = pipeline or DocumentPipeline(load_config())
    result = pipeline.process_text(text)
    return {
        "document_type": result.document_type.value if result.document_type else None,
        "confidence": result.confidence,
        "fields": {k: v for k, v in result.fields.items() if v is not None},
        "validation_issues": result.validation_issues,
    }


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Merchant KYC document extraction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_parser = subparsers.add_parser("batch", help="Process a folder of documents")
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with documents"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "-t",
        "--type",
        choices=_TYPE_CHOICES,
        default="auto",
        dest="doc_type",
        help="Document type (default: auto)",
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    single_parser = subparsers.add_parser("extract", help="Process a single document")
    single_parser.add_argument("file", type=Path, help="Document file to process")
    single_parser.add_argument(
        "-t",
        "--type",
        choices=_TYPE_CHOICES,
        default="auto",
        dest="doc_type",
        help="Document type (default: auto)",
    )
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    classify_parser = subparsers.add_parser(
        "classify", help="Classify a text file of OCR output"
    )
    classify_parser.add_argument("file", type=Path, help="Text file to classify")

    args = parser.parse_args(argv)

    config = load_config()
    setup_logging(config.log_level)

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(
            args.input_dir,
            args.output,
            args.doc_type,
            args.verbose,
            DocumentPipeline(config),
        )
    elif args.command == "extract":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        try:
            result = extract_single(args.file, args.doc_type, DocumentPipeline(config))
        except OnboardingError as exc:
            print(f"Error: {exc.message}", file=sys.stderr)
            sys.exit(1)
        output_str = json.dumps(result, indent=2, ensure_ascii=False)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    elif args.command == "classify":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        result = classify_text(args.file.read_text(), DocumentPipeline(config))
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
