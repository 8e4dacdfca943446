#!/usr/bin/env python3
# ========================
# main.py
# ========================

"""
Main Entry Point for the Tabular Transformation Pipeline

Runs one pipeline configuration from the command line:

    python main.py configs/sales_by_region.json --preview 5 --report run.json

Exit codes: 0 on success, 1 when a pipeline stage fails, 2 when the
configuration cannot be loaded or validated.
"""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from src.pipeline import DataPipeline, ConfigurationError, load_config
from src.pipeline.storage import supported_output_formats
from src.utils import Config, setup_logging

EXIT_OK = 0
EXIT_PIPELINE_FAILED = 1
EXIT_INVALID_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a declarative filter / merge / aggregate pipeline over tabular data."
    )
    parser.add_argument("config", help="Path to the pipeline configuration JSON file")
    parser.add_argument("--input", help="Override the configured source (file path or sheet id)")
    parser.add_argument("--output", help="Output file path for csv/json formats")
    parser.add_argument("--format", choices=supported_output_formats(),
                        help="Override the configured output format")
    parser.add_argument("--preview", type=int, metavar="N",
                        help="Print the first N result rows to stdout")
    parser.add_argument("--report", metavar="PATH", help="Write the processing report as JSON")
    parser.add_argument("--timeout", type=float, metavar="SECONDS",
                        help="Cancel the run after this many seconds")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def main(argv=None) -> int:
    """Main execution function."""
    args = build_parser().parse_args(argv)
    settings = Config()
    if args.log_level:
        settings.LOG_LEVEL = args.log_level

    setup_logging(
        log_level=settings.LOG_LEVEL,
        log_file=settings.LOG_FILE or None,
        log_dir=settings.LOG_DIR,
    )
    logger = logging.getLogger(__name__)
    logger.debug(f"{settings}")

    try:
        config = load_config(args.config)
        overrides = {}
        if args.input:
            overrides['source'] = args.input
        if args.format:
            overrides['output_format'] = args.format
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration {args.config}: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    pipeline = DataPipeline(config, settings=settings)
    cancel = pipeline.create_cancel_token(args.timeout)
    result = pipeline.run(destination=args.output or "", cancel=cancel)

    if args.report and result.processing is not None:
        Path(args.report).write_text(result.processing.to_json(), encoding='utf-8')
        logger.info(f"Processing report written to {args.report}")

    if not result.ok:
        print(f"error: {result.error}", file=sys.stderr)
        if isinstance(result.error, ConfigurationError):
            return EXIT_INVALID_CONFIG
        return EXIT_PIPELINE_FAILED

    if args.preview is not None:
        sys.stdout.write(pipeline.preview(result, args.preview))

    if result.destination:
        print(f"Wrote {result.table.row_count} rows to {result.destination}")
    return EXIT_OK


if __name__ == '__main__':
    exit_code = main()
    sys.exit(exit_code)
