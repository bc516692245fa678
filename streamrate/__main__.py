"""Command line entry point for the stream rating engine."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .app import StreamRateApp
from .errors import ConfigurationError, EmptyInputFileError, MissingFileError

EXIT_SUCCESS = 0
EXIT_UNEXPECTED_ERROR = 1
EXIT_MISSING_FILE = 2
EXIT_INVALID_CONFIG = 3
EXIT_RUN_FAILURE = 4


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamrate",
        description="Rate the randomness of a byte stream and of transformed variants of it.",
    )
    parser.add_argument(
        "--input",
        "-i",
        type=Path,
        required=True,
        help="Path to a binary file containing the stream to analyse.",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to the INI configuration file; defaults apply when omitted.",
    )
    parser.add_argument(
        "--report",
        "-r",
        type=Path,
        help="Optional path where a markdown report will be written.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print per-analyzer results and enable debug logging.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = StreamRateApp()
    try:
        result = app.run(
            input_path=args.input,
            config_path=args.config,
            report_path=args.report,
            verbose=args.verbose,
        )
    except (MissingFileError, EmptyInputFileError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_MISSING_FILE
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG
    except Exception as exc:  # pragma: no cover - last resort for the CLI
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED_ERROR
    if not result.completed:
        for run in result.report.runs:
            if run.error is not None:
                print(f"Run failed: {run.error}", file=sys.stderr)
        return EXIT_RUN_FAILURE
    return EXIT_SUCCESS


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
