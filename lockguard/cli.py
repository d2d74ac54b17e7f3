"""Command line entry point: ``lockguard model.json [...]``."""

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from lockguard import __version__
from lockguard.analysis import LockGuardAnalyzer
from lockguard.errors import ConfigError, LockGuardError
from lockguard.options import (
    FLAGS_ENV,
    Options,
    add_option_arguments,
    env_flags,
    parse_flags,
)
from lockguard.report import Possibility, format_analysis_report

LOG_ENV = "LOCKGUARD_LOG"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lockguard",
        description="LockGuard: interprocedural static deadlock detector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  lockguard model.json
  lockguard --json reports.json --ci-mode unit_a.json unit_b.json
  lockguard -b -l build_helpers --max-depth 8 model.json

Analysis flags are also read from ${FLAGS_ENV}; flags on the command line win.

Exit Codes:
  0: Success
  1: More probable deadlocks than --max-probably (CI mode)
  3: Analysis error
""",
    )
    parser.add_argument("files", nargs="*", help="Program model JSON files to analyze")
    parser.add_argument("--output", "-o", help="Output file for the text report")
    parser.add_argument("--json", help="Output JSON reports to file")
    parser.add_argument(
        "--ci-mode",
        action="store_true",
        help="Run in CI mode with non-zero exit on findings",
    )
    parser.add_argument(
        "--max-probably",
        type=int,
        default=0,
        help="Maximum allowed Probably findings (CI mode)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging and stack traces"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Suppress non-essential output"
    )
    parser.add_argument("--version", action="version", version=f"LockGuard {__version__}")
    add_option_arguments(parser)
    return parser


def configure_logging(debug: bool, quiet: bool) -> None:
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = getattr(logging, os.environ.get(LOG_ENV, "WARNING").upper(), logging.WARNING)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def main(argv=None) -> int:
    parser = build_parser()
    flags = env_flags()
    if flags:
        # command line flags override the environment
        try:
            parser.set_defaults(**vars(parse_flags(flags)))
        except ConfigError as e:
            parser.error(str(e))
    args = parser.parse_args(argv)

    if not args.files:
        parser.print_help()
        return 1

    configure_logging(args.debug, args.quiet)
    try:
        options = Options.from_args(args)
    except LockGuardError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 3

    analyzer = LockGuardAnalyzer(options)
    all_results = []
    total_probably = 0
    text_reports = []

    for filepath in args.files:
        path = Path(filepath)
        if not path.exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            if args.ci_mode:
                return 3
            continue

        if not args.quiet:
            print(f"Analyzing {path}...")

        try:
            result = analyzer.analyze_file(path)
        except (LockGuardError, OSError) as e:
            print(f"Error analyzing {path}: {e}", file=sys.stderr)
            if args.debug:
                import traceback

                traceback.print_exc()
            if args.ci_mode:
                return 3
            continue

        all_results.append(result)
        if result.skipped is not None:
            if not args.quiet:
                print(f"Skipped {result.unit_name}: {result.skipped}")
            continue
        total_probably += sum(
            1 for r in result.reports if r.possibility is Possibility.PROBABLY
        )
        text_reports.append(
            format_analysis_report(result.unit_name, result.reports, result.analysis_time)
        )

    if text_reports:
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write("\n".join(text_reports))
            if not args.quiet:
                print(f"Report saved to {args.output}")
        else:
            print("\n".join(text_reports))

    if args.json and all_results:
        json_data = {
            "analysis_summary": {
                "total_files": len(all_results),
                "total_probably": total_probably,
                "analysis_timestamp": datetime.now().isoformat(),
                "lockguard_version": __version__,
            },
            "units": [
                {
                    "file": result.file_analyzed,
                    "unit": result.unit_name,
                    "skipped": result.skipped,
                    "stats": result.stats,
                    "metrics": result.metrics,
                    "reports": [r.to_serializable_form() for r in result.reports],
                    "analysis_time": result.analysis_time,
                }
                for result in all_results
            ],
        }
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(json_data, f, indent=2)
        if not args.quiet:
            print(f"JSON report saved to {args.json}")

    if args.ci_mode:
        if total_probably > args.max_probably:
            print(
                f"❌ CI FAILURE: {total_probably} probable deadlocks found "
                f"(max allowed: {args.max_probably})"
            )
            return 1
        print("✅ CI PASSED: No probable deadlocks above threshold")
    return 0


if __name__ == "__main__":
    sys.exit(main())
