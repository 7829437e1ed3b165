"""Command-line interface for compatdiff."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Optional

import yaml

from .engine import CompatibilityEngine
from .events import HttpEventSink
from .exceptions import ValidationError
from .models import (
    AnalysisCategory,
    AnalysisResponse,
    EngineConfig,
    Strictness,
    Verdict,
)
from .runner import FixtureRunner

logger = logging.getLogger(__name__)

EXIT_COMPATIBLE = 0
EXIT_BREAKING = 1
EXIT_INCOMPATIBLE = 2
EXIT_FAILURE = 3
EXIT_UNREADABLE = 4

VERDICT_EXIT_CODES = {
    Verdict.FULLY_COMPATIBLE: EXIT_COMPATIBLE,
    Verdict.BACKWARDS_COMPATIBLE: EXIT_COMPATIBLE,
    Verdict.BREAKING: EXIT_BREAKING,
    Verdict.INCOMPATIBLE: EXIT_INCOMPATIBLE,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compatdiff",
        description="Analyze compatibility between two canonical API schema versions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  compatdiff validate old.yaml new.yaml
  compatdiff validate old.yaml new.yaml -s strict --ignore types.Internal --json
  compatdiff run fixtures/ -r report.json

Exit codes (validate):
  0 compatible, 1 breaking, 2 incompatible, 3 analysis failure, 4 unreadable input
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to YAML engine configuration")
    common.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    validate = subparsers.add_parser(
        "validate", parents=[common], help="Compare a source and a target schema"
    )
    validate.add_argument("source", help="Path to the source (baseline) schema, YAML or JSON")
    validate.add_argument("target", help="Path to the target (new) schema, YAML or JSON")
    validate.add_argument(
        "-s", "--strictness",
        choices=[s.value for s in Strictness],
        default=Strictness.STANDARD.value,
        help="Verdict strictness (default: standard)"
    )
    validate.add_argument(
        "--categories",
        nargs="+",
        choices=[c.value for c in AnalysisCategory],
        help="Categories to analyze (default: all)"
    )
    validate.add_argument(
        "--ignore",
        action="append",
        default=[],
        metavar="PATH",
        help="Ignore changes under a dotted path prefix (repeatable, * matches one segment)"
    )
    validate.add_argument(
        "--no-guidance", action="store_true", help="Omit upgrade guidance"
    )
    validate.add_argument(
        "--detailed-diff", action="store_true", help="Attach a diff to every change"
    )
    validate.add_argument("-o", "--output", help="Write the JSON report to a file")
    validate.add_argument(
        "--emit-events", metavar="URL", help="POST decision events to this service URL"
    )
    validate.add_argument(
        "--json", action="store_true", help="Print the JSON report instead of a summary"
    )

    run = subparsers.add_parser(
        "run", parents=[common], help="Replay fixture scenarios from a folder"
    )
    run.add_argument("fixtures", help="Folder containing fixture YAML/JSON files")
    run.add_argument("-r", "--report", help="Write the JSON report to a file")
    run.add_argument("-q", "--quiet", action="store_true", help="Suppress console output")

    return parser


def configure_logging(verbose: bool, config: Optional[EngineConfig] = None):
    if verbose:
        level = logging.DEBUG
    elif config is not None:
        level = getattr(logging, config.log_level.value)
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def load_document(path: str):
    """Read a YAML/JSON file; raises OSError, UnicodeDecodeError or yaml.YAMLError."""
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def print_summary(response: AnalysisResponse):
    if not response.success:
        print("Analysis failed")
        for error in response.errors:
            print(f"  {error}")
        return

    summary = response.summary
    recommendation = response.version_recommendation
    print(
        f"{response.source_version.provider_id}: "
        f"{response.source_version.version} -> {response.target_version.version}"
    )
    print(f"Verdict: {response.verdict.value}")
    print(
        f"Changes: {summary.total_changes} ({summary.breaking_changes} breaking, "
        f"{summary.non_breaking_changes} non-breaking, {summary.patch_changes} patch, "
        f"{summary.informational_changes} informational)"
    )
    print(
        f"Recommended version: {recommendation.recommended_version} "
        f"({recommendation.bump_type.value})"
    )

    for change in response.changes:
        print(f"  [{change.severity.value}] {change.category.value} {change.path}")
        print(f"      {change.description}")
        if change.upgrade_guidance:
            print(f"      -> {change.upgrade_guidance}")

    if response.warnings:
        print("Warnings:")
        for warning in response.warnings:
            print(f"  {warning}")


def cmd_validate(args, config: EngineConfig) -> int:
    try:
        source = load_document(args.source)
        target = load_document(args.target)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNREADABLE

    options = {
        "strictness": args.strictness,
        "includeUpgradeGuidance": not args.no_guidance,
        "includeDetailedDiff": args.detailed_diff,
        "ignorePaths": list(args.ignore),
    }
    if args.categories:
        options["analyzeCategories"] = list(args.categories)

    sink = None
    if args.emit_events:
        sink = HttpEventSink(args.emit_events, agent_version=config.agent_version)
    engine = CompatibilityEngine(config, sink)
    response = engine.analyze({
        "requestId": str(uuid.uuid4()),
        "sourceSchema": source,
        "targetSchema": target,
        "options": options,
    })
    report = response.to_dict()

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(report, indent=2, fp=f)

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print_summary(response)
        if args.output:
            print(f"\nReport saved to: {args.output}")

    if not response.success:
        return EXIT_FAILURE
    return VERDICT_EXIT_CODES[response.verdict]


def cmd_run(args, config: EngineConfig) -> int:
    if not Path(args.fixtures).is_dir():
        print(f"Error: Fixtures folder not found: {args.fixtures}", file=sys.stderr)
        return EXIT_UNREADABLE

    runner = FixtureRunner(config)
    report = runner.run_folder(args.fixtures, print_report=not args.quiet)

    if args.report:
        with open(args.report, 'w') as f:
            json.dump(report.to_dict(), indent=2, fp=f)

    if not args.quiet:
        report.print_summary()
        if args.report:
            print(f"\nReport saved to: {args.report}")

    return 0 if report.failed == 0 else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = EngineConfig()
    if args.config:
        try:
            config = EngineConfig.from_file(args.config)
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            configure_logging(args.verbose)
            print(f"Error: invalid config {args.config}: {e}", file=sys.stderr)
            return EXIT_UNREADABLE
    configure_logging(args.verbose, config)

    if args.command == "validate":
        return cmd_validate(args, config)
    return cmd_run(args, config)


if __name__ == "__main__":
    sys.exit(main())
