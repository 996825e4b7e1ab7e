"""
Command-line interface for the import pipeline

Commands:
- profile: column types, quality and suggested mappings
- estimate: predicted validation duration
- validate: full validation pass with optional JSON settings
- report: delimited import report written to a file
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .config import configure_logging
from .error_handler import ImportPipelineError
from .pipeline import ImportPipeline
from .validation.progress import format_estimate
from .validation.run_settings import ValidationSettings


def _load_settings(raw: Optional[str]) -> ValidationSettings:
    """Settings from inline JSON or from a path to a JSON file"""
    if not raw:
        return ValidationSettings()
    candidate = Path(raw)
    text = candidate.read_text() if candidate.suffix == '.json' and candidate.exists() else raw
    return ValidationSettings.model_validate(json.loads(text))


def _pipeline_for(file: str) -> ImportPipeline:
    pipeline = ImportPipeline()
    pipeline.ingest_file(file)
    return pipeline


def profile_command(args) -> int:
    pipeline = _pipeline_for(args.file)
    analysis = pipeline.profile()
    mappings = pipeline.map_columns()

    print(f"File: {pipeline.source.file_name}")
    print(f"Rows: {analysis.total_rows}  Columns: {analysis.total_columns}  Quality score: {analysis.quality_score}")
    print("-" * 60)
    for column_profile, mapping in zip(analysis.profiles, mappings):
        target = f"{mapping.target_table}.{mapping.target_field}" if mapping.is_mapped else '(unmapped)'
        print(f"{column_profile.name}: {column_profile.type} ({column_profile.confidence:.2f}, "
              f"{column_profile.quality}) -> {target}")
        if args.verbose:
            for issue in column_profile.issues:
                print(f"  issue: {issue}")
            for suggestion in column_profile.suggestions:
                print(f"  suggestion: {suggestion}")
    for recommendation in analysis.recommendations:
        print(f"* {recommendation}")
    return 0


def estimate_command(args) -> int:
    pipeline = _pipeline_for(args.file)
    overrides = {}
    if args.sample:
        overrides.update(sample_validation=True, sample_size=args.sample)
    if args.fuzzy:
        overrides.update(duplicate_match_type='fuzzy')
    estimate = pipeline.estimate_validation(ValidationSettings(**overrides))
    print(f"Rows: {pipeline.source.total_rows}")
    print(f"Estimated validation time: {format_estimate(estimate)} ({estimate} ms)")
    return 0


def validate_command(args) -> int:
    validation_settings = _load_settings(args.settings)
    pipeline = _pipeline_for(args.file)
    pipeline.map_columns()
    report = pipeline.validate(validation_settings)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print(f"Rows examined: {report.examined_rows} of {report.total_rows}")
        print(f"Errors: {report.error_count}  Warnings: {report.warning_count}")
        for result in report.results:
            print(f"  {result.field}: {len(result.errors)} error(s), {len(result.warnings)} warning(s)")
        for notice in report.notices:
            print(f"! {notice.message}")
        print("Ready to deploy" if report.can_deploy else "Not ready to deploy")
    return 0 if report.can_deploy else 2


def report_command(args) -> int:
    pipeline = _pipeline_for(args.file)
    pipeline.map_columns()
    if not args.skip_validation:
        pipeline.validate(_load_settings(args.settings))
    Path(args.output).write_text(pipeline.report())
    print(f"Report saved to: {args.output}")
    return 0


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='settlement-import',
        description='Profile, validate and report on settlement data imports',
    )
    parser.add_argument('--log-level', default=None, help='Log level (default from settings)')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    profile_parser = subparsers.add_parser('profile', help='Profile the columns of a file')
    profile_parser.add_argument('file', help='CSV, TXT, TSV or Excel file')
    profile_parser.add_argument('--verbose', '-v', action='store_true', help='Show issues and suggestions')
    profile_parser.set_defaults(handler=profile_command)

    estimate_parser = subparsers.add_parser('estimate', help='Estimate validation duration')
    estimate_parser.add_argument('file')
    estimate_parser.add_argument('--sample', type=int, choices=range(1, 101), metavar='PERCENT',
                                 help='Validate a sample of this percentage of rows')
    estimate_parser.add_argument('--fuzzy', action='store_true', help='Use fuzzy duplicate matching')
    estimate_parser.set_defaults(handler=estimate_command)

    validate_parser = subparsers.add_parser('validate', help='Validate a file with automatic mappings')
    validate_parser.add_argument('file')
    validate_parser.add_argument('--settings', '-s', help='Validation settings as JSON or a .json file path')
    validate_parser.add_argument('--json', action='store_true', help='Print the full report as JSON')
    validate_parser.set_defaults(handler=validate_command)

    report_parser = subparsers.add_parser('report', help='Write the import report')
    report_parser.add_argument('file')
    report_parser.add_argument('--output', '-o', required=True, help='Report file to write')
    report_parser.add_argument('--settings', '-s', help='Validation settings as JSON or a .json file path')
    report_parser.add_argument('--skip-validation', action='store_true', help='Report mappings only')
    report_parser.set_defaults(handler=report_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI function"""
    parser = setup_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(level=args.log_level)
    try:
        return args.handler(args)
    except KeyboardInterrupt:
        print("Operation cancelled by user")
        return 1
    except (ImportPipelineError, ValidationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
