#!/usr/bin/env python3
"""
compile_agents.py - Batch-compile monolithic agent definitions.

For every document given on the command line:
1. Expand @include directives against the fragment roots
2. Classify the expanded text into labeled sections
3. Emit modular target files and an agent config.yaml
4. Verify completeness, tag structure and line budget
5. Write the output directory (only when verification passes, or --force)

stdout carries one line per document plus a summary; failure details go to
stderr.

Usage:
    promptmill-compile agents/*.md
    promptmill-compile agents/frontend-developer.md --dry-run --verbose
    promptmill-compile agents/*.md --fragment-root core --output compiled
    promptmill-compile agents/*.md --json
"""

from __future__ import annotations

import argparse
import glob
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config.compiler_config import load_compiler_config
from ..driver import BatchResult, CompilerDriver, DocumentOutcome
from ..validator.diagnostics import SEVERITY_WARNING, DocumentDiagnostics, for_exception, for_report, summarize
from ..verifier import render_report_diff

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_COMPILE_FAILED = 1
EXIT_FATAL_ERROR = 2

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def expand_paths(patterns: Sequence[str]) -> List[str]:
    """Expand glob patterns, keeping literal paths that match nothing.

    Literal paths are kept so a missing document is reported as a failed
    document instead of silently disappearing from the batch.
    """
    paths: List[str] = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern, recursive=True)) if glob.has_magic(pattern) else []
        for path in matches or [pattern]:
            if path not in paths:
                paths.append(path)
    return paths


def diagnostics_for(outcome: DocumentOutcome) -> DocumentDiagnostics:
    if outcome.error is not None:
        return for_exception(outcome.path, outcome.error)
    if outcome.result is not None:
        return for_report(outcome.result.report, outcome.result.expanded)
    return DocumentDiagnostics(outcome.path)


def print_document_line(outcome: DocumentOutcome, dry_run: bool) -> None:
    if outcome.ok:
        suffix = ""
        if outcome.result is not None:
            suffix = f" ({len(outcome.result.targets)} targets"
            suffix += ", dry run)" if dry_run else f", {len(outcome.written)} files written)"
        print(f"{outcome.path}: OK{suffix}")
    else:
        print(f"{outcome.path}: FAILED: {outcome.reason()}")


def print_errors(diagnostics: DocumentDiagnostics) -> None:
    """Print diagnostics to stderr grouped by kind, errors first."""
    for kind, errors in diagnostics.by_kind().items():
        print(f"\n{kind} Errors ({len(errors)}):", file=sys.stderr)
        print("=" * 70, file=sys.stderr)
        for error in errors:
            print(error.render(), file=sys.stderr)

    for kind, warnings in diagnostics.by_kind(SEVERITY_WARNING).items():
        print(f"\n{kind} Warnings ({len(warnings)}):", file=sys.stderr)
        for warning in warnings:
            print(warning.render(), file=sys.stderr)


def print_summary(batch: BatchResult) -> None:
    total = len(batch.outcomes)
    print(f"\nCompiled {total} document{'s' if total != 1 else ''}: "
          f"{len(batch.passed)} passed, {len(batch.failed)} failed")


def build_json_output(batch: BatchResult, dry_run: bool) -> Dict[str, Any]:
    output = batch.to_dict()
    output["dry_run"] = dry_run
    output["status"] = "PASS" if batch.ok else "FAIL"
    output["diagnostics"] = summarize(diagnostics_for(outcome) for outcome in batch.outcomes)
    return output


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promptmill-compile",
        description="Compile monolithic agent definitions into modular prompt files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - Every document compiled and passed verification
  1 - At least one document failed to compile or verify
  2 - Fatal error (bad arguments, unreadable config)

Examples:
  promptmill-compile agents/*.md
  promptmill-compile agents/frontend-developer.md --dry-run --verbose
  promptmill-compile 'agents/**/*.md' --fragment-root core --workers 4
        """,
    )
    parser.add_argument("documents", nargs="+", help="Agent documents or glob patterns")
    parser.add_argument("--config", type=Path, help="Path to promptmill.yaml")
    parser.add_argument(
        "--fragment-root",
        action="append",
        dest="fragment_roots",
        metavar="DIR",
        help="Fragment root directory (repeatable; replaces configured roots)",
    )
    parser.add_argument("--output", "-o", type=Path, help="Output directory (default: compiled)")
    parser.add_argument("--dry-run", action="store_true", help="Compile and verify without writing")
    parser.add_argument("--force", action="store_true", help="Write output even when verification fails")
    parser.add_argument("--workers", type=int, help="Number of documents compiled concurrently")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print warnings and a diff of verification findings",
    )
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON to stdout")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and tracebacks")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format=LOG_FORMAT,
    )

    if args.workers is not None and args.workers < 1:
        print("ERROR: --workers must be at least 1", file=sys.stderr)
        return EXIT_FATAL_ERROR

    overrides: Dict[str, Any] = {}
    if args.fragment_roots:
        overrides["fragment_roots"] = args.fragment_roots
    if args.output:
        overrides["output_dir"] = str(args.output)

    try:
        config = load_compiler_config(args.config, overrides=overrides)
        driver = CompilerDriver(config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not load configuration: {e}", file=sys.stderr)
        return EXIT_FATAL_ERROR

    paths = expand_paths(args.documents)
    logger.debug("Compiling %d documents with config from %s", len(paths), config.source)
    try:
        batch = driver.compile_batch(
            paths,
            max_workers=args.workers,
            write=not args.dry_run,
            force=args.force,
        )
    except Exception as e:
        print(f"ERROR: Unexpected error during compile: {e}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc(file=sys.stderr)
        return EXIT_FATAL_ERROR

    if args.json:
        print(json.dumps(build_json_output(batch, args.dry_run), indent=2))
        return EXIT_SUCCESS if batch.ok else EXIT_COMPILE_FAILED

    for outcome in batch.outcomes:
        print_document_line(outcome, args.dry_run)
        diagnostics = diagnostics_for(outcome)
        if not outcome.ok:
            print(f"\n{outcome.path}:", file=sys.stderr)
            print_errors(diagnostics)
        elif args.verbose and diagnostics.warnings:
            print_errors(diagnostics)
        if args.verbose and outcome.result is not None and not outcome.result.passed:
            print(render_report_diff(outcome.result.report, outcome.result.expanded), file=sys.stderr)
        if outcome.result is not None and not outcome.result.passed and args.force and outcome.written:
            print("  (written anyway due to --force)", file=sys.stderr)

    print_summary(batch)
    return EXIT_SUCCESS if batch.ok else EXIT_COMPILE_FAILED


if __name__ == "__main__":
    sys.exit(main())
