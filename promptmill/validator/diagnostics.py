# promptmill/validator/diagnostics.py
"""Per-document diagnostics for compile failures and verification findings.

A Diagnostic points at the line an author has to edit. For verification
findings that is the line's origin (the agent document or the fragment it
was included from), not its position in the expanded text; the expanded
line number is kept alongside for cross-referencing verification.json.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import (
    ClassificationConflictError,
    CompileError,
    ConfigValidationError,
    CycleError,
    IncludeResidueError,
    NotFoundError,
)
from ..types import ExpandedDocument, LineOrigin, LineRef, TagRef, VerificationReport

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

_FIXES = {
    "NOT_FOUND": "Create the fragment or correct the @include path",
    "CYCLE": "Remove one of the @include directives that form the cycle",
    "INCLUDE_DEPTH": "Flatten the include chain or raise max_include_depth",
    "INCLUDE_RESIDUE": "Check that the directive sits on its own line outside code fences",
    "CONFIG": "Fix the frontmatter field",
    "CLASSIFICATION_CONFLICT": "Report the document; the classifier produced overlapping ranges",
    "CANCELLED": "Re-run the compile",
}


@dataclass(frozen=True)
class Diagnostic:
    """One finding about a compiled document."""

    kind: str
    message: str
    fix: str
    document: str
    line: Optional[int] = None  # 1-based expanded line
    origin: Optional[LineOrigin] = None
    severity: str = SEVERITY_ERROR

    @property
    def location(self) -> str:
        if self.origin is not None:
            return self.origin.describe()
        if self.line is not None:
            return f"{self.document}:{self.line}"
        return self.document

    @property
    def is_warning(self) -> bool:
        return self.severity == SEVERITY_WARNING

    def render(self) -> str:
        marker = "WARN" if self.is_warning else "FAIL"
        return f"[{marker}] {self.kind}: {self.location} {self.message}\n  Fix: {self.fix}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "severity": self.severity,
            "location": self.location,
            "message": self.message,
            "fix": self.fix,
            "expanded_line": self.line,
            "origin": None if self.origin is None else self.origin.to_dict(),
        }


@dataclass(frozen=True)
class DocumentDiagnostics:
    """All diagnostics for one document, in expanded-line order."""

    document: str
    items: Tuple[Diagnostic, ...] = ()

    def __post_init__(self):
        ordered = sorted(self.items, key=lambda d: (d.is_warning, d.line or 0, d.kind))
        object.__setattr__(self, "items", tuple(ordered))

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.items if not d.is_warning]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.items if d.is_warning]

    def by_kind(self, severity: str = SEVERITY_ERROR) -> Dict[str, List[Diagnostic]]:
        grouped: Dict[str, List[Diagnostic]] = defaultdict(list)
        for diagnostic in self.items:
            if diagnostic.severity == severity:
                grouped[diagnostic.kind].append(diagnostic)
        return dict(sorted(grouped.items()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document,
            "status": "FAIL" if self.errors else "PASS",
            "errors": [d.to_dict() for d in self.errors],
            "warnings": [d.to_dict() for d in self.warnings],
        }


# =============================================================================
# Builders
# =============================================================================


def _origin_from_location(location: Optional[str]) -> Optional[LineOrigin]:
    """Parse a "path:line" string from an error back into a LineOrigin."""
    if not location:
        return None
    path, _, line = location.rpartition(":")
    if not path or not line.isdigit():
        return None
    return LineOrigin(path, int(line))


def for_exception(document: str, exc: Exception) -> DocumentDiagnostics:
    """Diagnostics for a document whose compile raised."""
    if not isinstance(exc, CompileError):
        return DocumentDiagnostics(
            document,
            (
                Diagnostic(
                    "INTERNAL",
                    f"{type(exc).__name__}: {exc}",
                    "Re-run with --debug for a traceback",
                    document,
                ),
            ),
        )

    fix = _FIXES.get(exc.kind, "See the error message above")
    if isinstance(exc, ConfigValidationError):
        items = tuple(Diagnostic(exc.kind, problem, fix, document) for problem in exc.problems)
        return DocumentDiagnostics(document, items)

    line: Optional[int] = None
    origin: Optional[LineOrigin] = None
    message = str(exc)
    if isinstance(exc, NotFoundError):
        origin = _origin_from_location(exc.included_from)
        message = f"@include({exc.path}) does not resolve under any fragment root"
    elif isinstance(exc, CycleError):
        message = f"include cycle {' -> '.join(exc.cycle_path)}"
    elif isinstance(exc, IncludeResidueError):
        line = exc.line_number
        origin = _origin_from_location(exc.origin)
    elif isinstance(exc, ClassificationConflictError):
        line = exc.line_number
    return DocumentDiagnostics(document, (Diagnostic(exc.kind, message, fix, document, line, origin),))


def _line_diagnostic(document: str, ref: LineRef, message: str, fix: str) -> Diagnostic:
    return Diagnostic("COMPLETENESS", message, fix, document, ref.line_number, ref.origin)


def _tag_diagnostic(document: str, tag: TagRef, expanded: Optional[ExpandedDocument]) -> Diagnostic:
    index = tag.open_line if tag.open_line is not None else tag.close_line
    origin = None
    if expanded is not None and index is not None and index < expanded.line_count:
        origin = expanded.line_map[index]
    if tag.reason == "split":
        message = f"<{tag.name}> opens in {tag.open_location} but closes in {tag.close_location}"
        fix = f"Keep <{tag.name}> inside one section"
    elif tag.reason == "unclosed":
        message = f"<{tag.name}> is never closed"
        fix = f"Add </{tag.name}>"
    else:
        message = f"</{tag.name}> has no matching open tag"
        fix = f"Add <{tag.name}> or remove the close tag"
    line = None if index is None else index + 1
    return Diagnostic("STRUCTURE", message, fix, document, line, origin)


def for_report(
    report: VerificationReport, expanded: Optional[ExpandedDocument] = None
) -> DocumentDiagnostics:
    """Diagnostics for every finding in a VerificationReport.

    Args:
        report: The verification report.
        expanded: The expanded document, used to locate tag findings at
            their authored line. Without it they carry the expanded line only.
    """
    document = report.source_path
    items: List[Diagnostic] = []

    for ref in report.missing_lines:
        items.append(
            _line_diagnostic(
                document,
                ref,
                f"is missing from every target: {ref.text.strip()!r}",
                "Map its section label to a target file",
            )
        )
    for ref in report.duplicated_lines:
        items.append(
            _line_diagnostic(
                document,
                ref,
                f"appears in {len(ref.targets)} targets ({', '.join(ref.targets)}): {ref.text.strip()!r}",
                "Check the classifier ranges for overlap",
            )
        )
    items.extend(_tag_diagnostic(document, tag, expanded) for tag in report.broken_tags)
    if not report.budget_ok:
        items.append(
            Diagnostic(
                "BUDGET",
                f"targets hold {report.actual_line_count} lines, expected {report.expected_line_count} "
                f"({report.budget_deviation:.1%} deviation, tolerance {report.budget_tolerance:.0%})",
                "Inspect unmapped labels and duplicated content",
                document,
            )
        )
    for warning in report.warnings:
        items.append(
            Diagnostic(
                warning.kind,
                warning.message,
                warning.fix or "No action required",
                document,
                origin=_origin_from_location(warning.location),
                severity=SEVERITY_WARNING,
            )
        )
    return DocumentDiagnostics(document, tuple(items))


def summarize(groups: Iterable[DocumentDiagnostics]) -> Dict[str, Any]:
    """JSON summary across a batch: counts plus each document's findings."""
    groups = list(groups)
    error_count = sum(len(g.errors) for g in groups)
    return {
        "error_count": error_count,
        "warning_count": sum(len(g.warnings) for g in groups),
        "status": "FAIL" if error_count else "PASS",
        "documents": [g.to_dict() for g in groups if g.items],
    }
