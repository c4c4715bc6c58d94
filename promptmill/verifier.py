"""
verifier.py - Check that compiled targets faithfully partition the source.

Three independent checks run against the expanded document:

1. Completeness: every non-blank expanded line lands in exactly one target,
   or inside a stripped (infrastructure) range. A target line that claims an
   origin but no longer equals that expanded line does not count, so content
   corruption surfaces as a missing line.
2. Structural integrity: every tag pair opens and closes in the same target,
   or in the same stripped range.
3. Budget: the summed target line count stays within a tolerance of the
   expanded line count minus stripped lines.

Blank lines are exempt from completeness because concatenation normalizes
whitespace at chunk boundaries; the budget check absorbs that difference.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .markdown import is_blank, scan_tags
from .types import (
    INFRASTRUCTURE_LABELS,
    ExpandedDocument,
    LineRef,
    SectionLabel,
    SectionRange,
    SourceDocument,
    TagRef,
    TargetFile,
    VerificationReport,
    VerificationWarning,
)

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_TOLERANCE = 0.15


def budget_within(expected: int, actual: int, tolerance: float) -> bool:
    """True when actual deviates from expected by at most `tolerance`.

    An expected count of zero only accepts an actual count of zero.
    """
    if expected == 0:
        return actual == 0
    return abs(actual - expected) / expected <= tolerance


class Verifier:
    """Runs the completeness, structure and budget checks for one document."""

    def __init__(self, tolerance: float = DEFAULT_BUDGET_TOLERANCE):
        self.tolerance = min(max(float(tolerance), 0.0), 1.0)

    def verify(
        self,
        source: SourceDocument,
        expanded: ExpandedDocument,
        targets: Sequence[TargetFile],
        ranges: Sequence[SectionRange],
        extra_warnings: Sequence[VerificationWarning] = (),
    ) -> VerificationReport:
        """Verify targets against the expanded document they came from."""
        stripped = [r for r in ranges if r.label in INFRASTRUCTURE_LABELS]
        stripped_label = self._stripped_index(stripped, expanded.line_count)
        placements = self._placements(expanded, targets)

        missing, duplicated = self._check_completeness(expanded, placements, stripped_label)
        broken = self._check_structure(expanded, placements, stripped_label)

        stripped_count = sum(r.length for r in stripped)
        expected = expanded.line_count - stripped_count
        actual = sum(t.line_count for t in targets)
        budget_ok = budget_within(expected, actual, self.tolerance)

        warnings: List[VerificationWarning] = []
        for section in ranges:
            if section.label is SectionLabel.UNCLASSIFIED:
                warnings.append(
                    VerificationWarning(
                        kind="UNCLASSIFIED",
                        message=(
                            f"section {section.heading!r} (lines {section.start + 1}-{section.end}) "
                            "matched no category"
                        ),
                        location=f"{source.path}:{section.start + 1}",
                        fix="Rename the heading or add a keyword to category_keywords",
                    )
                )
        if not budget_ok:
            warnings.append(
                VerificationWarning(
                    kind="BUDGET",
                    message=f"output has {actual} lines, expected {expected} (tolerance {self.tolerance:.0%})",
                    location=source.path,
                    fix="Inspect unmapped labels and duplicated content",
                )
            )
        warnings.extend(extra_warnings)

        report = VerificationReport(
            source_path=source.path,
            completeness_ok=not missing and not duplicated,
            structural_ok=not broken,
            budget_ok=budget_ok,
            missing_lines=tuple(missing),
            duplicated_lines=tuple(duplicated),
            broken_tags=tuple(broken),
            expected_line_count=expected,
            actual_line_count=actual,
            budget_tolerance=self.tolerance,
            stripped_line_count=stripped_count,
            warnings=tuple(warnings),
        )
        logger.debug(
            "Verified %s: %s (%d expected, %d actual, %d missing, %d duplicated, %d broken tags)",
            source.path,
            "PASS" if report.passed else "FAIL",
            expected,
            actual,
            len(missing),
            len(duplicated),
            len(broken),
        )
        return report

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    @staticmethod
    def _stripped_index(stripped: Sequence[SectionRange], total: int) -> List[Optional[SectionLabel]]:
        labels: List[Optional[SectionLabel]] = [None] * total
        for section in stripped:
            for index in range(section.start, min(section.end, total)):
                labels[index] = section.label
        return labels

    @staticmethod
    def _placements(
        expanded: ExpandedDocument, targets: Sequence[TargetFile]
    ) -> Dict[int, List[str]]:
        """Map expanded index -> names of targets holding an exact copy."""
        placements: Dict[int, List[str]] = {}
        for target in targets:
            for text, origin in zip(target.lines, target.origins):
                if origin is None or not 0 <= origin < expanded.line_count:
                    continue
                if text != expanded.lines[origin]:
                    continue
                placements.setdefault(origin, []).append(target.name)
        return placements

    @staticmethod
    def _check_completeness(
        expanded: ExpandedDocument,
        placements: Dict[int, List[str]],
        stripped_label: Sequence[Optional[SectionLabel]],
    ) -> Tuple[List[LineRef], List[LineRef]]:
        missing: List[LineRef] = []
        duplicated: List[LineRef] = []
        for index, text in enumerate(expanded.lines):
            if is_blank(text) or stripped_label[index] is not None:
                continue
            found = placements.get(index, [])
            if not found:
                missing.append(LineRef(index, expanded.line_map[index], text))
            elif len(found) > 1:
                duplicated.append(LineRef(index, expanded.line_map[index], text, tuple(found)))
        return missing, duplicated

    @staticmethod
    def _check_structure(
        expanded: ExpandedDocument,
        placements: Dict[int, List[str]],
        stripped_label: Sequence[Optional[SectionLabel]],
    ) -> List[TagRef]:
        def location(index: int) -> Optional[str]:
            label = stripped_label[index]
            if label is not None:
                return f"stripped:{label.value}"
            found = placements.get(index)
            return found[0] if found else None

        tracker = scan_tags(expanded.lines)
        broken: List[TagRef] = []
        for span in tracker.spans:
            open_loc, close_loc = location(span.open_line), location(span.close_line)
            if open_loc != close_loc:
                broken.append(
                    TagRef(span.name, "split", span.open_line, span.close_line, open_loc, close_loc)
                )
        for event in tracker.unclosed:
            broken.append(TagRef(event.name, "unclosed", open_line=event.line, open_location=location(event.line)))
        for event in tracker.unopened:
            broken.append(
                TagRef(event.name, "unopened", close_line=event.line, close_location=location(event.line))
            )
        broken.sort(key=lambda t: t.open_line if t.open_line is not None else t.close_line)
        return broken


# =============================================================================
# Verbose Diff
# =============================================================================


def _runs(indices: Sequence[int]) -> List[Tuple[int, int]]:
    """Group sorted indices into inclusive (first, last) runs."""
    runs: List[Tuple[int, int]] = []
    for index in sorted(indices):
        if runs and index == runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], index)
        else:
            runs.append((index, index))
    return runs


def render_report_diff(report: VerificationReport, expanded: ExpandedDocument, context: int = 2) -> str:
    """Render findings as a unified-diff-like listing for --verbose output.

    Missing lines are prefixed with "-", surrounding context with " ".
    Duplicated lines and broken tags are listed with their locations.
    """
    out: List[str] = [f"--- {report.source_path} (expanded)", "+++ targets"]
    missing = {ref.index for ref in report.missing_lines}

    for first, last in _runs(sorted(missing)):
        lo = max(first - context, 0)
        hi = min(last + context, expanded.line_count - 1)
        out.append(f"@@ -{lo + 1},{hi - lo + 1} @@ missing from all targets")
        for index in range(lo, hi + 1):
            prefix = "-" if index in missing else " "
            out.append(f"{prefix}{expanded.lines[index]}")

    for ref in report.duplicated_lines:
        out.append(f"@@ {ref.line_number} @@ duplicated in {', '.join(ref.targets)}")
        out.append(f"+{ref.text}")

    for tag in report.broken_tags:
        where = []
        if tag.open_line is not None:
            where.append(f"opened at line {tag.open_line + 1} in {tag.open_location or 'no target'}")
        if tag.close_line is not None:
            where.append(f"closed at line {tag.close_line + 1} in {tag.close_location or 'no target'}")
        out.append(f"!! <{tag.name}> {tag.reason}: {'; '.join(where)}")

    if len(out) == 2:
        out.append("(no differences)")
    return "\n".join(out) + "\n"
