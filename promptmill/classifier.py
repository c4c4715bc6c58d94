"""
classifier.py - Partition an expanded agent document into labeled ranges.

The classifier makes one forward pass over the expanded lines and never
revisits a line once assigned. Two checks run before the pass:

1. Frontmatter: a leading block between two lines that are exactly "---".
2. Include residue: no @include directive may survive expansion.

The body is then walked line by line. Wherever a boundary is allowed (outside
fenced code, no open tag, not inside a preloaded-content manifest) the
BoundaryRule table is evaluated top to bottom and the first rule that fires
opens a new range:

- closing_boilerplate: the sentinel line and everything after it
- preloaded_manifest: a line carrying a runtime-injected-context marker
- section_heading: a heading matched against the category keyword table
- section_tag: a standalone opening tag whose name matches the keyword table

Tags opened at the start of a line are atomic: until they close, no rule may
end the current range. Headings that match no keyword list open an
Unclassified range; nothing is ever dropped without a label.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Sequence, Tuple

from .config.compiler_config import CompilerConfig, _default_config
from .errors import ClassificationConflictError, IncludeResidueError
from .markdown import (
    TagTracker,
    fence_mask,
    is_blank,
    is_list_item,
    parse_directive,
    parse_heading,
)
from .types import ExpandedDocument, SectionLabel, SectionRange

logger = logging.getLogger(__name__)

FRONTMATTER_DELIMITER = "---"

# Used when no configuration is supplied; same tables as the built-in config
_BUILTIN = _default_config()
DEFAULT_CATEGORY_KEYWORDS: Tuple[Tuple[SectionLabel, Tuple[str, ...]], ...] = tuple(
    (SectionLabel(label), tuple(words)) for label, words in _BUILTIN["category_keywords"].items()
)
DEFAULT_MANIFEST_MARKERS: Tuple[str, ...] = tuple(_BUILTIN["manifest_markers"])
DEFAULT_BOILERPLATE_PATTERNS: Tuple[str, ...] = tuple(_BUILTIN["boilerplate_patterns"])

_STANDALONE_OPEN_TAG = re.compile(r"^\s*<([A-Za-z][\w\-]*)(\s[^<>]*)?>\s*$")


# =============================================================================
# Scan State
# =============================================================================


@dataclass
class _ScanState:
    """Mutable bookkeeping for one classify() pass."""

    lines: Sequence[str]
    mask: Sequence[bool]
    first_content: Optional[int]  # Index of the first non-blank body line
    tags: TagTracker = field(default_factory=TagTracker)
    ranges: List[SectionRange] = field(default_factory=list)
    start: int = 0
    label: SectionLabel = SectionLabel.INTRO
    rule: str = "opening"
    heading: Optional[str] = None
    in_manifest: bool = False
    resume: Tuple[SectionLabel, str, Optional[str]] = (SectionLabel.INTRO, "opening", None)
    in_boilerplate: bool = False

    def open(self, index: int, label: SectionLabel, rule: str, heading: Optional[str]) -> None:
        if index > self.start:
            self.ranges.append(SectionRange(self.start, index, self.label, self.rule, self.heading))
        elif index < self.start:
            raise ClassificationConflictError(
                index + 1, f"rule '{rule}' claims a line already assigned to '{self.rule}'"
            )
        self.start, self.label, self.rule, self.heading = index, label, rule, heading


# A rule inspects line `index` and returns (label, heading) when it opens a range.
RuleMatch = Optional[Tuple[SectionLabel, Optional[str]]]


@dataclass(frozen=True)
class BoundaryRule:
    """One row of the classifier's ordered rule table."""

    name: str
    match: Callable[["SectionClassifier", _ScanState, int], RuleMatch]


def _closing_boilerplate(classifier: "SectionClassifier", state: _ScanState, index: int) -> RuleMatch:
    if classifier.is_boilerplate(state.lines[index]):
        return SectionLabel.CLOSING_BOILERPLATE, None
    return None


def _preloaded_manifest(classifier: "SectionClassifier", state: _ScanState, index: int) -> RuleMatch:
    if classifier.has_manifest_marker(state.lines[index]):
        return SectionLabel.PRELOADED_MANIFEST, None
    return None


def _section_heading(classifier: "SectionClassifier", state: _ScanState, index: int) -> RuleMatch:
    heading = parse_heading(state.lines[index])
    if heading is None:
        return None
    level, text = heading
    if level > classifier.heading_level:
        return None
    # Leading H1 is the document title and stays with the intro
    if level == 1 and index == state.first_content:
        return None
    return classifier.match_category(text) or SectionLabel.UNCLASSIFIED, text


def _section_tag(classifier: "SectionClassifier", state: _ScanState, index: int) -> RuleMatch:
    match = _STANDALONE_OPEN_TAG.match(state.lines[index])
    if not match:
        return None
    name = match.group(1)
    label = classifier.match_category(re.sub(r"[_\-]+", " ", name))
    if label is None:
        return None
    return label, f"<{name}>"


DEFAULT_RULES: Tuple[BoundaryRule, ...] = (
    BoundaryRule("closing_boilerplate", _closing_boilerplate),
    BoundaryRule("preloaded_manifest", _preloaded_manifest),
    BoundaryRule("section_heading", _section_heading),
    BoundaryRule("section_tag", _section_tag),
)


# =============================================================================
# Classifier
# =============================================================================


class SectionClassifier:
    """Single-pass, rule-table driven section classifier."""

    def __init__(
        self,
        category_keywords: Sequence[Tuple[SectionLabel, Sequence[str]]] = DEFAULT_CATEGORY_KEYWORDS,
        manifest_markers: Sequence[str] = DEFAULT_MANIFEST_MARKERS,
        boilerplate_patterns: Sequence[str] = DEFAULT_BOILERPLATE_PATTERNS,
        heading_level: int = 2,
        rules: Sequence[BoundaryRule] = DEFAULT_RULES,
    ):
        self.category_keywords = tuple(
            (label, tuple(k.lower() for k in keywords)) for label, keywords in category_keywords
        )
        self.manifest_markers = tuple(m.lower() for m in manifest_markers)
        self.boilerplate_patterns: Tuple[Pattern[str], ...] = tuple(
            re.compile(p) for p in boilerplate_patterns
        )
        self.heading_level = heading_level
        self.rules = tuple(rules)

    @classmethod
    def from_config(cls, config: CompilerConfig) -> "SectionClassifier":
        return cls(
            category_keywords=config.category_keywords or DEFAULT_CATEGORY_KEYWORDS,
            manifest_markers=config.manifest_markers,
            boilerplate_patterns=config.boilerplate_patterns,
            heading_level=config.section_heading_level,
        )

    # -------------------------------------------------------------------------
    # Predicates used by the rule table
    # -------------------------------------------------------------------------

    def match_category(self, text: str) -> Optional[SectionLabel]:
        """First label whose keyword list has a case-insensitive substring hit."""
        lowered = text.lower()
        for label, keywords in self.category_keywords:
            if any(keyword in lowered for keyword in keywords):
                return label
        return None

    def has_manifest_marker(self, line: str) -> bool:
        lowered = line.lower()
        return any(marker in lowered for marker in self.manifest_markers)

    def is_boilerplate(self, line: str) -> bool:
        return any(pattern.search(line) for pattern in self.boilerplate_patterns)

    def is_boundary_heading(self, line: str) -> bool:
        heading = parse_heading(line)
        return heading is not None and heading[0] <= self.heading_level

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def classify(self, expanded: ExpandedDocument) -> List[SectionRange]:
        """Label every line of an expanded document exactly once.

        Raises:
            IncludeResidueError: If a directive survived expansion.
            ClassificationConflictError: If the produced ranges do not tile
                the document.
        """
        lines = expanded.lines
        total = len(lines)
        if total == 0:
            return []

        mask = fence_mask(lines)
        self._check_residue(expanded, mask)

        body_start = self._frontmatter_end(lines)
        first_content = next((i for i in range(body_start, total) if not is_blank(lines[i])), None)
        state = _ScanState(lines=lines, mask=mask, first_content=first_content, start=0)
        if body_start:
            state.label, state.rule = SectionLabel.FRONTMATTER, "frontmatter"
            state.open(body_start, SectionLabel.INTRO, "opening", None)

        for index in range(body_start, total):
            if state.in_boilerplate:
                break
            in_fence = mask[index]

            if state.in_manifest:
                if not self._manifest_ends(state, index):
                    if not in_fence:
                        state.tags.feed(lines[index], index)
                    continue
                state.in_manifest = False
                label, rule, heading = state.resume
                state.open(index, label, "manifest_end", heading)

            if not in_fence and state.tags.depth == 0:
                self._apply_rules(state, index)

            if not in_fence and not state.in_boilerplate:
                state.tags.feed(lines[index], index)

        state.open(total, state.label, state.rule, state.heading)
        ranges = self._merge_adjacent(state.ranges)
        self._check_tiling(ranges, total)

        logger.debug(
            "Classified %s into %d ranges: %s",
            expanded.source.path,
            len(ranges),
            ", ".join(f"{r.label.value}[{r.start}:{r.end}]" for r in ranges),
        )
        return ranges

    def _apply_rules(self, state: _ScanState, index: int) -> None:
        for rule in self.rules:
            result = rule.match(self, state, index)
            if result is None:
                continue
            label, heading = result
            if label is SectionLabel.PRELOADED_MANIFEST:
                state.resume = (state.label, state.rule, state.heading)
                state.in_manifest = True
            elif label is SectionLabel.CLOSING_BOILERPLATE:
                state.in_boilerplate = True
            state.open(index, label, rule.name, heading)
            return

    def _manifest_ends(self, state: _ScanState, index: int) -> bool:
        """Whether the open manifest closes before line `index`."""
        lines = state.lines
        if state.mask[index] or state.tags.depth > 0:
            return False
        line = lines[index]
        if self.is_boundary_heading(line) or self.is_boilerplate(line):
            return True
        if not is_blank(line):
            return False
        following = next((i for i in range(index + 1, len(lines)) if not is_blank(lines[i])), None)
        if following is None:
            return True
        nxt = lines[following]
        return not (is_list_item(nxt) or self.has_manifest_marker(nxt))

    @staticmethod
    def _frontmatter_end(lines: Sequence[str]) -> int:
        """Index just past the closing frontmatter delimiter, or 0."""
        if not lines or lines[0].rstrip() != FRONTMATTER_DELIMITER:
            return 0
        for index in range(1, len(lines)):
            if lines[index].rstrip() == FRONTMATTER_DELIMITER:
                return index + 1
        return 0

    @staticmethod
    def _check_residue(expanded: ExpandedDocument, mask: Sequence[bool]) -> None:
        for index, line in enumerate(expanded.lines):
            if not mask[index] and parse_directive(line) is not None:
                origin = expanded.line_map[index].describe() if index < len(expanded.line_map) else ""
                raise IncludeResidueError(index + 1, line, origin)

    @staticmethod
    def _merge_adjacent(ranges: Sequence[SectionRange]) -> List[SectionRange]:
        merged: List[SectionRange] = []
        for current in ranges:
            if merged and merged[-1].label is current.label and merged[-1].end == current.start:
                previous = merged[-1]
                merged[-1] = SectionRange(previous.start, current.end, previous.label, previous.rule, previous.heading)
            else:
                merged.append(current)
        return merged

    @staticmethod
    def _check_tiling(ranges: Sequence[SectionRange], total: int) -> None:
        cursor = 0
        for section in ranges:
            if section.start != cursor:
                raise ClassificationConflictError(
                    section.start + 1,
                    f"range {section.label.value} starts at {section.start}, expected {cursor}",
                )
            if section.end <= section.start:
                raise ClassificationConflictError(section.start + 1, "empty range")
            cursor = section.end
        if cursor != total:
            raise ClassificationConflictError(cursor + 1, f"ranges end at {cursor} of {total} lines")


def frontmatter_text(expanded: ExpandedDocument, ranges: Sequence[SectionRange]) -> str:
    """Frontmatter body (without delimiters), or "" if the document has none."""
    for section in ranges:
        if section.label is SectionLabel.FRONTMATTER:
            return "\n".join(expanded.lines[section.start + 1:section.end - 1])
    return ""
