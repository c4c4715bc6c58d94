"""
markdown.py - Line-level scanning helpers shared by the resolver, classifier
and verifier.

Only the markdown structure the compiler cares about is recognized:
- fenced code blocks (``` and ~~~), inside which nothing else is parsed
- ATX headings (# .. ######)
- XML-like tags that start a line (<workflow>, </workflow>)
- whole-line include directives: @include(path)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

FENCE_PATTERN = re.compile(r"^\s{0,3}(`{3,}|~{3,})")
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
DIRECTIVE_PATTERN = re.compile(r"^\s*@include\(\s*([^()\s]+)\s*\)\s*$")
LIST_ITEM_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
TAG_PATTERN = re.compile(r"<(/?)([A-Za-z][\w\-.:]*)(\s[^<>]*?)?(/?)>")

# HTML elements that never take a closing tag
VOID_TAGS = frozenset(
    {"br", "hr", "img", "input", "meta", "link", "area", "base", "col", "embed", "source", "wbr"}
)


def is_blank(line: str) -> bool:
    return not line.strip()


def is_list_item(line: str) -> bool:
    return bool(LIST_ITEM_PATTERN.match(line))


def parse_heading(line: str) -> Optional[Tuple[int, str]]:
    """Return (level, text) for an ATX heading line, else None."""
    match = HEADING_PATTERN.match(line)
    if not match:
        return None
    return len(match.group(1)), match.group(2).strip()


def parse_directive(line: str) -> Optional[str]:
    """Return the include path of a directive line, else None."""
    match = DIRECTIVE_PATTERN.match(line)
    return match.group(1) if match else None


def fence_mask(lines: Sequence[str]) -> List[bool]:
    """Mark every line that belongs to a fenced code block.

    Fence delimiter lines are marked too. An unterminated fence runs to the
    end of the input.
    """
    mask: List[bool] = []
    open_fence: Optional[str] = None
    for line in lines:
        match = FENCE_PATTERN.match(line)
        if open_fence is None:
            if match:
                open_fence = match.group(1)
                mask.append(True)
            else:
                mask.append(False)
            continue
        mask.append(True)
        if match and match.group(1)[0] == open_fence[0] and len(match.group(1)) >= len(open_fence):
            if not line.strip().lstrip(open_fence[0]):
                open_fence = None
    return mask


# =============================================================================
# Tags
# =============================================================================


@dataclass(frozen=True)
class TagEvent:
    """One open or close tag found at the start of a line."""

    name: str
    closing: bool
    line: int


def line_tag_events(line: str, index: int = 0) -> List[TagEvent]:
    """Find tag events on a line that starts with a tag.

    Lines that merely mention a tag in prose (``uses Array<string>``) are
    ignored, as are void elements and self-closing tags.
    """
    if not line.lstrip().startswith("<"):
        return []
    events: List[TagEvent] = []
    for match in TAG_PATTERN.finditer(line):
        closing, name, _attrs, self_closing = match.groups()
        if self_closing or name.lower() in VOID_TAGS:
            continue
        events.append(TagEvent(name=name, closing=bool(closing), line=index))
    return events


@dataclass(frozen=True)
class TagSpan:
    """A matched open/close tag pair."""

    name: str
    open_line: int
    close_line: int


class TagTracker:
    """Incremental tag stack.

    A close tag pops back to its matching open, abandoning any tags opened
    after it. A close tag with no matching open is recorded as unopened.
    """

    def __init__(self) -> None:
        self._stack: List[TagEvent] = []
        self.spans: List[TagSpan] = []
        self.unclosed: List[TagEvent] = []
        self.unopened: List[TagEvent] = []

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def open_tags(self) -> Tuple[str, ...]:
        return tuple(event.name for event in self._stack)

    def feed(self, line: str, index: int) -> List[TagEvent]:
        events = line_tag_events(line, index)
        for event in events:
            if not event.closing:
                self._stack.append(event)
                continue
            for pos in range(len(self._stack) - 1, -1, -1):
                if self._stack[pos].name == event.name:
                    opener = self._stack[pos]
                    self.unclosed.extend(self._stack[pos + 1:])
                    del self._stack[pos:]
                    self.spans.append(TagSpan(event.name, opener.line, index))
                    break
            else:
                self.unopened.append(event)
        return events

    def finish(self) -> None:
        """Mark everything still open as unclosed."""
        self.unclosed.extend(self._stack)
        self._stack = []


def scan_tags(lines: Sequence[str], mask: Optional[Sequence[bool]] = None) -> TagTracker:
    """Scan all lines outside code fences and return the finished tracker."""
    if mask is None:
        mask = fence_mask(lines)
    tracker = TagTracker()
    for index, line in enumerate(lines):
        if mask[index]:
            continue
        tracker.feed(line, index)
    tracker.finish()
    return tracker


def trim_blank_edges(indices: Iterable[int], lines: Sequence[str]) -> List[int]:
    """Drop leading and trailing blank lines from a run of line indices."""
    kept = list(indices)
    while kept and is_blank(lines[kept[0]]):
        kept.pop(0)
    while kept and is_blank(lines[kept[-1]]):
        kept.pop()
    return kept
