"""
emitter.py - Map classified ranges to modular target files.

Each non-infrastructure label maps to a target file name through a
caller-supplied table. Ranges assigned to the same target are concatenated
in source order: leading and trailing blank lines of every chunk are trimmed
and chunks are joined by a single blank line. Infrastructure ranges
(frontmatter, manifests, closing boilerplate) are never emitted.

Targets are built entirely in memory; write_targets() persists them with a
temp-file-and-rename per file, so a cancelled or failed compile never leaves
a partially written file behind. staged_directory() extends that to a whole
output directory: every file of a document is written to a staging directory
that is renamed into place in one step.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .markdown import trim_blank_edges
from .types import INFRASTRUCTURE_LABELS, ExpandedDocument, SectionLabel, SectionRange, TargetFile

logger = logging.getLogger(__name__)

DEFAULT_TARGET_MAP: Dict[SectionLabel, str] = {
    SectionLabel.INTRO: "intro.md",
    SectionLabel.WORKFLOW: "workflow.md",
    SectionLabel.DOMAIN_PATTERN: "examples.md",
    SectionLabel.EXAMPLES: "examples.md",
    SectionLabel.CRITICAL_REQUIREMENTS: "critical-requirements.md",
    SectionLabel.CRITICAL_REMINDERS: "critical-reminders.md",
    SectionLabel.UNCLASSIFIED: "unclassified.md",
}


class TargetEmitter:
    """Builds TargetFiles from classified ranges."""

    def __init__(self, target_map: Optional[Mapping[SectionLabel, str]] = None):
        self.target_map: Dict[SectionLabel, str] = dict(
            DEFAULT_TARGET_MAP if target_map is None else target_map
        )

    def target_for(
        self, label: SectionLabel, target_map: Optional[Mapping[SectionLabel, str]] = None
    ) -> Optional[str]:
        if label in INFRASTRUCTURE_LABELS:
            return None
        return (self.target_map if target_map is None else target_map).get(label)

    def emit(
        self,
        ranges: Sequence[SectionRange],
        expanded: ExpandedDocument,
        target_map: Optional[Mapping[SectionLabel, str]] = None,
    ) -> List[TargetFile]:
        """Group ranges by target and concatenate them in source order.

        Args:
            ranges: Classified ranges tiling the expanded document.
            expanded: The expanded document the ranges index into.
            target_map: Per-call map overriding the emitter's own.

        Returns:
            Target files ordered by the position of their first range.
        """
        grouped: Dict[str, List[SectionRange]] = {}
        for section in sorted(ranges, key=lambda r: r.start):
            name = self.target_for(section.label, target_map)
            if name is None:
                if section.label not in INFRASTRUCTURE_LABELS:
                    logger.warning(
                        "No target configured for %s; lines %d-%d of %s are not emitted",
                        section.label.value,
                        section.start + 1,
                        section.end,
                        expanded.source.path,
                    )
                continue
            grouped.setdefault(name, []).append(section)

        targets: List[TargetFile] = []
        for name, sections in grouped.items():
            lines, origins = self._concatenate(sections, expanded.lines)
            if not lines:
                continue
            targets.append(
                TargetFile(name=name, ranges=tuple(sections), lines=tuple(lines), origins=tuple(origins))
            )
        return targets

    @staticmethod
    def _concatenate(
        sections: Sequence[SectionRange], source_lines: Sequence[str]
    ) -> Tuple[List[str], List[Optional[int]]]:
        lines: List[str] = []
        origins: List[Optional[int]] = []
        for section in sections:
            kept = trim_blank_edges(range(section.start, section.end), source_lines)
            if not kept:
                continue
            if lines:
                lines.append("")
                origins.append(None)
            for index in kept:
                lines.append(source_lines[index])
                origins.append(index)
        return lines, origins


# =============================================================================
# Atomic File I/O Helpers
# =============================================================================


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to a file atomically.

    Uses a temporary file + os.replace pattern to ensure atomicity.
    This prevents partial writes if the process is killed mid-write.
    """
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    # Write to temp file in same directory (ensures same filesystem for rename)
    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_targets(targets: Sequence[TargetFile], out_dir: Path) -> List[Path]:
    """Persist target files under out_dir, one atomic write per file."""
    written: List[Path] = []
    for target in targets:
        path = out_dir / target.name
        atomic_write_text(path, target.text)
        written.append(path)
        logger.debug("Wrote %s (%d lines)", path, target.line_count)
    return written


@contextmanager
def staged_directory(out_dir: Path) -> Iterator[Path]:
    """Yield an empty staging directory that replaces out_dir on success.

    The staging directory is a hidden sibling of out_dir. When the block
    exits cleanly it is renamed to out_dir; an existing out_dir is moved
    aside first and removed once the new one is in place, so files left
    over from an earlier compile do not survive. When the block raises,
    the staging directory is removed and out_dir is untouched.
    """
    parent = out_dir.parent
    parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{out_dir.name}.", suffix=".staging", dir=parent))
    try:
        os.chmod(staging, 0o755)
        yield staging
        _swap_in(staging, out_dir)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise


def _swap_in(staging: Path, out_dir: Path) -> None:
    previous: Optional[Path] = None
    if out_dir.exists():
        previous = out_dir.with_name(f".{out_dir.name}.{uuid.uuid4().hex}.old")
        os.replace(out_dir, previous)
    try:
        os.replace(staging, out_dir)
    except BaseException:
        if previous is not None:
            os.replace(previous, out_dir)
        raise
    if previous is not None:
        shutil.rmtree(previous, ignore_errors=True)
    logger.debug("Published %s", out_dir)
