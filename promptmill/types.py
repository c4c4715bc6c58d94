"""
types.py - Dataclasses for the prompt compiler data model.

Everything here is immutable. A compile run builds these records once and
discards them when it finishes; only Fragment content outlives a single
document, and only inside the FragmentStore cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SectionLabel(str, Enum):
    """Label assigned to every classified range of an expanded document."""

    FRONTMATTER = "Frontmatter"
    INCLUDE_RESIDUE = "IncludeResidue"
    PRELOADED_MANIFEST = "PreloadedManifest"
    INTRO = "Intro"
    WORKFLOW = "Workflow"
    DOMAIN_PATTERN = "DomainPattern"
    EXAMPLES = "Examples"
    CRITICAL_REQUIREMENTS = "CriticalRequirements"
    CRITICAL_REMINDERS = "CriticalReminders"
    CLOSING_BOILERPLATE = "ClosingBoilerplate"
    UNCLASSIFIED = "Unclassified"


# Labels that drive the compiler itself and never reach a target file.
INFRASTRUCTURE_LABELS = frozenset(
    {
        SectionLabel.FRONTMATTER,
        SectionLabel.INCLUDE_RESIDUE,
        SectionLabel.PRELOADED_MANIFEST,
        SectionLabel.CLOSING_BOILERPLATE,
    }
)


# =============================================================================
# Source Material
# =============================================================================


@dataclass(frozen=True)
class SourceDocument:
    """Raw text of one agent definition, loaded once per compile."""

    path: str
    raw_text: str

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self.raw_text.splitlines())

    @property
    def line_count(self) -> int:
        return len(self.raw_text.splitlines())


@dataclass(frozen=True)
class Fragment:
    """Included file content, shared read-only across documents."""

    path: str  # Root-relative key, POSIX separators
    text: str
    content_hash: str  # sha256 prefix
    file_path: str = ""  # Resolved filesystem path
    stat_signature: Tuple[int, int] = (0, 0)  # (mtime_ns, size) at read time

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self.text.splitlines())


@dataclass(frozen=True)
class LineOrigin:
    """Where one expanded line came from."""

    source: str  # Document path, or fragment key when fragment=True
    line: int  # 1-based line number within source
    fragment: bool = False

    @property
    def is_native(self) -> bool:
        return not self.fragment

    def describe(self) -> str:
        if self.fragment:
            return f"{self.source}:{self.line} (fragment)"
        return f"{self.source}:{self.line}"

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "line": self.line, "fragment": self.fragment}


@dataclass(frozen=True)
class ExpandedDocument:
    """A SourceDocument with every include directive replaced by fragment text."""

    source: SourceDocument
    lines: Tuple[str, ...]
    line_map: Tuple[LineOrigin, ...]
    fragments_used: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(self.lines) + "\n"

    @property
    def line_count(self) -> int:
        return len(self.lines)


# =============================================================================
# Classification and Emission
# =============================================================================


@dataclass(frozen=True)
class SectionRange:
    """Half-open span [start, end) of expanded lines with one label."""

    start: int
    end: int
    label: SectionLabel
    rule: str = ""  # Name of the rule that opened the range
    heading: Optional[str] = None

    @property
    def length(self) -> int:
        return self.end - self.start

    def contains(self, index: int) -> bool:
        return self.start <= index < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "label": self.label.value,
            "rule": self.rule,
            "heading": self.heading,
        }


@dataclass(frozen=True)
class TargetFile:
    """One modular output file and the expanded lines it was built from."""

    name: str
    ranges: Tuple[SectionRange, ...]
    lines: Tuple[str, ...]
    origins: Tuple[Optional[int], ...]  # Expanded line index, None for separators

    @property
    def text(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(self.lines) + "\n"

    @property
    def line_count(self) -> int:
        return len(self.lines)


# =============================================================================
# Agent Configuration Descriptor
# =============================================================================


@dataclass(frozen=True)
class SkillRef:
    """Reference to a skill; dynamic skills are resolved by id at run time."""

    id: str
    path: str
    name: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkillRef":
        return cls(
            id=str(data["id"]),
            path=str(data.get("path", "")),
            name=str(data.get("name", data["id"])),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class SkillAssignment:
    """Skills split by how the runtime delivers them."""

    precompiled: Tuple[SkillRef, ...] = ()
    dynamic: Tuple[SkillRef, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "precompiled": [s.to_dict() for s in self.precompiled],
            "dynamic": [s.to_dict() for s in self.dynamic],
        }


@dataclass(frozen=True)
class AgentConfigDescriptor:
    """Normalized agent configuration consumed by the agent runtime."""

    name: str
    title: str
    description: str
    model: str
    tools: Tuple[str, ...] = ()
    core_prompts_ref: Optional[str] = None
    ending_prompts_ref: Optional[str] = None
    output_format_ref: Optional[str] = None
    skills: SkillAssignment = field(default_factory=SkillAssignment)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with a fixed key order so dumps diff cleanly."""
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "model": self.model,
            "tools": list(self.tools),
            "core_prompts": self.core_prompts_ref,
            "ending_prompts": self.ending_prompts_ref,
            "output_format": self.output_format_ref,
            "skills": self.skills.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentConfigDescriptor":
        skills = data.get("skills") or {}
        return cls(
            name=data["name"],
            title=data["title"],
            description=data["description"],
            model=data["model"],
            tools=tuple(data.get("tools") or ()),
            core_prompts_ref=data.get("core_prompts"),
            ending_prompts_ref=data.get("ending_prompts"),
            output_format_ref=data.get("output_format"),
            skills=SkillAssignment(
                precompiled=tuple(SkillRef.from_dict(s) for s in skills.get("precompiled") or ()),
                dynamic=tuple(SkillRef.from_dict(s) for s in skills.get("dynamic") or ()),
            ),
        )


# =============================================================================
# Verification
# =============================================================================


@dataclass(frozen=True)
class LineRef:
    """Pointer to one expanded line in a verification finding."""

    index: int  # 0-based expanded line index
    origin: LineOrigin
    text: str
    targets: Tuple[str, ...] = ()  # Target files that contain the line

    @property
    def line_number(self) -> int:
        return self.index + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line": self.line_number,
            "origin": self.origin.describe(),
            "text": self.text,
            "targets": list(self.targets),
        }


@dataclass(frozen=True)
class TagRef:
    """A tag whose open and close do not land in the same output."""

    name: str
    reason: str  # "split", "unclosed", "unopened"
    open_line: Optional[int] = None  # 0-based expanded index
    close_line: Optional[int] = None
    open_location: Optional[str] = None  # Target name or "stripped:<Label>"
    close_location: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "reason": self.reason,
            "open_line": None if self.open_line is None else self.open_line + 1,
            "close_line": None if self.close_line is None else self.close_line + 1,
            "open_location": self.open_location,
            "close_location": self.close_location,
        }


@dataclass(frozen=True)
class VerificationWarning:
    """Non-fatal finding surfaced in the report."""

    kind: str  # "UNCLASSIFIED", "BUDGET", "UNKNOWN_TOOL", "UNKNOWN_MODEL", ...
    message: str
    location: str = ""
    fix: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "location": self.location,
            "fix": self.fix,
        }


@dataclass(frozen=True)
class VerificationReport:
    """Outcome of the three independent verification checks."""

    source_path: str
    completeness_ok: bool
    structural_ok: bool
    budget_ok: bool
    missing_lines: Tuple[LineRef, ...] = ()
    duplicated_lines: Tuple[LineRef, ...] = ()
    broken_tags: Tuple[TagRef, ...] = ()
    expected_line_count: int = 0
    actual_line_count: int = 0
    budget_tolerance: float = 0.15
    stripped_line_count: int = 0
    warnings: Tuple[VerificationWarning, ...] = ()

    @property
    def passed(self) -> bool:
        return self.completeness_ok and self.structural_ok and self.budget_ok

    @property
    def budget_deviation(self) -> float:
        if self.expected_line_count == 0:
            return 0.0 if self.actual_line_count == 0 else 1.0
        return abs(self.actual_line_count - self.expected_line_count) / self.expected_line_count

    def failure_reasons(self) -> List[str]:
        reasons: List[str] = []
        if not self.completeness_ok:
            parts = []
            if self.missing_lines:
                parts.append(f"{len(self.missing_lines)} missing")
            if self.duplicated_lines:
                parts.append(f"{len(self.duplicated_lines)} duplicated")
            reasons.append(f"completeness ({', '.join(parts)} lines)")
        if not self.structural_ok:
            reasons.append(f"structure ({len(self.broken_tags)} broken tags)")
        if not self.budget_ok:
            reasons.append(
                f"budget ({self.actual_line_count} lines vs expected "
                f"{self.expected_line_count}, {self.budget_deviation:.1%})"
            )
        return reasons

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source_path,
            "status": "PASS" if self.passed else "FAIL",
            "completeness_ok": self.completeness_ok,
            "structural_ok": self.structural_ok,
            "budget_ok": self.budget_ok,
            "expected_line_count": self.expected_line_count,
            "actual_line_count": self.actual_line_count,
            "stripped_line_count": self.stripped_line_count,
            "budget_tolerance": self.budget_tolerance,
            "missing_lines": [r.to_dict() for r in self.missing_lines],
            "duplicated_lines": [r.to_dict() for r in self.duplicated_lines],
            "broken_tags": [t.to_dict() for t in self.broken_tags],
            "warnings": [w.to_dict() for w in self.warnings],
        }
