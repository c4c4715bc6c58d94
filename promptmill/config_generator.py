"""
config_generator.py - Build the agent configuration descriptor.

The descriptor combines the document's YAML frontmatter with metadata found
in the classified body:

- name, description (required), title, model, tools from frontmatter
- core_prompts / ending_prompts / output_format references from
  frontmatter, falling back to configured defaults
- skill references from the "Pre-compiled Skills" and "Dynamic Skills" lists
  inside the preloaded-content manifest and intro ranges, plus any
  frontmatter ``skills`` entries (treated as pre-compiled)

Descriptors serialize to YAML with a fixed key order and are checked against
schemas/agent_config.schema.json on the way out and on the way back in.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import jsonschema
import yaml

from .config.compiler_config import CompilerConfig
from .config.tool_vocabulary import KNOWN_TOOLS, parse_tool_list, unknown_tools
from .errors import ConfigValidationError
from .markdown import fence_mask, is_list_item, parse_heading, LIST_ITEM_PATTERN
from .types import (
    AgentConfigDescriptor,
    ExpandedDocument,
    SectionLabel,
    SectionRange,
    SkillAssignment,
    SkillRef,
    VerificationWarning,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schemas" / "agent_config.schema.json"
_SCHEMA: Optional[Dict[str, Any]] = None

REQUIRED_FIELDS = ("name", "description")

# The name becomes the output directory, so it must be a single path segment
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Ranges searched for skill lists
SKILL_SCAN_LABELS = (SectionLabel.PRELOADED_MANIFEST, SectionLabel.INTRO)

_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_CODE = re.compile(r"`([^`]+)`")
_SEPARATOR = re.compile(r"\s+[-–—]\s+|:\s+")
_SLUG = re.compile(r"[^a-z0-9]+")


def _load_schema() -> Dict[str, Any]:
    """Load the descriptor schema, caching result."""
    global _SCHEMA
    if _SCHEMA is None:
        with SCHEMA_PATH.open(encoding="utf-8") as f:
            _SCHEMA = json.load(f)
    return _SCHEMA


def safe_get_stripped(value: Any) -> Optional[str]:
    """Stripped string value, or None for null/blank/non-scalar values."""
    if value is None or isinstance(value, (dict, list)):
        return None
    stripped = str(value).strip()
    return stripped or None


def format_title(name: str) -> str:
    """``frontend-developer`` -> ``Frontend Developer``."""
    return " ".join(part.capitalize() for part in re.split(r"[-_\s]+", name) if part)


def slugify(text: str) -> str:
    return _SLUG.sub("-", text.lower()).strip("-")


@dataclass(frozen=True)
class GeneratedConfig:
    """Descriptor plus the non-fatal findings made while building it."""

    descriptor: AgentConfigDescriptor
    warnings: Tuple[VerificationWarning, ...] = ()


class ConfigGenerator:
    """Parses frontmatter and classified metadata into an AgentConfigDescriptor."""

    def __init__(
        self,
        known_tools: Sequence[str] = KNOWN_TOOLS,
        known_models: Sequence[str] = (),
        default_model: str = "inherit",
        default_core_prompts: Optional[str] = None,
        default_ending_prompts: Optional[str] = None,
        default_output_format: Optional[str] = None,
        skill_path_template: str = "skills/{id}/SKILL.md",
        precompiled_markers: Sequence[str] = ("pre-compiled skills", "precompiled skills"),
        dynamic_markers: Sequence[str] = ("dynamic skills",),
    ):
        self.known_tools = tuple(known_tools)
        self.known_models = tuple(known_models)
        self.default_model = default_model
        self.default_core_prompts = default_core_prompts
        self.default_ending_prompts = default_ending_prompts
        self.default_output_format = default_output_format
        self.skill_path_template = skill_path_template
        self.precompiled_markers = tuple(m.lower() for m in precompiled_markers)
        self.dynamic_markers = tuple(m.lower() for m in dynamic_markers)

    @classmethod
    def from_config(cls, config: CompilerConfig) -> "ConfigGenerator":
        return cls(
            known_tools=config.known_tools,
            known_models=config.known_models,
            default_model=config.default_model,
            default_core_prompts=config.default_core_prompts,
            default_ending_prompts=config.default_ending_prompts,
            default_output_format=config.default_output_format,
            skill_path_template=config.skill_path_template,
            precompiled_markers=config.precompiled_markers or ("pre-compiled skills",),
            dynamic_markers=config.dynamic_markers or ("dynamic skills",),
        )

    # -------------------------------------------------------------------------
    # Frontmatter
    # -------------------------------------------------------------------------

    @staticmethod
    def parse_frontmatter(text: str, source: str = "<document>") -> Dict[str, Any]:
        """Parse a frontmatter body (without the --- delimiters).

        Raises:
            ConfigValidationError: If the YAML is malformed or not a mapping.
        """
        if not text.strip():
            return {}
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigValidationError(source, [f"YAML parse error in frontmatter: {e}"])
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigValidationError(
                source, [f"frontmatter must be a mapping (got {type(data).__name__})"]
            )
        return data

    def generate(
        self,
        frontmatter: str,
        ranges: Sequence[SectionRange],
        expanded: ExpandedDocument,
    ) -> GeneratedConfig:
        """Build the descriptor for one classified document.

        Raises:
            ConfigValidationError: If required fields are missing or the
                frontmatter cannot be parsed.
        """
        source = expanded.source.path
        fm = self.parse_frontmatter(frontmatter, source)

        problems = [
            f"missing required field '{key}'" for key in REQUIRED_FIELDS if not safe_get_stripped(fm.get(key))
        ]
        name = safe_get_stripped(fm.get("name"))
        if name and not NAME_PATTERN.match(name):
            problems.append(
                f"invalid name '{name}' (letters, digits, '.', '_' and '-' only; must not start with '.' or '-')"
            )
        if "skills" in fm and fm["skills"] is not None and not isinstance(fm["skills"], list):
            problems.append(f"'skills' must be a list (got {type(fm['skills']).__name__})")
        if problems:
            raise ConfigValidationError(source, problems)

        warnings: List[VerificationWarning] = []
        description = safe_get_stripped(fm["description"])

        tools = parse_tool_list(fm.get("tools"))
        for tool in unknown_tools(tools, self.known_tools):
            warnings.append(
                VerificationWarning(
                    kind="UNKNOWN_TOOL",
                    message=f"unknown tool '{tool}'",
                    location=source,
                    fix=f"Use one of: {', '.join(self.known_tools)}",
                )
            )

        model = safe_get_stripped(fm.get("model")) or self.default_model
        if self.known_models and model not in self.known_models:
            warnings.append(
                VerificationWarning(
                    kind="UNKNOWN_MODEL",
                    message=f"unknown model '{model}'",
                    location=source,
                    fix=f"Use one of: {', '.join(self.known_models)}",
                )
            )

        title = (
            safe_get_stripped(fm.get("title"))
            or self._intro_title(ranges, expanded)
            or format_title(name)
        )

        descriptor = AgentConfigDescriptor(
            name=name,
            title=title,
            description=description,
            model=model,
            tools=tuple(tools),
            core_prompts_ref=safe_get_stripped(fm.get("core_prompts")) or self.default_core_prompts,
            ending_prompts_ref=safe_get_stripped(fm.get("ending_prompts")) or self.default_ending_prompts,
            output_format_ref=safe_get_stripped(fm.get("output_format")) or self.default_output_format,
            skills=self.extract_skills(ranges, expanded, fm.get("skills") or ()),
        )
        for warning in warnings:
            logger.warning("%s: %s", source, warning.message)
        return GeneratedConfig(descriptor=descriptor, warnings=tuple(warnings))

    # -------------------------------------------------------------------------
    # Classified metadata
    # -------------------------------------------------------------------------

    @staticmethod
    def _intro_title(ranges: Sequence[SectionRange], expanded: ExpandedDocument) -> Optional[str]:
        mask = fence_mask(expanded.lines)
        for section in ranges:
            if section.label is not SectionLabel.INTRO:
                continue
            for index in range(section.start, section.end):
                heading = None if mask[index] else parse_heading(expanded.lines[index])
                if heading and heading[0] == 1:
                    return heading[1]
        return None

    def extract_skills(
        self,
        ranges: Sequence[SectionRange],
        expanded: ExpandedDocument,
        frontmatter_skills: Sequence[Any] = (),
    ) -> SkillAssignment:
        """Collect skill references from manifest/intro lists and frontmatter."""
        buckets: Dict[str, List[SkillRef]] = {"precompiled": [], "dynamic": []}
        seen = set()
        lines = expanded.lines
        mask = fence_mask(lines)

        for section in sorted(ranges, key=lambda r: r.start):
            if section.label not in SKILL_SCAN_LABELS:
                continue
            mode: Optional[str] = None
            for index in range(section.start, section.end):
                if mask[index]:
                    continue
                line = lines[index]
                lowered = line.lower()
                if any(marker in lowered for marker in self.precompiled_markers):
                    mode = "precompiled"
                elif any(marker in lowered for marker in self.dynamic_markers):
                    mode = "dynamic"
                elif parse_heading(line) is not None:
                    mode = None
                elif mode and is_list_item(line):
                    ref = self.parse_skill_item(line)
                    if ref is not None and ref.id not in seen:
                        seen.add(ref.id)
                        buckets[mode].append(ref)

        for entry in frontmatter_skills:
            ref = self._skill_from_frontmatter(entry)
            if ref is not None and ref.id not in seen:
                seen.add(ref.id)
                buckets["precompiled"].append(ref)

        return SkillAssignment(
            precompiled=tuple(buckets["precompiled"]),
            dynamic=tuple(buckets["dynamic"]),
        )

    def default_skill_path(self, skill_id: str) -> str:
        return self.skill_path_template.format(id=skill_id.replace("/", "-"))

    def parse_skill_item(self, line: str) -> Optional[SkillRef]:
        """Parse one list item into a SkillRef.

        Recognized shapes:
            - [React](skills/react/SKILL.md) - Component patterns
            - `frontend/react (@vince)`: Component patterns
            - **React** - Component patterns
            - React
        """
        text = LIST_ITEM_PATTERN.sub("", line, count=1).strip()
        if not text:
            return None

        name: Optional[str] = None
        path: Optional[str] = None
        skill_id: Optional[str] = None

        link = _LINK.search(text)
        if link:
            name, path = link.group(1).strip(), link.group(2).strip()
            text = (text[:link.start()] + text[link.end():]).strip()

        code = _CODE.search(text)
        if code:
            skill_id = code.group(1).strip()
            text = (text[:code.start()] + text[code.end():]).strip()

        text = text.replace("**", "").replace("__", "").strip()
        if (link or code) and text[:1] in ("-", ":", "–", "—"):
            # Separator left behind by a removed link or code span
            head, description = "", text.lstrip(" -:–—")
        else:
            split = _SEPARATOR.search(text)
            if split:
                head, description = text[:split.start()].strip(), text[split.end():].strip()
            else:
                head, description = text, ""
        head = head.strip(" -:–—")

        name = name or head or skill_id
        if not name:
            return None
        if not skill_id:
            if path:
                parts = Path(path).parts
                skill_id = parts[-2] if len(parts) >= 2 and Path(path).name.upper() == "SKILL.MD" else Path(path).stem
            else:
                skill_id = slugify(name)
        if not skill_id:
            return None

        return SkillRef(
            id=skill_id,
            path=path or self.default_skill_path(skill_id),
            name=name,
            description=description.strip(" -:–—"),
        )

    def _skill_from_frontmatter(self, entry: Any) -> Optional[SkillRef]:
        if isinstance(entry, dict):
            skill_id = safe_get_stripped(entry.get("id"))
            if not skill_id:
                return None
            return SkillRef(
                id=skill_id,
                path=safe_get_stripped(entry.get("path")) or self.default_skill_path(skill_id),
                name=safe_get_stripped(entry.get("name")) or skill_id,
                description=safe_get_stripped(entry.get("description") or entry.get("usage")) or "",
            )
        skill_id = safe_get_stripped(entry)
        if not skill_id:
            return None
        return SkillRef(id=skill_id, path=self.default_skill_path(skill_id), name=skill_id)


# =============================================================================
# Serialization
# =============================================================================


def validate_descriptor_dict(data: Dict[str, Any], source: str = "<descriptor>") -> None:
    """Check a descriptor dict against the JSON schema.

    Raises:
        ConfigValidationError: If the dict does not conform.
    """
    try:
        jsonschema.validate(data, _load_schema())
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigValidationError(source, [f"schema violation at {location}: {e.message}"])


def dump_descriptor(descriptor: AgentConfigDescriptor) -> str:
    """Serialize a descriptor to YAML with deterministic key order."""
    data = descriptor.to_dict()
    validate_descriptor_dict(data, descriptor.name)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


def load_descriptor(text: str, source: str = "<descriptor>") -> AgentConfigDescriptor:
    """Parse a YAML descriptor produced by dump_descriptor()."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigValidationError(source, [f"YAML parse error: {e}"])
    if not isinstance(data, dict):
        raise ConfigValidationError(source, ["descriptor must be a mapping"])
    validate_descriptor_dict(data, source)
    return AgentConfigDescriptor.from_dict(data)
