"""Compiler configuration registry.

Provides centralized configuration for fragment resolution, section
classification, target files and verification thresholds.

Resolution order (later wins):
    1. Built-in defaults (_default_config)
    2. promptmill.yaml, found by searching upward from the working directory,
       or an explicit path passed to load_compiler_config()
    3. Environment variables:
         PROMPTMILL_FRAGMENT_ROOTS    os.pathsep-separated directories
         PROMPTMILL_INCLUDE_BASE      "root" or "including_file"
         PROMPTMILL_BUDGET_TOLERANCE  float in [0, 1]
         PROMPTMILL_MAX_WORKERS       int
    4. Explicit overrides (CLI flags)

Usage:
    from promptmill.config.compiler_config import load_compiler_config

    config = load_compiler_config()
    config.target_for(SectionLabel.WORKFLOW)  # "workflow.md"
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from promptmill.config.tool_vocabulary import KNOWN_TOOLS
from promptmill.types import INFRASTRUCTURE_LABELS, SectionLabel

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "promptmill.yaml"

INCLUDE_BASE_ROOT = "root"
INCLUDE_BASE_INCLUDING_FILE = "including_file"
INCLUDE_BASES = (INCLUDE_BASE_ROOT, INCLUDE_BASE_INCLUDING_FILE)

# Tolerance bounds for the line-budget check
TOLERANCE_MIN = 0.0
TOLERANCE_MAX = 1.0


def _clamp_tolerance(value: float, name: str = "budget_tolerance") -> float:
    """Clamp a tolerance value to [TOLERANCE_MIN, TOLERANCE_MAX] with logging."""
    if value < TOLERANCE_MIN:
        logger.warning(
            "Config '%s' value %s is below minimum %s. Clamping to %s.",
            name,
            value,
            TOLERANCE_MIN,
            TOLERANCE_MIN,
        )
        return TOLERANCE_MIN
    if value > TOLERANCE_MAX:
        logger.warning(
            "Config '%s' value %s exceeds maximum %s. Clamping to %s.",
            name,
            value,
            TOLERANCE_MAX,
            TOLERANCE_MAX,
        )
        return TOLERANCE_MAX
    return value


def _default_config() -> Dict[str, Any]:
    """Return the built-in configuration."""
    return {
        "version": "1.0",
        "fragment_roots": ["."],
        "include_base": INCLUDE_BASE_ROOT,
        "max_include_depth": 10,
        "section_heading_level": 2,
        # Evaluated in order; the first list with a matching keyword wins.
        "category_keywords": {
            "Workflow": [
                "workflow",
                "investigation",
                "process",
                "procedure",
                "methodology",
                "how you work",
                "self-correction",
                "post-action",
                "progress tracking",
                "retrieval strategy",
            ],
            "DomainPattern": [
                "pattern",
                "convention",
                "best practice",
                "guideline",
                "standards",
                "domain scope",
            ],
            "Examples": ["example", "sample output", "demonstration"],
            "CriticalReminders": ["critical reminder", "reminders"],
            "CriticalRequirements": ["critical requirement"],
            "Intro": ["introduction", "overview", "your role", "role", "mission", "who you are"],
        },
        "manifest_markers": ["already in your context", "preloaded_content"],
        "boilerplate_patterns": [
            r"(?i)display\s+all\s+\d+\s+core\s+principles",
        ],
        "skill_list_markers": {
            "precompiled": ["pre-compiled skills", "precompiled skills", "preloaded skills"],
            "dynamic": ["dynamic skills"],
        },
        "target_map": {
            "Intro": "intro.md",
            "Workflow": "workflow.md",
            "DomainPattern": "examples.md",
            "Examples": "examples.md",
            "CriticalRequirements": "critical-requirements.md",
            "CriticalReminders": "critical-reminders.md",
            "Unclassified": "unclassified.md",
        },
        "budget_tolerance": 0.15,
        "known_tools": list(KNOWN_TOOLS),
        "known_models": ["inherit", "haiku", "sonnet", "opus"],
        "defaults": {
            "model": "inherit",
            "core_prompts": "developer",
            "ending_prompts": "developer",
            "output_format": "output-formats-developer",
            "skill_path_template": "skills/{id}/SKILL.md",
        },
        "output_dir": "compiled",
        "max_workers": None,
    }


@dataclass(frozen=True)
class CompilerConfig:
    """Resolved compiler configuration."""

    fragment_roots: Tuple[Path, ...]
    include_base: str = INCLUDE_BASE_ROOT
    max_include_depth: int = 10
    section_heading_level: int = 2
    category_keywords: Tuple[Tuple[SectionLabel, Tuple[str, ...]], ...] = ()
    manifest_markers: Tuple[str, ...] = ()
    boilerplate_patterns: Tuple[str, ...] = ()
    precompiled_markers: Tuple[str, ...] = ()
    dynamic_markers: Tuple[str, ...] = ()
    target_map: Mapping[SectionLabel, str] = field(default_factory=dict)
    budget_tolerance: float = 0.15
    known_tools: Tuple[str, ...] = KNOWN_TOOLS
    known_models: Tuple[str, ...] = ()
    default_model: str = "inherit"
    default_core_prompts: Optional[str] = None
    default_ending_prompts: Optional[str] = None
    default_output_format: Optional[str] = None
    skill_path_template: str = "skills/{id}/SKILL.md"
    output_dir: Path = Path("compiled")
    max_workers: Optional[int] = None
    source: str = "default"  # "default" | config file path

    def target_for(self, label: SectionLabel) -> Optional[str]:
        """Target file name for a label, or None for stripped labels."""
        if label in INFRASTRUCTURE_LABELS:
            return None
        return self.target_map.get(label)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "CompilerConfig":
        """Build a config from a merged dict.

        Relative fragment roots and output_dir resolve against base_dir
        (the config file's directory, or the working directory).
        """
        base = base_dir or Path.cwd()

        include_base = str(data.get("include_base", INCLUDE_BASE_ROOT))
        if include_base not in INCLUDE_BASES:
            raise ValueError(
                f"Invalid include_base '{include_base}' (must be one of {', '.join(INCLUDE_BASES)})"
            )

        keywords = []
        for label_name, words in (data.get("category_keywords") or {}).items():
            keywords.append((SectionLabel(label_name), tuple(str(w).lower() for w in words or ())))

        target_map: Dict[SectionLabel, str] = {}
        for label_name, target in (data.get("target_map") or {}).items():
            label = SectionLabel(label_name)
            if label in INFRASTRUCTURE_LABELS:
                logger.warning("Ignoring target_map entry for infrastructure label %s", label_name)
                continue
            if target:
                target_map[label] = str(target)

        markers = data.get("skill_list_markers") or {}
        defaults = data.get("defaults") or {}
        max_workers = data.get("max_workers")

        return cls(
            fragment_roots=tuple(_resolve_dir(base, r) for r in data.get("fragment_roots") or ["."]),
            include_base=include_base,
            max_include_depth=int(data.get("max_include_depth", 10)),
            section_heading_level=int(data.get("section_heading_level", 2)),
            category_keywords=tuple(keywords),
            manifest_markers=tuple(str(m).lower() for m in data.get("manifest_markers") or ()),
            boilerplate_patterns=tuple(str(p) for p in data.get("boilerplate_patterns") or ()),
            precompiled_markers=tuple(str(m).lower() for m in markers.get("precompiled") or ()),
            dynamic_markers=tuple(str(m).lower() for m in markers.get("dynamic") or ()),
            target_map=target_map,
            budget_tolerance=_clamp_tolerance(float(data.get("budget_tolerance", 0.15))),
            known_tools=tuple(data.get("known_tools") or KNOWN_TOOLS),
            known_models=tuple(data.get("known_models") or ()),
            default_model=str(defaults.get("model") or "inherit"),
            default_core_prompts=defaults.get("core_prompts"),
            default_ending_prompts=defaults.get("ending_prompts"),
            default_output_format=defaults.get("output_format"),
            skill_path_template=str(defaults.get("skill_path_template") or "skills/{id}/SKILL.md"),
            output_dir=_resolve_dir(base, data.get("output_dir") or "compiled"),
            max_workers=int(max_workers) if max_workers else None,
            source=str(data.get("_source", "default")),
        )


def _resolve_dir(base: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    if not path.is_absolute():
        path = base / path
    return path.resolve()


def _merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge overlay into base; nested "defaults"/"skill_list_markers" merge key-wise.

    Ordered tables (category_keywords, target_map) replace wholesale so the
    overlay fully controls priority order.
    """
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in ("defaults", "skill_list_markers") and isinstance(value, Mapping):
            merged.setdefault(key, {}).update(value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Search upward from start for promptmill.yaml."""
    cwd = (start or Path.cwd()).resolve()
    for parent in [cwd] + list(cwd.parents):
        candidate = parent / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    roots = env.get("PROMPTMILL_FRAGMENT_ROOTS")
    if roots:
        overrides["fragment_roots"] = [r for r in roots.split(os.pathsep) if r]
    include_base = env.get("PROMPTMILL_INCLUDE_BASE")
    if include_base:
        overrides["include_base"] = include_base
    tolerance = env.get("PROMPTMILL_BUDGET_TOLERANCE")
    if tolerance:
        try:
            overrides["budget_tolerance"] = float(tolerance)
        except ValueError:
            logger.warning("Ignoring non-numeric PROMPTMILL_BUDGET_TOLERANCE=%r", tolerance)
    workers = env.get("PROMPTMILL_MAX_WORKERS")
    if workers:
        try:
            overrides["max_workers"] = int(workers)
        except ValueError:
            logger.warning("Ignoring non-integer PROMPTMILL_MAX_WORKERS=%r", workers)
    return overrides


def load_compiler_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    search: bool = True,
) -> CompilerConfig:
    """Load and resolve the compiler configuration.

    Args:
        config_path: Explicit YAML config file. Must exist if given.
        overrides: Final overrides (e.g. from CLI flags), resolved against cwd.
        env: Environment mapping; defaults to os.environ.
        search: Whether to look for promptmill.yaml when config_path is None.

    Returns:
        Resolved CompilerConfig.

    Raises:
        FileNotFoundError: If config_path does not exist.
        ValueError: If the YAML is malformed or holds invalid values.
    """
    data = _default_config()
    base_dir = Path.cwd()

    if config_path is None and search:
        config_path = find_config_file()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        try:
            with config_path.open(encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config {config_path}: {e}")
        if not isinstance(file_data, dict):
            raise ValueError(f"Config {config_path} must be a mapping")
        data = _merge(data, file_data)
        data["_source"] = str(config_path)
        base_dir = config_path.resolve().parent
        logger.debug("Loaded compiler config from %s", config_path)

    env_data = _env_overrides(os.environ if env is None else env)
    late = dict(env_data)
    late.update(overrides or {})

    # Paths from env/CLI are relative to the working directory, not the file
    for key in ("fragment_roots", "output_dir"):
        if key in late:
            value = late[key]
            if key == "fragment_roots":
                late[key] = [str(_resolve_dir(Path.cwd(), v)) for v in value]
            else:
                late[key] = str(_resolve_dir(Path.cwd(), value))

    data = _merge(data, late)
    return CompilerConfig.from_dict(data, base_dir=base_dir)
