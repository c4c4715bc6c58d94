"""Tool vocabulary for agent frontmatter.

Provides:
1. The closed set of tool names an agent may declare
2. Named tool profiles that expand to a tool tuple
3. Parsing of the frontmatter ``tools`` value (list or comma-separated string)
"""

from typing import Any, Iterable, List, Optional, Tuple

KNOWN_TOOLS: Tuple[str, ...] = (
    "Read",
    "Write",
    "Edit",
    "Grep",
    "Glob",
    "Bash",
    "WebSearch",
    "WebFetch",
    "Skill",
)

TOOL_PROFILES = {
    "read_only": ("Read", "Grep", "Glob"),
    "read_write": ("Read", "Write", "Edit", "Grep", "Glob"),
    "full_access": ("Read", "Write", "Edit", "Bash", "Grep", "Glob"),
    "researcher": ("Read", "Grep", "Glob", "WebSearch", "WebFetch"),
}


def parse_tool_list(value: Any) -> List[str]:
    """Turn a frontmatter ``tools`` value into an ordered list of names.

    Examples:
        >>> parse_tool_list("Read, Write, Bash")
        ['Read', 'Write', 'Bash']
        >>> parse_tool_list(["Read", "Grep"])
        ['Read', 'Grep']
        >>> parse_tool_list("read_only")
        ['Read', 'Grep', 'Glob']
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
        if len(items) == 1 and items[0].lower() in TOOL_PROFILES:
            return list(TOOL_PROFILES[items[0].lower()])
    elif isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if item is not None]
    else:
        items = [str(value).strip()]

    tools: List[str] = []
    for item in items:
        if item and item not in tools:
            tools.append(item)
    return tools


def unknown_tools(tools: Iterable[str], known: Optional[Iterable[str]] = None) -> List[str]:
    """Return the tool names that are not in the vocabulary, in input order."""
    vocabulary = set(known if known is not None else KNOWN_TOOLS)
    return [tool for tool in tools if tool not in vocabulary]
