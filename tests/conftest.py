"""
Test fixtures and utilities for promptmill tests.

This module provides a small agent repository on disk (one agent document
plus the fragments it includes) and helpers for building configurations and
ad-hoc documents in tmp_path.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from promptmill.config.compiler_config import CompilerConfig, load_compiler_config
from promptmill.fragments import FragmentStore
from promptmill.resolver import DirectiveResolver
from promptmill.types import SourceDocument

# ============================================================================
# Canonical Agent
# ============================================================================

CORE_PRINCIPLES = """**Core Principles**
1. Investigate before acting.
2. Follow existing patterns.
3. Verify every change.
"""

COMPONENT_PATTERNS = """Use named exports for components.
Co-locate styles with components.
"""

# Expanded layout (0-based):
#   0-5   frontmatter
#   6-7   intro (H1 title + role line)
#   8-15  preloaded manifest
#   16-20 intro again (blank + core principles fragment)
#   21-26 workflow (heading + <investigation> block)
#   27-29 domain pattern (heading + components fragment)
#   30-34 examples (heading + fenced block)
#   35-36 critical reminders
#   37    closing boilerplate
FRONTEND_AGENT = """---
name: frontend-developer
description: Implements frontend features from detailed specs
model: opus
tools: Read, Write, Edit, Grep, Glob, Bash
---
# Frontend Developer Agent
You are an expert frontend developer.
<preloaded_content>
The following content is already in your context:
**Pre-compiled Skills:**
- [React](skills/frontend-react/SKILL.md) - Component architecture
- `frontend/styling-scss-modules` - SCSS Modules patterns
**Dynamic Skills:**
- `backend/api-hono`: Hono API routes
</preloaded_content>

@include(core/core-principles.md)
## Investigation Process
<investigation>
1. Read the ticket.
2. Find similar components.
## Not a boundary inside the tag
</investigation>
## Code Patterns
@include(patterns/components.md)
## Examples
```tsx
## not a heading
export const Button = () => <button />;
```
## Critical Reminders
- Never skip verification.
DISPLAY ALL 5 CORE PRINCIPLES AT THE START OF EVERY RESPONSE.
"""

FRONTEND_EXPANDED_LINES = 38
FRONTEND_STRIPPED_LINES = 15  # 6 frontmatter + 8 manifest + 1 boilerplate


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def make_config(root: Path, **overrides: Any) -> CompilerConfig:
    """Build a config rooted at `root`, ignoring any promptmill.yaml or env."""
    data: Dict[str, Any] = {
        "fragment_roots": [str(root)],
        "output_dir": str(root / "compiled"),
    }
    data.update(overrides)
    return load_compiler_config(search=False, env={}, overrides=data)


def make_agent(
    name: str,
    body: str,
    description: Optional[str] = None,
    extra_frontmatter: str = "",
) -> str:
    """Agent document text with minimal frontmatter."""
    description = description or f"Test agent {name}"
    return f"---\nname: {name}\ndescription: {description}\n{extra_frontmatter}---\n{body}"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def agent_repo(tmp_path):
    """Repository with one complete agent and its fragments.

    tmp_path is the single fragment root, so includes are written
    root-relative (core/..., patterns/...).
    """
    write_file(tmp_path / "core" / "core-principles.md", CORE_PRINCIPLES)
    write_file(tmp_path / "patterns" / "components.md", COMPONENT_PATTERNS)
    write_file(tmp_path / "agents" / "frontend-developer.md", FRONTEND_AGENT)
    return tmp_path


@pytest.fixture
def config(agent_repo):
    return make_config(agent_repo)


@pytest.fixture
def store(agent_repo):
    return FragmentStore([agent_repo])


@pytest.fixture
def resolver(store):
    return DirectiveResolver(store)


@pytest.fixture
def frontend_document(agent_repo):
    path = agent_repo / "agents" / "frontend-developer.md"
    return SourceDocument(path=str(path), raw_text=path.read_text(encoding="utf-8"))


@pytest.fixture
def frontend_expanded(resolver, frontend_document):
    return resolver.expand(frontend_document)
