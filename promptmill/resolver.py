"""
resolver.py - Expand @include directives into fragment content.

A directive is a line of its own:

    @include(core/core-principles.md)

Expansion is a post-order depth-first walk of the inclusion graph: a
fragment's own includes are fully expanded before the fragment is inlined, so
the output never holds a directive. Directives inside fenced code blocks are
left alone.

Include paths resolve in one of two ways (CompilerConfig.include_base):
- "root": relative to the fragment roots, wherever the directive appears
- "including_file": relative to the directory of the file holding the
  directive, then looked up under the fragment roots

Fully expanded fragments are memoized per key, so a fragment shared by many
agent documents is expanded once per batch. A memo entry is reused only
while the store still returns the same content for every fragment it was
built from; an edited fragment, at any depth, is expanded again.
"""

from __future__ import annotations

import logging
import posixpath
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Set, Tuple

from .config.compiler_config import INCLUDE_BASE_INCLUDING_FILE, INCLUDE_BASE_ROOT
from .errors import CycleError, IncludeDepthError, NotFoundError
from .fragments import FragmentStore, normalize_key
from .markdown import fence_mask, parse_directive
from .types import ExpandedDocument, LineOrigin, SourceDocument

logger = logging.getLogger(__name__)

# Default maximum include nesting
MAX_INCLUDE_DEPTH = 10


@dataclass(frozen=True)
class _Expansion:
    """Memoized expansion of one fragment."""

    lines: Tuple[str, ...]
    origins: Tuple[LineOrigin, ...]
    fragments_used: Tuple[str, ...]
    height: int  # Longest include chain below this fragment
    # (key, content_hash) of this fragment and every fragment below it
    signatures: Tuple[Tuple[str, str], ...] = ()


def find_directives(text: str) -> List[str]:
    """Return include paths in text, in order, without duplicates.

    Directives inside fenced code blocks are skipped.
    """
    lines = text.splitlines()
    mask = fence_mask(lines)
    found: List[str] = []
    for index, line in enumerate(lines):
        if mask[index]:
            continue
        path = parse_directive(line)
        if path and path not in found:
            found.append(path)
    return found


class DirectiveResolver:
    """Recursive include expansion with cycle detection and memoization."""

    def __init__(
        self,
        store: FragmentStore,
        include_base: str = INCLUDE_BASE_ROOT,
        max_depth: int = MAX_INCLUDE_DEPTH,
    ):
        self._store = store
        self._include_base = include_base
        self._max_depth = max_depth
        self._memo: Dict[str, _Expansion] = {}
        self._memo_lock = threading.Lock()

    @property
    def store(self) -> FragmentStore:
        return self._store

    def resolve_key(self, raw_path: str, including_key: str = "") -> str:
        """Turn a directive argument into a fragment key.

        Args:
            raw_path: The path written inside @include(...).
            including_key: Root-relative key of the file holding the directive
                ("" for a document outside the fragment roots).
        """
        if self._include_base == INCLUDE_BASE_INCLUDING_FILE and including_key:
            joined = posixpath.join(posixpath.dirname(including_key), raw_path)
        else:
            joined = raw_path
        key = normalize_key(joined)
        if key and not posixpath.splitext(key)[1]:
            key += ".md"
        return key

    def expand(self, document: SourceDocument) -> ExpandedDocument:
        """Expand every include directive in a document.

        Raises:
            NotFoundError: If an included path does not resolve.
            CycleError: If the inclusion graph has a cycle.
            IncludeDepthError: If nesting exceeds the configured depth.
        """
        doc_key = self._store.key_for(Path(document.path)) if document.path else ""
        stack = [doc_key] if doc_key else []

        lines: List[str] = []
        origins: List[LineOrigin] = []
        used: List[str] = []

        source_lines = document.lines
        mask = fence_mask(source_lines)
        for index, line in enumerate(source_lines):
            raw = None if mask[index] else parse_directive(line)
            if raw is None:
                lines.append(line)
                origins.append(LineOrigin(document.path, index + 1))
                continue
            child = self._expand_fragment(
                self.resolve_key(raw, doc_key),
                raw,
                stack,
                depth=1,
                included_from=f"{document.path}:{index + 1}",
            )
            lines.extend(child.lines)
            origins.extend(child.origins)
            for key in child.fragments_used:
                if key not in used:
                    used.append(key)

        logger.debug(
            "Expanded %s: %d source lines -> %d lines, %d fragments",
            document.path,
            len(source_lines),
            len(lines),
            len(used),
        )
        return ExpandedDocument(
            source=document,
            lines=tuple(lines),
            line_map=tuple(origins),
            fragments_used=tuple(used),
        )

    def _expand_fragment(
        self,
        key: str,
        raw_path: str,
        stack: Sequence[str],
        depth: int,
        included_from: str,
    ) -> _Expansion:
        if key in stack:
            cycle = list(stack[stack.index(key):]) + [key]
            raise CycleError(key, cycle)
        if depth > self._max_depth:
            raise IncludeDepthError(key, self._max_depth, list(stack) + [key])

        with self._memo_lock:
            cached = self._memo.get(key)
        if cached is not None and self._is_current(cached):
            if depth + cached.height > self._max_depth:
                raise IncludeDepthError(key, self._max_depth, list(stack) + [key])
            return cached

        try:
            fragment = self._store.get(key)
        except NotFoundError as e:
            raise NotFoundError(raw_path, e.searched, included_from) from e

        frag_lines = fragment.lines
        mask = fence_mask(frag_lines)
        child_stack = list(stack) + [key]

        lines: List[str] = []
        origins: List[LineOrigin] = []
        used: List[str] = [key]
        signatures: List[Tuple[str, str]] = [(key, fragment.content_hash)]
        height = 0

        for index, line in enumerate(frag_lines):
            raw = None if mask[index] else parse_directive(line)
            if raw is None:
                lines.append(line)
                origins.append(LineOrigin(key, index + 1, fragment=True))
                continue
            child = self._expand_fragment(
                self.resolve_key(raw, key),
                raw,
                child_stack,
                depth + 1,
                included_from=f"{key}:{index + 1}",
            )
            lines.extend(child.lines)
            origins.extend(child.origins)
            height = max(height, child.height + 1)
            for child_key in child.fragments_used:
                if child_key not in used:
                    used.append(child_key)
            for signature in child.signatures:
                if signature not in signatures:
                    signatures.append(signature)

        expansion = _Expansion(tuple(lines), tuple(origins), tuple(used), height, tuple(signatures))
        with self._memo_lock:
            self._memo[key] = expansion
        return expansion

    def _is_current(self, expansion: _Expansion) -> bool:
        """Whether every fragment behind a memo entry is unchanged in the store."""
        for key, content_hash in expansion.signatures:
            try:
                if self._store.get(key).content_hash != content_hash:
                    logger.debug("Fragment %s changed; expanding again", key)
                    return False
            except NotFoundError:
                return False
        return True

    def validate_includes(self, document: SourceDocument) -> List[str]:
        """List include paths in a document that cannot be resolved.

        Unlike expand(), this never raises; it walks the whole include graph
        and reports every missing path once. Cycles are not followed.
        """
        doc_key = self._store.key_for(Path(document.path)) if document.path else ""
        missing: List[str] = []
        seen: Set[str] = set()
        self._collect_missing(document.raw_text, doc_key, seen, missing, depth=0)
        return missing

    def _collect_missing(
        self,
        text: str,
        including_key: str,
        seen: Set[str],
        missing: List[str],
        depth: int,
    ) -> None:
        if depth > self._max_depth:
            return
        for raw in find_directives(text):
            key = self.resolve_key(raw, including_key)
            if key in seen:
                continue
            seen.add(key)
            try:
                fragment = self._store.get(key)
            except NotFoundError:
                missing.append(raw)
                continue
            self._collect_missing(fragment.text, key, seen, missing, depth + 1)

    def clear(self) -> None:
        """Drop memoized expansions."""
        with self._memo_lock:
            self._memo.clear()
