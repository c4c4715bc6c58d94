"""
fragments.py - Read-only, content-addressed access to include fragments.

Fragments are addressed by a root-relative key ("core/principles.md") and
searched for in the configured fragment roots, in priority order. The store
keeps one cache entry per key for the lifetime of a batch:

- the first reader of a key performs the disk read; concurrent readers of the
  same key wait on that read instead of issuing their own
- a later get() re-stats the file and serves the cached Fragment while its
  (mtime, size) signature is unchanged
- identical contents are interned by content hash, so a shared fragment is
  held in memory once

Usage:
    from promptmill.fragments import FragmentStore

    store = FragmentStore([Path("prompts")])
    fragment = store.get("core/principles.md")
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Dict, List, Sequence, Set

from .errors import NotFoundError
from .types import Fragment

logger = logging.getLogger(__name__)

HASH_PREFIX_LENGTH = 16


def hash_content(content: str) -> str:
    """SHA-256 of content, truncated to HASH_PREFIX_LENGTH hex chars."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:HASH_PREFIX_LENGTH]


def normalize_key(path: str) -> str:
    """Normalize an include path to a POSIX, root-relative key.

    ``./core//principles.md`` becomes ``core/principles.md``. Parent
    segments are kept so that keys escaping the root stay detectable.
    """
    key = posixpath.normpath(path.strip().replace("\\", "/"))
    return "" if key == "." else key


class FragmentStore:
    """Read-through fragment cache over one or more root directories."""

    def __init__(self, roots: Sequence[Path]):
        if not roots:
            raise ValueError("FragmentStore requires at least one root directory")
        self._roots = tuple(Path(r).resolve() for r in roots)
        self._lock = threading.Lock()
        self._entries: Dict[str, "Future[Fragment]"] = {}
        self._interned: Dict[str, str] = {}
        self.reads = 0
        self.hits = 0

    @property
    def roots(self) -> tuple:
        return self._roots

    def locate(self, path: str) -> Path:
        """Resolve a key to a file under one of the roots.

        Raises:
            NotFoundError: If no root contains the file, or the key escapes
                every root.
        """
        key = normalize_key(path)
        searched: List[str] = []
        if not key or posixpath.isabs(key):
            raise NotFoundError(path, searched)
        for root in self._roots:
            candidate = (root / key).resolve()
            searched.append(str(candidate))
            try:
                candidate.relative_to(root)
            except ValueError:
                continue
            if candidate.is_file():
                return candidate
        raise NotFoundError(path, searched)

    def key_for(self, file_path: Path) -> str:
        """Root-relative key of a file under one of the roots, else ""."""
        resolved = Path(file_path).resolve()
        for root in self._roots:
            try:
                return resolved.relative_to(root).as_posix()
            except ValueError:
                continue
        return ""

    def get(self, path: str) -> Fragment:
        """Return the Fragment for a key, reading it at most once per change.

        Raises:
            NotFoundError: If the path does not resolve under the roots.
        """
        key = normalize_key(path)
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if owner:
            try:
                fragment = self._read(key, path)
            except BaseException as e:
                with self._lock:
                    if self._entries.get(key) is future:
                        del self._entries[key]
                future.set_exception(e)
                raise
            future.set_result(fragment)
            return fragment

        fragment = future.result()
        if self._is_stale(fragment):
            logger.debug("Fragment %s changed on disk; re-reading", key)
            with self._lock:
                if self._entries.get(key) is future:
                    del self._entries[key]
            return self.get(path)

        with self._lock:
            self.hits += 1
        return fragment

    def _read(self, key: str, requested: str) -> Fragment:
        file_path = self.locate(requested)
        stat = file_path.stat()
        text = file_path.read_text(encoding="utf-8")
        content_hash = hash_content(text)
        with self._lock:
            text = self._interned.setdefault(content_hash, text)
            self.reads += 1
        logger.debug("Loaded fragment %s from %s (%s)", key, file_path, content_hash)
        return Fragment(
            path=key,
            text=text,
            content_hash=content_hash,
            file_path=str(file_path),
            stat_signature=(stat.st_mtime_ns, stat.st_size),
        )

    @staticmethod
    def _is_stale(fragment: Fragment) -> bool:
        try:
            stat = Path(fragment.file_path).stat()
        except OSError:
            return True
        return (stat.st_mtime_ns, stat.st_size) != fragment.stat_signature

    def list_fragments(self) -> List[str]:
        """List all markdown fragment keys available under the roots."""
        keys: Set[str] = set()
        for root in self._roots:
            if not root.is_dir():
                continue
            for md_file in root.rglob("*.md"):
                keys.add(md_file.relative_to(root).as_posix())
        return sorted(keys)

    @property
    def stats(self) -> Dict[str, int]:
        """Cache counters since the last clear()."""
        with self._lock:
            return {"reads": self.reads, "hits": self.hits, "entries": len(self._entries)}

    def clear(self) -> None:
        """Drop every cached fragment (end of a batch run)."""
        with self._lock:
            self._entries.clear()
            self._interned.clear()
            self.reads = 0
            self.hits = 0
