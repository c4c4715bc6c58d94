"""
errors.py - Exception taxonomy for the prompt compiler.

Every fatal condition aborts the compile of a single document. The batch
driver collects these per document; none of them is retried.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


# =============================================================================
# Error Types
# =============================================================================


class CompileError(Exception):
    """Base exception for fatal compile errors."""

    #: Short machine-readable kind used in batch summaries and JSON output.
    kind = "COMPILE"


class NotFoundError(CompileError):
    """Raised when an include path does not resolve under any fragment root."""

    kind = "NOT_FOUND"

    def __init__(
        self,
        path: str,
        searched: Sequence[str] = (),
        included_from: Optional[str] = None,
    ):
        self.path = path
        self.searched = tuple(searched)
        self.included_from = included_from
        msg = f"Fragment not found: {path}"
        if included_from:
            msg += f" (included from {included_from})"
        if self.searched:
            msg += f"; searched: {', '.join(self.searched)}"
        super().__init__(msg)


class CycleError(CompileError):
    """Raised when an include chain returns to a fragment already on the path."""

    kind = "CYCLE"

    def __init__(self, path: str, cycle_path: Sequence[str]):
        self.path = path
        self.cycle_path: Tuple[str, ...] = tuple(cycle_path)
        super().__init__(
            f"Include cycle detected at {path}: {' -> '.join(self.cycle_path)}"
        )


class IncludeDepthError(CompileError):
    """Raised when include nesting exceeds the configured maximum depth."""

    kind = "INCLUDE_DEPTH"

    def __init__(self, path: str, max_depth: int, chain: Sequence[str] = ()):
        self.path = path
        self.max_depth = max_depth
        self.chain = tuple(chain)
        super().__init__(
            f"Include depth exceeded {max_depth} at {path}. "
            "Check for deeply nested or circular fragment references."
        )


class IncludeResidueError(CompileError):
    """Raised when an include directive survives expansion."""

    kind = "INCLUDE_RESIDUE"

    def __init__(self, line_number: int, text: str, origin: str = ""):
        self.line_number = line_number
        self.text = text
        self.origin = origin
        msg = f"Unexpanded include directive at expanded line {line_number}: {text.strip()}"
        if origin:
            msg += f" (from {origin})"
        super().__init__(msg)


class ConfigValidationError(CompileError):
    """Raised when frontmatter cannot produce a valid agent descriptor."""

    kind = "CONFIG"

    def __init__(self, source: str, problems: Sequence[str]):
        self.source = source
        self.problems = tuple(problems)
        super().__init__(f"{source}: {'; '.join(self.problems)}")


class ClassificationConflictError(CompileError):
    """Raised when classified ranges overlap or leave gaps.

    This always indicates a defect in the classifier rule table rather than
    in the source document.
    """

    kind = "CLASSIFICATION_CONFLICT"

    def __init__(self, line_number: int, detail: str):
        self.line_number = line_number
        self.detail = detail
        super().__init__(f"Classification conflict at line {line_number}: {detail}")


class CompileCancelled(CompileError):
    """Raised at an I/O boundary when a document compile has been cancelled."""

    kind = "CANCELLED"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Compile cancelled: {path}")
