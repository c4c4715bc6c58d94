"""
Compile preview endpoints for the promptmill API.

Provides REST endpoints for:
- Previewing the targets, descriptor and verification report of a document
  before anything is written
- Listing the fragments reachable from the configured roots

Preview requests may carry their own fragments. These are staged in a
temporary directory that is searched before the configured roots, so an
unsaved edit to a shared fragment can be previewed against a draft agent.
"""

from __future__ import annotations

import logging
import posixpath
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ...config.compiler_config import CompilerConfig
from ...driver import CompilerDriver
from ...errors import CompileError, NotFoundError
from ...fragments import FragmentStore, normalize_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/compile", tags=["compile"])


# =============================================================================
# Pydantic Models
# =============================================================================


class CompilePreviewRequest(BaseModel):
    """Request for compile-preview endpoint."""

    text: str = Field(..., description="Full agent document text, frontmatter included")
    path: str = Field(default="preview.md", description="Name used in provenance and reports")
    fragments: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra fragments keyed by root-relative path; shadow configured roots",
    )


class RangeResponse(BaseModel):
    """One classified range (1-based, inclusive line numbers)."""

    label: str
    start_line: int
    end_line: int
    rule: str
    heading: Optional[str] = None


class TargetResponse(BaseModel):
    """One emitted target file."""

    name: str
    content: str
    line_count: int
    labels: List[str]


class CompilePreviewResponse(BaseModel):
    """Response from compile-preview endpoint."""

    name: str
    status: str
    expanded_line_count: int
    fragments_used: List[str]
    ranges: List[RangeResponse]
    targets: List[TargetResponse]
    config_yaml: str
    descriptor: Dict[str, Any]
    report: Dict[str, Any]


class FragmentListResponse(BaseModel):
    """Response for listing available fragments."""

    fragments: List[str]
    count: int


# =============================================================================
# Helper Functions
# =============================================================================


def _get_config(request: Request) -> CompilerConfig:
    return request.app.state.compiler_config


def _stage_fragments(fragments: Dict[str, str], root: Path) -> None:
    """Write request fragments under root, rejecting keys that escape it."""
    for raw_key, text in fragments.items():
        key = normalize_key(raw_key)
        if not key or posixpath.isabs(key) or key.split("/")[0] == "..":
            raise HTTPException(
                status_code=400,
                detail={
                    "error": "invalid_fragment_path",
                    "message": f"Fragment path must be relative and inside the root: {raw_key}",
                    "details": {"path": raw_key},
                },
            )
        target = root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")


def _range_response(section) -> RangeResponse:
    return RangeResponse(
        label=section.label.value,
        start_line=section.start + 1,
        end_line=section.end,
        rule=section.rule,
        heading=section.heading,
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/preview", response_model=CompilePreviewResponse)
def compile_preview(body: CompilePreviewRequest, request: Request):
    """Compile a document in memory and return everything it would produce.

    Nothing is written to the output directory; the response carries the
    target contents, config.yaml text and verification report instead.

    Raises:
        400: The document failed to compile (missing include, cycle, bad
            frontmatter, ...).
        500: Unexpected internal error.
    """
    config = _get_config(request)
    try:
        with tempfile.TemporaryDirectory(prefix="promptmill-preview-") as staging:
            staging_root = Path(staging)
            _stage_fragments(body.fragments, staging_root)
            store = FragmentStore((staging_root,) + tuple(config.fragment_roots))
            driver = CompilerDriver(config, store=store)
            result = driver.compile_text(body.path, body.text)
            config_yaml = result.config_yaml()

        return CompilePreviewResponse(
            name=result.name,
            status="PASS" if result.passed else "FAIL",
            expanded_line_count=result.expanded.line_count,
            fragments_used=list(result.expanded.fragments_used),
            ranges=[_range_response(r) for r in result.ranges],
            targets=[
                TargetResponse(
                    name=t.name,
                    content=t.text,
                    line_count=t.line_count,
                    labels=sorted({r.label.value for r in t.ranges}),
                )
                for t in result.targets
            ],
            config_yaml=config_yaml,
            descriptor=result.descriptor.to_dict(),
            report=result.report.to_dict(),
        )

    except HTTPException:
        raise
    except NotFoundError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "fragment_not_found",
                "message": str(e),
                "details": {"path": e.path, "included_from": e.included_from},
            },
        )
    except CompileError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "compilation_error",
                "message": str(e),
                "details": {"kind": e.kind, "path": body.path},
            },
        )
    except Exception as e:
        logger.error("Compile preview failed: %s", e, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={
                "error": "internal_error",
                "message": f"Compile preview failed: {str(e)}",
                "details": {},
            },
        )


@router.get("/fragments", response_model=FragmentListResponse)
def list_fragments(request: Request):
    """List markdown fragments under the configured fragment roots."""
    store = FragmentStore(_get_config(request).fragment_roots)
    fragments = store.list_fragments()
    return FragmentListResponse(fragments=fragments, count=len(fragments))
