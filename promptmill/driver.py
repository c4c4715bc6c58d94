"""
driver.py - Compile agent documents, one at a time or as a batch.

A compile runs entirely in memory:

    read source -> expand includes -> classify -> emit targets
        -> generate descriptor -> verify

and returns a CompileResult. Nothing is written until write_result() is
called, and write_result() refuses to write a document whose verification
failed unless forced. A document's files are written into a staging
directory and renamed into place together, so an interrupted run never leaves
a partial set of outputs behind.

Batches run one task per document on a ThreadPoolExecutor. The fragment
cache and the resolver's expansion memo are shared by every task and cleared
when the batch finishes. A fatal error in one document is captured in its
DocumentOutcome; the rest of the batch keeps going.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .classifier import SectionClassifier, frontmatter_text
from .config.compiler_config import CompilerConfig
from .config_generator import ConfigGenerator, dump_descriptor
from .emitter import TargetEmitter, atomic_write_text, staged_directory, write_targets
from .errors import CompileCancelled, CompileError, ConfigValidationError, NotFoundError
from .fragments import FragmentStore
from .resolver import DirectiveResolver
from .types import (
    AgentConfigDescriptor,
    ExpandedDocument,
    SectionRange,
    SourceDocument,
    TargetFile,
    VerificationReport,
    VerificationWarning,
)
from .verifier import Verifier

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
REPORT_FILENAME = "verification.json"

PathLike = Union[str, Path]


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class CompileResult:
    """Everything produced by compiling one document, held in memory."""

    document: SourceDocument
    expanded: ExpandedDocument
    ranges: Tuple[SectionRange, ...]
    targets: Tuple[TargetFile, ...]
    descriptor: AgentConfigDescriptor
    report: VerificationReport

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def passed(self) -> bool:
        return self.report.passed

    @property
    def warnings(self) -> Tuple[VerificationWarning, ...]:
        return self.report.warnings

    def config_yaml(self) -> str:
        return dump_descriptor(self.descriptor)

    def report_json(self) -> str:
        return json.dumps(self.report.to_dict(), indent=2) + "\n"


@dataclass(frozen=True)
class DocumentOutcome:
    """Per-document entry of a batch."""

    path: str
    result: Optional[CompileResult] = None
    error: Optional[Exception] = None
    written: Tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.passed

    def reason(self) -> str:
        """One-line failure reason, or "" when the document passed."""
        if self.error is not None:
            kind = getattr(self.error, "kind", type(self.error).__name__)
            return f"{kind}: {self.error}"
        if self.result is not None and not self.result.passed:
            return "verification failed: " + "; ".join(self.result.report.failure_reasons())
        return ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "path": self.path,
            "status": "OK" if self.ok else "FAILED",
            "reason": self.reason() or None,
            "written": [str(p) for p in self.written],
        }
        if self.result is not None:
            data["name"] = self.result.name
            data["report"] = self.result.report.to_dict()
        return data


@dataclass(frozen=True)
class BatchResult:
    """Outcomes of a batch in input order."""

    outcomes: Tuple[DocumentOutcome, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> List[DocumentOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[DocumentOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": len(self.outcomes),
            "passed": len(self.passed),
            "failed": len(self.failed),
            "documents": [o.to_dict() for o in self.outcomes],
        }


# =============================================================================
# Driver
# =============================================================================


def _check_cancel(cancel_event: Optional[threading.Event], path: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CompileCancelled(path)


class CompilerDriver:
    """Wires the pipeline stages together from one CompilerConfig."""

    def __init__(self, config: CompilerConfig, store: Optional[FragmentStore] = None):
        self.config = config
        self.store = store or FragmentStore(config.fragment_roots)
        self.resolver = DirectiveResolver(
            self.store,
            include_base=config.include_base,
            max_depth=config.max_include_depth,
        )
        self.classifier = SectionClassifier.from_config(config)
        self.emitter = TargetEmitter(config.target_map or None)
        self.generator = ConfigGenerator.from_config(config)
        self.verifier = Verifier(config.budget_tolerance)

    def compile_text(
        self,
        path: str,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> CompileResult:
        """Compile a document whose text is already in memory."""
        document = SourceDocument(path=path, raw_text=text)
        expanded = self.resolver.expand(document)
        _check_cancel(cancel_event, path)

        ranges = self.classifier.classify(expanded)
        targets = self.emitter.emit(ranges, expanded)
        generated = self.generator.generate(frontmatter_text(expanded, ranges), ranges, expanded)
        report = self.verifier.verify(document, expanded, targets, ranges, generated.warnings)

        logger.info(
            "Compiled %s: %d lines -> %d targets (%s)",
            path,
            expanded.line_count,
            len(targets),
            "PASS" if report.passed else "FAIL",
        )
        return CompileResult(
            document=document,
            expanded=expanded,
            ranges=tuple(ranges),
            targets=tuple(targets),
            descriptor=generated.descriptor,
            report=report,
        )

    def compile_document(
        self, path: PathLike, cancel_event: Optional[threading.Event] = None
    ) -> CompileResult:
        """Compile one document without writing anything.

        Raises:
            CompileError: Any fatal error for this document.
        """
        source_path = Path(path)
        _check_cancel(cancel_event, str(source_path))
        if not source_path.is_file():
            raise NotFoundError(str(source_path))
        text = source_path.read_text(encoding="utf-8")
        return self.compile_text(str(source_path), text, cancel_event)

    def output_path(self, result: CompileResult, output_dir: Optional[PathLike] = None) -> Path:
        """Directory for one document's files: a direct child of the output root.

        Raises:
            ConfigValidationError: If the agent name would place the
                directory anywhere else.
        """
        root = Path(output_dir or self.config.output_dir).resolve()
        out_dir = (root / result.name).resolve()
        if out_dir.parent != root:
            raise ConfigValidationError(
                result.document.path,
                [f"agent name '{result.name}' does not name a directory inside {root}"],
            )
        return out_dir

    def write_result(
        self,
        result: CompileResult,
        output_dir: Optional[PathLike] = None,
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Path]:
        """Write targets, config.yaml and verification.json for one document.

        The files are staged together and published as one directory, which
        replaces any previous output for the same agent. A cancel or error
        before publishing leaves the previous output as it was.

        Returns:
            Paths written, or an empty list when verification failed and
            force is not set.
        """
        if not result.passed and not force:
            logger.warning(
                "Not writing %s: verification failed (%s)",
                result.document.path,
                "; ".join(result.report.failure_reasons()),
            )
            return []

        out_dir = self.output_path(result, output_dir)
        # Serialize before touching disk so a schema error writes nothing
        config_text = result.config_yaml()
        report_text = result.report_json()

        _check_cancel(cancel_event, result.document.path)
        with staged_directory(out_dir) as staging:
            staged = write_targets(result.targets, staging)
            for name, content in ((CONFIG_FILENAME, config_text), (REPORT_FILENAME, report_text)):
                atomic_write_text(staging / name, content)
                staged.append(staging / name)
            _check_cancel(cancel_event, result.document.path)
        written = [out_dir / path.name for path in staged]

        logger.info("Wrote %d files for %s to %s", len(written), result.name, out_dir)
        return written

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def _run_one(
        self,
        path: PathLike,
        cancel_event: Optional[threading.Event],
        write: bool,
        output_dir: Optional[PathLike],
        force: bool,
    ) -> DocumentOutcome:
        name = str(path)
        try:
            result = self.compile_document(path, cancel_event)
            written: List[Path] = []
            if write:
                written = self.write_result(result, output_dir, force, cancel_event)
            return DocumentOutcome(path=name, result=result, written=tuple(written))
        except CompileError as e:
            logger.error("Compile failed for %s: %s", name, e)
            return DocumentOutcome(path=name, error=e)
        except OSError as e:
            logger.error("I/O error compiling %s: %s", name, e)
            return DocumentOutcome(path=name, error=e)

    def compile_batch(
        self,
        paths: Sequence[PathLike],
        max_workers: Optional[int] = None,
        cancel_events: Optional[Sequence[Optional[threading.Event]]] = None,
        write: bool = False,
        output_dir: Optional[PathLike] = None,
        force: bool = False,
    ) -> BatchResult:
        """Compile many documents concurrently.

        Args:
            paths: Documents to compile.
            max_workers: Thread count; defaults to config.max_workers, then
                to the executor's own default.
            cancel_events: Optional per-document cancellation events,
                aligned with paths.
            write: Write each passing (or forced) result as it completes.
            output_dir: Output root when writing.
            force: Write even when verification failed.

        Returns:
            BatchResult with one outcome per path, in input order.
        """
        events = list(cancel_events or [])
        events.extend([None] * (len(paths) - len(events)))
        workers = max_workers or self.config.max_workers

        try:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._run_one, path, events[i], write, output_dir, force)
                    for i, path in enumerate(paths)
                ]
                outcomes = tuple(f.result() for f in futures)
        finally:
            logger.debug("Batch done, fragment cache: %s", self.store.stats)
            self.resolver.clear()
            self.store.clear()

        batch = BatchResult(outcomes=outcomes)
        logger.info(
            "Batch compiled %d documents: %d passed, %d failed",
            len(outcomes),
            len(batch.passed),
            len(batch.failed),
        )
        return batch
