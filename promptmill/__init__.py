"""
promptmill - Split monolithic agent definitions into modular prompt files.

Pipeline:
    SourceDocument -> DirectiveResolver -> SectionClassifier
        -> TargetEmitter + ConfigGenerator -> Verifier

Usage:
    from promptmill import CompilerDriver, load_compiler_config

    driver = CompilerDriver(load_compiler_config())
    result = driver.compile_document("agents/frontend-developer.md")
    if result.report.passed:
        driver.write_result(result)
"""

from .config.compiler_config import CompilerConfig, load_compiler_config
from .driver import BatchResult, CompileResult, CompilerDriver, DocumentOutcome
from .errors import (
    ClassificationConflictError,
    CompileCancelled,
    CompileError,
    ConfigValidationError,
    CycleError,
    IncludeDepthError,
    IncludeResidueError,
    NotFoundError,
)

__version__ = "1.0.0"

__all__ = [
    "BatchResult",
    "ClassificationConflictError",
    "CompileCancelled",
    "CompileError",
    "CompileResult",
    "CompilerConfig",
    "CompilerDriver",
    "ConfigValidationError",
    "CycleError",
    "DocumentOutcome",
    "IncludeDepthError",
    "IncludeResidueError",
    "NotFoundError",
    "load_compiler_config",
]
