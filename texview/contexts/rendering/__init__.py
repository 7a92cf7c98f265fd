"""
Rendering Context

Responsibilities:
- Validates and materializes document snapshots in private working areas
- Drives pdflatex, biber/bibtex and pdftocairo under timeouts and file-access limits
- Serializes compilations through a single-slot queue
- Sanitizes every diagnostic before it leaves the context

Owns: working areas, toolchain invocation, page output directories
Never: Interprets document content beyond the compiler's log
"""

from texview.contexts.rendering.compiler import CompilationPipeline
from texview.contexts.rendering.config import RenderingConfig, load_config
from texview.contexts.rendering.exceptions import (
    ConfigError,
    QueueShutdownError,
    RenderingError,
    WorkingAreaError,
)
from texview.contexts.rendering.models import (
    Advisory,
    CompileRequest,
    CompileResult,
    FailureKind,
    PassOutcome,
)
from texview.contexts.rendering.queue import (
    CompilationQueue,
    QueueState,
    RejectReason,
    Submission,
    SubmitStatus,
)

__all__ = [
    "Advisory",
    "CompilationPipeline",
    "CompilationQueue",
    "CompileRequest",
    "CompileResult",
    "ConfigError",
    "FailureKind",
    "PassOutcome",
    "QueueShutdownError",
    "QueueState",
    "RejectReason",
    "RenderingConfig",
    "RenderingError",
    "Submission",
    "SubmitStatus",
    "WorkingAreaError",
    "load_config",
]
