"""
Value types exchanged between callers, the compilation queue, and the pipeline.

CompileRequest flows in, CompileResult flows out; nothing else crosses the
queue boundary.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from texview.utils.path_sanitizer import escape_markup
from texview.utils.timestamp import now_exact


class FailureKind(Enum):
    """Failure taxonomy for compilation runs."""

    INPUT_TOO_LARGE = "InputTooLarge"
    SPAWN_FAILED = "SpawnFailed"
    TIMED_OUT = "TimedOut"
    HARD_COMPILE_FAILURE = "HardCompileFailure"
    NO_OUTPUT_PRODUCED = "NoOutputProduced"
    BIBLIOGRAPHY_DEGRADED = "BibliographyDegraded"
    INTERNAL_IO_FAILURE = "InternalIOFailure"


@dataclass(frozen=True)
class CompileRequest:
    """
    Immutable snapshot of a document submitted for compilation.

    Attributes:
        text: LaTeX source (UTF-8 when written to disk)
        source_dir: Directory the document was opened from, if any
        submitted_at: ISO 8601 submission timestamp
    """

    text: str
    source_dir: Optional[Path] = None
    submitted_at: str = field(default_factory=now_exact)

    @property
    def size_bytes(self) -> int:
        return len(self.text.encode("utf-8", errors="replace"))


@dataclass(frozen=True)
class PassOutcome:
    """
    Result of one primary compiler invocation.

    Attributes:
        pass_number: 1-based pass index within the run
        returncode: Exit status of the compiler
        log_text: Contents of the compiler's .log file (raw, unsanitized)
        needs_rerun: Log reports unresolved references or a stale table of contents
        hard_failure: Compiler reported a non-recoverable error
        stdout: Captured standard output
        stderr: Captured standard error
    """

    pass_number: int
    returncode: int
    log_text: str
    needs_rerun: bool
    hard_failure: bool
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class Advisory:
    """Non-fatal condition attached to a result."""

    kind: FailureKind
    message: str


@dataclass
class CompileResult:
    """
    Terminal value delivered to the caller for one compilation run.

    Attributes:
        success: Whether pages were produced
        pages: Ordered page image locations (outside any working area)
        failure_kind: Failure tag (None on success)
        diagnostic: Sanitized human-readable diagnostic (empty on clean success)
        advisories: Non-fatal notes (bibliography degradation, teardown problems)
        errors: Sanitized recoverable errors parsed from the final compiler log
        warnings: Sanitized warnings parsed from the final compiler log
        primary_passes: Number of primary compiler invocations in this run
        bibliography_tool: Bibliography tool that ran, if any
        sandbox_disabled: Host sandbox capability at startup
        elapsed: Wall-clock seconds for the run
    """

    success: bool
    pages: List[Path] = field(default_factory=list)
    failure_kind: Optional[FailureKind] = None
    diagnostic: str = ""
    advisories: List[Advisory] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    primary_passes: int = 0
    bibliography_tool: Optional[str] = None
    sandbox_disabled: bool = False
    elapsed: float = 0.0

    @classmethod
    def failure(cls, kind: FailureKind, diagnostic: str, **kwargs) -> "CompileResult":
        return cls(success=False, failure_kind=kind, diagnostic=diagnostic, **kwargs)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def escaped_diagnostic(self) -> str:
        """Diagnostic safe to embed in markup (HTML) output."""
        return escape_markup(self.diagnostic)

    def has_advisory(self, kind: FailureKind) -> bool:
        return any(note.kind is kind for note in self.advisories)

