"""
Rendering context logger.

Provides logging interface for rendering context with automatic [render] prefix.
All rendering modules should import from this module, not from utils.logger directly.
"""

from pathlib import Path

from loguru import logger

from texview.utils.logger import setup_logger as _setup_logger

CONTEXT_PREFIX = "[render]"


def setup_rendering_logger(
    log_dir: Path, latex_compiler: str = "pdflatex", verbose: bool = False
) -> Path:
    """
    Setup logger for rendering context.

    Configures loguru with provenance tracking and rendering-specific context.

    Args:
        log_dir: Directory for this rendering session
        latex_compiler: Primary compiler recorded in the provenance header
        verbose: Echo DEBUG messages to the console as well

    Returns:
        Path to log file
    """
    return _setup_logger(
        context_name="render",
        log_dir=log_dir,
        extra_provenance={"LaTeX compiler": latex_compiler},
        console_level="DEBUG" if verbose else "INFO",
    )


# Wrapper functions with automatic [render] prefix


def _log_info(message: str) -> None:
    """Log info message with [render] prefix."""
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_success(message: str) -> None:
    """Log success message with [render] prefix."""
    logger.success(f"{CONTEXT_PREFIX} {message}")


def _log_error(message: str) -> None:
    """Log error message with [render] prefix."""
    logger.error(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    """Log warning message with [render] prefix."""
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    """Log debug message with [render] prefix."""
    logger.debug(f"{CONTEXT_PREFIX} {message}")


# High-level rendering-specific logging helpers


def log_compilation_start(
    run_id: str, size_bytes: int, working_dir: Path, sandbox_disabled: bool
) -> None:
    """Log start of compilation with context."""
    _log_info(f"Starting compilation: {run_id} ({size_bytes} bytes)")
    _log_debug(f"  Working area: {working_dir}")
    if sandbox_disabled:
        _log_debug("  Host sandbox unavailable; display layer must run unsandboxed")


def log_pass_outcome(
    tool: str, pass_number: int, returncode: int, needs_rerun: bool, elapsed: float
) -> None:
    """Log one toolchain invocation."""
    rerun = ", rerun requested" if needs_rerun else ""
    _log_debug(f"  {tool} pass {pass_number}: exit {returncode} ({elapsed:.2f}s{rerun})")


def log_compilation_result(
    run_id: str,
    result,  # CompileResult
    elapsed_time: float,
    verbose: bool = False,
) -> None:
    """
    Log compilation result with diagnostics.

    Args:
        run_id: Run identifier
        result: CompileResult from CompilationPipeline.compile()
        elapsed_time: Time taken to compile
        verbose: Show detailed warnings/errors (default: False)
    """
    if result.success:
        _log_success(
            f"{run_id}: {len(result.pages)} pages, {len(result.warnings)} warnings, "
            f"{result.primary_passes} passes ({elapsed_time:.2f}s)"
        )
        for note in result.advisories:
            _log_warning(f"  Advisory [{note.kind.value}]: {note.message}")
    else:
        _log_error(f"{run_id}: {result.failure_kind.value} ({elapsed_time:.2f}s)")
        error_limit = 10 if verbose else 5
        for i, err in enumerate(result.errors[:error_limit], 1):
            _log_error(f"  Error {i}: {err}")
        if len(result.errors) > error_limit:
            _log_error(f"  ... and {len(result.errors) - error_limit} more errors")

    if result.warnings:
        warning_limit = 10 if verbose else 3
        for i, warn in enumerate(result.warnings[:warning_limit], 1):
            _log_debug(f"  Warning {i}: {warn}")
        if len(result.warnings) > warning_limit:
            _log_debug(f"  ... and {len(result.warnings) - warning_limit} more warnings")

    # Use opt(raw=True) to bypass format template and preserve original formatting
    if (verbose or not result.success) and result.diagnostic:
        logger.opt(raw=True).debug(
            f"\n{'=' * 80}\nDIAGNOSTIC ({run_id}):\n{'=' * 80}\n{result.diagnostic}\n"
        )


def log_queue_event(event: str, detail: str = "") -> None:
    """Log a compilation queue state change at debug level."""
    _log_debug(f"queue: {event}" + (f" ({detail})" if detail else ""))
