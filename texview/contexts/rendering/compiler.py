"""
LaTeX Compilation Pipeline

Compiles one document snapshot to per-page SVG images:

    validate size -> materialize working area -> primary passes
    -> optional bibliography tool + fold-in passes -> rasterize -> publish pages -> teardown

Primary passes stop as soon as a bibliography trigger appears, so the single
guaranteed fold-in pass and any settling pass stay within max_primary_passes
whenever the cap leaves room for them.

Every run gets its own temporary working area that is removed on every exit
path. Every diagnostic string leaving this module has been path-sanitized.
"""

import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional

from texview.contexts.rendering.config import RenderingConfig
from texview.contexts.rendering.exceptions import WorkingAreaError
from texview.contexts.rendering.latex_log import (
    has_no_pages,
    is_fatal,
    needs_rerun,
    parse_latex_log,
    tail,
)
from texview.contexts.rendering.logger import (
    _log_debug,
    _log_warning,
    log_compilation_result,
    log_compilation_start,
    log_pass_outcome,
)
from texview.contexts.rendering.models import (
    Advisory,
    CompileRequest,
    CompileResult,
    FailureKind,
    PassOutcome,
)
from texview.utils.path_sanitizer import sanitize
from texview.utils.pdf_processing import page_count
from texview.utils.process import ProcessSpawnError, ProcessTimeoutError, run_process
from texview.utils.timestamp import now

SOURCE_STEM = "doc"
SOURCE_NAME = f"{SOURCE_STEM}.tex"
PDF_NAME = f"{SOURCE_STEM}.pdf"
LOG_NAME = f"{SOURCE_STEM}.log"
AUX_NAME = f"{SOURCE_STEM}.aux"
BCF_NAME = f"{SOURCE_STEM}.bcf"

PAGE_PREFIX = "page"
WORKING_AREA_PREFIX = "texview-"
RUN_DIR_PREFIX = "run_"

# -no-shell-escape: Prevent command execution via \write18
PRIMARY_FLAGS = ["-no-shell-escape", "-interaction=nonstopmode", "-file-line-error"]

# kpathsea settings for the primary compiler and bibliography tools
TOOLCHAIN_ENV = {
    "shell_escape": "f",
    "openin_any": "p",  # paranoid: no dot files, no parent dirs, no absolute paths
    "openout_any": "p",
    "max_print_line": "10000",  # keep paths on one log line so sanitize() sees them whole
    "SOURCE_DATE_EPOCH": "0",
}


class CompilationPipeline:
    """
    Orchestrates one end-to-end compilation per call to compile().

    Between calls the pipeline only remembers the run directories it published,
    so it prunes its own old pages and never another pipeline's. It is safe to
    reuse but not to call concurrently (CompilationQueue serializes access).

    Args:
        config: Immutable rendering configuration
        working_root: Parent directory for working areas (default: system temp dir)
        verbose: Log full diagnostics even for successful runs

    Example:
        >>> pipeline = CompilationPipeline(load_config())
        >>> result = pipeline.compile(CompileRequest(text=source))
        >>> result.pages
        [PosixPath('/tmp/texview-pages-.../run_.../page-1.svg')]
    """

    def __init__(
        self,
        config: RenderingConfig,
        working_root: Optional[Path] = None,
        verbose: bool = False,
    ):
        self.config = config
        self.working_root = working_root
        self.verbose = verbose
        # Run directories this pipeline published, oldest first
        self._published_runs: List[Path] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def compile(self, request: CompileRequest) -> CompileResult:
        """
        Compile a document snapshot to page images.

        Never raises for document, toolchain, or filesystem problems; those are
        reported as CompileResult failures.

        Args:
            request: Document snapshot

        Returns:
            CompileResult (success with page locations, or a sanitized failure)
        """
        start_time = time.time()
        run_id = f"{RUN_DIR_PREFIX}{now()}"

        # Security: bound resource usage before anything touches the disk
        size = request.size_bytes
        if size > self.config.max_input_bytes:
            result = CompileResult.failure(
                FailureKind.INPUT_TOO_LARGE,
                f"Document too large ({size / (1024 * 1024):.2f} MB). Maximum allowed size "
                f"is {self.config.max_input_bytes / (1024 * 1024):.2f} MB.",
            )
            return self._finish(result, run_id, start_time)

        try:
            area = self._create_working_area()
        except WorkingAreaError as e:
            result = CompileResult.failure(FailureKind.INTERNAL_IO_FAILURE, sanitize(str(e)))
            return self._finish(result, run_id, start_time)

        log_compilation_start(run_id, size, area, self.config.sandbox_disabled)

        teardown_error = None
        try:
            result = self._run(request, area, run_id)
        finally:
            teardown_error = self._remove_working_area(area)

        if teardown_error is not None:
            # A leaked working area must be reported even when the pages are fine
            result.advisories.append(
                Advisory(FailureKind.INTERNAL_IO_FAILURE, sanitize(teardown_error, area))
            )

        return self._finish(result, run_id, start_time)

    def _finish(self, result: CompileResult, run_id: str, start_time: float) -> CompileResult:
        result.elapsed = time.time() - start_time
        result.sandbox_disabled = self.config.sandbox_disabled
        log_compilation_result(run_id, result, result.elapsed, verbose=self.verbose)
        return result

    # ------------------------------------------------------------------
    # Working area lifecycle
    # ------------------------------------------------------------------

    def _create_working_area(self) -> Path:
        try:
            if self.working_root is not None:
                self.working_root.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=WORKING_AREA_PREFIX, dir=self.working_root))
        except OSError as e:
            raise WorkingAreaError(f"Failed to create temp dir: {e}") from e

    def _remove_working_area(self, area: Path) -> Optional[str]:
        """Remove the working area. Returns an error message instead of raising."""
        try:
            shutil.rmtree(area)
        except OSError as e:
            _log_warning(f"Failed to remove working area {area}: {e}")
            return f"Failed to remove temp dir {area}: {e}"
        return None

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run(self, request: CompileRequest, area: Path, run_id: str) -> CompileResult:
        try:
            (area / SOURCE_NAME).write_text(request.text, encoding="utf-8", errors="replace")
        except OSError as e:
            return self._failure(
                FailureKind.INTERNAL_IO_FAILURE, f"Failed to write tex file: {e}", area
            )

        env = self._toolchain_env(request)
        passes: List[PassOutcome] = []
        advisories: List[Advisory] = []
        warnings_extra: List[str] = []
        bibliography_tool = None
        max_passes = self.config.max_primary_passes

        try:
            # Multiple passes needed for cross-references, TOC, and page numbers.
            # Undefined citations cannot settle before the bibliography tool runs.
            for pass_number in range(1, max_passes + 1):
                outcome = self._primary_pass(area, env, pass_number)
                passes.append(outcome)
                if outcome.hard_failure:
                    return self._hard_failure(outcome, area, len(passes))
                bibliography_tool = self._bibliography_trigger(area)
                if bibliography_tool is not None or not outcome.needs_rerun:
                    break

            if bibliography_tool is not None:
                degraded = self._run_bibliography(bibliography_tool, area, env)
                if degraded is not None:
                    advisories.append(
                        Advisory(FailureKind.BIBLIOGRAPHY_DEGRADED, self._clean(degraded, area))
                    )
                else:
                    # Fold resolved citations back in (always one pass); bibtex output
                    # needs a further pass to settle, taken only within the cap
                    while True:
                        outcome = self._primary_pass(area, env, len(passes) + 1)
                        passes.append(outcome)
                        if outcome.hard_failure:
                            return self._hard_failure(outcome, area, len(passes))
                        if not outcome.needs_rerun or len(passes) >= max_passes:
                            break
                    if passes[-1].needs_rerun:
                        advisories.append(
                            Advisory(
                                FailureKind.BIBLIOGRAPHY_DEGRADED,
                                f"Citations still unsettled after {len(passes)} passes "
                                f"(max_primary_passes={max_passes}).",
                            )
                        )

            pdf_path = area / PDF_NAME
            if not pdf_path.exists():
                return self._no_pdf_failure(passes[-1], area, len(passes))

            svgs = self._rasterize(area)
        except ProcessSpawnError as e:
            return self._failure(
                FailureKind.SPAWN_FAILED,
                f"Failed to run {e.program}: {e.reason}. Is it installed?",
                area,
                primary_passes=len(passes),
            )
        except ProcessTimeoutError as e:
            return self._failure(
                FailureKind.TIMED_OUT,
                f"{e}. No artifacts from this run were kept.\n\n"
                f"--- STDERR ---\n{tail(e.stderr, self.config.max_log_chars)}\n\n"
                f"--- STDOUT ---\n{tail(e.stdout, self.config.max_log_chars)}",
                area,
                primary_passes=len(passes),
            )
        except _RasterizeError as e:
            return self._failure(
                FailureKind.NO_OUTPUT_PRODUCED, str(e), area, primary_passes=len(passes)
            )
        except OSError as e:
            return self._failure(
                FailureKind.INTERNAL_IO_FAILURE,
                f"Working area I/O failed: {e}",
                area,
                primary_passes=len(passes),
            )

        expected_pages = page_count(pdf_path)
        if expected_pages is not None and expected_pages != len(svgs):
            warnings_extra.append(
                f"PDF has {expected_pages} pages but {len(svgs)} page images were produced."
            )

        try:
            pages = self._publish_pages(svgs, run_id)
        except OSError as e:
            return self._failure(
                FailureKind.INTERNAL_IO_FAILURE,
                f"Failed to store rendered pages: {e}",
                area,
                primary_passes=len(passes),
            )

        errors, warnings = parse_latex_log(passes[-1].log_text)
        return CompileResult(
            success=True,
            pages=pages,
            advisories=advisories,
            errors=[self._clean(e, area) for e in errors],
            warnings=[self._clean(w, area) for w in warnings + warnings_extra],
            primary_passes=len(passes),
            bibliography_tool=bibliography_tool,
        )

    def _toolchain_env(self, request: CompileRequest) -> Dict[str, str]:
        env = dict(TOOLCHAIN_ENV)
        if self.config.allow_source_inputs and request.source_dir is not None:
            # Trailing separator keeps the default TeX search path
            env["TEXINPUTS"] = f"{Path(request.source_dir).resolve()}{os.pathsep}"
        return env

    def _primary_pass(self, area: Path, env: Dict[str, str], pass_number: int) -> PassOutcome:
        # Clean stale output so a missing PDF unambiguously means this pass produced none
        for name in (PDF_NAME, LOG_NAME):
            stale = area / name
            if stale.exists():
                stale.unlink()

        proc = run_process(
            self.config.latex_compiler,
            [*PRIMARY_FLAGS, SOURCE_NAME],
            working_dir=area,
            timeout=self.config.process_timeout_s,
            poll_interval=self.config.poll_interval_s,
            env=env,
            termination_grace=self.config.termination_grace_s,
        )

        log_path = area / LOG_NAME
        if log_path.exists():
            log_text = log_path.read_text(encoding="utf-8", errors="replace")
        else:
            log_text = "No log file found"

        # returncode != 0 alone is not fatal: nonstopmode exits 1 after recoverable errors
        hard_failure = is_fatal(log_text) or (
            proc.returncode != 0 and not (area / PDF_NAME).exists()
        )
        outcome = PassOutcome(
            pass_number=pass_number,
            returncode=proc.returncode,
            log_text=log_text,
            needs_rerun=needs_rerun(log_text),
            hard_failure=hard_failure,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )
        log_pass_outcome(
            self.config.latex_compiler,
            pass_number,
            proc.returncode,
            outcome.needs_rerun,
            proc.elapsed,
        )
        return outcome

    def _bibliography_trigger(self, area: Path) -> Optional[str]:
        """Bibliography tool to run, based on the control artifacts the compiler left."""
        if (area / BCF_NAME).exists():
            return self.config.biber_tool
        aux = area / AUX_NAME
        if aux.exists() and "\\bibdata" in aux.read_text(encoding="utf-8", errors="replace"):
            return self.config.bibtex_tool
        return None

    def _run_bibliography(self, tool: str, area: Path, env: Dict[str, str]) -> Optional[str]:
        """
        Run the bibliography tool once.

        Returns:
            None on success, otherwise a sanitized degradation notice (never raises
            for tool failures; citations are best-effort)
        """
        try:
            proc = run_process(
                tool,
                [SOURCE_STEM],
                working_dir=area,
                timeout=self.config.bibliography_timeout_s,
                poll_interval=self.config.poll_interval_s,
                env=env,
                termination_grace=self.config.termination_grace_s,
            )
        except ProcessSpawnError as e:
            notice = f"{tool} could not be started ({e.reason}); citations left unresolved."
            _log_warning(notice)
            return notice
        except ProcessTimeoutError as e:
            notice = f"{e}; citations left unresolved."
            _log_warning(notice)
            return notice

        log_pass_outcome(tool, 1, proc.returncode, False, proc.elapsed)
        if proc.ok:
            return None

        output = tail((proc.stdout + proc.stderr).strip(), self.config.max_log_chars)
        notice = f"{tool} exited with status {proc.returncode}; citations left unresolved."
        _log_warning(notice)
        return self._clean(f"{notice}\n\n{output}" if output else notice, area)

    def _rasterize(self, area: Path) -> List[Path]:
        """Convert the PDF to SVG pages; returns page files in page order."""
        # pdftocairo -svg doc.pdf page -> page.svg or page-1.svg, page-2.svg, ...
        proc = run_process(
            self.config.rasterizer,
            ["-svg", PDF_NAME, PAGE_PREFIX],
            working_dir=area,
            timeout=self.config.process_timeout_s,
            poll_interval=self.config.poll_interval_s,
            termination_grace=self.config.termination_grace_s,
        )
        log_pass_outcome(self.config.rasterizer, 1, proc.returncode, False, proc.elapsed)

        if not proc.ok:
            raise _RasterizeError(
                self._clean(
                    f"{self.config.rasterizer} failed to convert PDF to SVG.\n\n"
                    f"Stderr:\n{proc.stderr}",
                    area,
                )
            )

        svgs = collect_pages(area)
        if not svgs:
            file_list = ", ".join(sorted(p.name for p in area.iterdir()))
            raise _RasterizeError(
                self._clean(
                    "No SVG pages were generated, but a PDF file exists.\n"
                    f"Temp Dir Contents: [{file_list}]\n"
                    f"{self.config.rasterizer} stderr: {proc.stderr}",
                    area,
                )
            )
        return svgs

    def _publish_pages(self, svgs: List[Path], run_id: str) -> List[Path]:
        """Move page images out of the working area before it is torn down."""
        output_dir = self.config.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        run_dir = Path(tempfile.mkdtemp(prefix=f"{run_id}_", dir=output_dir))

        pages = []
        for index, svg in enumerate(svgs, start=1):
            target = run_dir / f"{PAGE_PREFIX}-{index}.svg"
            shutil.move(str(svg), str(target))
            pages.append(target)

        self._published_runs.append(run_dir)
        self._prune_runs()
        return pages

    def _prune_runs(self) -> None:
        """Delete this pipeline's run directories beyond the newest retained_runs."""
        while len(self._published_runs) > self.config.retained_runs:
            stale = self._published_runs.pop(0)
            try:
                shutil.rmtree(stale)
                _log_debug(f"Pruned old pages: {stale.name}")
            except FileNotFoundError:
                pass
            except OSError as e:
                _log_warning(f"Could not prune {stale}: {e}")

    # ------------------------------------------------------------------
    # Failure construction (always sanitized)
    # ------------------------------------------------------------------

    def _clean(self, text: str, area: Path) -> str:
        return sanitize(text, area, extra_roots=[self.config.output_dir])

    def _failure(
        self, kind: FailureKind, message: str, area: Path, primary_passes: int = 0, **kwargs
    ) -> CompileResult:
        return CompileResult.failure(
            kind, self._clean(message, area), primary_passes=primary_passes, **kwargs
        )

    def _log_report(self, headline: str, outcome: PassOutcome) -> str:
        limit = self.config.max_log_chars
        return (
            f"{headline}\n\n--- LOG ---\n{tail(outcome.log_text, limit)}"
            f"\n\n--- STDERR ---\n{tail(outcome.stderr, limit)}"
            f"\n\n--- STDOUT ---\n{tail(outcome.stdout, limit)}"
        )

    def _hard_failure(self, outcome: PassOutcome, area: Path, primary_passes: int) -> CompileResult:
        errors, warnings = parse_latex_log(outcome.log_text)
        return self._failure(
            FailureKind.HARD_COMPILE_FAILURE,
            self._log_report("LaTeX failed to generate a PDF.", outcome),
            area,
            primary_passes=primary_passes,
            errors=[self._clean(e, area) for e in errors],
            warnings=[self._clean(w, area) for w in warnings],
        )

    def _no_pdf_failure(
        self, outcome: PassOutcome, area: Path, primary_passes: int
    ) -> CompileResult:
        if has_no_pages(outcome.log_text):
            headline = (
                "Document compiled but generated no pages. Ensure you have content "
                "between \\begin{document} and \\end{document}."
            )
        else:
            headline = "LaTeX exited without producing a PDF."
        return self._failure(
            FailureKind.NO_OUTPUT_PRODUCED,
            self._log_report(headline, outcome),
            area,
            primary_passes=primary_passes,
        )


class _RasterizeError(Exception):
    """Rasterizer ran but produced no usable pages (message already sanitized)."""


def collect_pages(area: Path) -> List[Path]:
    """
    Find rendered page images in a working area, in page order.

    Handles both single-file output (page.svg) and numbered output
    (page-1.svg, page-2.svg, ...), sorting numbered pages numerically.
    """
    pages = []
    direct = area / f"{PAGE_PREFIX}.svg"
    if direct.is_file():
        pages.append(direct)

    numbered = []
    for candidate in area.glob(f"{PAGE_PREFIX}-*.svg"):
        index = candidate.stem[len(PAGE_PREFIX) + 1 :]
        if index.isdigit() and candidate.is_file():
            numbered.append((int(index), candidate))

    pages.extend(path for _, path in sorted(numbered))
    return pages
