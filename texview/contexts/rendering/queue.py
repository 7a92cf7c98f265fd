"""
Compilation Queue

A single-slot admission point in front of CompilationPipeline. One dedicated
worker thread runs every compilation, so no two runs ever share a working
area. Callers talk to the worker only through CompileRequest values in and
Future[CompileResult] values out.

Admission policy (latest wins, never a backlog):
    - worker busy compiling         -> reject (BUSY); the caller retries later
    - slot holds an unstarted request -> replace it; the old future is cancelled
    - queue shutting down/stopped   -> reject (CLOSED)
"""

import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Tuple

from loguru import logger

from texview.contexts.rendering.exceptions import QueueShutdownError
from texview.contexts.rendering.logger import _log_info, log_queue_event
from texview.contexts.rendering.models import CompileRequest, CompileResult


class Compiler(Protocol):
    """Anything with the CompilationPipeline.compile() signature."""

    def compile(self, request: CompileRequest) -> CompileResult: ...


class QueueState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class SubmitStatus(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectReason(Enum):
    BUSY = "busy"
    CLOSED = "closed"


@dataclass(frozen=True)
class Submission:
    """
    Outcome of CompilationQueue.submit().

    Attributes:
        status: ACCEPTED or REJECTED
        reason: Why the request was rejected (None if accepted)
        future: Resolves to the CompileResult (None if rejected). Cancelled if a
            newer submission replaces this one before the worker claims it.
    """

    status: SubmitStatus
    reason: Optional[RejectReason] = None
    future: Optional["Future[CompileResult]"] = None

    @property
    def accepted(self) -> bool:
        return self.status is SubmitStatus.ACCEPTED


class CompilationQueue:
    """
    Serializes compilations through one worker thread.

    Args:
        pipeline: Object whose compile() performs one run (normally CompilationPipeline)
        shutdown_timeout_s: How long shutdown() waits for the worker
            (default: pipeline.config.shutdown_timeout_s, else 120s)
        start: Start the worker immediately

    Example:
        >>> queue = CompilationQueue(CompilationPipeline(config))
        >>> submission = queue.submit(CompileRequest(text=source))
        >>> if submission.accepted:
        ...     result = submission.future.result()
        >>> queue.shutdown()
    """

    def __init__(
        self,
        pipeline: Compiler,
        shutdown_timeout_s: Optional[float] = None,
        start: bool = True,
    ):
        if shutdown_timeout_s is None:
            config = getattr(pipeline, "config", None)
            shutdown_timeout_s = getattr(config, "shutdown_timeout_s", 120.0)

        self._pipeline = pipeline
        self._shutdown_timeout_s = shutdown_timeout_s
        self._cond = threading.Condition()
        self._slot: Optional[Tuple[CompileRequest, "Future[CompileResult]"]] = None
        self._state = QueueState.IDLE
        self._closing = False
        self._worker = threading.Thread(
            target=self._worker_loop, name="texview-compile-worker", daemon=True
        )
        self._started = False
        if start:
            self.start()

    def __enter__(self) -> "CompilationQueue":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    @property
    def state(self) -> QueueState:
        with self._cond:
            return self._state

    @property
    def has_pending(self) -> bool:
        with self._cond:
            return self._slot is not None

    def start(self) -> None:
        """Start the worker thread (idempotent)."""
        with self._cond:
            if self._started:
                return
            self._started = True
        self._worker.start()
        log_queue_event("worker started")

    def submit(
        self,
        request: CompileRequest,
        callback: Optional[Callable[["Future[CompileResult]"], None]] = None,
    ) -> Submission:
        """
        Offer a document snapshot for compilation without blocking.

        Args:
            request: Document snapshot
            callback: Called with the future once it resolves or is cancelled

        Returns:
            Submission describing acceptance and carrying the response future
        """
        with self._cond:
            if self._closing:
                log_queue_event("rejected", "queue closed")
                return Submission(SubmitStatus.REJECTED, RejectReason.CLOSED)
            if self._state is QueueState.RUNNING:
                log_queue_event("rejected", "compilation in progress")
                return Submission(SubmitStatus.REJECTED, RejectReason.BUSY)

            future: "Future[CompileResult]" = Future()
            if self._slot is not None:
                _, replaced = self._slot
                replaced.cancel()
                log_queue_event("replaced pending request", f"submitted {request.submitted_at}")
            self._slot = (request, future)
            self._cond.notify()

        if callback is not None:
            future.add_done_callback(callback)
        return Submission(SubmitStatus.ACCEPTED, future=future)

    def _take(self) -> Optional[Tuple[CompileRequest, "Future[CompileResult]"]]:
        """Block until a request is available; claim it and mark the queue RUNNING."""
        with self._cond:
            while self._slot is None and not self._closing:
                self._cond.wait()
            if self._slot is None:
                return None
            request, future = self._slot
            self._slot = None
            if not future.set_running_or_notify_cancel():
                return request, future
            self._state = QueueState.RUNNING
            return request, future

    def _worker_loop(self) -> None:
        while True:
            claimed = self._take()
            if claimed is None:
                break
            request, future = claimed
            if future.cancelled():
                continue

            start = time.time()
            result, error = None, None
            try:
                result = self._pipeline.compile(request)
            except Exception as e:
                logger.exception("Compilation worker caught an unexpected pipeline error")
                error = e

            # Release the slot before resolving, so a caller reacting to the result can resubmit
            with self._cond:
                self._state = QueueState.SHUTTING_DOWN if self._closing else QueueState.IDLE
                self._cond.notify_all()

            if error is not None:
                future.set_exception(error)
            else:
                _log_info(f"LaTeX compilation completed in {time.time() - start:.2f}s")
                future.set_result(result)

        log_queue_event("worker shutting down")

    def shutdown(self) -> None:
        """
        Stop accepting work, let any in-flight run finish, and join the worker.

        A pending request that has not started is cancelled. A running compilation
        is never interrupted, so its working area is always torn down.

        Raises:
            QueueShutdownError: If the worker is still alive after shutdown_timeout_s
        """
        with self._cond:
            if self._state is QueueState.STOPPED:
                return
            self._closing = True
            if self._slot is not None:
                _, pending = self._slot
                pending.cancel()
                self._slot = None
            if self._state is QueueState.IDLE:
                self._state = QueueState.SHUTTING_DOWN
            self._cond.notify_all()

        if self._started:
            self._worker.join(timeout=self._shutdown_timeout_s)
            if self._worker.is_alive():
                raise QueueShutdownError(
                    f"Compilation worker did not stop within {self._shutdown_timeout_s:g}s",
                    timeout=self._shutdown_timeout_s,
                )

        with self._cond:
            self._state = QueueState.STOPPED
        log_queue_event("stopped")
