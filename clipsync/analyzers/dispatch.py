"""Runs normalize + correlate off the calling thread.

The dispatcher owns one execution strategy, chosen once by
``create_dispatcher``: a single-worker process pool when one can be
started, otherwise inline execution in the calling process. Both produce
identical SyncResults for identical inputs.
"""

import logging
import pickle
from concurrent.futures import Future, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from typing import Callable

import numpy as np

from clipsync.analyzers.correlate import MAX_OFFSET_SECONDS, correlate_signals
from clipsync.models import Signal, SyncResult

logger = logging.getLogger(__name__)

WARMUP_TIMEOUT_S = 30.0

# Failures of the execution machinery rather than of the algorithm.
_INFRASTRUCTURE_ERRORS = (BrokenProcessPool, pickle.PicklingError, OSError)


class WorkerError(RuntimeError):
    """The worker process could not be started or died mid-job."""
    pass


class CorrelationError(RuntimeError):
    """Correlation itself failed (bad input or an unexpected error)."""
    pass


def _correlate_job(
    video_samples: np.ndarray,
    audio_samples: np.ndarray,
    max_offset_seconds: float,
    sample_rate: int,
) -> SyncResult:
    reference = Signal(video_samples, sample_rate)
    target = Signal(audio_samples, sample_rate)
    return correlate_signals(reference, target, max_offset_seconds)


def _ping() -> bool:
    return True


class InlineStrategy:
    """Executes jobs synchronously in the calling thread."""

    name = "inline"

    def submit(self, fn: Callable, *args) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self) -> None:
        pass


class ProcessPoolStrategy:
    """Executes jobs in a dedicated worker process.

    Sample buffers are pickled into the worker; only the small SyncResult
    travels back.
    """

    name = "process"

    def __init__(self, executor: ProcessPoolExecutor | None = None):
        self._executor = executor or ProcessPoolExecutor(max_workers=1)

    def warm_up(self, timeout: float = WARMUP_TIMEOUT_S) -> None:
        self._executor.submit(_ping).result(timeout=timeout)

    def submit(self, fn: Callable, *args) -> Future:
        try:
            return self._executor.submit(fn, *args)
        except (RuntimeError, *_INFRASTRUCTURE_ERRORS) as e:
            raise WorkerError(f"Could not submit job to worker: {e}") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


class SyncDispatcher:
    """Single entry point for running a synchronization job."""

    def __init__(self, strategy=None):
        self.strategy = strategy or InlineStrategy()
        self._inline = InlineStrategy()

    def submit(
        self,
        video: Signal,
        audio: Signal,
        max_offset_seconds: float = MAX_OFFSET_SECONDS,
    ) -> "Future[SyncResult]":
        """Start a job and return a future resolving to a SyncResult.

        The future fails with CorrelationError. Worker failures are
        recovered by running the job once inline before giving up.
        """
        if video.sample_rate != audio.sample_rate:
            raise CorrelationError(
                f"Sample rates differ: {video.sample_rate} != {audio.sample_rate}"
            )
        if max_offset_seconds < 0:
            raise CorrelationError("max_offset_seconds must be non-negative")

        args = (video.samples, audio.samples, max_offset_seconds, video.sample_rate)
        result: Future = Future()

        try:
            job = self.strategy.submit(_correlate_job, *args)
        except WorkerError as e:
            logger.warning("%s; running correlation inline", e)
            self._run_fallback(result, args, e)
            return result

        def on_done(done: Future) -> None:
            exc = done.exception()
            if exc is None:
                result.set_result(done.result())
            elif isinstance(exc, (WorkerError, *_INFRASTRUCTURE_ERRORS)):
                logger.warning("Worker failed (%s); running correlation inline", exc)
                self._run_fallback(result, args, WorkerError(str(exc)))
            else:
                result.set_exception(self._wrap(exc))

        job.add_done_callback(on_done)
        return result

    def run(
        self,
        video: Signal,
        audio: Signal,
        max_offset_seconds: float = MAX_OFFSET_SECONDS,
    ) -> SyncResult:
        """Blocking form of :meth:`submit`."""
        return self.submit(video, audio, max_offset_seconds).result()

    def shutdown(self) -> None:
        self.strategy.shutdown()

    def _run_fallback(self, result: Future, args: tuple, cause: WorkerError) -> None:
        fallback = self._inline.submit(_correlate_job, *args)
        exc = fallback.exception()
        if exc is None:
            result.set_result(fallback.result())
            return
        error = self._wrap(exc)
        error.__cause__ = cause
        result.set_exception(error)

    @staticmethod
    def _wrap(exc: BaseException) -> CorrelationError:
        if isinstance(exc, CorrelationError):
            return exc
        error = CorrelationError(f"Correlation failed: {exc}")
        error.__cause__ = exc
        return error


def create_dispatcher(use_worker: bool = True) -> SyncDispatcher:
    """Pick the execution strategy once and wrap it in a dispatcher."""
    if not use_worker:
        return SyncDispatcher(InlineStrategy())

    strategy = None
    try:
        strategy = ProcessPoolStrategy()
        strategy.warm_up()
    except Exception as e:
        logger.warning("Worker process unavailable (%s); using inline correlation", e)
        if strategy is not None:
            strategy.shutdown()
        return SyncDispatcher(InlineStrategy())

    logger.debug("Using worker process for correlation")
    return SyncDispatcher(strategy)
