"""Client-side upload orchestration with bounded concurrency and retries."""

from __future__ import annotations

import dataclasses
import logging
import math
import queue
import threading
import time
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from .models import ChunkRequest, UploadSource, UploadSummary, UploadTask
from .transport import UploadTransport

LOGGER = logging.getLogger(__name__)

CHUNK_THRESHOLD_BYTES = 10 * 1024 * 1024
CHUNK_SIZE_BYTES = 5 * 1024 * 1024
DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_RETRIES = 3

T = TypeVar("T")


class UploadOrchestrator:
    """Drain a FIFO of upload tasks through a fixed-size worker pool.

    Every transfer (a whole payload or a single chunk) is retried with
    exponential backoff up to ``max_retries`` times after the first attempt.
    All failures share the same policy. A task that exhausts its retries ends
    in ``error`` without affecting the other tasks of the batch.
    """

    def __init__(
        self,
        transport: UploadTransport,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        chunk_threshold: int = CHUNK_THRESHOLD_BYTES,
        chunk_size: int = CHUNK_SIZE_BYTES,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
        on_update: Optional[Callable[[UploadTask], None]] = None,
        on_complete: Optional[Callable[[UploadSummary], None]] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            transport: Channel used to deliver payloads and chunks.
            concurrency: Maximum number of tasks uploading at once.
            max_retries: Retries allowed per transfer after the first attempt.
            chunk_threshold: Payloads larger than this many bytes are chunked.
            chunk_size: Size of each chunk in bytes.
            backoff_base: Delay before the first retry, doubled per retry.
            backoff_max: Upper bound on a single backoff delay.
            sleep: Function used to wait between attempts.
            on_update: Called with a snapshot whenever a task changes.
            on_complete: Called once with the summary after a batch drains.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._transport = transport
        self._concurrency = concurrency
        self._max_retries = max(0, max_retries)
        self._chunk_threshold = chunk_threshold
        self._chunk_size = chunk_size
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._sleep = sleep
        self._on_update = on_update
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._tasks: dict[str, UploadTask] = {}

    @property
    def tasks(self) -> list[UploadTask]:
        """Return snapshots of the tasks currently tracked."""
        with self._lock:
            return [dataclasses.replace(task) for task in self._tasks.values()]

    def upload(self, sources: Iterable[UploadSource], directory: Sequence[str]) -> UploadSummary:
        """Upload ``sources`` into ``directory`` and wait for the batch to drain.

        Returns:
            UploadSummary: Success and failure counts for this batch.
        """

        work: queue.Queue[tuple[UploadTask, UploadSource]] = queue.Queue()
        batch: list[UploadTask] = []
        for source in sources:
            task = UploadTask(name=source.name)
            with self._lock:
                self._tasks[task.task_id] = task
            batch.append(task)
            work.put((task, source))
            self._notify(task)

        workers = [
            threading.Thread(
                target=self._worker,
                args=(work, list(directory)),
                name=f"nasdrive-upload-{index}",
                daemon=True,
            )
            for index in range(min(self._concurrency, len(batch)))
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        with self._lock:
            snapshots = [dataclasses.replace(task) for task in batch]
        succeeded = sum(1 for task in snapshots if task.status == "completed")
        summary = UploadSummary(
            succeeded=succeeded, failed=len(snapshots) - succeeded, tasks=snapshots
        )
        LOGGER.info(
            "Upload batch finished: %d succeeded, %d failed", summary.succeeded, summary.failed
        )
        if self._on_complete is not None:
            self._on_complete(summary)
        return summary

    def dismiss(self, task_id: str) -> None:
        """Forget a task; unknown ids are ignored."""
        with self._lock:
            self._tasks.pop(task_id, None)

    def clear_completed(self) -> int:
        """Forget every completed task and return how many were removed."""
        with self._lock:
            done = [key for key, task in self._tasks.items() if task.status == "completed"]
            for key in done:
                del self._tasks[key]
        return len(done)

    # Internal helpers -------------------------------------------------

    def _worker(
        self,
        work: "queue.Queue[tuple[UploadTask, UploadSource]]",
        directory: list[str],
    ) -> None:
        while True:
            try:
                task, source = work.get_nowait()
            except queue.Empty:
                return
            try:
                self._run_task(task, source, directory)
            finally:
                work.task_done()

    def _run_task(self, task: UploadTask, source: UploadSource, directory: list[str]) -> None:
        self._update(task, status="uploading")
        try:
            if source.size > self._chunk_threshold:
                self._send_chunked(task, source, directory)
            else:
                self._with_retries(
                    task, "upload", lambda: self._send_direct(source, directory)
                )
        except Exception as exc:
            LOGGER.error("Upload of %s failed: %s", source.name, exc)
            self._update(task, status="error", error=str(exc) or type(exc).__name__)
            return
        self._update(task, status="completed", progress=100)

    def _send_direct(self, source: UploadSource, directory: list[str]) -> None:
        with source.open() as stream:
            self._transport.send_file(directory, source.name, stream)

    def _send_chunked(self, task: UploadTask, source: UploadSource, directory: list[str]) -> None:
        total = max(1, math.ceil(source.size / self._chunk_size))
        with source.open() as stream:
            for index in range(total):
                chunk = ChunkRequest(
                    index=index,
                    total=total,
                    data=stream.read(self._chunk_size),
                    offset=index * self._chunk_size,
                )
                self._with_retries(
                    task,
                    f"chunk {index + 1}/{total}",
                    lambda: self._transport.send_chunk(directory, source.name, chunk),
                )
                if index < total - 1:
                    self._update(task, progress=(index + 1) * 100 / total)

    def _with_retries(self, task: UploadTask, label: str, action: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return action()
            except Exception as exc:
                if attempt >= self._max_retries:
                    raise
                delay = min(self._backoff_max, self._backoff_base * (2**attempt))
                attempt += 1
                LOGGER.warning(
                    "Retrying %s of %s (attempt %d/%d) in %.2fs: %s",
                    label,
                    task.name,
                    attempt,
                    self._max_retries,
                    delay,
                    exc,
                )
                self._sleep(delay)

    def _update(
        self,
        task: UploadTask,
        *,
        status: Optional[str] = None,
        progress: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            if status is not None:
                task.status = status  # type: ignore[assignment]
            if progress is not None:
                task.advance(progress)
            if error is not None:
                task.error = error
        self._notify(task)

    def _notify(self, task: UploadTask) -> None:
        if self._on_update is None:
            return
        with self._lock:
            snapshot = dataclasses.replace(task)
        self._on_update(snapshot)


__all__ = [
    "UploadOrchestrator",
    "CHUNK_THRESHOLD_BYTES",
    "CHUNK_SIZE_BYTES",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_MAX_RETRIES",
]
