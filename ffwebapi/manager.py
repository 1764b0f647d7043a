"""Queueing, concurrency limiting, cancellation and cleanup of tasks."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Protocol

from .config import Config
from .task import Status, Task

log = logging.getLogger(__name__)

_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_POLL = 0.05


def _short_uuid() -> str:
    number = uuid.uuid4().int
    chars = []
    while number:
        number, rem = divmod(number, len(_ALPHABET))
        chars.append(_ALPHABET[rem])
    return "".join(chars).ljust(22, _ALPHABET[0])


class TaskError(Exception):
    """Raised when a task operation cannot be carried out."""


class TaskCanceled(Exception):
    """Raised by a runner when its task was canceled or timed out."""

    def __init__(self, message: str = "task canceled", output: str = "") -> None:
        super().__init__(message)
        self.output = output


class RunContext:
    """Cancellation and deadline handle passed to a runner."""

    def __init__(self, timeout: float | None = None, parent: threading.Event | None = None):
        self._event = threading.Event()
        self._parent = parent
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def is_done(self) -> bool:
        return (
            self._event.is_set()
            or (self._parent is not None and self._parent.is_set())
            or self.timed_out
        )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until done or until ``timeout`` seconds pass; return is_done()."""
        end = time.monotonic() + timeout if timeout is not None else None
        while not self.is_done():
            if end is not None and time.monotonic() >= end:
                break
            slice_ = _POLL if end is None else max(0.0, min(_POLL, end - time.monotonic()))
            self._event.wait(slice_)
        return self.is_done()


class TaskRunner(Protocol):
    def run(self, ctx: RunContext, task: Task) -> str:
        """Run the task and return its log; raise on failure."""


class Manager:
    """Holds tasks, feeds them to the runner and cleans up old outputs."""

    def __init__(self, cfg: Config, runner: TaskRunner):
        self.cfg = cfg
        self.runner = runner
        self._tasks: dict[str, Task] = {}
        self._lock = threading.Lock()
        self._queue: queue.Queue[Task] = queue.Queue(maxsize=100)
        self._slots = threading.Semaphore(max(cfg.max_concurrency, 0))
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        log.info("Task manager started. Concurrency limit: %d", self.cfg.max_concurrency)
        self._stop.clear()
        for target in (self._cleanup_loop, self._worker_loop):
            thread = threading.Thread(target=target, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=1)
        self._threads.clear()

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            try:
                task = self._queue.get(timeout=_POLL)
            except queue.Empty:
                continue
            while not self._slots.acquire(timeout=_POLL):
                if self._stop.is_set():
                    log.info("Worker loop shutting down.")
                    return
            threading.Thread(target=self._run_slot, args=(task,), daemon=True).start()
        log.info("Worker loop shutting down.")

    def _run_slot(self, task: Task) -> None:
        try:
            self._process_task(task)
        finally:
            self._slots.release()

    def _process_task(self, task: Task) -> None:
        ctx = RunContext(self.cfg.ff_timeout.total_seconds(), self._stop)
        with self._lock:
            task.cancel_handle = ctx
            if task.status is Status.CANCELED:
                log.info("Task %s was canceled before processing.", task.id)
                return
            task.status = Status.PROCESSING
            task.started_at = datetime.now(timezone.utc)
        log.info("Processing task %s", task.id)
        try:
            output = self.runner.run(ctx, task)
        except TaskCanceled as exc:
            log.info("Task %s canceled or timed out.", task.id)
            with self._lock:
                task.ffmpeg_output = exc.output
                task.status = Status.CANCELED
                task.error = "Task was canceled or timed out"
        except Exception as exc:  # runner failures of any kind mark the task failed
            log.info("Task %s failed: %s", task.id, exc)
            with self._lock:
                task.ffmpeg_output = getattr(exc, "output", "") or ""
                task.status = Status.FAILED
                task.error = str(exc)
        else:
            log.info("Task %s completed successfully.", task.id)
            with self._lock:
                task.ffmpeg_output = output
                task.status = Status.COMPLETED
        finally:
            ctx.cancel()
        with self._lock:
            task.completed_at = datetime.now(timezone.utc)

    def _cleanup_loop(self) -> None:
        lifetime = self.cfg.output_local_lifetime.total_seconds()
        interval = max(lifetime / 4, _POLL)
        while not self._stop.wait(interval):
            self._cleanup_once(lifetime)
        log.info("Cleanup loop shutting down.")

    def _cleanup_once(self, lifetime: float) -> None:
        now = datetime.now(timezone.utc)
        for task in self.list():
            if (
                task.status is Status.COMPLETED
                and task.completed_at is not None
                and (now - task.completed_at).total_seconds() > lifetime
                and task.output_path
            ):
                log.info("Cleaning up old output file: %s", task.output_path)
                try:
                    os.remove(task.output_path)
                except OSError:
                    pass

    def submit(self, command: str, input_media: str, output_ext: str) -> Task:
        task = Task(
            id=f"{_short_uuid()}_{int(time.time())}",
            command=command,
            input_media=input_media,
            output_ext=output_ext,
        )
        with self._lock:
            self._tasks[task.id] = task
        self._queue.put(task)
        log.info("Task %s submitted to queue.", task.id)
        return task

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def list(self) -> list[Task]:
        with self._lock:
            return list(self._tasks.values())

    def cancel(self, task_id: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskError(f"task {task_id} not found")
            if task.status in (Status.COMPLETED, Status.FAILED, Status.CANCELED):
                raise TaskError(f"cannot cancel task in state: {task.status.value}")
            if task.status is Status.QUEUED:
                task.status = Status.CANCELED
                task.error = "Canceled by user while in queue"
                log.info("Task %s marked as canceled in queue.", task.id)
                return
            if task.cancel_handle is None:
                raise TaskError(f"task {task.id} is processing but has no cancellation handle")
            task.cancel_handle.cancel()
            log.info("Cancellation signal sent to running task %s.", task.id)

    def get_file_path(self, filename: str) -> str:
        clean = os.path.basename(filename)
        if clean != filename or clean in ("", ".", ".."):
            raise TaskError("invalid filename")
        full_path = os.path.join(self.cfg.temp_dir, clean)
        if not os.path.exists(full_path):
            raise TaskError("file not found")
        return full_path