"""Execution of ffmpeg jobs: input staging, resource checks and the process itself."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import subprocess
import tempfile
import urllib.error
import urllib.request
from typing import BinaryIO, Iterator

import psutil

from .config import Config
from .manager import RunContext, TaskCanceled
from .security import INPUT_MEDIA_PLACEHOLDER, split_command
from .task import Task

log = logging.getLogger(__name__)

_POLL = 0.05
_CHUNK = 64 * 1024
_DOWNLOAD_TIMEOUT = 30.0


class RunnerError(Exception):
    """Raised when a job cannot be prepared or ffmpeg fails."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class Runner:
    """Runs ffmpeg for tasks inside a private temporary directory."""

    cpu_sample_seconds = 1.0

    def __init__(self, cfg: Config):
        if shutil.which(cfg.ff_bin) is None:
            raise RunnerError(f"ffmpeg binary not found or not in PATH: {cfg.ff_bin}")
        try:
            temp_dir = tempfile.mkdtemp(prefix="ffwebapi_")
        except OSError as exc:
            raise RunnerError(f"could not create temp directory: {exc}") from exc
        log.info("Using temporary directory: %s", temp_dir)
        cfg.temp_dir = temp_dir
        self.cfg = cfg
        self.temp_dir = temp_dir

    def run(self, ctx: RunContext, task: Task) -> str:
        """Run ffmpeg for ``task`` and return its combined stdout and stderr."""
        try:
            self.check_resources()
        except RunnerError as exc:
            raise RunnerError(f"insufficient system resources: {exc}") from exc

        with contextlib.ExitStack() as stack:
            try:
                input_path = stack.enter_context(
                    self.prepare_input(ctx, task.input_media, task.id)
                )
            except (RunnerError, OSError) as exc:
                raise RunnerError(f"failed to prepare input: {exc}") from exc
            task.input_path = input_path

            args = self._substitute_input(split_command(task.command), input_path)
            output_path = os.path.join(self.temp_dir, f"{task.id}_output.{task.output_ext}")
            task.output_path = output_path
            args.append(output_path)
            return self._execute(ctx, task, [self.cfg.ff_bin, *args])

    @staticmethod
    def _substitute_input(args: list[str], input_path: str) -> list[str]:
        for position, arg in enumerate(args):
            if INPUT_MEDIA_PLACEHOLDER in arg:
                args[position] = arg.replace(INPUT_MEDIA_PLACEHOLDER, input_path, 1)
                return args
        raise RunnerError(f"could not find placeholder {INPUT_MEDIA_PLACEHOLDER} in command")

    @staticmethod
    def _discard_output(task: Task) -> None:
        if task.output_path:
            with contextlib.suppress(OSError):
                os.remove(task.output_path)
        task.output_path = ""

    def _execute(self, ctx: RunContext, task: Task, argv: list[str]) -> str:
        log.info("Executing for task %s: %s", task.id, " ".join(argv))
        if ctx.is_done():
            self._discard_output(task)
            raise TaskCanceled("ffmpeg execution canceled")
        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        except OSError as exc:
            self._discard_output(task)
            raise RunnerError(f"ffmpeg execution failed: {exc}") from exc

        while True:
            try:
                raw, _ = proc.communicate(timeout=_POLL)
                break
            except subprocess.TimeoutExpired:
                if ctx.is_done():
                    proc.kill()
                    raw, _ = proc.communicate()
                    self._discard_output(task)
                    raise TaskCanceled(
                        "ffmpeg execution canceled",
                        output=raw.decode("utf-8", errors="replace"),
                    ) from None

        output = raw.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            self._discard_output(task)
            raise RunnerError(
                f"ffmpeg execution failed: exit status {proc.returncode}", output=output
            )
        return output

    @contextlib.contextmanager
    def prepare_input(self, ctx: RunContext, input_media: str, task_id: str) -> Iterator[str]:
        """Stage the input in a temp file, yield its path and remove it afterwards."""
        fd, path = tempfile.mkstemp(prefix=f"{task_id}_input_", dir=self.temp_dir)
        try:
            with os.fdopen(fd, "wb") as dest:
                if input_media.startswith(("http://", "https://")):
                    self._download(ctx, input_media, dest)
                elif input_media.startswith("data:"):
                    raise RunnerError("data URI inputs are not yet supported")
                else:
                    self._copy_local(input_media, dest)
            yield path
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.remove(path)

    def _download(self, ctx: RunContext, url: str, dest: BinaryIO) -> None:
        limit = self.cfg.max_input_size
        request = urllib.request.Request(url, method="GET")
        try:
            response = urllib.request.urlopen(request, timeout=_DOWNLOAD_TIMEOUT)
        except urllib.error.HTTPError as exc:
            exc.close()
            raise RunnerError(
                f"failed to download file, status: {exc.code} {exc.reason}"
            ) from exc
        except urllib.error.URLError as exc:
            raise RunnerError(str(exc.reason)) from exc

        with response:
            if response.status != 200:
                raise RunnerError(
                    f"failed to download file, status: {response.status} {response.reason}"
                )
            written = 0
            try:
                while written <= limit:
                    if ctx.is_done():
                        raise TaskCanceled("input download canceled")
                    chunk = response.read(min(_CHUNK, limit + 1 - written))
                    if not chunk:
                        break
                    dest.write(chunk)
                    written += len(chunk)
            except OSError as exc:
                raise RunnerError(f"failed to write downloaded file: {exc}") from exc
        if written > limit:
            raise RunnerError(f"input file size exceeds limit of {limit} bytes")

    def _copy_local(self, input_media: str, dest: BinaryIO) -> None:
        limit = self.cfg.max_input_size
        try:
            src = open(input_media, "rb")
        except OSError as exc:
            raise RunnerError(f"could not open local input file: {exc}") from exc
        with src:
            size = os.fstat(src.fileno()).st_size
            if size > limit:
                raise RunnerError(f"input file size {size} exceeds limit of {limit} bytes")
            try:
                shutil.copyfileobj(src, dest)
            except OSError as exc:
                raise RunnerError(f"failed to copy local file: {exc}") from exc

    def check_resources(self) -> None:
        """Raise RunnerError unless CPU, memory and disk leave room for a new job."""
        try:
            usage = psutil.cpu_percent(interval=self.cpu_sample_seconds)
        except (OSError, psutil.Error) as exc:
            log.warning("Warning: could not get CPU usage: %s", exc)
        else:
            if usage > 100.0 - self.cfg.throttle_cpu:
                raise RunnerError(
                    f"not enough idle CPU. Current usage: {usage:.2f}%, "
                    f"Idle threshold: {self.cfg.throttle_cpu:.2f}%"
                )

        try:
            available = psutil.virtual_memory().available
        except (OSError, psutil.Error) as exc:
            log.warning("Warning: could not get memory usage: %s", exc)
        else:
            if available < self.cfg.throttle_freemem:
                raise RunnerError(
                    f"not enough free memory. Available: {available}, "
                    f"Required: {self.cfg.throttle_freemem}"
                )

        try:
            free = psutil.disk_usage(self.temp_dir).free
        except (OSError, psutil.Error) as exc:
            log.warning("Warning: could not get disk usage for %s: %s", self.temp_dir, exc)
        else:
            if free < self.cfg.throttle_freedisk:
                raise RunnerError(
                    f"not enough free disk space. Available: {free}, "
                    f"Required: {self.cfg.throttle_freedisk}"
                )