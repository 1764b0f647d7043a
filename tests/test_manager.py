import os
import threading
import time
from datetime import timedelta

import pytest

from ffwebapi.config import Config
from ffwebapi.manager import Manager, RunContext, TaskCanceled, TaskError
from ffwebapi.task import Status


class MockRunner:
    def __init__(self, func=None):
        self.func = func

    def run(self, ctx, task):
        if self.func is not None:
            return self.func(ctx, task)
        return "mock output"


def make_config(**overrides):
    cfg = Config(
        max_concurrency=1,
        ff_timeout=timedelta(seconds=10),
        output_local_lifetime=timedelta(hours=1),
    )
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def wait_until(predicate, timeout=3.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def started():
    managers = []

    def factory(cfg, runner):
        mgr = Manager(cfg, runner)
        mgr.start()
        managers.append(mgr)
        return mgr

    yield factory
    for mgr in managers:
        mgr.stop()


def test_submit():
    mgr = Manager(make_config(), MockRunner())
    task = mgr.submit("-i ${INPUT_MEDIA}", "input.mp4", "mp4")
    assert task.id
    assert task.status is Status.QUEUED
    assert mgr.get(task.id).id == task.id
    assert mgr.get("missing") is None
    assert mgr.list() == [task]


def test_successful_processing(started):
    def work(ctx, task):
        time.sleep(0.01)
        return "success log"

    mgr = started(make_config(), MockRunner(work))
    task = mgr.submit("-i ${INPUT_MEDIA}", "input.mp4", "mp4")
    assert wait_until(lambda: mgr.get(task.id).status is Status.COMPLETED)
    assert mgr.get(task.id).ffmpeg_output == "success log"


def test_failed_processing(started):
    def work(ctx, task):
        raise RuntimeError("ffmpeg failed")

    mgr = started(make_config(), MockRunner(work))
    task = mgr.submit("-i ${INPUT_MEDIA}", "input.mp4", "mp4")
    assert wait_until(lambda: mgr.get(task.id).status is Status.FAILED)
    assert mgr.get(task.id).error == "ffmpeg failed"


def test_cancel_queued_task(started):
    mgr = started(make_config(max_concurrency=0), MockRunner())
    task = mgr.submit("-i ${INPUT_MEDIA}", "input.mp4", "mp4")
    mgr.cancel(task.id)
    assert mgr.get(task.id).status is Status.CANCELED


def test_cancel_processing_task(started):
    processing_started = threading.Event()

    def work(ctx, task):
        processing_started.set()
        ctx.wait()
        raise TaskCanceled(output="canceled output")

    mgr = started(make_config(), MockRunner(work))
    task = mgr.submit("-i ${INPUT_MEDIA}", "input.mp4", "mp4")
    assert processing_started.wait(3)
    mgr.cancel(task.id)
    assert wait_until(lambda: mgr.get(task.id).status is Status.CANCELED)
    assert mgr.get(task.id).ffmpeg_output == "canceled output"


def test_cannot_cancel_completed_task(started):
    mgr = started(make_config(), MockRunner())
    task = mgr.submit("-i ${INPUT_MEDIA}", "input.mp4", "mp4")
    assert wait_until(lambda: mgr.get(task.id).status is Status.COMPLETED)
    with pytest.raises(TaskError, match="cannot cancel task in state: completed"):
        mgr.cancel(task.id)


def test_cancel_unknown_task():
    mgr = Manager(make_config(), MockRunner())
    with pytest.raises(TaskError, match="not found"):
        mgr.cancel("nope")


def test_get_file_path(tmp_path):
    mgr = Manager(make_config(temp_dir=str(tmp_path)), MockRunner())
    (tmp_path / "out.mp4").write_bytes(b"x")
    assert mgr.get_file_path("out.mp4") == os.path.join(str(tmp_path), "out.mp4")
    with pytest.raises(TaskError, match="invalid filename"):
        mgr.get_file_path("../out.mp4")
    with pytest.raises(TaskError, match="file not found"):
        mgr.get_file_path("missing.mp4")


def test_run_context_cancel_and_timeout():
    ctx = RunContext()
    assert ctx.is_done() is False
    assert ctx.wait(0.02) is False
    ctx.cancel()
    assert ctx.wait() is True
    timed = RunContext(timeout=0.01)
    assert timed.wait(2) is True
    assert timed.timed_out is True