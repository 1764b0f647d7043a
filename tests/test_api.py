import pytest

from ffwebapi.api import create_app
from ffwebapi.config import Config
from ffwebapi.manager import Manager
from ffwebapi.task import Status


class _MockRunner:
    def run(self, ctx, task):
        task.output_path = f"/tmp/{task.id}_output.mp4"
        task.download_url = f"/api/v1/files/{task.output_path}"
        return "ok"


@pytest.fixture
def setup():
    cfg = Config(max_concurrency=1, auth_enable=False)
    manager = Manager(cfg, _MockRunner())
    app = create_app(manager, cfg)
    app.testing = True
    return app.test_client(), cfg, manager


def _send_cancel(client, task_id):
    return client.open(f"/api/v1/tasks/{task_id}/cancel", method="PATCH")


def test_create_task(setup):
    client, _, manager = setup
    resp = client.post(
        "/api/v1/tasks",
        json={"command": "-i ${INPUT_MEDIA} -vcodec copy", "inputMedia": "test.mkv", "outputExt": "mp4"},
    )
    assert resp.status_code == 202
    task_id = resp.get_json()["taskId"]
    assert task_id
    task = manager.get(task_id)
    assert task is not None
    assert task.input_media == "test.mkv"


def test_create_task_missing_output_ext(setup):
    client, _, manager = setup
    resp = client.post("/api/v1/tasks", json={"command": "-i ${INPUT_MEDIA}"})
    assert resp.status_code == 400
    assert "outputExt" in resp.get_json()["error"]
    assert manager.list() == []


def test_create_task_invalid_syntax(setup):
    client, _, _ = setup
    resp = client.post(
        "/api/v1/tasks", json={"command": '-i ${INPUT_MEDIA} -vf "unterminated', "outputExt": "mp4"}
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Invalid command syntax:")


def test_create_task_disallowed_character(setup):
    client, _, _ = setup
    resp = client.post("/api/v1/tasks", json={"command": "-i ${INPUT_MEDIA}; ls", "outputExt": "mp4"})
    assert resp.status_code == 400
    assert "disallowed character found in argument: ${INPUT_MEDIA};" in resp.get_json()["error"]


def test_create_task_rejects_non_json(setup):
    client, _, _ = setup
    resp = client.post("/api/v1/tasks", data="not json", content_type="application/json")
    assert resp.status_code == 400


def test_get_task_status(setup):
    client, _, manager = setup
    task = manager.submit("-i ${INPUT_MEDIA} -vcodec copy", "test.mp4", "mp4")
    task.status = Status.COMPLETED
    task.output_path = "/some/path/test123_completed_output.mp4"

    resp = client.get(f"/api/v1/tasks/{task.id}")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["id"] == task.id
    assert body["status"] == "completed"
    assert "/api/v1/files/test123_completed_output.mp4" in body["downloadUrl"]

    resp = client.get("/api/v1/tasks/nonexistent")
    assert resp.status_code == 404


def test_download_url_uses_base_url(setup):
    client, cfg, manager = setup
    cfg.base_url = "https://media.example.com/"
    task = manager.submit("-i ${INPUT_MEDIA}", "test.mp4", "mp4")
    task.status = Status.COMPLETED
    task.output_path = "/some/path/clip_output.mp4"
    body = client.get(f"/api/v1/tasks/{task.id}").get_json()
    assert body["downloadUrl"] == "https://media.example.com/api/v1/files/clip_output.mp4"


def test_queued_task_has_no_download_url(setup):
    client, _, manager = setup
    task = manager.submit("-i ${INPUT_MEDIA}", "test.mp4", "mp4")
    body = client.get(f"/api/v1/tasks/{task.id}").get_json()
    assert body["status"] == "queued"
    assert "downloadUrl" not in body


def test_list_tasks(setup):
    client, _, manager = setup
    first = manager.submit("-i ${INPUT_MEDIA}", "a.mp4", "mp4")
    second = manager.submit("-i ${INPUT_MEDIA}", "b.mp4", "mp4")
    resp = client.get("/api/v1/tasks")
    assert resp.status_code == 200
    assert {item["id"] for item in resp.get_json()} == {first.id, second.id}


def test_cancel_task(setup):
    client, _, manager = setup
    task = manager.submit("-i ${INPUT_MEDIA}", "a.mp4", "mp4")
    resp = _send_cancel(client, task.id)
    assert resp.status_code == 200
    assert resp.get_json()["message"] == "Task cancellation requested"
    assert manager.get(task.id).status is Status.CANCELED

    resp = _send_cancel(client, task.id)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "cannot cancel task in state: canceled"


def test_cancel_unknown_task(setup):
    client, _, _ = setup
    resp = _send_cancel(client, "missing")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "task missing not found"


def test_sync_call_not_implemented(setup):
    client, _, _ = setup
    resp = client.post("/api/v1/call", json={})
    assert resp.status_code == 501
    assert "/api/v1/tasks" in resp.get_json()["error"]


def test_health(setup):
    client, cfg, _ = setup
    cfg.auth_enable = True
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_get_file(setup, tmp_path):
    client, cfg, _ = setup
    cfg.temp_dir = str(tmp_path)
    (tmp_path / "job_output.mp4").write_bytes(b"video-data")
    resp = client.get("/api/v1/files/job_output.mp4")
    try:
        assert resp.status_code == 200
        assert resp.data == b"video-data"
    finally:
        resp.close()


def test_get_missing_file(setup, tmp_path):
    client, cfg, _ = setup
    cfg.temp_dir = str(tmp_path)
    resp = client.get("/api/v1/files/absent.mp4")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "file not found"


@pytest.mark.parametrize(
    "enabled, header, expected",
    [
        (False, None, 200),
        (True, None, 401),
        (True, "Bearer token", 401),
        (True, "Bearer secret", 200),
    ],
    ids=["auth disabled", "no token", "wrong token", "correct token"],
)
def test_auth_middleware(setup, enabled, header, expected):
    client, cfg, _ = setup
    cfg.auth_enable = enabled
    cfg.auth_key = "secret"
    headers = {"Authorization": header} if header else {}
    resp = client.get("/api/v1/tasks", headers=headers)
    assert resp.status_code == expected


@pytest.mark.parametrize(
    "header, message",
    [
        (None, "Authorization header required"),
        ("Basic secret", "Invalid Authorization header format"),
        ("Bearer token", "Invalid token"),
    ],
)
def test_auth_error_messages(setup, header, message):
    client, cfg, _ = setup
    cfg.auth_enable = True
    cfg.auth_key = "secret"
    headers = {"Authorization": header} if header else {}
    resp = client.get("/api/v1/tasks", headers=headers)
    assert resp.status_code == 401
    assert resp.get_json()["error"] == message