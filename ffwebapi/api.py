"""HTTP interface: task submission, status, cancellation and file download."""

from __future__ import annotations

import logging
import os
from typing import Any

from flask import Blueprint, Flask, jsonify, request, send_file

from .config import Config
from .manager import Manager, TaskError
from .security import CommandError, sanitize_and_validate_args, split_command
from .task import Status, Task

log = logging.getLogger(__name__)


def _error(status: int, message: str, **extra: Any):
    return jsonify(error=message, **extra), status


def _bind_task_request(payload: dict[str, Any]) -> tuple[str, str, str]:
    values = {}
    for key, required in (("command", True), ("inputMedia", False), ("outputExt", True)):
        value = payload.get(key, "")
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"field '{key}' must be a string")
        if required and not value:
            raise ValueError(f"field '{key}' is required")
        values[key] = value
    return values["command"], values["inputMedia"], values["outputExt"]


def _set_download_url(cfg: Config, task: Task) -> None:
    if task.status is not Status.COMPLETED or not task.output_path:
        return
    base = cfg.base_url or f"{request.scheme}://{request.host}"
    if base.endswith("/"):
        base = base[:-1]
    task.download_url = f"{base}/api/v1/files/{os.path.basename(task.output_path)}"


def create_app(manager: Manager, cfg: Config) -> Flask:
    """Build the Flask application serving the API."""
    app = Flask(__name__)

    @app.get("/health")
    def health():
        return jsonify(status="ok")

    v1 = Blueprint("v1", __name__, url_prefix="/api/v1")

    @v1.before_request
    def authenticate():
        if not cfg.auth_enable:
            return None
        header = request.headers.get("Authorization", "")
        if not header:
            return _error(401, "Authorization header required")
        parts = header.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return _error(401, "Invalid Authorization header format")
        if parts[1] != cfg.auth_key:
            return _error(401, "Invalid token")
        return None

    @v1.post("/call")
    def sync_call():
        log.info("Sync call endpoint is not available. Please use the async /tasks endpoint.")
        return _error(
            501,
            "Synchronous calls are not recommended. Please use the /api/v1/tasks "
            "endpoint for better performance and reliability.",
        )

    @v1.post("/tasks")
    def create_task():
        payload = request.get_json(force=True, silent=True)
        if not isinstance(payload, dict):
            return _error(400, "request body must be a JSON object")
        try:
            command, input_media, output_ext = _bind_task_request(payload)
        except ValueError as exc:
            return _error(400, str(exc))
        try:
            args = split_command(command)
        except CommandError as exc:
            return _error(400, f"Invalid command syntax: {exc}")
        try:
            sanitize_and_validate_args(args)
        except CommandError as exc:
            return _error(400, f"Invalid command: {exc}")
        try:
            task = manager.submit(command, input_media, output_ext)
        except Exception as exc:  # any submission failure is reported to the client
            return _error(500, "Failed to create task", details=str(exc))
        return jsonify(taskId=task.id), 202

    @v1.get("/tasks")
    def list_tasks():
        return jsonify([task.to_dict() for task in manager.list()])

    @v1.get("/tasks/<task_id>")
    def task_status(task_id: str):
        task = manager.get(task_id)
        if task is None:
            return _error(404, "Task not found")
        _set_download_url(cfg, task)
        return jsonify(task.to_dict())

    @v1.patch("/tasks/<task_id>/cancel")
    def cancel_task(task_id: str):
        try:
            manager.cancel(task_id)
        except TaskError as exc:
            return _error(400, str(exc))
        return jsonify(message="Task cancellation requested")

    @v1.get("/files/<filename>")
    def get_file(filename: str):
        try:
            path = manager.get_file_path(filename)
        except TaskError as exc:
            return _error(404, str(exc))
        return send_file(path)

    app.register_blueprint(v1)
    return app