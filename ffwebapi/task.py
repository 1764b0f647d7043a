"""The task record tracked by the manager."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class Status(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(eq=False)
class Task:
    """One transcoding job and its progress."""

    id: str
    command: str
    input_media: str
    output_ext: str
    status: Status = Status.QUEUED
    input_path: str = ""
    output_path: str = ""
    download_url: str = ""
    error: str = ""
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    ffmpeg_output: str = ""
    cancel_handle: Any = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Public JSON view; the raw command and input are never exposed."""
        data: dict[str, Any] = {"id": self.id, "status": self.status.value}
        if self.output_path:
            data["outputPath"] = self.output_path
        if self.download_url:
            data["downloadUrl"] = self.download_url
        if self.error:
            data["error"] = self.error
        data["createdAt"] = _iso(self.created_at)
        data["startedAt"] = _iso(self.started_at)
        data["completedAt"] = _iso(self.completed_at)
        if self.ffmpeg_output:
            data["ffmpegOutput"] = self.ffmpeg_output
        return data