"""Splitting and validation of user-supplied ffmpeg argument strings."""

from __future__ import annotations

import shlex

INPUT_MEDIA_PLACEHOLDER = "${INPUT_MEDIA}"
_DISALLOWED = set("|&;`$()<>")


class CommandError(ValueError):
    """Raised when a command string is malformed or unsafe."""


def split_command(command: str) -> list[str]:
    """Split a command string into arguments without involving a shell."""
    try:
        return shlex.split(command, comments=True)
    except ValueError as exc:
        raise CommandError(f"invalid command syntax: {exc}") from exc


def sanitize_and_validate_args(args: list[str]) -> None:
    """Reject shell metacharacters and require the input placeholder."""
    has_input = False
    for arg in args:
        if arg == INPUT_MEDIA_PLACEHOLDER:
            has_input = True
        elif _DISALLOWED.intersection(arg):
            raise CommandError(f"disallowed character found in argument: {arg}")
    if not has_input:
        raise CommandError(
            f"command must include the input placeholder '{INPUT_MEDIA_PLACEHOLDER}'"
        )