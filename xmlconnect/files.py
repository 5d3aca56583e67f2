"""File existence checks that report through the error page."""

from __future__ import annotations

import os
from html import escape
from pathlib import Path

from .reporting import ErrorReporter, default_reporter

DEFAULT_TITLE = "File Error!"


def file_exists(path: str | os.PathLike[str]) -> bool:
    """Return True when ``path`` names an existing filesystem entry.

    Any error raised while probing (permission problems, embedded NUL bytes,
    overly long names) counts as "does not exist".
    """

    try:
        return Path(path).exists()
    except (OSError, ValueError):
        return False


def check_file_exists(
    path: str | os.PathLike[str],
    title: str = DEFAULT_TITLE,
    *,
    reporter: ErrorReporter | None = None,
) -> None:
    if file_exists(path):
        return
    (reporter or default_reporter()).report(
        title,
        f"The file <b>{escape(os.fspath(path))}</b> was not found, "
        "please make sure the file exists and the path is written correctly!",
    )


__all__ = ["DEFAULT_TITLE", "check_file_exists", "file_exists"]
