"""Session-backed error reporting.

Failures are written to a session store under a single well-known key and
then raised as :class:`ReportedFailure`. The web layer catches that exception
and redirects to the error page, which reads the stored fragment once.
"""

from __future__ import annotations

import logging
from typing import MutableMapping, NoReturn

from flask import has_request_context, session

from .models import ErrorReport

LOG = logging.getLogger(__name__)

SESSION_KEY = "ERROR"

SessionStore = MutableMapping[str, object]


class ReportedFailure(RuntimeError):
    """Raised after a failure has been recorded for the error page."""

    def __init__(self, report: ErrorReport) -> None:
        super().__init__(report.title)
        self.report = report


class ErrorReporter:
    """Records failures into a session store and aborts the caller."""

    def __init__(self, session_store: SessionStore | None = None, *, key: str = SESSION_KEY) -> None:
        self._session = session_store
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def ensure_session(self) -> SessionStore:
        """Return the session store, creating an in-memory one if none is bound."""

        if self._session is None:
            self._session = {}
        return self._session

    def report(self, title: str, *paragraphs: str) -> NoReturn:
        """Store the formatted failure (replacing any earlier one) and raise."""

        store = self.ensure_session()
        report = ErrorReport(title=title, paragraphs=tuple(paragraphs))
        store[self._key] = report.render()
        LOG.warning("Reported failure: %s", title, extra={"session_key": self._key})
        raise ReportedFailure(report)

    def last_error(self) -> str | None:
        """Peek at the stored fragment without consuming it."""

        value = self.ensure_session().get(self._key)
        return value if isinstance(value, str) else None

    def consume(self) -> str | None:
        """Pop the stored fragment; the error page reads it exactly once."""

        value = self.ensure_session().pop(self._key, None)
        return value if isinstance(value, str) else None


_process_store: SessionStore = {}


def default_reporter(key: str = SESSION_KEY) -> ErrorReporter:
    """Reporter bound to the Flask session when in a request, else a process store."""

    if has_request_context():
        return ErrorReporter(session, key=key)
    return ErrorReporter(_process_store, key=key)


def fail(title: str, *paragraphs: str) -> NoReturn:
    """Report a failure through the default reporter."""

    default_reporter().report(title, *paragraphs)


__all__ = [
    "ErrorReporter",
    "ReportedFailure",
    "SESSION_KEY",
    "SessionStore",
    "default_reporter",
    "fail",
]
