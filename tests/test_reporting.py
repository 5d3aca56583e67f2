"""Tests for session-backed error reporting."""

from __future__ import annotations

import pytest
from flask import Flask, session

from xmlconnect import reporting
from xmlconnect.models import ErrorReport
from xmlconnect.reporting import SESSION_KEY, ErrorReporter, ReportedFailure, default_reporter, fail


def test_report_stores_fragment_and_raises() -> None:
    store: dict[str, object] = {}
    reporter = ErrorReporter(store)

    with pytest.raises(ReportedFailure) as excinfo:
        reporter.report("Broken", "First paragraph.", "Second <b>paragraph</b>.")

    assert excinfo.value.report == ErrorReport(
        title="Broken",
        paragraphs=("First paragraph.", "Second <b>paragraph</b>."),
    )
    assert store[SESSION_KEY] == "<h1>Broken</h1><p>First paragraph.</p><p>Second <b>paragraph</b>.</p>"


def test_report_escapes_title_only() -> None:
    store: dict[str, object] = {}

    with pytest.raises(ReportedFailure):
        ErrorReporter(store).report("<script>", "<i>kept</i>")

    assert store[SESSION_KEY] == "<h1>&lt;script&gt;</h1><p><i>kept</i></p>"


def test_second_report_overwrites_first() -> None:
    store: dict[str, object] = {}
    reporter = ErrorReporter(store)

    with pytest.raises(ReportedFailure):
        reporter.report("First", "one")
    with pytest.raises(ReportedFailure):
        reporter.report("Second", "two")

    assert list(store) == [SESSION_KEY]
    assert store[SESSION_KEY] == "<h1>Second</h1><p>two</p>"


def test_ensure_session_only_creates_store_once() -> None:
    reporter = ErrorReporter()

    first = reporter.ensure_session()
    second = reporter.ensure_session()

    assert first is second
    with pytest.raises(ReportedFailure):
        reporter.report("Oops")
    assert first[SESSION_KEY] == "<h1>Oops</h1>"


def test_consume_reads_fragment_once() -> None:
    reporter = ErrorReporter({}, key="LAST")

    with pytest.raises(ReportedFailure):
        reporter.report("Gone", "soon")

    assert reporter.last_error() == "<h1>Gone</h1><p>soon</p>"
    assert reporter.consume() == "<h1>Gone</h1><p>soon</p>"
    assert reporter.consume() is None


def test_default_reporter_uses_flask_session_in_request() -> None:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = "reporting-test-secret"

    with app.test_request_context("/"):
        with pytest.raises(ReportedFailure):
            default_reporter().report("In request", "stored in the session")
        assert session[SESSION_KEY] == "<h1>In request</h1><p>stored in the session</p>"


def test_fail_outside_request_uses_process_store(monkeypatch: pytest.MonkeyPatch) -> None:
    store: dict[str, object] = {}
    monkeypatch.setattr(reporting, "_process_store", store)

    with pytest.raises(ReportedFailure) as excinfo:
        fail("Offline", "no request active")

    assert excinfo.value.report.title == "Offline"
    assert store[SESSION_KEY] == "<h1>Offline</h1><p>no request active</p>"
