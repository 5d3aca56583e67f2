"""Flask boundary tests: reported failures redirect to the error page."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from xmlconnect.app import EMPTY_ERROR, create_app
from xmlconnect.config import AppConfig
from xmlconnect.connections import ConnectionBackendError, ConnectOptions
from xmlconnect.reporting import SESSION_KEY, fail

VALID_CONFIG = """<connection>
    <dbtype>pgsql</dbtype>
    <dbname>app</dbname>
    <host>localhost</host>
    <user>u</user>
    <password>p</password>
</connection>
"""


class _Handle:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.closed = False

    def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        return []

    def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        self.queries.append(sql)
        return {"?column?": 1}

    def execute(self, sql: str, *args: Any) -> str:
        return "OK"

    def close(self) -> None:
        self.closed = True


class _Backend:
    def __init__(self, error: str | None = None) -> None:
        self.error = error
        self.handle = _Handle()

    def open(self, dsn: str, user: str, password: str, *, options: ConnectOptions) -> _Handle:
        if self.error:
            raise ConnectionBackendError(self.error)
        return self.handle


@pytest.fixture
def database_xml(tmp_path: Path) -> Path:
    target = tmp_path / "database.xml"
    target.write_text(VALID_CONFIG)
    return target


def _app(config: AppConfig | None = None, backend: _Backend | None = None):
    app = create_app(config or AppConfig(secret_key="app-test-secret"), backend=backend)

    @app.route("/boom")
    def boom():
        fail("Boom", "Something went <b>wrong</b>.")

    return app


def test_reported_failure_redirects_to_error_page() -> None:
    client = _app().test_client()

    resp = client.get("/boom")

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/error")
    with client.session_transaction() as sess:
        assert sess[SESSION_KEY] == "<h1>Boom</h1><p>Something went <b>wrong</b>.</p>"


def test_error_page_renders_fragment_once() -> None:
    client = _app().test_client()
    client.get("/boom")

    first = client.get("/error")
    second = client.get("/error")

    assert first.status_code == 200
    assert "<h1>Boom</h1><p>Something went <b>wrong</b>.</p>" in first.get_data(as_text=True)
    assert EMPTY_ERROR in second.get_data(as_text=True)
    with client.session_transaction() as sess:
        assert SESSION_KEY not in sess


def test_custom_error_url_and_session_key() -> None:
    config = AppConfig(secret_key="app-test-secret", error_url="/oops", session_key="LAST_ERROR")
    client = _app(config).test_client()

    resp = client.get("/boom", follow_redirects=True)

    assert resp.request.path == "/oops"
    assert "<h1>Boom</h1>" in resp.get_data(as_text=True)


def test_health_endpoint() -> None:
    resp = _app().test_client().get("/health")

    assert resp.get_json() == {"status": "ok"}


def test_database_health_without_config_reports() -> None:
    client = _app().test_client()

    resp = client.get("/health/database", follow_redirects=True)

    body = resp.get_data(as_text=True)
    assert "Database Connection Error" in body
    assert "No database configuration file is set." in body


def test_database_health_connects_and_closes(database_xml: Path) -> None:
    backend = _Backend()
    config = AppConfig(secret_key="app-test-secret", database_config=database_xml)
    client = _app(config, backend).test_client()

    resp = client.get("/health/database")

    assert resp.get_json() == {"status": "ok"}
    assert backend.handle.queries == ["SELECT 1"]
    assert backend.handle.closed is True


def test_database_health_reports_driver_failure(database_xml: Path) -> None:
    backend = _Backend(error="password authentication failed for user \"u\"")
    config = AppConfig(secret_key="app-test-secret", database_config=database_xml)
    client = _app(config, backend).test_client()

    resp = client.get("/health/database")
    assert resp.status_code == 302
    page = client.get("/error").get_data(as_text=True)

    assert "Failed to connect to the database." in page
    assert "password authentication failed for user &quot;u&quot;" in page


def test_default_secret_key_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="xmlconnect.app"):
        create_app(AppConfig())

    assert any("secret_key" in record.getMessage() for record in caplog.records)


def test_custom_secret_key_does_not_warn(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="xmlconnect.app"):
        create_app(AppConfig(secret_key="app-test-secret"))

    assert not [r for r in caplog.records if "secret_key" in r.getMessage()]
