"""Flask wiring: turns reported failures into redirects to the error page."""

from __future__ import annotations

import logging

from flask import Flask, jsonify, redirect, render_template_string
from markupsafe import Markup

from .config import DEFAULT_SECRET_KEY, AppConfig, load_config
from .connections import ConnectionBackend, connect_to_database
from .reporting import ReportedFailure, default_reporter

LOG = logging.getLogger(__name__)

EMPTY_ERROR = "<h1>Unknown Error</h1><p>No error details are available.</p>"

ERROR_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>Error</title></head>
<body>
<main class="error">{{ fragment }}</main>
</body>
</html>
"""


def configure_logging(level: str = "INFO") -> None:
    """Apply the configured log level once at startup."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(config: AppConfig | None = None, *, backend: ConnectionBackend | None = None) -> Flask:
    """Build the Flask app with the error page and health endpoints."""

    config = config or load_config()
    if config.secret_key == DEFAULT_SECRET_KEY:
        LOG.warning("secret_key is the built-in default; set secret_key in the config file to protect sessions")
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.extensions["xmlconnect.config"] = config

    def _redirect_to_error_page(exc: ReportedFailure):
        LOG.info("Redirecting to error page", extra={"title": exc.report.title})
        return redirect(config.error_url)

    def error_page():
        fragment = default_reporter(config.session_key).consume() or EMPTY_ERROR
        return render_template_string(ERROR_PAGE, fragment=Markup(fragment))

    def database_health():
        if config.database_config is None:
            default_reporter(config.session_key).report(
                "Database Connection Error",
                "No database configuration file is set.",
            )
        handle = connect_to_database(config.database_config, config=config, backend=backend)
        try:
            handle.fetch_one("SELECT 1")
        finally:
            handle.close()
        return jsonify({"status": "ok"})

    app.register_error_handler(ReportedFailure, _redirect_to_error_page)
    app.add_url_rule(config.error_url, "error_page", error_page)
    app.add_url_rule("/health", "health", lambda: jsonify({"status": "ok"}))
    app.add_url_rule("/health/database", "database_health", database_health)
    return app


def main() -> None:
    """Run the development server."""

    config = load_config()
    configure_logging(config.log_level)
    create_app(config).run()


if __name__ == "__main__":
    main()
