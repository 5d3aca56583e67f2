"""Shared dataclasses used across reporting/connection modules."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """Human-readable failure shown on the error page."""

    title: str
    paragraphs: tuple[str, ...] = ()

    def render(self) -> str:
        """Render the report as a single HTML fragment.

        The title is escaped; paragraphs are trusted fragments (callers escape
        any path or driver message they interpolate).
        """

        parts = [f"<h1>{escape(self.title)}</h1>"]
        parts.extend(f"<p>{paragraph}</p>" for paragraph in self.paragraphs)
        return "".join(parts)


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Connection settings extracted from a validated XML config file."""

    dbtype: str
    dbname: str
    host: str
    user: str
    password: str
    port: str = ""

    def __repr__(self) -> str:
        return (
            f"ConnectionConfig(dbtype={self.dbtype!r}, dbname={self.dbname!r}, "
            f"host={self.host!r}, port={self.port!r}, user={self.user!r}, password='***')"
        )


__all__ = ["ConnectionConfig", "ErrorReport"]
