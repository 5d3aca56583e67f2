"""XML loading and XSD validation helpers backed by lxml."""

from __future__ import annotations

import logging
import os
from html import escape

from lxml import etree

from .files import check_file_exists
from .reporting import ErrorReporter, default_reporter

LOG = logging.getLogger(__name__)


def _parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


def validate_xml(
    xml_path: str | os.PathLike[str],
    xsd_path: str | os.PathLike[str],
    title: str,
    *,
    reporter: ErrorReporter | None = None,
) -> etree._ElementTree:
    """Parse ``xml_path`` and validate it against the schema at ``xsd_path``.

    Every failure (missing file, malformed XML, schema mismatch) is reported
    under ``title`` and raises :class:`~xmlconnect.reporting.ReportedFailure`;
    a document is only returned once it has passed validation.
    """

    reporter = reporter or default_reporter()
    check_file_exists(xml_path, title, reporter=reporter)
    check_file_exists(xsd_path, title, reporter=reporter)
    xml_name = escape(os.fspath(xml_path))
    xsd_name = escape(os.fspath(xsd_path))

    try:
        document = etree.parse(os.fspath(xml_path), _parser())
    except (etree.XMLSyntaxError, OSError) as exc:
        LOG.debug("Failed to parse %s: %s", xml_path, exc)
        reporter.report(
            title,
            f"The file <b>{xml_name}</b> does not have the correct XML format, "
            "please make sure the file is properly formatted!",
        )

    try:
        schema = etree.XMLSchema(etree.parse(os.fspath(xsd_path), _parser()))
    except (etree.XMLSchemaParseError, etree.XMLSyntaxError, OSError) as exc:
        LOG.debug("Failed to load schema %s: %s", xsd_path, exc)
        reporter.report(
            title,
            f"The schema <b>{xsd_name}</b> could not be loaded, so <b>{xml_name}</b> "
            "is not properly validated with the <b>XSD</b>!",
        )

    if not schema.validate(document):
        last = schema.error_log.last_error
        paragraphs = [f"The file <b>{xml_name}</b> is not properly validated with the <b>XSD</b>!"]
        if last is not None:
            LOG.debug("Schema validation failed for %s: %s", xml_path, last)
            paragraphs.append(f"<b>Line {last.line}:</b> {escape(last.message)}")
        reporter.report(title, *paragraphs)

    return document


__all__ = ["validate_xml"]
