"""
URL helper utilities for source classification.

This module decides whether a source URL points at a PDF report, an
ordinary website, or something that cannot be processed.
"""

from urllib.parse import unquote, urlparse

from ..schemas.enums import SourceKind

# Path fragments used by CMSs and document portals that serve PDFs without a .pdf suffix
BINARY_DOWNLOAD_MARKERS = ("/binary/", "/download/", "/getmedia/", "/documents/")


def is_pdf_url(url: str) -> bool:
    """
    Check whether a URL points at a PDF document.

    Examples:
        >>> is_pdf_url("https://acme.com/reports/2023.pdf")
        True
        >>> is_pdf_url("https://acme.com/file?name=report.PDF")
        True
        >>> is_pdf_url("https://acme.com/sustainability")
        False
    """
    parsed = urlparse(url.strip())
    path = unquote(parsed.path).lower()
    query = unquote(parsed.query).lower()

    if path.endswith(".pdf") or query.endswith(".pdf"):
        return True
    if "/pdf/" in path or ".pdf/" in path:
        return True
    return any(marker in path for marker in BINARY_DOWNLOAD_MARKERS)


def is_http_url(url: str) -> bool:
    """Check for an http(s) URL with a host."""
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def classify_source_url(url: str | None) -> SourceKind:
    """
    Classify a source URL as PDF, WEBSITE or UNKNOWN.

    Args:
        url: Source URL from the input list (may be empty)

    Returns:
        SourceKind; UNKNOWN for blank, scheme-less or non-http URLs
    """
    if not url or not url.strip():
        return SourceKind.UNKNOWN
    if not is_http_url(url):
        return SourceKind.UNKNOWN
    if is_pdf_url(url):
        return SourceKind.PDF
    return SourceKind.WEBSITE
