"""Retrieval and decoding of manifests."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from httpx import AsyncClient, HTTPError
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ..constants import HTTP_TIMEOUT
from ..exceptions import (
    ManifestDecodeError,
    ManifestFetchError,
    ManifestSourceError,
)
from ..models.kubernetes import ManifestEnvelope

_IGNORED_LINE = re.compile(r"^\s*(#|$)")
"""Lines skipped before the start of the manifest content."""

_URL = re.compile(r"^https?://")
"""Locations that should be retrieved over HTTP."""

__all__ = [
    "ManifestSource",
    "parse_envelope",
    "split_documents",
    "strip_leading_comments",
]


def strip_leading_comments(data: bytes | str) -> str:
    """Remove comment and blank lines before the start of the content.

    Only lines before the first line with real content are removed. Comments
    later in the document are left alone.

    Parameters
    ----------
    data
        Raw manifest data.

    Returns
    -------
    str
        Manifest data starting at the first line of content.

    Raises
    ------
    ManifestDecodeError
        Raised if the data is not valid UTF-8.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode()
        except UnicodeDecodeError as e:
            raise ManifestDecodeError(f"Manifest is not UTF-8: {e!s}") from e
    lines = data.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if not _IGNORED_LINE.match(line):
            return "".join(lines[i:])
    return ""


def split_documents(data: bytes | str) -> list[dict[str, Any]]:
    """Parse one or more manifest documents.

    Documents may be YAML or JSON, separated by the standard ``---`` YAML
    document separator. Empty documents are skipped.

    Parameters
    ----------
    data
        Raw manifest data.

    Returns
    -------
    list of dict
        Parsed documents in order.

    Raises
    ------
    ManifestDecodeError
        Raised if the data could not be parsed or a document is not a
        mapping.
    """
    content = strip_leading_comments(data)
    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise ManifestDecodeError(f"Error decoding manifest: {e!s}") from e
    result = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            doc_type = type(document).__name__
            msg = f"Manifest document is a {doc_type}, not a mapping"
            raise ManifestDecodeError(msg)
        result.append(document)
    return result


def parse_envelope(document: dict[str, Any]) -> ManifestEnvelope:
    """Decode the envelope fields of a manifest.

    Parameters
    ----------
    document
        Parsed manifest document.

    Returns
    -------
    ManifestEnvelope
        The ``apiVersion``, ``kind``, ``metadata``, and ``spec`` fields.

    Raises
    ------
    ManifestDecodeError
        Raised if the envelope fields are missing or malformed.
    """
    try:
        return ManifestEnvelope.model_validate(document)
    except ValidationError as e:
        kind = document.get("kind")
        kind = kind if isinstance(kind, str) else "manifest"
        raise ManifestDecodeError.from_validation_error(kind, None, e) from e


class ManifestSource:
    """Loads manifests from URLs, files, or pre-loaded buffers.

    Parameters
    ----------
    http_client
        HTTP client used to download manifests. If not given, a client is
        created for each download.
    logger
        Logger to use.
    timeout
        Timeout in seconds for downloads with a client created here.
    """

    def __init__(
        self,
        http_client: AsyncClient | None,
        logger: BoundLogger,
        *,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self._http_client = http_client
        self._logger = logger
        self._timeout = timeout

    async def load(
        self,
        *,
        urls: Iterable[str] | None = None,
        buffers: Iterable[bytes | str] | None = None,
    ) -> list[dict[str, Any]]:
        """Load and decode a set of manifests.

        Exactly one of ``urls`` or ``buffers`` must be given. Documents are
        returned in the order of their sources, and within a source in the
        order they appear.

        Parameters
        ----------
        urls
            URLs from which to download manifests.
        buffers
            Pre-loaded manifest data.

        Returns
        -------
        list of dict
            The decoded manifest documents.

        Raises
        ------
        ManifestDecodeError
            Raised if any manifest could not be decoded.
        ManifestFetchError
            Raised if any URL could not be retrieved.
        ManifestSourceError
            Raised if both or neither of ``urls`` and ``buffers`` were given.
        """
        url_list = list(urls or [])
        buffer_list = list(buffers or [])
        if url_list and buffer_list:
            msg = "Only one of manifest URLs or manifest data may be given"
            raise ManifestSourceError(msg)
        if not url_list and not buffer_list:
            msg = "Manifest URLs or manifest data were not supplied"
            raise ManifestSourceError(msg)

        if url_list:
            buffer_list = [await self.fetch(u) for u in url_list]
        documents = []
        for buffer in buffer_list:
            documents.extend(split_documents(buffer))
        return documents

    async def fetch(self, url: str) -> str:
        """Download a manifest.

        Parameters
        ----------
        url
            URL of the manifest.

        Returns
        -------
        str
            Contents of the manifest.

        Raises
        ------
        ManifestFetchError
            Raised if the manifest could not be retrieved.
        """
        self._logger.debug("Downloading manifest", url=url)
        try:
            if self._http_client:
                r = await self._http_client.get(url, follow_redirects=True)
            else:
                async with AsyncClient(timeout=self._timeout) as client:
                    r = await client.get(url, follow_redirects=True)
            r.raise_for_status()
        except HTTPError as e:
            msg = f"Error loading manifest from {url}: {type(e).__name__}"
            if str(e):
                msg += f": {e!s}"
            self._logger.warning("Cannot download manifest", error=msg)
            raise ManifestFetchError(msg) from e
        return r.text

    async def read_location(self, location: str) -> str:
        """Read a manifest from a URL or a local file.

        Parameters
        ----------
        location
            An ``http`` or ``https`` URL, or a path to a local file.

        Returns
        -------
        str
            Contents of the manifest.

        Raises
        ------
        ManifestFetchError
            Raised if the manifest could not be retrieved.
        """
        if _URL.match(location):
            return await self.fetch(location)
        try:
            return Path(location).read_text()
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Error reading manifest file {location}: {e!s}"
            raise ManifestFetchError(msg) from e
