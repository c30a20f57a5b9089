# modengine/mods/fetcher.py
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Literal
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from modengine.core.errors import (
    FetchFailedError,
    FetchTimeoutError,
    InvalidManifestError,
    ModNotFoundError,
)
from modengine.http.client import HTTPError, request
from .models import Manifest, ModSource

logger = logging.getLogger(__name__)

__all__ = ["ManifestFetcher", "Requester", "decodeDocument", "DEFAULT_ASSET_FILES"]

Requester = Callable[..., Awaitable[dict[str, Any]]]
Layout = Literal["raw", "contentsApi"]

DEFAULT_ASSET_FILES: tuple[str, ...] = ("content.js", "content.css", "settings.html", "settings.js")



# ------------------------------------------------
#            Response shape normalization
# ------------------------------------------------

def _isContentsEnvelope(doc: Any) -> bool:
    return isinstance(doc, dict) and isinstance(doc.get("content"), str) and "encoding" in doc



def _decodeEnvelope(doc: dict[str, Any]) -> str:
    encoding = str(doc.get("encoding") or "").lower()
    if encoding != "base64":
        raise FetchFailedError(f"Unsupported content encoding {encoding!r}")
    try:
        # The contents API wraps base64 at 60 columns
        raw = base64.b64decode("".join(str(doc["content"]).split()), validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as err:
        raise FetchFailedError(f"Malformed base64 content: {err}") from err



def _findEnvelope(response: dict[str, Any]) -> dict[str, Any] | None:
    doc = response.get("json")
    if doc is None:
        text = (response.get("text") or "").lstrip()
        if not text.startswith("{"):
            return None
        try:
            doc = json.loads(text)
        except ValueError:
            return None
    return doc if _isContentsEnvelope(doc) else None



def decodeText(response: dict[str, Any]) -> str:
    """
    Returns the file text carried by a response, whatever its shape:
    a contents-API envelope {"content": <base64>, "encoding": "base64"}, or a raw body.
    """
    envelope = _findEnvelope(response)
    if envelope is not None:
        return _decodeEnvelope(envelope)
    return response.get("text") or ""



def decodeDocument(response: dict[str, Any]) -> dict[str, Any]:
    """
    Decode-dispatch for manifest responses; the two layouts meet here:
      - envelope with base64 content → decode, then parse JSON
      - already-parsed JSON object   → use as is
      - plain text                   → parse JSON
    """
    doc = response.get("json")
    if isinstance(doc, dict) and not _isContentsEnvelope(doc):
        return doc

    text = decodeText(response)
    try:
        parsed = json.loads(text)
    except ValueError as err:
        raise FetchFailedError(f"Manifest is not valid JSON: {err}") from err
    if not isinstance(parsed, dict):
        raise InvalidManifestError(f"Manifest must be a JSON object, not {type(parsed).__name__}")
    return parsed



# ------------------------------------------------
#                     Fetcher
# ------------------------------------------------

class ManifestFetcher:
    """
    Resolves a mod's manifest (and optional asset files) from its repository source.

    The transport is `requester` (defaults to modengine.http.client.request); every
    fetch is bounded by `deadlineMs` on top of the per-request timeout.
    """

    def __init__(
        self,
        *,
        layout: Layout = "raw",
        rawBaseUrl: str = "https://raw.githubusercontent.com",
        apiBaseUrl: str = "https://api.github.com",
        manifestFileName: str = "mod.json",
        assetFiles: Sequence[str] = DEFAULT_ASSET_FILES,
        timeoutMs: int = 10_000,
        deadlineMs: int = 30_000,
        retries: int = 1,
        token: str | None = None,
        requester: Requester | None = None,
    ) -> None:
        if layout not in ("raw", "contentsApi"):
            raise ValueError(f"Unknown manifest layout {layout!r}")
        self.layout: Layout = layout
        self.rawBaseUrl = rawBaseUrl.rstrip("/")
        self.apiBaseUrl = apiBaseUrl.rstrip("/")
        self.manifestFileName = manifestFileName
        self.assetFiles = tuple(assetFiles)
        self.timeoutMs = timeoutMs
        self.deadlineMs = deadlineMs
        self.retries = retries
        self._token = token
        self._requester: Requester = requester or request

    @classmethod
    def fromSettings(cls, settings, *, requester: Requester | None = None) -> ManifestFetcher:
        """Build from a FetchSettings section."""
        return cls(
            layout=settings.layout,
            rawBaseUrl=settings.rawBaseUrl,
            apiBaseUrl=settings.apiBaseUrl,
            manifestFileName=settings.manifestFileName,
            assetFiles=settings.assetFiles,
            timeoutMs=settings.timeoutMs,
            deadlineMs=settings.deadlineMs,
            retries=settings.retries,
            token=settings.token,
            requester=requester,
        )

    # ----- URLs -----

    def fileUrl(self, source: ModSource, fileName: str) -> str:
        path = quote(fileName.lstrip("/"))
        if self.layout == "contentsApi":
            return (
                f"{self.apiBaseUrl}/repos/{quote(source.owner)}/{quote(source.repo)}"
                f"/contents/{path}?ref={quote(source.branch)}"
            )
        return f"{self.rawBaseUrl}/{quote(source.owner)}/{quote(source.repo)}/{quote(source.branch)}/{path}"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.layout == "contentsApi":
            headers["Accept"] = "application/vnd.github+json"
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    # ----- Transport -----

    async def _get(self, source: ModSource, fileName: str) -> dict[str, Any]:
        url = self.fileUrl(source, fileName)
        try:
            response = await asyncio.wait_for(
                self._requester(
                    "GET",
                    url,
                    headers=self._headers(),
                    timeoutMs=self.timeoutMs,
                    retries=self.retries,
                ),
                timeout=self.deadlineMs / 1000.0,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as err:
            raise FetchTimeoutError(f"Timed out fetching {fileName} from {source}") from err
        except HTTPError as err:
            raise FetchFailedError(f"Fetching {fileName} from {source} failed: HTTP {err.status}", status=err.status) from err
        except httpx.HTTPError as err:
            raise FetchFailedError(f"Fetching {fileName} from {source} failed: {type(err).__name__}: {err}") from err

        status = int(response.get("status", 0))
        if not 200 <= status < 300:
            raise ModNotFoundError(f"{fileName} not found in {source} (HTTP {status})", status=status)
        return response

    # ----- Public API -----

    async def fetch(self, source: ModSource) -> Manifest:
        """
        Fetch and validate the manifest for `source`.

        Raises ModNotFoundError, FetchFailedError, FetchTimeoutError or InvalidManifestError.
        """
        response = await self._get(source, self.manifestFileName)
        document = decodeDocument(response)
        try:
            manifest = Manifest.model_validate(document)
        except ValidationError as err:
            problems = [
                f"{'.'.join(str(loc) for loc in issue['loc']) or '<root>'}: {issue['msg']}"
                for issue in err.errors()
            ]
            raise InvalidManifestError(
                f"Invalid manifest in {source}: {'; '.join(problems)}",
                problems=problems,
            ) from err
        logger.debug("Fetched manifest %s v%s from %s", manifest.name, manifest.version, source)
        return manifest

    async def fetchFile(self, source: ModSource, fileName: str) -> str:
        response = await self._get(source, fileName)
        return decodeText(response)

    async def fetchAssets(self, source: ModSource, manifest: Manifest | None = None) -> dict[str, str]:
        """
        Fetch the conventional asset files plus any file the manifest references.
        Missing or failing files are logged and skipped.
        """
        names = list(self.assetFiles)
        if manifest is not None:
            for name in manifest.referencedFiles():
                if name not in names:
                    names.append(name)

        results = await asyncio.gather(
            *(self.fetchFile(source, name) for name in names),
            return_exceptions=True,
        )

        files: dict[str, str] = {}
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                if isinstance(result, ModNotFoundError):
                    logger.debug("Asset %s not present in %s", name, source)
                else:
                    logger.warning("Failed to download %s for %s: %s", name, source, result)
                continue
            files[name] = result
        return files
