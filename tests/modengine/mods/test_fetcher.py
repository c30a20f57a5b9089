import asyncio
import base64
import json

import httpx
import pytest

from modengine.core.errors import FetchFailedError, FetchTimeoutError, InvalidManifestError, ModNotFoundError
from modengine.http.client import HTTPError
from modengine.mods.fetcher import ManifestFetcher, decodeDocument, decodeText
from modengine.mods.models import ModSource

SOURCE = ModSource(owner="acme", repo="shiny", branch="dev")

MANIFEST = {
    "name": "Shiny",
    "version": "1.2.3",
    "description": "Makes things shiny",
    "matches": ["example.com"],
    "contentScript": "main.js",
}


def _envelope(text: str) -> dict:
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    # Wrapped the way the contents API returns it
    wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
    return {"content": wrapped, "encoding": "base64", "name": "mod.json"}


class FakeRequester:
    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, str, dict]] = []

    async def __call__(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        entry = self.routes.get(url)
        if entry is None:
            return {"status": 404, "headers": {}, "text": "Not Found", "content": b"Not Found"}
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return await entry()
        return entry


def _ok(text: str = "", jsonDoc=None) -> dict:
    out = {"status": 200, "headers": {}, "text": text, "content": text.encode("utf-8")}
    if jsonDoc is not None:
        out["json"] = jsonDoc
    return out


# ----------------------------
# URLs
# ----------------------------

def test_raw_layout_urls():
    fetcher = ManifestFetcher(layout="raw")
    assert fetcher.fileUrl(SOURCE, "mod.json") == "https://raw.githubusercontent.com/acme/shiny/dev/mod.json"


def test_contents_api_layout_urls():
    fetcher = ManifestFetcher(layout="contentsApi", apiBaseUrl="https://api.test/")
    assert fetcher.fileUrl(SOURCE, "mod.json") == "https://api.test/repos/acme/shiny/contents/mod.json?ref=dev"


def test_unknown_layout_rejected():
    with pytest.raises(ValueError):
        ManifestFetcher(layout="ftp")


# ----------------------------
# Decode dispatch
# ----------------------------

def test_both_layouts_decode_to_same_document():
    text = json.dumps(MANIFEST)
    raw = decodeDocument(_ok(text))
    parsedJson = decodeDocument(_ok(text, jsonDoc=MANIFEST))
    envelope = decodeDocument(_ok(json.dumps(_envelope(text)), jsonDoc=_envelope(text)))
    envelopeText = decodeDocument(_ok(json.dumps(_envelope(text))))
    assert raw == parsedJson == envelope == envelopeText == MANIFEST


def test_decodeText_envelope_and_plain():
    assert decodeText(_ok(jsonDoc=_envelope("body{}"))) == "body{}"
    assert decodeText(_ok("body{}")) == "body{}"


def test_decode_rejects_bad_payloads():
    with pytest.raises(FetchFailedError):
        decodeDocument(_ok("{not json"))
    with pytest.raises(InvalidManifestError):
        decodeDocument(_ok("[1, 2]"))
    with pytest.raises(FetchFailedError):
        decodeDocument(_ok(jsonDoc={"content": "abc", "encoding": "utf-16"}))


# ----------------------------
# fetch()
# ----------------------------

@pytest.mark.asyncio
async def test_fetch_raw_manifest():
    requester = FakeRequester({
        "https://raw.githubusercontent.com/acme/shiny/dev/mod.json": _ok(json.dumps(MANIFEST)),
    })
    manifest = await ManifestFetcher(requester=requester).fetch(SOURCE)
    assert manifest.name == "Shiny"
    assert manifest.version == "1.2.3"
    assert manifest.effectiveTargets() == ["example.com"]


@pytest.mark.asyncio
async def test_fetch_contents_api_manifest_sends_token():
    url = "https://api.github.com/repos/acme/shiny/contents/mod.json?ref=dev"
    requester = FakeRequester({url: _ok(jsonDoc=_envelope(json.dumps(MANIFEST)))})
    fetcher = ManifestFetcher(layout="contentsApi", token="ghp_secret", requester=requester)

    manifest = await fetcher.fetch(SOURCE)

    assert manifest.name == "Shiny"
    _method, _url, kwargs = requester.calls[0]
    assert kwargs["headers"]["Authorization"] == "Bearer ghp_secret"
    assert kwargs["headers"]["Accept"] == "application/vnd.github+json"


@pytest.mark.asyncio
async def test_missing_manifest_is_not_found():
    with pytest.raises(ModNotFoundError) as excInfo:
        await ManifestFetcher(requester=FakeRequester({})).fetch(SOURCE)
    assert excInfo.value.status == 404


@pytest.mark.asyncio
async def test_invalid_manifest_lists_problems():
    requester = FakeRequester({
        "https://raw.githubusercontent.com/acme/shiny/dev/mod.json": _ok(json.dumps({"name": "X"})),
    })
    with pytest.raises(InvalidManifestError) as excInfo:
        await ManifestFetcher(requester=requester).fetch(SOURCE)
    assert excInfo.value.problems


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure, expected",
    [
        (HTTPError(503, "unavailable"), FetchFailedError),
        (httpx.ConnectError("refused"), FetchFailedError),
        (httpx.ReadTimeout("slow"), FetchTimeoutError),
    ],
)
async def test_transport_failures_are_mapped(failure, expected):
    requester = FakeRequester({"https://raw.githubusercontent.com/acme/shiny/dev/mod.json": failure})
    with pytest.raises(expected):
        await ManifestFetcher(requester=requester).fetch(SOURCE)


@pytest.mark.asyncio
async def test_deadline_turns_hang_into_timeout():
    async def hang():
        await asyncio.sleep(10)

    requester = FakeRequester({"https://raw.githubusercontent.com/acme/shiny/dev/mod.json": hang})
    fetcher = ManifestFetcher(requester=requester, deadlineMs=20)
    with pytest.raises(FetchTimeoutError):
        await fetcher.fetch(SOURCE)


# ----------------------------
# fetchAssets()
# ----------------------------

@pytest.mark.asyncio
async def test_fetchAssets_is_soft_on_missing_and_failing_files():
    base = "https://raw.githubusercontent.com/acme/shiny/dev/"
    requester = FakeRequester({
        base + "content.css": _ok("a{}"),
        base + "main.js": _ok("main()"),
        base + "settings.js": HTTPError(500, "boom"),
    })
    fetcher = ManifestFetcher(requester=requester, assetFiles=["content.js", "content.css", "settings.js"])
    manifest = await ManifestFetcher(requester=FakeRequester({
        base + "mod.json": _ok(json.dumps(MANIFEST)),
    })).fetch(SOURCE)

    files = await fetcher.fetchAssets(SOURCE, manifest)

    assert files == {"content.css": "a{}", "main.js": "main()"}
