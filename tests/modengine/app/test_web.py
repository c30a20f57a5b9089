import json

import json5
import pytest
from fastapi.testclient import TestClient

from modengine.app.engine import ModEngine
from modengine.app.web import createApp
from modengine.config.settings import EngineSettings
from modengine.mods.injector import RecordingExecutor
from modengine.storage.kvstore import MemoryKeyValueStore

RAW = "https://raw.githubusercontent.com"


class RoutedRequester:
    def __init__(self) -> None:
        self.routes: dict[str, str] = {}

    def publish(self, owner: str, repo: str, manifest: dict, branch: str = "main") -> None:
        self.routes[f"{RAW}/{owner}/{repo}/{branch}/mod.json"] = json.dumps(manifest)

    async def __call__(self, method: str, url: str, **kwargs):
        text = self.routes.get(url)
        if text is None:
            return {"status": 404, "headers": {}, "text": "Not Found", "content": b"Not Found"}
        return {"status": 200, "headers": {}, "text": text, "content": text.encode("utf-8")}


@pytest.fixture()
def requester() -> RoutedRequester:
    return RoutedRequester()


@pytest.fixture()
def engine(tmp_path, requester) -> ModEngine:
    defaultsPath = tmp_path / "defaults.json5"
    defaultsPath.write_text(json5.dumps([{"id": "builtin", "name": "Builtin", "version": "1.0.0", "css": "a{}"}]), encoding="utf-8")
    settings = EngineSettings.model_validate({
        "defaults": {"path": str(defaultsPath)},
        "updates": {"checkOnStart": False},
    })
    return ModEngine.build(settings, MemoryKeyValueStore(), executor=RecordingExecutor(), requester=requester)


@pytest.fixture()
def client(engine):
    with TestClient(createApp(engine)) as testClient:
        yield testClient


def test_lifespan_starts_engine_and_merges_defaults(client, engine):
    health = client.get("/health").json()
    assert health["ok"] is True
    assert health["started"] is True
    assert health["mods"] == 1
    assert engine.registry.require("builtin").isDefault


def test_install_toggle_navigate_delete_flow(client, requester, engine):
    requester.publish("acme", "shiny", {"name": "Shiny", "version": "1.0.0", "matches": ["example.com"], "js": "shine()"})

    installed = client.post("/mods/install", json={"owner": "acme", "repo": "shiny"})
    assert installed.status_code == 200
    assert installed.json()["data"]["id"] == "acme-shiny"

    toggled = client.post("/mods/acme-shiny/toggle", json={"enabled": True})
    assert toggled.json()["data"]["enabled"] is True

    navigated = client.post("/navigation", json={"pageId": "tab1", "url": "https://example.com/a", "navigationId": "n1"})
    assert navigated.json()["data"] == {"injected": ["acme-shiny"]}
    repeated = client.post("/navigation", json={"pageId": "tab1", "url": "https://example.com/a", "navigationId": "n1"})
    assert repeated.json()["data"] == {"injected": []}

    listed = client.get("/mods").json()["data"]
    assert [mod["id"] for mod in listed] == ["builtin", "acme-shiny"]

    assert client.delete("/mods/acme-shiny").status_code == 200
    assert client.get("/mods/acme-shiny").status_code == 404


def test_errors_map_to_status_codes(client, requester):
    missing = client.post("/mods/install", json={"repository": "acme/missing"})
    assert missing.status_code == 404
    assert missing.json()["error"]["kind"] == "NotFound"

    requester.publish("acme", "broken", {"name": "Broken"})
    invalid = client.post("/mods/install", json={"source": "acme/broken"})
    assert invalid.status_code == 422
    assert invalid.json()["error"]["kind"] == "InvalidManifest"

    protected = client.delete("/mods/builtin")
    assert protected.status_code == 409
    assert protected.json()["error"]["kind"] == "ProtectedMod"

    bad = client.post("/mods/install", json={"repository": "nope"})
    assert bad.status_code == 400


def test_update_check_and_update(client, requester):
    requester.publish("acme", "shiny", {"name": "Shiny", "version": "1.0.0", "matchAll": True, "css": "a{}"})
    client.post("/mods/install", json={"source": "acme/shiny"})
    requester.publish("acme", "shiny", {"name": "Shiny", "version": "1.1.0", "matchAll": True, "css": "b{}"})

    checked = client.post("/updates/check").json()["data"]
    assert [update["id"] for update in checked["updates"]] == ["acme-shiny"]
    assert client.get("/mods/acme-shiny").json()["data"]["updateAvailable"] == "1.1.0"

    updated = client.post("/mods/acme-shiny/update").json()["data"]
    assert updated["version"] == "1.1.0"
    assert updated["updateAvailable"] is None


def test_defaults_merge_and_dispatch(client):
    merged = client.post("/defaults/merge").json()
    assert merged["success"] is True
    assert merged["data"]["changed"] is False

    dispatched = client.post("/dispatch", json={"action": "getMods"}).json()
    assert [mod["id"] for mod in dispatched["data"]] == ["builtin"]

    unknown = client.post("/dispatch", json={"action": "nope"})
    assert unknown.status_code == 400


def test_apply_updates_route(client, requester):
    assert client.post("/updates/apply").json()["data"]["message"] == "No updates available"

    requester.publish("acme", "shiny", {"name": "Shiny", "version": "1.0.0", "matchAll": True, "css": "a{}"})
    client.post("/mods/install", json={"source": "acme/shiny"})
    requester.publish("acme", "shiny", {"name": "Shiny", "version": "2.0.0", "matchAll": True, "css": "b{}"})
    client.post("/updates/check")

    applied = client.post("/updates/apply").json()["data"]
    assert applied["updated"] == ["acme-shiny"]
    assert applied["message"] == "Updated 1 of 1 mods"
    assert client.get("/mods/acme-shiny").json()["data"]["version"] == "2.0.0"


def test_backup_export_and_import_routes(client, requester, engine):
    requester.publish("acme", "shiny", {"name": "Shiny", "version": "1.0.0", "matchAll": True, "css": "a{}"})
    client.post("/mods/install", json={"source": "acme/shiny"})

    exported = client.get("/backup").json()["data"]
    assert [mod["id"] for mod in exported["mods"]] == ["builtin", "acme-shiny"]

    client.delete("/mods/acme-shiny")
    restored = client.post("/backup", json=exported)
    assert restored.status_code == 200
    assert restored.json()["data"]["imported"] == ["builtin", "acme-shiny"]
    assert "acme-shiny" in engine.registry

    rejected = client.post("/backup", json={"mods": "not a list"})
    assert rejected.status_code == 400
    assert rejected.json()["error"]["kind"] == "InvalidRequest"


def test_mod_settings_routes(client, requester):
    requester.publish("acme", "shiny", {
        "name": "Shiny", "version": "1.0.0", "matchAll": True, "css": "a{}",
        "settings": [{"key": "glow", "type": "number", "default": 1, "min": 0, "max": 5}],
    })
    client.post("/mods/install", json={"source": "acme/shiny"})

    assert client.get("/mods/acme-shiny/settings").json()["data"] == {"glow": 1}

    saved = client.put("/mods/acme-shiny/settings", json={"glow": 4})
    assert saved.status_code == 200
    assert saved.json()["data"] == {"glow": 4}

    assert client.put("/mods/acme-shiny/settings", json={"glow": 9}).status_code == 400
    assert client.get("/mods/ghost/settings").status_code == 404
