# modengine/mods/models.py
from __future__ import annotations
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "ModSource", "ModAssets", "Mod", "Manifest", "SettingDeclaration", "SettingOption", "parseRepository",
]

MATCH_ALL = "*"

DEFAULT_CONTENT_SCRIPT = "content.js"
DEFAULT_STYLESHEET = "content.css"



def parseRepository(repository: str) -> tuple[str, str]:
    """
    Splits "owner/repo" into its parts. Also accepts GitHub URLs
    ("https://github.com/owner/repo.git") as pasted into the install box.
    """
    text = str(repository or "").strip()
    for prefix in ("https://", "http://"):
        if text.startswith(prefix):
            text = text[len(prefix):]
    if text.startswith("github.com/"):
        text = text[len("github.com/"):]
    text = text.strip("/")
    if text.endswith(".git"):
        text = text[:-4]
    owner, _, repo = text.partition("/")
    if not owner or not repo or "/" in repo:
        raise ValueError(f"Repository must look like 'owner/repo', got {repository!r}")
    return owner, repo



class ModSource(BaseModel):
    """Where a mod's manifest and assets are fetched from."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    branch: str = "main"

    @model_validator(mode="before")
    @classmethod
    def _acceptRepositoryShape(cls, data: Any) -> Any:
        # {repository: "owner/repo", branch} and plain "owner/repo" are the same source
        if isinstance(data, str):
            data = {"repository": data}
        if isinstance(data, Mapping):
            data = dict(data)
            repository = data.pop("repository", None)
            if repository and not (data.get("owner") and data.get("repo")):
                data["owner"], data["repo"] = parseRepository(repository)
            if data.get("branch") in (None, ""):
                data.pop("branch", None)
        return data

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.repository}@{self.branch}"



class ModAssets(BaseModel):
    """
    Inline CSS/JS plus auxiliary files fetched by conventional name.

    `contentScript`/`stylesheet` name the entries of `files` that hold the
    page script/style; they are resolved when the mod is injected.
    """
    model_config = ConfigDict(extra="ignore")

    css: str | None = None
    js: str | None = None
    files: dict[str, str] = Field(default_factory=dict)
    contentScript: str | None = None
    stylesheet: str | None = None

    def pageCss(self) -> str | None:
        return _joinParts(self.css, self.files.get(self.stylesheet or DEFAULT_STYLESHEET))

    def pageJs(self) -> str | None:
        return _joinParts(self.js, self.files.get(self.contentScript or DEFAULT_CONTENT_SCRIPT))

    def isEmpty(self) -> bool:
        return not (self.pageCss() or self.pageJs())



def _versionText(value: Any) -> Any:
    # `"version": 1.1` in a manifest arrives as a float
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value



def _joinParts(*parts: str | None) -> str | None:
    present = [part for part in parts if part]
    if not present:
        return None
    return "\n".join(present)



class SettingOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: Any
    label: str = ""

    @model_validator(mode="after")
    def _labelDefaultsToValue(self) -> SettingOption:
        if not self.label:
            self.label = str(self.value)
        return self



class SettingDeclaration(BaseModel):
    """
    One user-facing setting a mod declares in its manifest. Stored values
    live under `mod_<id>_settings`; `default` is what a key reads as until
    something is stored.
    """
    model_config = ConfigDict(extra="ignore")

    key: str = Field(min_length=1)
    type: Literal["text", "number", "boolean", "select"]
    label: str = ""
    default: Any = None
    options: list[SettingOption] = Field(default_factory=list)
    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def _checkShape(self) -> SettingDeclaration:
        if self.type == "select" and not self.options:
            raise ValueError(f"select setting '{self.key}' needs options")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"setting '{self.key}' has min > max")
        if not self.label:
            self.label = self.key
        return self

    def check(self, value: Any) -> Any:
        """Returns `value` if it fits this declaration, raises ValueError otherwise."""
        if self.type == "text":
            if not isinstance(value, str):
                raise ValueError(f"'{self.key}' must be text")
        elif self.type == "boolean":
            if not isinstance(value, bool):
                raise ValueError(f"'{self.key}' must be true or false")
        elif self.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{self.key}' must be a number")
            if self.min is not None and value < self.min:
                raise ValueError(f"'{self.key}' must be >= {self.min:g}")
            if self.max is not None and value > self.max:
                raise ValueError(f"'{self.key}' must be <= {self.max:g}")
        elif value not in [option.value for option in self.options]:
            raise ValueError(f"'{self.key}' must be one of {[option.value for option in self.options]!r}")
        return value



def _uniqueSettingKeys(settings: list[SettingDeclaration]) -> list[SettingDeclaration]:
    seen: set[str] = set()
    for declaration in settings:
        if declaration.key in seen:
            raise ValueError(f"setting key '{declaration.key}' is declared twice")
        seen.add(declaration.key)
    return settings



class Mod(BaseModel):
    """A registry record. Identity is `id`; everything else is owned per operation."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    category: str = "uncategorized"
    version: str = "0.0.0"
    enabled: bool = False
    isDefault: bool = False
    targetSites: list[str] = Field(default_factory=list)
    source: ModSource | None = None
    assets: ModAssets = Field(default_factory=ModAssets)
    installedAt: int | None = None
    lastUpdated: int | None = None
    updateAvailable: str | None = None
    settings: list[SettingDeclaration] = Field(default_factory=list)

    @field_validator("settings")
    @classmethod
    def _uniqueSettings(cls, value: list[SettingDeclaration]) -> list[SettingDeclaration]:
        return _uniqueSettingKeys(value)

    @model_validator(mode="before")
    @classmethod
    def _normalizeStoredShapes(cls, data: Any) -> Any:
        """
        Older stores persisted the same record in a few shapes:
          - {github: {owner, repo, branch}}
          - {repository: "owner/repo", branch: "main"}
          - {matches: [...]} instead of targetSites
          - top-level js/css instead of assets
        """
        if not isinstance(data, Mapping):
            return data
        data = dict(data)

        github = data.pop("github", None)
        repository = data.pop("repository", None)
        branch = data.pop("branch", None)
        if data.get("source") is None:
            if isinstance(github, Mapping):
                data["source"] = dict(github)
            elif repository:
                data["source"] = {"repository": repository, "branch": branch}

        matches = data.pop("matches", None)
        if "targetSites" not in data and matches is not None:
            data["targetSites"] = matches
        if data.get("targetSites") is None:
            data["targetSites"] = []

        js = data.pop("js", None)
        css = data.pop("css", None)
        if js is not None or css is not None:
            assets = dict(data.get("assets") or {})
            assets.setdefault("js", js)
            assets.setdefault("css", css)
            data["assets"] = assets

        if data.get("description") is None:
            data["description"] = ""
        if data.get("category") is None:
            data["category"] = "uncategorized"
        if data.get("settings") is None:
            data["settings"] = []

        if "version" in data:
            data["version"] = _versionText(data["version"])

        data.pop("hasUpdate", None)
        return data

    def contentFields(self) -> dict[str, Any]:
        """Everything the default merge compares; enabled and timestamps are excluded."""
        return self.model_dump(exclude={"enabled", "installedAt", "lastUpdated"})

    def publicConfig(self) -> dict[str, Any]:
        """What a running mod script may see about itself."""
        return self.model_dump(
            include={"id", "name", "description", "category", "version", "targetSites"}
        )

    def declaredSetting(self, key: str) -> SettingDeclaration | None:
        return next((declaration for declaration in self.settings if declaration.key == key), None)

    def settingDefaults(self) -> dict[str, Any]:
        return {
            declaration.key: declaration.default
            for declaration in self.settings
            if declaration.default is not None
        }



class Manifest(BaseModel):
    """
    A validated remote `mod.json`.

    Required: name, version, a target list (`targetSites` or `matches`) or
    `matchAll: true`, and inline (`js`/`css`) or referenced
    (`contentScript`/`stylesheet`) code. `settings` declares the mod's
    user-facing settings.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str | None = None
    category: str | None = None
    targetSites: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("targetSites", "matches"),
    )
    matchAll: bool = False
    js: str | None = None
    css: str | None = None
    contentScript: str | None = None
    stylesheet: str | None = None
    settings: list[SettingDeclaration] = Field(default_factory=list)

    @field_validator("settings", mode="before")
    @classmethod
    def _noSettings(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("settings")
    @classmethod
    def _uniqueSettings(cls, value: list[SettingDeclaration]) -> list[SettingDeclaration]:
        return _uniqueSettingKeys(value)

    @field_validator("version", mode="before")
    @classmethod
    def _numericVersion(cls, value: Any) -> Any:
        return _versionText(value)

    @field_validator("name", "version")
    @classmethod
    def _stripRequired(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def _requireTargetsAndCode(self) -> Manifest:
        if self.targetSites is None and not self.matchAll:
            raise ValueError("either 'targetSites'/'matches' or 'matchAll: true' is required")
        if not any((self.js, self.css, self.contentScript, self.stylesheet)):
            raise ValueError("inline 'js'/'css' or a 'contentScript'/'stylesheet' reference is required")
        return self

    def effectiveTargets(self) -> list[str]:
        if self.matchAll:
            return [MATCH_ALL]
        return list(self.targetSites or [])

    def referencedFiles(self) -> list[str]:
        return [name for name in (self.contentScript, self.stylesheet) if name]
