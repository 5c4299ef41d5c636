"""Declarative configuration models — the desired state of the system.

Loaded from ``aggon-declarative.json``. Every optional knob is an explicit
field on a frozen record; nothing is carried around as a loose dict.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from aggon.core.errors import ConfigurationError, UnknownProfileError

DEFAULT_SCHEMA = "aggon/v2"


class SourceType(str, Enum):
    """Where an addon's bytes come from."""

    GITHUB = "github"
    URL = "url"
    LOCAL = "local"


class AddonSource(BaseModel):
    """Locator for a fetchable artifact."""

    model_config = ConfigDict(frozen=True)

    type: SourceType = SourceType.GITHUB
    url: str
    ref: str = ""  # branch, tag, commit, or "latest" for the newest release
    asset_pattern: str = ""  # release asset selector, case-insensitive substring


class AddonDescriptor(BaseModel):
    """An addon and its source, as declared by the user."""

    model_config = ConfigDict(frozen=True)

    source: AddonSource
    version: str = ""
    hash: str | None = None  # expected sha256 of the fetched artifact
    ignore: list[str] = []
    compatible: list[str] = []
    folder: str | None = None  # activation link name inside the installation

    @field_validator("hash")
    @classmethod
    def _check_hash(cls, value: str | None) -> str | None:
        if not value:
            return None
        value = value.strip().lower()
        if len(value) != 64 or any(c not in "0123456789abcdef" for c in value):
            raise ValueError("hash must be a sha256 hex digest")
        return value

    def link_name(self, addon_id: str) -> str:
        """Name of the activation link for this addon."""
        return self.folder or addon_id


class InstallationDescriptor(BaseModel):
    """A named target directory that should contain a set of addons."""

    model_config = ConfigDict(frozen=True)

    type: str  # retail, classic, custom, ...
    path: Path
    enabled: bool = True
    addons: list[str] = []


class AddonOverride(BaseModel):
    """Per-profile override of an addon's declared settings."""

    model_config = ConfigDict(frozen=True)

    ref: str | None = None
    version: str | None = None
    enabled: bool | None = None


class ProfileConfig(BaseModel):
    """A named selection of installations with addon overrides."""

    model_config = ConfigDict(frozen=True)

    installations: list[str] = []
    addons: dict[str, AddonOverride] = {}
    description: str = ""


class ConfigMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "my-wow-setup"
    version: str = "1.0.0"
    description: str = ""


class SystemSettings(BaseModel):
    """Engine-wide settings that travel with the declarative config."""

    model_config = ConfigDict(frozen=True)

    auto_update: bool = False
    backup_generations: int = Field(default=10, ge=1)
    parallel_downloads: int = Field(default=3, ge=1)
    verify_hashes: bool = True
    store_path: Path = Path(".aggon")
    generations_path: Path = Path(".aggon")


class DeclarativeConfig(BaseModel):
    """The complete desired configuration of the system."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_version: str = Field(default=DEFAULT_SCHEMA, alias="schema")
    metadata: ConfigMetadata = ConfigMetadata()
    installations: dict[str, InstallationDescriptor] = {}
    addons: dict[str, AddonDescriptor] = {}
    profiles: dict[str, ProfileConfig] = {}
    settings: SystemSettings = SystemSettings()

    def for_profile(self, name: str | None) -> DeclarativeConfig:
        """Return the effective configuration for a profile.

        Installations are restricted to those the profile names (all of
        them if it names none), ``ref``/``version`` overrides are applied
        to addon sources, and addons the profile disables are dropped from
        every installation's addon list.
        """
        if not name:
            return self
        profile = self.profiles.get(name)
        if profile is None:
            raise UnknownProfileError(
                f"Profile {name!r} is not defined "
                f"(available: {', '.join(sorted(self.profiles)) or 'none'})"
            )

        addons: dict[str, AddonDescriptor] = {}
        disabled: set[str] = set()
        for addon_id, descriptor in self.addons.items():
            override = profile.addons.get(addon_id)
            if override is None:
                addons[addon_id] = descriptor
                continue
            if override.enabled is False:
                disabled.add(addon_id)
            update: dict[str, object] = {}
            if override.version is not None:
                update["version"] = override.version
            if override.ref is not None:
                update["source"] = descriptor.source.model_copy(
                    update={"ref": override.ref}
                )
            addons[addon_id] = descriptor.model_copy(update=update)

        selected = set(profile.installations) or set(self.installations)
        installations = {
            install_id: inst.model_copy(
                update={"addons": [a for a in inst.addons if a not in disabled]}
            )
            for install_id, inst in self.installations.items()
            if install_id in selected
        }
        return self.model_copy(update={"addons": addons, "installations": installations})


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------


def load_config(path: Path) -> DeclarativeConfig:
    """Load and validate a declarative configuration file."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration {path}: {exc}") from exc
    try:
        return DeclarativeConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration {path}: {exc}") from exc


def save_config(path: Path, config: DeclarativeConfig) -> None:
    """Write a declarative configuration as indented JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        config.model_dump_json(indent=2, by_alias=True) + "\n", encoding="utf-8"
    )
