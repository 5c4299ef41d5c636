"""Generation models — immutable snapshots of desired and realized state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from aggon.models.config import DeclarativeConfig


class GenerationState(str, Enum):
    """Lifecycle of a generation.

    ``PROPOSED`` only ever exists as an in-memory build plan.
    """

    PROPOSED = "proposed"
    CREATED = "created"
    CURRENT = "current"
    SUPERSEDED = "superseded"
    DELETED = "deleted"


class InstalledAddon(BaseModel):
    """An addon actually linked into an installation."""

    model_config = ConfigDict(frozen=True)

    id: str
    version: str = ""
    hash: str  # content hash of the store blob
    descriptor_hash: str = ""  # source descriptor the blob was fetched for
    store_path: str
    install_path: str
    installed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InstallationState(BaseModel):
    """Realized state of a single installation."""

    model_config = ConfigDict(frozen=True)

    path: str
    addons: dict[str, InstalledAddon] = {}


class Generation(BaseModel):
    """A numbered, immutable snapshot of the system.

    Whether a generation is current is recorded by the generation
    manager's pointer, never in the record itself.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    config: DeclarativeConfig = DeclarativeConfig()
    state_hash: str = ""
    description: str = ""
    installations: dict[str, InstallationState] = {}

    def content_hashes(self) -> set[str]:
        """All store hashes referenced by this generation's installations."""
        return {
            addon.hash
            for state in self.installations.values()
            for addon in state.addons.values()
        }
