"""Build plan and reconcile result models.

A ``BuildPlan`` is produced by ``Reconciler.plan`` and is never persisted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from aggon.models.config import AddonSource, DeclarativeConfig


class OperationType(str, Enum):
    INSTALL = "install"
    UPDATE = "update"
    UNINSTALL = "uninstall"
    SYMLINK = "symlink"


# Operations that leave the addon present in the installation.
LINKING_OPERATIONS: frozenset[OperationType] = frozenset(
    {OperationType.INSTALL, OperationType.UPDATE, OperationType.SYMLINK}
)


class Operation(BaseModel):
    """A single change to one addon in one installation.

    ``to_hash`` is the target content hash. When the content is not in the
    store yet it is the descriptor hash instead and ``provisional`` is set;
    the true hash is only known once the download has been stored.
    """

    model_config = ConfigDict(frozen=True)

    type: OperationType
    installation: str
    addon: str
    from_hash: str | None = None
    to_hash: str | None = None
    descriptor_hash: str = ""
    provisional: bool = False


class DownloadOperation(BaseModel):
    """An artifact that has to be fetched into the store."""

    model_config = ConfigDict(frozen=True)

    addon_id: str
    source: AddonSource
    hash: str  # expected content hash when declared, otherwise descriptor hash
    descriptor_hash: str
    expected_hash: str | None = None
    store_path: str | None = None  # blob location, once the content hash is known
    provisional: bool = True


class InstallPlan(BaseModel):
    """Changes for one installation."""

    model_config = ConfigDict(frozen=True)

    path: str
    operations: list[Operation] = []
    # addon id -> store path of the link target, None until fetched
    symlinks: dict[str, str | None] = {}


class BuildPlan(BaseModel):
    """Everything ``Reconciler.apply`` needs to converge the system."""

    model_config = ConfigDict(frozen=True)

    current_generation_id: int | None = None
    config: DeclarativeConfig
    operations: list[Operation] = []
    downloads: list[DownloadOperation] = []
    installations: dict[str, InstallPlan] = {}

    def count(self, op_type: OperationType) -> int:
        return sum(1 for op in self.operations if op.type == op_type)

    @property
    def has_changes(self) -> bool:
        """True if anything beyond re-asserting existing links is planned."""
        return bool(self.downloads) or any(
            op.type != OperationType.SYMLINK for op in self.operations
        )


class ReconcileError(BaseModel):
    """A non-fatal error recorded while applying a plan."""

    model_config = ConfigDict(frozen=True)

    step: str  # download, link, uninstall, seal, promote, cancel
    message: str
    installation: str | None = None
    addon: str | None = None
    hash: str | None = None

    def __str__(self) -> str:
        where = "/".join(p for p in (self.installation, self.addon) if p)
        return f"[{self.step}] {where + ': ' if where else ''}{self.message}"


class ReconcileResult(BaseModel):
    """Outcome of ``Reconciler.apply``."""

    model_config = ConfigDict(frozen=True)

    success: bool
    generation: int
    operations: int = 0
    downloaded: int = 0
    installed: int = 0
    errors: list[ReconcileError] = []
    duration: float = 0.0  # seconds
