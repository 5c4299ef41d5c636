"""aggon data models — all Pydantic v2, all frozen (immutable)."""

from aggon.models.config import (
    AddonDescriptor,
    AddonOverride,
    AddonSource,
    ConfigMetadata,
    DeclarativeConfig,
    InstallationDescriptor,
    ProfileConfig,
    SourceType,
    SystemSettings,
    load_config,
    save_config,
)
from aggon.models.generation import (
    Generation,
    GenerationState,
    InstallationState,
    InstalledAddon,
)
from aggon.models.plan import (
    BuildPlan,
    DownloadOperation,
    InstallPlan,
    Operation,
    OperationType,
    ReconcileError,
    ReconcileResult,
)
from aggon.models.store import CollectionReport, StoreEntry, StoreHint

__all__ = [
    # config
    "AddonDescriptor",
    "AddonOverride",
    "AddonSource",
    "ConfigMetadata",
    "DeclarativeConfig",
    "InstallationDescriptor",
    "ProfileConfig",
    "SourceType",
    "SystemSettings",
    "load_config",
    "save_config",
    # generations
    "Generation",
    "GenerationState",
    "InstallationState",
    "InstalledAddon",
    # plan
    "BuildPlan",
    "DownloadOperation",
    "InstallPlan",
    "Operation",
    "OperationType",
    "ReconcileError",
    "ReconcileResult",
    # store
    "CollectionReport",
    "StoreEntry",
    "StoreHint",
]
