"""Engine — wires the store, generation manager, fetcher and reconciler.

The Engine is what the CLI talks to. It resolves where state lives from
the declarative config (or the ``AGGON_STATE_DIR`` override), owns the
fetcher it builds, and layers the multi-step workflows (switch, rollback,
garbage collection) on top of the reconciler.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from aggon.config import AggonSettings
from aggon.core.content_store import ContentStore
from aggon.core.errors import (
    InvariantViolationError,
    NoCurrentGenerationError,
    NotFoundError,
    StorageError,
)
from aggon.core.fetcher import Fetcher, SourceFetcher
from aggon.core.generation_manager import GenerationManager
from aggon.core.reconciler import Reconciler
from aggon.models.config import DeclarativeConfig, load_config
from aggon.models.generation import Generation, GenerationState
from aggon.models.plan import BuildPlan, ReconcileResult
from aggon.models.store import CollectionReport

logger = logging.getLogger(__name__)


class Engine:
    """Declarative addon state engine.

    Parameters
    ----------
    config:
        Effective declarative configuration (profile already applied).
    settings:
        Process settings. Read from the environment if not provided.
    fetcher:
        Source fetcher. A ``SourceFetcher`` built from ``settings`` is used
        (and closed by ``close``) if omitted.
    base_dir:
        Directory that relative state paths and local sources resolve
        against. Defaults to the working directory.
    """

    def __init__(
        self,
        config: DeclarativeConfig,
        *,
        settings: AggonSettings | None = None,
        fetcher: Fetcher | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self.config = config
        self._settings = settings or AggonSettings()
        self._base_dir = Path(base_dir) if base_dir else Path.cwd()

        self.store = ContentStore(self._state_path(config.settings.store_path))
        self.generations = GenerationManager(
            self._state_path(config.settings.generations_path)
        )

        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or SourceFetcher.from_settings(self._settings, self._base_dir)
        self.reconciler = Reconciler(self.store, self.generations, self.fetcher)

    @classmethod
    def from_file(
        cls,
        path: Path,
        *,
        profile: str | None = None,
        settings: AggonSettings | None = None,
        fetcher: Fetcher | None = None,
    ) -> Engine:
        """Load a declarative config file and build an engine for it."""
        path = Path(path)
        config = load_config(path).for_profile(profile)
        return cls(config, settings=settings, fetcher=fetcher, base_dir=path.parent)

    def _state_path(self, configured: Path) -> Path:
        root = self._settings.state_dir or configured
        root = Path(root).expanduser()
        return root if root.is_absolute() else self._base_dir / root

    def close(self) -> None:
        if self._owns_fetcher:
            close = getattr(self.fetcher, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the on-disk layout. Safe to call repeatedly."""
        self.store.initialize()
        self.generations.initialize()

    def plan(self, *, refresh: bool | None = None) -> BuildPlan:
        return self.reconciler.plan(self.config, refresh=refresh)

    def apply(
        self,
        plan: BuildPlan,
        *,
        description: str = "",
        cancel_event: threading.Event | None = None,
    ) -> ReconcileResult:
        return self.reconciler.apply(plan, description=description, cancel_event=cancel_event)

    def switch(
        self,
        *,
        description: str = "",
        refresh: bool | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ReconcileResult:
        """Plan, apply, and prune old generations if the apply succeeded."""
        self.initialize()
        plan = self.plan(refresh=refresh)
        result = self.apply(plan, description=description, cancel_event=cancel_event)
        if result.success:
            try:
                self.generations.garbage_collect(self.config.settings.backup_generations)
            except (StorageError, InvariantViolationError) as exc:
                logger.warning("Generation cleanup after switch failed: %s", exc)
        return result

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback_target(self, generation_id: int | None = None) -> Generation:
        """Resolve which generation a rollback would restore.

        Without an explicit ID this is the newest previously-promoted
        generation older than the current one. Generations that were never
        promoted (failed applies) are not valid targets.
        """
        if generation_id is not None:
            state = self.generations.state_of(generation_id)
            if state == GenerationState.CREATED:
                raise InvariantViolationError(
                    f"Generation {generation_id} was never promoted and cannot be restored"
                )
            return self.generations.get(generation_id)

        current = self.generations.current_id()
        if current is None:
            raise NoCurrentGenerationError("No current generation to roll back from")
        for generation in reversed(self.generations.list()):
            if generation.id >= current:
                continue
            if self.generations.state_of(generation.id) == GenerationState.SUPERSEDED:
                return generation
        raise NotFoundError(f"No earlier promoted generation before {current}")

    def rollback(self, generation_id: int | None = None) -> ReconcileResult:
        """Restore a previous generation's links and make it current."""
        target = self.rollback_target(generation_id)
        logger.info("Rolling back to generation %d", target.id)
        return self.reconciler.restore(target)

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def collect_garbage(self, keep: int | None = None) -> CollectionReport:
        """Prune old generations, then drop blobs no remaining generation uses."""
        if keep is None:
            keep = self.config.settings.backup_generations
        deleted = self.generations.garbage_collect(keep)
        removed = self.store.garbage_collect(self.generations.reachable_hashes())
        return CollectionReport(generations=deleted, blobs=removed)
