"""Reconciler — diff desired configuration against the current generation.

``plan`` is read-only and can be called any number of times. ``apply``
creates a generation up front, converges the store and installations on a
best-effort basis, and promotes the generation only if every step
succeeded. A failed apply leaves the previous generation current.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from aggon.core.content_store import ContentStore
from aggon.core.errors import (
    ApplyCancelledError,
    FetchError,
    HashMismatchError,
    IncompatibleAddonError,
    NoCurrentGenerationError,
    NotFoundError,
    StorageError,
    UnknownAddonError,
)
from aggon.core.fetcher import Fetcher
from aggon.core.generation_manager import GenerationManager
from aggon.core.hasher import descriptor_hash
from aggon.models.config import AddonDescriptor, DeclarativeConfig, InstallationDescriptor
from aggon.models.generation import Generation, InstallationState, InstalledAddon
from aggon.models.plan import (
    LINKING_OPERATIONS,
    BuildPlan,
    DownloadOperation,
    InstallPlan,
    Operation,
    OperationType,
    ReconcileError,
    ReconcileResult,
)
from aggon.models.store import StoreHint

logger = logging.getLogger(__name__)


class Reconciler:
    """Stateless planner and applier.

    Parameters
    ----------
    store:
        Content store that receives downloads and backs activation links.
    generations:
        Generation manager that records and promotes the result.
    fetcher:
        Collaborator that turns an addon source into bytes.
    max_workers:
        Upper bound on parallel downloads. Defaults to the config's
        ``settings.parallel_downloads``.
    """

    def __init__(
        self,
        store: ContentStore,
        generations: GenerationManager,
        fetcher: Fetcher,
        *,
        max_workers: int | None = None,
    ) -> None:
        self._store = store
        self._generations = generations
        self._fetcher = fetcher
        self._max_workers = max_workers

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def _current(self) -> Generation | None:
        try:
            return self._generations.get_current()
        except NoCurrentGenerationError:
            return None

    def plan(self, config: DeclarativeConfig, *, refresh: bool | None = None) -> BuildPlan:
        """Compute the operations that move the system to ``config``.

        ``refresh`` (defaulting to ``settings.auto_update``) re-fetches
        addons that are not pinned to a content hash even when their
        descriptor is unchanged.
        """
        if refresh is None:
            refresh = config.settings.auto_update
        current = self._current()

        operations: list[Operation] = []
        downloads: dict[str, DownloadOperation] = {}
        installations: dict[str, InstallPlan] = {}

        for install_id in sorted(config.installations):
            installation = config.installations[install_id]
            if not installation.enabled:
                logger.debug("Skipping disabled installation %s", install_id)
                continue
            prior = current.installations.get(install_id) if current else None
            install_plan = self._plan_installation(
                install_id, installation, config, prior, downloads, refresh
            )
            installations[install_id] = install_plan
            operations.extend(install_plan.operations)

        plan = BuildPlan(
            current_generation_id=current.id if current else None,
            config=config,
            operations=operations,
            downloads=list(downloads.values()),
            installations=installations,
        )
        logger.info(
            "Planned %d operation(s) and %d download(s) against generation %s",
            len(plan.operations),
            len(plan.downloads),
            plan.current_generation_id or "none",
        )
        return plan

    def _plan_installation(
        self,
        install_id: str,
        installation: InstallationDescriptor,
        config: DeclarativeConfig,
        prior: InstallationState | None,
        downloads: dict[str, DownloadOperation],
        refresh: bool,
    ) -> InstallPlan:
        recorded = prior.addons if prior else {}
        operations: list[Operation] = []
        symlinks: dict[str, str | None] = {}

        desired: list[str] = []
        for addon_id in installation.addons:
            if addon_id not in desired:
                desired.append(addon_id)

        for addon_id in desired:
            addon = config.addons.get(addon_id)
            if addon is None:
                raise UnknownAddonError(addon_id, install_id)
            if installation.type not in addon.compatible:
                raise IncompatibleAddonError(addon_id, install_id, installation.type)

            dhash = descriptor_hash(addon)
            existing = recorded.get(addon_id)
            stale = refresh and addon.hash is None

            if existing is not None and not stale and self._unchanged(existing, addon, dhash):
                op = Operation(
                    type=OperationType.SYMLINK,
                    installation=install_id,
                    addon=addon_id,
                    to_hash=existing.hash,
                    descriptor_hash=dhash,
                )
                if not self._store.exists(existing.hash):
                    # Link target was garbage collected or removed by hand.
                    self._schedule_download(addon_id, addon, dhash, downloads)
            else:
                to_hash, provisional, fetch = self._target_for(addon, dhash, force=stale)
                if fetch:
                    self._schedule_download(addon_id, addon, dhash, downloads)
                op = Operation(
                    type=OperationType.INSTALL if existing is None else OperationType.UPDATE,
                    installation=install_id,
                    addon=addon_id,
                    from_hash=existing.hash if existing else None,
                    to_hash=to_hash,
                    descriptor_hash=dhash,
                    provisional=provisional,
                )

            operations.append(op)
            symlinks[addon_id] = (
                None if op.provisional else str(self._store.blob_path(op.to_hash))
            )

        for addon_id in sorted(set(recorded) - set(desired)):
            operations.append(
                Operation(
                    type=OperationType.UNINSTALL,
                    installation=install_id,
                    addon=addon_id,
                    from_hash=recorded[addon_id].hash,
                    descriptor_hash=recorded[addon_id].descriptor_hash,
                )
            )

        return InstallPlan(
            path=str(installation.path), operations=operations, symlinks=symlinks
        )

    @staticmethod
    def _unchanged(existing: InstalledAddon, addon: AddonDescriptor, dhash: str) -> bool:
        if existing.descriptor_hash != dhash:
            return False
        return addon.hash is None or addon.hash == existing.hash

    def _target_for(
        self, addon: AddonDescriptor, dhash: str, *, force: bool
    ) -> tuple[str, bool, bool]:
        """Return ``(to_hash, provisional, needs_download)`` for an addon."""
        if addon.hash:
            return addon.hash, False, not self._store.exists(addon.hash)
        known = None if force else self._store.lookup_descriptor(dhash)
        if known is not None:
            return known, False, False
        return dhash, True, True

    def _schedule_download(
        self,
        addon_id: str,
        addon: AddonDescriptor,
        dhash: str,
        downloads: dict[str, DownloadOperation],
    ) -> None:
        if dhash in downloads:
            return
        target = addon.hash or dhash
        downloads[dhash] = DownloadOperation(
            addon_id=addon_id,
            source=addon.source,
            hash=target,
            descriptor_hash=dhash,
            expected_hash=addon.hash,
            store_path=str(self._store.blob_path(addon.hash)) if addon.hash else None,
            provisional=addon.hash is None,
        )

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(
        self,
        plan: BuildPlan,
        *,
        description: str = "",
        cancel_event: threading.Event | None = None,
    ) -> ReconcileResult:
        """Execute a plan and promote the resulting generation on success.

        Lifecycle:
        1. Create the generation (errors here are fatal)
        2. Download missing content, in parallel
        3. Link addons into each installation, remove uninstalled ones
        4. Seal the realized installation state into the generation
        5. Promote it, only if nothing failed
        """
        started = time.monotonic()
        config = plan.config
        generation = self._generations.create(
            config, description or f"Applied configuration {config.metadata.name!r}"
        )
        errors: list[ReconcileError] = []

        downloaded = self._run_downloads(plan.downloads, config, errors, cancel_event)

        previous = self._previous(plan.current_generation_id)
        installations: dict[str, InstallationState] = {}
        if previous is not None:
            # Installations this plan does not touch keep their recorded state.
            for install_id, state in previous.installations.items():
                if install_id not in plan.installations:
                    installations[install_id] = state

        installed = 0
        for install_id in sorted(plan.installations):
            prior = previous.installations.get(install_id) if previous else None
            state, linked = self._apply_installation(
                install_id, plan.installations[install_id], config, prior, errors, cancel_event
            )
            installations[install_id] = state
            installed += linked

        try:
            self._generations.seal(generation.id, installations)
        except (StorageError, NotFoundError) as exc:
            errors.append(ReconcileError(step="seal", message=str(exc)))

        if not errors:
            try:
                self._generations.set_current(generation.id)
            except (StorageError, NotFoundError) as exc:
                errors.append(ReconcileError(step="promote", message=str(exc)))
        else:
            logger.warning(
                "Generation %d not promoted: %d error(s)", generation.id, len(errors)
            )

        return ReconcileResult(
            success=not errors,
            generation=generation.id,
            operations=len(plan.operations),
            downloaded=downloaded,
            installed=installed,
            errors=errors,
            duration=time.monotonic() - started,
        )

    def _previous(self, generation_id: int | None) -> Generation | None:
        if generation_id is None:
            return None
        try:
            return self._generations.get(generation_id)
        except NotFoundError:
            logger.warning("Planned-against generation %d no longer exists", generation_id)
            return None

    # -- downloads -------------------------------------------------------

    def _run_downloads(
        self,
        downloads: list[DownloadOperation],
        config: DeclarativeConfig,
        errors: list[ReconcileError],
        cancel_event: threading.Event | None,
    ) -> int:
        if not downloads:
            return 0
        workers = max(1, min(self._max_workers or config.settings.parallel_downloads, len(downloads)))
        verify = config.settings.verify_hashes
        downloaded = 0

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="aggon-fetch") as pool:
            futures = [
                (download, pool.submit(self._download, download, verify, cancel_event))
                for download in downloads
            ]
            for download, future in futures:
                try:
                    future.result()
                except ApplyCancelledError as exc:
                    errors.append(
                        ReconcileError(step="cancel", message=str(exc), addon=download.addon_id)
                    )
                except (FetchError, StorageError, OSError) as exc:
                    logger.error("Download of %s failed: %s", download.addon_id, exc)
                    errors.append(
                        ReconcileError(
                            step="download",
                            message=str(exc),
                            addon=download.addon_id,
                            hash=download.hash,
                        )
                    )
                else:
                    downloaded += 1
        return downloaded

    def _download(
        self,
        download: DownloadOperation,
        verify: bool,
        cancel_event: threading.Event | None,
    ) -> str:
        if cancel_event is not None and cancel_event.is_set():
            raise ApplyCancelledError(f"Download of {download.addon_id} cancelled")

        stream = self._fetcher.fetch(download.source)
        with stream:
            content_hash = self._store.add(
                stream,
                StoreHint(source_url=download.source.url, source_ref=download.source.ref),
            )

        expected = download.expected_hash
        if expected and content_hash != expected:
            if verify:
                raise HashMismatchError(download.addon_id, expected, content_hash)
            logger.warning(
                "Content hash mismatch for %s (expected %s, got %s); verification disabled",
                download.addon_id,
                expected,
                content_hash,
            )
        self._store.record_descriptor(download.descriptor_hash, content_hash)
        logger.info("Fetched %s -> %s", download.addon_id, content_hash[:12])
        return content_hash

    # -- installations ---------------------------------------------------

    def _resolve(self, op: Operation, planned: str | None) -> str | None:
        """Content hash an operation's link should point at.

        ``planned`` is the store path recorded in the plan. Provisional
        entries have none and are resolved through the descriptor index,
        as are planned blobs that are missing from the store.
        """
        if planned is not None:
            content_hash = self._store.hash_for_path(Path(planned))
            if content_hash is not None and self._store.exists(content_hash):
                return content_hash
        return self._store.lookup_descriptor(op.descriptor_hash)

    def _apply_installation(
        self,
        install_id: str,
        install_plan: InstallPlan,
        config: DeclarativeConfig,
        prior: InstallationState | None,
        errors: list[ReconcileError],
        cancel_event: threading.Event | None,
    ) -> tuple[InstallationState, int]:
        root = Path(install_plan.path)
        recorded = prior.addons if prior else {}
        addons: dict[str, InstalledAddon] = {}
        linked = 0

        for op in install_plan.operations:
            if cancel_event is not None and cancel_event.is_set():
                errors.append(
                    ReconcileError(
                        step="cancel",
                        message="Apply cancelled before all links were written",
                        installation=install_id,
                    )
                )
                break

            if op.type == OperationType.UNINSTALL:
                self._uninstall(install_id, op, root, recorded.get(op.addon), errors)
                continue
            if op.type not in LINKING_OPERATIONS:
                continue

            content_hash = self._resolve(op, install_plan.symlinks.get(op.addon))
            if content_hash is None:
                errors.append(
                    ReconcileError(
                        step="link",
                        message="Content is not available in the store",
                        installation=install_id,
                        addon=op.addon,
                        hash=op.to_hash,
                    )
                )
                continue

            addon = config.addons[op.addon]
            target = root / addon.link_name(op.addon)
            try:
                self._store.link(content_hash, target)
                old = recorded.get(op.addon)
                if old is not None and Path(old.install_path) != target:
                    self._remove_link(Path(old.install_path))
            except (StorageError, NotFoundError) as exc:
                logger.error("Linking %s into %s failed: %s", op.addon, install_id, exc)
                errors.append(
                    ReconcileError(
                        step="link",
                        message=str(exc),
                        installation=install_id,
                        addon=op.addon,
                        hash=content_hash,
                    )
                )
                continue

            addons[op.addon] = InstalledAddon(
                id=op.addon,
                version=addon.version,
                hash=content_hash,
                descriptor_hash=op.descriptor_hash,
                store_path=str(self._store.blob_path(content_hash)),
                install_path=str(target),
            )
            linked += 1

        return InstallationState(path=install_plan.path, addons=addons), linked

    def _uninstall(
        self,
        install_id: str,
        op: Operation,
        root: Path,
        recorded: InstalledAddon | None,
        errors: list[ReconcileError],
    ) -> None:
        target = Path(recorded.install_path) if recorded else root / op.addon
        try:
            self._remove_link(target)
        except StorageError as exc:
            errors.append(
                ReconcileError(
                    step="uninstall",
                    message=str(exc),
                    installation=install_id,
                    addon=op.addon,
                    hash=op.from_hash,
                )
            )
            return
        logger.info("Uninstalled %s from %s", op.addon, install_id)

    @staticmethod
    def _remove_link(target: Path) -> None:
        """Remove an activation link. Anything that is not a link is left alone."""
        if target.is_symlink():
            try:
                target.unlink()
            except OSError as exc:
                raise StorageError(f"Failed to remove {target}: {exc}") from exc
        elif target.exists():
            raise StorageError(f"{target} is not an activation link; left in place")

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def restore(self, target: Generation) -> ReconcileResult:
        """Re-realize a recorded generation and make it current.

        Links are rebuilt from the generation's own installation state, so
        the configuration that produced it is not consulted. Links the
        current generation has that ``target`` lacks are removed. No new
        generation is created.
        """
        started = time.monotonic()
        current = self._current()
        errors: list[ReconcileError] = []
        linked = 0

        for install_id, state in sorted(target.installations.items()):
            for addon_id, addon in sorted(state.addons.items()):
                try:
                    self._store.link(addon.hash, Path(addon.install_path))
                except (StorageError, NotFoundError) as exc:
                    errors.append(
                        ReconcileError(
                            step="link",
                            message=str(exc),
                            installation=install_id,
                            addon=addon_id,
                            hash=addon.hash,
                        )
                    )
                else:
                    linked += 1

        if current is not None and current.id != target.id:
            wanted = {
                addon.install_path
                for state in target.installations.values()
                for addon in state.addons.values()
            }
            for install_id, state in current.installations.items():
                for addon_id, addon in state.addons.items():
                    if addon.install_path in wanted:
                        continue
                    try:
                        self._remove_link(Path(addon.install_path))
                    except StorageError as exc:
                        errors.append(
                            ReconcileError(
                                step="uninstall",
                                message=str(exc),
                                installation=install_id,
                                addon=addon_id,
                                hash=addon.hash,
                            )
                        )

        if not errors:
            try:
                self._generations.set_current(target.id)
            except (StorageError, NotFoundError) as exc:
                errors.append(ReconcileError(step="promote", message=str(exc)))

        return ReconcileResult(
            success=not errors,
            generation=target.id,
            installed=linked,
            errors=errors,
            duration=time.monotonic() - started,
        )
