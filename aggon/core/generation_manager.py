"""Append-only sequence of generations plus a single ``current`` pointer.

Layout under ``base_path/generations``::

    {id}-{YYYY-MM-DD-HHMMSS}/generation.json      written once by create()
    {id}-{YYYY-MM-DD-HHMMSS}/installations.json   written once by seal()
    {id}-{YYYY-MM-DD-HHMMSS}/promoted             marker, set on first promotion
    current -> {id}-{YYYY-MM-DD-HHMMSS}           the only mutable state
    .lock                                         serializes ID allocation

Design:
- Append-only: a generation directory appears atomically (rename of a
  fully written temp directory) and is only ever removed by ``delete``.
- ``set_current`` swaps the pointer with ``os.replace`` so readers never
  see a dangling or half-written link.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from aggon.core.errors import (
    CorruptStateError,
    InvariantViolationError,
    NoCurrentGenerationError,
    NotFoundError,
    StorageError,
)
from aggon.core.hasher import compute_state_hash
from aggon.models.config import DeclarativeConfig
from aggon.models.generation import Generation, GenerationState, InstallationState

logger = logging.getLogger(__name__)

GENERATION_FILE = "generation.json"
INSTALLATIONS_FILE = "installations.json"
PROMOTED_MARKER = "promoted"
CURRENT_LINK = "current"
LOCK_FILE = ".lock"
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

_INSTALLATIONS = TypeAdapter(dict[str, InstallationState])


def _parse_id(dir_name: str) -> int | None:
    """Numeric prefix of a generation directory name, if any."""
    prefix = dir_name.split("-", 1)[0]
    return int(prefix) if prefix.isdigit() else None


class GenerationManager:
    """Durable, append-only log of system snapshots.

    Parameters
    ----------
    base_path:
        Directory that holds (or will hold) ``generations/``.
    """

    def __init__(self, base_path: Path) -> None:
        self.generations_path = Path(base_path) / "generations"
        self._current_link = self.generations_path / CURRENT_LINK

    def initialize(self) -> None:
        """Create the generations directory."""
        try:
            self.generations_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(
                f"Failed to create directory {self.generations_path}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Directory helpers
    # ------------------------------------------------------------------

    def _generation_dirs(self) -> Iterator[tuple[int, Path]]:
        """Yield ``(id, directory)`` for every directory with a numeric prefix."""
        if not self.generations_path.is_dir():
            return
        for entry in self.generations_path.iterdir():
            if entry.name == CURRENT_LINK or entry.is_symlink() or not entry.is_dir():
                continue
            generation_id = _parse_id(entry.name)
            if generation_id is not None:
                yield generation_id, entry

    def _dir_for(self, generation_id: int) -> Path:
        for found_id, directory in self._generation_dirs():
            if found_id == generation_id:
                return directory
        raise NotFoundError(f"Generation {generation_id} not found")

    @staticmethod
    def _dir_name(generation: Generation) -> str:
        return f"{generation.id}-{generation.timestamp.strftime(TIMESTAMP_FORMAT)}"

    @contextmanager
    def _allocation_lock(self) -> Iterator[None]:
        """Exclusive lock around ID allocation."""
        self.initialize()
        with open(self.generations_path / LOCK_FILE, "w", encoding="utf-8") as handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, config: DeclarativeConfig, description: str = "") -> Generation:
        """Write a new generation with empty installation state.

        The ID is ``max(existing) + 1`` (1 for the first), allocated under
        an exclusive file lock so concurrent callers never share an ID.
        """
        with self._allocation_lock():
            existing = [gid for gid, _ in self._generation_dirs()]
            next_id = max(existing, default=0) + 1

            installations: dict[str, InstallationState] = {}
            generation = Generation(
                id=next_id,
                timestamp=datetime.now(timezone.utc),
                config=config,
                state_hash=compute_state_hash(config, installations),
                description=description,
                installations=installations,
            )
            final_dir = self.generations_path / self._dir_name(generation)
            if final_dir.exists():
                raise InvariantViolationError(
                    f"Generation directory {final_dir.name} already exists"
                )

            tmp_dir: Path | None = None
            try:
                tmp_dir = Path(
                    tempfile.mkdtemp(prefix=".tmp-", dir=self.generations_path)
                )
                (tmp_dir / GENERATION_FILE).write_text(
                    generation.model_dump_json(indent=2, by_alias=True), encoding="utf-8"
                )
                os.rename(tmp_dir, final_dir)
            except OSError as exc:
                if tmp_dir is not None:
                    shutil.rmtree(tmp_dir, ignore_errors=True)
                raise StorageError(f"Failed to write generation {next_id}: {exc}") from exc

        logger.info("Created generation %d (%s)", generation.id, generation.state_hash)
        return generation

    def seal(
        self, generation_id: int, installations: dict[str, InstallationState]
    ) -> Generation:
        """Record the installation state an apply actually realized.

        Write-once: a generation can be sealed a single time, and the
        record written by ``create`` is never touched.
        """
        directory = self._dir_for(generation_id)
        path = directory / INSTALLATIONS_FILE
        tmp: Path | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=directory)
            tmp = Path(tmp_name)
            with os.fdopen(fd, "wb") as handle:
                handle.write(_INSTALLATIONS.dump_json(installations, indent=2))
            # link() refuses to overwrite, which makes the seal write-once.
            os.link(tmp, path)
        except FileExistsError as exc:
            raise InvariantViolationError(
                f"Generation {generation_id} is already sealed"
            ) from exc
        except OSError as exc:
            raise StorageError(f"Failed to seal generation {generation_id}: {exc}") from exc
        finally:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
        logger.debug("Sealed generation %d with %d installation(s)", generation_id, len(installations))
        return self.get(generation_id)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _load(self, directory: Path) -> Generation:
        try:
            raw = (directory / GENERATION_FILE).read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CorruptStateError(f"{directory.name} has no {GENERATION_FILE}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {directory.name}: {exc}") from exc
        try:
            generation = Generation.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptStateError(f"Corrupt generation record in {directory.name}") from exc

        sealed = directory / INSTALLATIONS_FILE
        if sealed.exists():
            try:
                installations = _INSTALLATIONS.validate_json(sealed.read_bytes())
            except (OSError, ValidationError) as exc:
                raise CorruptStateError(
                    f"Corrupt installation record in {directory.name}"
                ) from exc
            generation = generation.model_copy(update={"installations": installations})
        return generation

    def get(self, generation_id: int) -> Generation:
        """Load a generation by ID."""
        return self._load(self._dir_for(generation_id))

    def current_id(self) -> int | None:
        """ID the ``current`` pointer names, without loading the record."""
        try:
            target = os.readlink(self._current_link)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CorruptStateError(f"Unreadable current pointer: {exc}") from exc
        generation_id = _parse_id(Path(target).name)
        if generation_id is None:
            raise CorruptStateError(f"Current pointer names {target!r}, not a generation")
        return generation_id

    def get_current(self) -> Generation:
        """Resolve the ``current`` pointer and load that generation."""
        generation_id = self.current_id()
        if generation_id is None:
            raise NoCurrentGenerationError("No current generation set")
        target = self.generations_path / os.readlink(self._current_link)
        if not target.is_dir():
            raise CorruptStateError(f"Current pointer is dangling: {target.name}")
        return self._load(target)

    def list(self) -> list[Generation]:
        """All readable generations, ascending by ID. Corrupt ones are skipped."""
        generations: list[Generation] = []
        for generation_id, directory in self._generation_dirs():
            try:
                generations.append(self._load(directory))
            except (CorruptStateError, StorageError) as exc:
                logger.warning("Skipping generation %d: %s", generation_id, exc)
        return sorted(generations, key=lambda g: g.id)

    def state_of(self, generation_id: int) -> GenerationState:
        """Lifecycle state of a generation that exists on disk."""
        directory = self._dir_for(generation_id)
        if self.current_id() == generation_id:
            return GenerationState.CURRENT
        if (directory / PROMOTED_MARKER).exists():
            return GenerationState.SUPERSEDED
        return GenerationState.CREATED

    # ------------------------------------------------------------------
    # Promote
    # ------------------------------------------------------------------

    def set_current(self, generation_id: int) -> None:
        """Atomically point ``current`` at a generation.

        This is the single commit point that makes a generation live.
        """
        directory = self._dir_for(generation_id)
        self._load(directory)

        tmp_link = self.generations_path / f".{CURRENT_LINK}-{uuid.uuid4().hex}"
        try:
            tmp_link.symlink_to(directory.name)
            os.replace(tmp_link, self._current_link)
        except OSError as exc:
            tmp_link.unlink(missing_ok=True)
            raise StorageError(f"Failed to promote generation {generation_id}: {exc}") from exc

        try:
            (directory / PROMOTED_MARKER).touch(exist_ok=True)
        except OSError as exc:
            logger.warning("Could not mark generation %d as promoted: %s", generation_id, exc)
        logger.info("Generation %d is now current", generation_id)

    # ------------------------------------------------------------------
    # Delete and GC
    # ------------------------------------------------------------------

    def delete(self, generation_id: int) -> None:
        """Remove a generation. The current generation cannot be deleted."""
        if self.current_id() == generation_id:
            raise InvariantViolationError(
                f"Cannot delete current generation {generation_id}"
            )
        directory = self._dir_for(generation_id)
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise StorageError(f"Failed to delete generation {generation_id}: {exc}") from exc
        logger.info("Deleted generation %d", generation_id)

    def garbage_collect(self, keep: int) -> list[int]:
        """Keep the current generation plus the ``keep`` most recent ones.

        Returns the deleted IDs.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        ids = sorted(gid for gid, _ in self._generation_dirs())
        retained = set(ids[-keep:]) if keep else set()
        current = self.current_id()

        deleted: list[int] = []
        for generation_id in ids:
            if generation_id in retained or generation_id == current:
                continue
            self.delete(generation_id)
            deleted.append(generation_id)
        return deleted

    def reachable_hashes(self) -> set[str]:
        """Content hashes referenced by any retained generation.

        Unlike ``list``, an unreadable generation is an error here: its
        hashes cannot be known, so nothing it might reference may be
        treated as garbage. A dangling ``current`` pointer raises too.

        Raises
        ------
        CorruptStateError
            If any generation record, or the current pointer, is damaged.
        """
        hashes: set[str] = set()
        for _, directory in sorted(self._generation_dirs()):
            hashes |= self._load(directory).content_hashes()
        if self.current_id() is not None:
            self.get_current()
        return hashes


