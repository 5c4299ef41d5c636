"""Content-addressed blob store with per-entry metadata.

Storage layout under ``base_path``::

    store/{sha256[0:2]}/{sha256[2:]}   blob bytes (read-only)
    metadata/{sha256}.json             StoreEntry record
    descriptors/{descriptor_hash}      content hash last fetched for a descriptor
    tmp/                               in-flight writes, same filesystem as store/

Blobs are published with ``os.replace`` so a reader either sees the whole
blob or nothing. Identical bytes always collapse to one entry.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from pydantic import ValidationError

from aggon.core.errors import CorruptStateError, NotFoundError, StorageError
from aggon.core.hasher import CHUNK_SIZE, is_content_hash, sha256_stream
from aggon.models.store import StoreEntry, StoreHint

logger = logging.getLogger(__name__)


class ContentStore:
    """SHA-256 keyed, deduplicating blob store.

    Parameters
    ----------
    base_path:
        Root directory holding ``store/``, ``metadata/`` and friends.
        Nothing is created until ``initialize`` or the first ``add``.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self.store_path = self._base / "store"
        self.metadata_path = self._base / "metadata"
        self.descriptors_path = self._base / "descriptors"
        self._tmp_path = self._base / "tmp"

    def initialize(self) -> None:
        """Create the store directory structure."""
        for directory in (
            self.store_path,
            self.metadata_path,
            self.descriptors_path,
            self._tmp_path,
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to create directory {directory}: {exc}") from exc

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def blob_path(self, content_hash: str) -> Path:
        """Storage path for a hash: ``store/{h[:2]}/{h[2:]}``."""
        if not is_content_hash(content_hash):
            raise ValueError(f"Not a sha256 hex digest: {content_hash!r}")
        return self.store_path / content_hash[:2] / content_hash[2:]

    def hash_for_path(self, path: Path) -> str | None:
        """Inverse of ``blob_path``; None if ``path`` is not a blob location."""
        path = Path(path)
        if path.parent.parent != self.store_path:
            return None
        content_hash = path.parent.name + path.name
        return content_hash if is_content_hash(content_hash) else None

    def _metadata_file(self, content_hash: str) -> Path:
        return self.metadata_path / f"{content_hash}.json"

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    def add(self, stream: BinaryIO, hint: StoreHint | None = None) -> str:
        """Stream content into the store and return its hash.

        The bytes are hashed while they are written to a temporary file.
        If a blob with that hash already exists the temporary file is
        discarded and only the metadata is refreshed.
        """
        hint = hint or StoreHint()
        try:
            self._tmp_path.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix="add-", dir=self._tmp_path)
        except OSError as exc:
            raise StorageError(f"Failed to create temp file: {exc}") from exc

        tmp = Path(tmp_name)
        digest = hashlib.sha256()
        size = 0
        try:
            with os.fdopen(fd, "wb") as out:
                for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                    digest.update(chunk)
                    out.write(chunk)
                    size += len(chunk)
                out.flush()
                os.fsync(out.fileno())

            content_hash = digest.hexdigest()
            target = self.blob_path(content_hash)
            if target.exists():
                logger.debug("Blob %s already stored; refreshing metadata.", content_hash)
                self._refresh(content_hash, hint)
                return content_hash

            target.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(tmp, 0o444)
            os.replace(tmp, target)
        except OSError as exc:
            raise StorageError(f"Failed to write content to store: {exc}") from exc
        finally:
            # No-op once the temp file has been published.
            tmp.unlink(missing_ok=True)

        now = datetime.now(timezone.utc)
        self._write_metadata(
            StoreEntry(
                hash=content_hash,
                size=size,
                path=str(target),
                source_url=hint.source_url,
                source_ref=hint.source_ref,
                created_at=now,
                accessed_at=now,
            )
        )
        logger.info("Stored %s (%d bytes) from %s", content_hash[:12], size, hint.source_url or "stream")
        return content_hash

    def _refresh(self, content_hash: str, hint: StoreHint) -> None:
        """Touch ``accessed_at`` and merge supplied hint fields."""
        try:
            entry = self.get_metadata(content_hash)
        except (NotFoundError, CorruptStateError):
            blob = self.blob_path(content_hash)
            entry = StoreEntry(hash=content_hash, size=blob.stat().st_size, path=str(blob))
        update: dict[str, object] = {"accessed_at": datetime.now(timezone.utc)}
        if hint.source_url:
            update["source_url"] = hint.source_url
        if hint.source_ref:
            update["source_ref"] = hint.source_ref
        self._write_metadata(entry.model_copy(update=update))

    def _write_metadata(self, entry: StoreEntry) -> None:
        self._atomic_write(
            self._metadata_file(entry.hash),
            entry.model_dump_json(indent=2).encode("utf-8"),
        )

    def _atomic_write(self, path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
            try:
                with os.fdopen(fd, "wb") as out:
                    out.write(data)
                os.replace(tmp_name, path)
            finally:
                Path(tmp_name).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def get(self, content_hash: str) -> BinaryIO:
        """Open the blob for ``content_hash`` and touch its access time."""
        try:
            stream = self.blob_path(content_hash).open("rb")
        except (FileNotFoundError, ValueError) as exc:
            raise NotFoundError(f"Content not in store: {content_hash}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to open {content_hash}: {exc}") from exc

        try:
            self._refresh(content_hash, StoreHint())
        except StorageError as exc:
            logger.warning("Could not update access time for %s: %s", content_hash, exc)
        return stream

    def exists(self, content_hash: str) -> bool:
        """Check whether a blob is present. No side effects."""
        try:
            return self.blob_path(content_hash).is_file()
        except ValueError:
            return False

    def verify(self, content_hash: str) -> bool:
        """Re-hash a stored blob and compare it against its address."""
        if not self.exists(content_hash):
            return False
        with self.blob_path(content_hash).open("rb") as stream:
            return sha256_stream(stream) == content_hash

    def get_metadata(self, content_hash: str) -> StoreEntry:
        """Return the metadata record for a blob."""
        path = self._metadata_file(content_hash)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"No metadata for {content_hash}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            return StoreEntry.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptStateError(f"Corrupt metadata record {path}") from exc

    def list_entries(self) -> Iterator[StoreEntry]:
        """Lazily walk the metadata directory, skipping corrupt records."""
        if not self.metadata_path.is_dir():
            return
        for path in sorted(self.metadata_path.glob("*.json")):
            try:
                yield self.get_metadata(path.stem)
            except (CorruptStateError, NotFoundError) as exc:
                logger.warning("Skipping store entry %s: %s", path.name, exc)

    # ------------------------------------------------------------------
    # Activation links
    # ------------------------------------------------------------------

    def link(self, content_hash: str, target_path: Path) -> Path:
        """Point ``target_path`` at the blob for ``content_hash``.

        The link is relative and replaces any file or link already at the
        target. A real directory at the target is never removed.
        """
        if not self.exists(content_hash):
            raise NotFoundError(f"Content not in store: {content_hash}")
        source = self.blob_path(content_hash)
        target = Path(target_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.is_dir() and not target.is_symlink():
                raise StorageError(f"Refusing to replace directory {target} with a link")
            relative = os.path.relpath(os.path.abspath(source), os.path.abspath(target.parent))
            tmp = target.parent / f".{target.name}.aggon-link"
            tmp.unlink(missing_ok=True)
            tmp.symlink_to(relative)
            os.replace(tmp, target)
        except OSError as exc:
            raise StorageError(f"Failed to link {target} -> {content_hash}: {exc}") from exc
        return target

    def points_into_store(self, path: Path) -> bool:
        """True if ``path`` is a symlink resolving inside ``store/``."""
        path = Path(path)
        if not path.is_symlink():
            return False
        resolved = Path(os.path.normpath(path.parent / os.readlink(path)))
        try:
            resolved.absolute().relative_to(self.store_path.absolute())
        except ValueError:
            return False
        return True

    # ------------------------------------------------------------------
    # Descriptor index
    # ------------------------------------------------------------------

    def record_descriptor(self, descriptor_hash: str, content_hash: str) -> None:
        """Remember which content a source descriptor last resolved to."""
        self._atomic_write(
            self.descriptors_path / descriptor_hash, content_hash.encode("ascii")
        )

    def lookup_descriptor(self, descriptor_hash: str) -> str | None:
        """Content hash previously fetched for a descriptor, if still stored."""
        try:
            content_hash = (self.descriptors_path / descriptor_hash).read_text("ascii").strip()
        except (FileNotFoundError, ValueError):
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read descriptor index: {exc}") from exc
        return content_hash if self.exists(content_hash) else None

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def iter_hashes(self) -> Iterator[str]:
        """Yield the hash of every stored blob."""
        if not self.store_path.is_dir():
            return
        for fanout in sorted(self.store_path.iterdir()):
            if not fanout.is_dir() or len(fanout.name) != 2:
                continue
            for blob in sorted(fanout.iterdir()):
                content_hash = fanout.name + blob.name
                if is_content_hash(content_hash):
                    yield content_hash

    def garbage_collect(self, live_hashes: Iterable[str]) -> list[str]:
        """Remove every blob whose hash is not in ``live_hashes``.

        Returns the removed hashes.
        """
        live = set(live_hashes)
        removed: list[str] = []
        try:
            for content_hash in list(self.iter_hashes()):
                if content_hash in live:
                    continue
                blob = self.blob_path(content_hash)
                blob.unlink()
                self._metadata_file(content_hash).unlink(missing_ok=True)
                removed.append(content_hash)
                if not any(blob.parent.iterdir()):
                    blob.parent.rmdir()

            if removed and self.descriptors_path.is_dir():
                gone = set(removed)
                for index in self.descriptors_path.iterdir():
                    if index.read_text("ascii").strip() in gone:
                        index.unlink()
        except OSError as exc:
            raise StorageError(f"Store garbage collection failed: {exc}") from exc

        if removed:
            logger.info("Store GC removed %d blob(s).", len(removed))
        return removed
