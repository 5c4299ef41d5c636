"""Tests for GenerationManager — append-only generations and the current pointer."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import pytest

from aggon.core.errors import (
    CorruptStateError,
    InvariantViolationError,
    NoCurrentGenerationError,
    NotFoundError,
)
from aggon.core.generation_manager import GenerationManager
from aggon.models.config import DeclarativeConfig
from aggon.models.generation import GenerationState, InstallationState, InstalledAddon


def _installed(addon_id: str, content_hash: str) -> InstalledAddon:
    return InstalledAddon(
        id=addon_id,
        hash=content_hash,
        store_path=f"/store/{content_hash[:2]}/{content_hash[2:]}",
        install_path=f"/wow/AddOns/{addon_id}",
    )


class TestCreate:
    def test_first_id_is_one(self, generations: GenerationManager):
        assert generations.create(DeclarativeConfig()).id == 1

    def test_ids_increase(self, generations: GenerationManager):
        ids = [generations.create(DeclarativeConfig()).id for _ in range(3)]
        assert ids == [1, 2, 3]

    def test_directory_name(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig(), "first")
        names = [p.name for p in generations.generations_path.iterdir() if p.is_dir()]
        expected = f"1-{generation.timestamp.strftime('%Y-%m-%d-%H%M%S')}"
        assert names == [expected]

    def test_record_roundtrip(self, generations: GenerationManager):
        config = DeclarativeConfig.model_validate({"metadata": {"name": "roundtrip"}})
        created = generations.create(config, "described")
        loaded = generations.get(created.id)
        assert loaded.config == config
        assert loaded.description == "described"
        assert loaded.state_hash == created.state_hash
        assert len(loaded.state_hash) == 16

    def test_create_does_not_promote(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        assert generations.current_id() is None
        assert generations.state_of(generation.id) == GenerationState.CREATED

    def test_ids_continue_after_delete_of_older(self, generations: GenerationManager):
        generations.create(DeclarativeConfig())
        generations.create(DeclarativeConfig())
        generations.delete(1)
        assert generations.create(DeclarativeConfig()).id == 3

    def test_concurrent_create_allocates_distinct_ids(self, tmp_dir: Path):
        ids: list[int] = []
        lock = threading.Lock()

        def worker() -> None:
            # Separate manager instances, as separate processes would have.
            generation = GenerationManager(tmp_dir / "state").create(DeclarativeConfig())
            with lock:
                ids.append(generation.id)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(ids) == [1, 2, 3, 4, 5, 6]


class TestSeal:
    def test_seal_records_installations(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        state = {"retail": InstallationState(path="/wow", addons={"a": _installed("a", "a" * 64)})}
        sealed = generations.seal(generation.id, state)
        assert sealed.installations == state
        assert generations.get(generation.id).content_hashes() == {"a" * 64}

    def test_seal_is_write_once(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        generations.seal(generation.id, {})
        with pytest.raises(InvariantViolationError):
            generations.seal(generation.id, {})

    def test_seal_leaves_generation_record_untouched(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        directory = next(p for p in generations.generations_path.iterdir() if p.name.startswith("1-"))
        before = (directory / "generation.json").read_bytes()
        generations.seal(generation.id, {"retail": InstallationState(path="/wow")})
        assert (directory / "generation.json").read_bytes() == before

    def test_seal_missing_generation(self, generations: GenerationManager):
        with pytest.raises(NotFoundError):
            generations.seal(42, {})


class TestCurrentPointer:
    def test_no_current(self, generations: GenerationManager):
        assert generations.current_id() is None
        with pytest.raises(NoCurrentGenerationError):
            generations.get_current()

    def test_set_current(self, generations: GenerationManager):
        generations.create(DeclarativeConfig())
        second = generations.create(DeclarativeConfig())
        generations.set_current(second.id)
        assert generations.current_id() == second.id
        assert generations.get_current().id == second.id

    def test_pointer_is_relative_symlink(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        generations.set_current(generation.id)
        link = generations.generations_path / "current"
        assert link.is_symlink()
        assert os.readlink(link).startswith("1-")

    def test_set_current_missing(self, generations: GenerationManager):
        with pytest.raises(NotFoundError):
            generations.set_current(7)

    def test_states(self, generations: GenerationManager):
        first = generations.create(DeclarativeConfig())
        second = generations.create(DeclarativeConfig())
        third = generations.create(DeclarativeConfig())
        generations.set_current(first.id)
        generations.set_current(second.id)
        assert generations.state_of(first.id) == GenerationState.SUPERSEDED
        assert generations.state_of(second.id) == GenerationState.CURRENT
        assert generations.state_of(third.id) == GenerationState.CREATED

    def test_no_temp_links_left(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        generations.set_current(generation.id)
        generations.set_current(generation.id)
        leftovers = [p.name for p in generations.generations_path.iterdir() if p.name.startswith(".current")]
        assert leftovers == []


class TestListAndDelete:
    def test_list_ascending(self, generations: GenerationManager):
        for _ in range(3):
            generations.create(DeclarativeConfig())
        assert [g.id for g in generations.list()] == [1, 2, 3]

    def test_list_empty(self, generations: GenerationManager):
        assert generations.list() == []

    def test_list_skips_corrupt(self, generations: GenerationManager):
        generations.create(DeclarativeConfig())
        generations.create(DeclarativeConfig())
        directory = next(p for p in generations.generations_path.iterdir() if p.name.startswith("1-"))
        (directory / "generation.json").write_text(json.dumps({"id": "nope"}))
        assert [g.id for g in generations.list()] == [2]
        with pytest.raises(CorruptStateError):
            generations.get(1)

    def test_get_missing(self, generations: GenerationManager):
        with pytest.raises(NotFoundError):
            generations.get(99)

    def test_delete(self, generations: GenerationManager):
        generations.create(DeclarativeConfig())
        generations.delete(1)
        with pytest.raises(NotFoundError):
            generations.get(1)

    def test_cannot_delete_current(self, generations: GenerationManager):
        generation = generations.create(DeclarativeConfig())
        generations.set_current(generation.id)
        with pytest.raises(InvariantViolationError):
            generations.delete(generation.id)
        assert generations.get(generation.id).id == generation.id


class TestGarbageCollect:
    def test_keeps_newest_and_current(self, generations: GenerationManager):
        for _ in range(5):
            generations.create(DeclarativeConfig())
        generations.set_current(1)
        deleted = generations.garbage_collect(keep=2)
        assert deleted == [2, 3]
        assert [g.id for g in generations.list()] == [1, 4, 5]

    def test_keep_zero_retains_current(self, generations: GenerationManager):
        for _ in range(3):
            generations.create(DeclarativeConfig())
        generations.set_current(3)
        assert generations.garbage_collect(keep=0) == [1, 2]

    def test_negative_keep(self, generations: GenerationManager):
        with pytest.raises(ValueError):
            generations.garbage_collect(keep=-1)

    def test_reachable_hashes(self, generations: GenerationManager):
        for content_hash in ("a" * 64, "b" * 64):
            generation = generations.create(DeclarativeConfig())
            generations.seal(
                generation.id,
                {"retail": InstallationState(path="/wow", addons={"x": _installed("x", content_hash)})},
            )
        assert generations.reachable_hashes() == {"a" * 64, "b" * 64}
