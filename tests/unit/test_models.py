"""Tests for the data models — declarative config parsing, profiles, plans."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from aggon.core.errors import ConfigurationError, UnknownProfileError
from aggon.models.config import (
    DEFAULT_SCHEMA,
    AddonDescriptor,
    DeclarativeConfig,
    SourceType,
    load_config,
    save_config,
)
from aggon.models.plan import BuildPlan, Operation, OperationType, ReconcileError

SAMPLE = {
    "schema": "aggon/v2",
    "metadata": {"name": "raid-night", "version": "1.2.0"},
    "installations": {
        "retail": {
            "type": "retail",
            "path": "/games/wow/_retail_/Interface/AddOns",
            "addons": ["details", "weakauras"],
        },
        "classic": {
            "type": "classic",
            "path": "/games/wow/_classic_/Interface/AddOns",
            "enabled": False,
            "addons": ["details"],
        },
    },
    "addons": {
        "details": {
            "source": {"type": "github", "url": "https://github.com/Tercioo/Details-Damage-Meter", "ref": "latest"},
            "compatible": ["retail", "classic"],
        },
        "weakauras": {
            "source": {"type": "url", "url": "https://example.com/wa.zip"},
            "version": "5.0",
            "compatible": ["retail"],
            "folder": "WeakAuras",
        },
    },
    "profiles": {
        "raid": {
            "installations": ["retail"],
            "addons": {"details": {"ref": "v1.0"}, "weakauras": {"enabled": False}},
        }
    },
    "settings": {"parallel_downloads": 5, "backup_generations": 4},
}


class TestDeclarativeConfig:
    def test_parse_sample(self):
        config = DeclarativeConfig.model_validate(SAMPLE)
        assert config.schema_version == "aggon/v2"
        assert config.metadata.name == "raid-night"
        assert config.installations["classic"].enabled is False
        assert config.addons["details"].source.type == SourceType.GITHUB
        assert config.addons["weakauras"].link_name("weakauras") == "WeakAuras"
        assert config.addons["details"].link_name("details") == "details"
        assert config.settings.parallel_downloads == 5
        assert config.settings.verify_hashes is True

    def test_defaults(self):
        config = DeclarativeConfig()
        assert config.schema_version == DEFAULT_SCHEMA
        assert config.settings.backup_generations == 10
        assert config.settings.parallel_downloads == 3
        assert config.settings.store_path == Path(".aggon")

    def test_frozen(self):
        config = DeclarativeConfig()
        with pytest.raises(ValidationError):
            config.metadata = None  # type: ignore[assignment]

    def test_parallel_downloads_must_be_positive(self):
        with pytest.raises(ValidationError):
            DeclarativeConfig.model_validate({"settings": {"parallel_downloads": 0}})

    def test_hash_normalized(self):
        addon = AddonDescriptor.model_validate(
            {"source": {"url": "https://x"}, "hash": " " + "AB" * 32 + " "}
        )
        assert addon.hash == "ab" * 32

    def test_empty_hash_means_undeclared(self):
        addon = AddonDescriptor.model_validate({"source": {"url": "https://x"}, "hash": ""})
        assert addon.hash is None

    def test_bad_hash_rejected(self):
        with pytest.raises(ValidationError):
            AddonDescriptor.model_validate({"source": {"url": "https://x"}, "hash": "md5:1234"})


class TestProfiles:
    def test_no_profile_is_identity(self):
        config = DeclarativeConfig.model_validate(SAMPLE)
        assert config.for_profile(None) is config

    def test_profile_restricts_installations(self):
        effective = DeclarativeConfig.model_validate(SAMPLE).for_profile("raid")
        assert set(effective.installations) == {"retail"}

    def test_profile_overrides_ref(self):
        effective = DeclarativeConfig.model_validate(SAMPLE).for_profile("raid")
        assert effective.addons["details"].source.ref == "v1.0"

    def test_profile_disables_addon(self):
        effective = DeclarativeConfig.model_validate(SAMPLE).for_profile("raid")
        assert effective.installations["retail"].addons == ["details"]

    def test_original_untouched(self):
        config = DeclarativeConfig.model_validate(SAMPLE)
        config.for_profile("raid")
        assert config.addons["details"].source.ref == "latest"
        assert config.installations["retail"].addons == ["details", "weakauras"]

    def test_unknown_profile(self):
        with pytest.raises(UnknownProfileError):
            DeclarativeConfig.model_validate(SAMPLE).for_profile("pvp")


class TestConfigFiles:
    def test_save_and_load(self, tmp_dir: Path):
        path = tmp_dir / "aggon-declarative.json"
        config = DeclarativeConfig.model_validate(SAMPLE)
        save_config(path, config)
        assert json.loads(path.read_text())["schema"] == "aggon/v2"
        assert load_config(path) == config

    def test_missing_file(self, tmp_dir: Path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_dir / "missing.json")

    def test_invalid_json(self, tmp_dir: Path):
        path = tmp_dir / "broken.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestPlanModels:
    def test_count_and_has_changes(self):
        config = DeclarativeConfig()
        unchanged = Operation(type=OperationType.SYMLINK, installation="r", addon="a")
        install = Operation(type=OperationType.INSTALL, installation="r", addon="b")
        assert not BuildPlan(config=config, operations=[unchanged]).has_changes
        plan = BuildPlan(config=config, operations=[unchanged, install])
        assert plan.has_changes
        assert plan.count(OperationType.SYMLINK) == 1
        assert plan.count(OperationType.UNINSTALL) == 0

    def test_error_str(self):
        error = ReconcileError(step="link", message="boom", installation="retail", addon="a")
        assert str(error) == "[link] retail/a: boom"
        assert str(ReconcileError(step="promote", message="x")) == "[promote] x"
