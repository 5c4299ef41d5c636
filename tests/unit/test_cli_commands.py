"""Unit tests for the CLI — Typer command registration and end-to-end behavior.

Configurations use ``local`` sources so commands run without a network.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from aggon.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_dir: Path):
    for key in ("AGGON_STATE_DIR", "AGGON_CONFIG_PATH", "AGGON_PROFILE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_dir)


@pytest.fixture
def config_file(tmp_dir: Path) -> Path:
    """Write a declarative config with two local addons and one profile."""
    vendor = tmp_dir / "vendor"
    vendor.mkdir()
    (vendor / "a.zip").write_bytes(b"local addon A")
    (vendor / "b.zip").write_bytes(b"local addon B")

    path = tmp_dir / "aggon-declarative.json"
    path.write_text(
        json.dumps(
            {
                "schema": "aggon/v2",
                "installations": {
                    "retail": {
                        "type": "retail",
                        "path": str(tmp_dir / "wow" / "AddOns"),
                        "addons": ["alpha", "beta"],
                    }
                },
                "addons": {
                    "alpha": {
                        "source": {"type": "local", "url": "vendor/a.zip"},
                        "compatible": ["retail"],
                    },
                    "beta": {
                        "source": {"type": "local", "url": "vendor/b.zip"},
                        "compatible": ["retail"],
                    },
                },
                "profiles": {"minimal": {"addons": {"beta": {"enabled": False}}}},
            }
        )
    )
    return path


def _invoke(config_file: Path, *args: str):
    return runner.invoke(app, ["--config", str(config_file), *args])


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("init", "plan", "test", "switch", "rollback", "generations", "store"):
            assert name in result.output

    @pytest.mark.parametrize(
        "command",
        [["generations", "list"], ["generations", "gc"], ["store", "list"], ["store", "gc"]],
    )
    def test_subcommands_registered(self, command):
        assert runner.invoke(app, [*command, "--help"]).exit_code == 0


# ---------------------------------------------------------------------------
# Test: init
# ---------------------------------------------------------------------------


class TestInit:
    def test_creates_config_and_state(self, tmp_dir: Path):
        path = tmp_dir / "fresh.json"
        result = runner.invoke(app, ["--config", str(path), "init"])
        assert result.exit_code == 0, result.output
        assert json.loads(path.read_text())["schema"] == "aggon/v2"
        assert (tmp_dir / ".aggon" / "store").is_dir()
        assert (tmp_dir / ".aggon" / "generations").is_dir()

    def test_refuses_to_overwrite(self, config_file: Path):
        before = config_file.read_text()
        result = _invoke(config_file, "init")
        assert result.exit_code == 1
        assert config_file.read_text() == before

    def test_force_overwrites(self, config_file: Path):
        assert _invoke(config_file, "init", "--force").exit_code == 0
        assert json.loads(config_file.read_text())["addons"] == {}


# ---------------------------------------------------------------------------
# Test: test / plan
# ---------------------------------------------------------------------------


class TestValidateAndPlan:
    def test_valid_config(self, config_file: Path):
        result = _invoke(config_file, "test")
        assert result.exit_code == 0, result.output
        assert "Configuration valid" in result.output

    def test_missing_config(self, tmp_dir: Path):
        result = runner.invoke(app, ["--config", str(tmp_dir / "none.json"), "test"])
        assert result.exit_code == 1

    def test_unknown_addon(self, config_file: Path):
        data = json.loads(config_file.read_text())
        data["installations"]["retail"]["addons"].append("ghost")
        config_file.write_text(json.dumps(data))
        result = _invoke(config_file, "test")
        assert result.exit_code == 1
        assert "ghost" in result.output

    def test_unknown_profile(self, config_file: Path):
        result = runner.invoke(app, ["--config", str(config_file), "--profile", "pvp", "plan"])
        assert result.exit_code == 1

    def test_plan_lists_installs(self, config_file: Path):
        result = _invoke(config_file, "plan")
        assert result.exit_code == 0, result.output
        assert "install" in result.output
        assert "alpha" in result.output

    def test_plan_does_not_apply(self, config_file: Path, tmp_dir: Path):
        _invoke(config_file, "plan")
        assert not (tmp_dir / "wow").exists()


# ---------------------------------------------------------------------------
# Test: switch / rollback / generations / store
# ---------------------------------------------------------------------------


class TestSwitchAndRollback:
    def test_switch_links_addons(self, config_file: Path, tmp_dir: Path):
        result = _invoke(config_file, "switch")
        assert result.exit_code == 0, result.output
        assert (tmp_dir / "wow" / "AddOns" / "alpha").read_bytes() == b"local addon A"
        assert (tmp_dir / "wow" / "AddOns" / "beta").is_symlink()

    def test_switch_with_profile(self, config_file: Path, tmp_dir: Path):
        result = runner.invoke(
            app, ["--config", str(config_file), "--profile", "minimal", "switch"]
        )
        assert result.exit_code == 0, result.output
        assert (tmp_dir / "wow" / "AddOns" / "alpha").is_symlink()
        assert not (tmp_dir / "wow" / "AddOns" / "beta").exists()

    def test_failed_switch_exits_nonzero(self, config_file: Path, tmp_dir: Path):
        (tmp_dir / "vendor" / "b.zip").unlink()
        result = _invoke(config_file, "switch")
        assert result.exit_code == 1
        assert "previous generation left current" in result.output

    def test_rollback(self, config_file: Path, tmp_dir: Path):
        _invoke(config_file, "switch")
        runner.invoke(app, ["--config", str(config_file), "--profile", "minimal", "switch"])
        assert not (tmp_dir / "wow" / "AddOns" / "beta").exists()

        result = _invoke(config_file, "rollback")
        assert result.exit_code == 0, result.output
        assert (tmp_dir / "wow" / "AddOns" / "beta").is_symlink()

    def test_rollback_without_history(self, config_file: Path):
        assert _invoke(config_file, "rollback").exit_code == 1

    def test_generations_list(self, config_file: Path):
        _invoke(config_file, "switch")
        result = _invoke(config_file, "generations", "list")
        assert result.exit_code == 0, result.output
        assert "current" in result.output

    def test_cannot_delete_current(self, config_file: Path):
        _invoke(config_file, "switch")
        result = _invoke(config_file, "generations", "delete", "1")
        assert result.exit_code == 1

    def test_generations_gc(self, config_file: Path):
        for _ in range(3):
            _invoke(config_file, "switch")
        result = _invoke(config_file, "generations", "gc", "--keep", "1")
        assert result.exit_code == 0, result.output
        assert "1, 2" in result.output

    def test_store_list_and_gc(self, config_file: Path):
        _invoke(config_file, "switch")
        listing = _invoke(config_file, "store", "list")
        assert listing.exit_code == 0, listing.output
        assert "2 blob(s)" in listing.output

        gc = _invoke(config_file, "store", "gc")
        assert gc.exit_code == 0, gc.output
        assert "0 blob(s)" in gc.output
