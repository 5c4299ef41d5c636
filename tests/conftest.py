"""Shared test fixtures for aggon."""

from __future__ import annotations

import io
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, BinaryIO

import pytest

from aggon.core.content_store import ContentStore
from aggon.core.errors import FetchError
from aggon.core.generation_manager import GenerationManager
from aggon.core.reconciler import Reconciler
from aggon.models.config import (
    AddonDescriptor,
    AddonSource,
    DeclarativeConfig,
    InstallationDescriptor,
    SourceType,
    SystemSettings,
)


class FakeFetcher:
    """In-memory fetcher keyed by source URL.

    ``payloads`` maps a URL to the bytes served for it. URLs in ``failing``
    raise ``FetchError``. Every fetch is counted in ``calls``.
    """

    def __init__(self, payloads: dict[str, bytes] | None = None) -> None:
        self.payloads: dict[str, bytes] = dict(payloads or {})
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, source: AddonSource) -> BinaryIO:
        with self._lock:
            self.calls.append(source.url)
        if source.url in self.failing:
            raise FetchError(f"simulated failure for {source.url}")
        if source.url not in self.payloads:
            raise FetchError(f"404 for {source.url}")
        return io.BytesIO(self.payloads[source.url])


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test state."""
    return tmp_path


@pytest.fixture
def store(tmp_dir: Path) -> ContentStore:
    """Provide an initialized ContentStore in a temp directory."""
    content_store = ContentStore(tmp_dir / "state")
    content_store.initialize()
    return content_store


@pytest.fixture
def generations(tmp_dir: Path) -> GenerationManager:
    """Provide an initialized GenerationManager in a temp directory."""
    manager = GenerationManager(tmp_dir / "state")
    manager.initialize()
    return manager


@pytest.fixture
def fetcher() -> FakeFetcher:
    """Provide a FakeFetcher serving a few well-known addons."""
    return FakeFetcher(
        {
            "https://example.com/a.zip": b"addon A v1",
            "https://example.com/b.zip": b"addon B v1",
            "https://example.com/c.zip": b"addon C v1",
        }
    )


@pytest.fixture
def reconciler(
    store: ContentStore, generations: GenerationManager, fetcher: FakeFetcher
) -> Reconciler:
    """Provide a Reconciler wired to the test store, generations and fetcher."""
    return Reconciler(store, generations, fetcher)


# ---------------------------------------------------------------------------
# Config factories shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_addon() -> Callable[..., AddonDescriptor]:
    """Factory fixture: build an AddonDescriptor served over a URL source."""

    def _factory(
        url: str = "https://example.com/a.zip",
        *,
        ref: str = "",
        compatible: tuple[str, ...] = ("retail", "classic"),
        source_type: SourceType = SourceType.URL,
        **overrides: Any,
    ) -> AddonDescriptor:
        return AddonDescriptor(
            source=AddonSource(type=source_type, url=url, ref=ref),
            compatible=list(compatible),
            **overrides,
        )

    return _factory


@pytest.fixture
def make_config(
    tmp_dir: Path, make_addon: Callable[..., AddonDescriptor]
) -> Callable[..., DeclarativeConfig]:
    """Factory fixture: build a DeclarativeConfig.

    ``installations`` maps an installation id to its addon list; each is
    placed under ``tmp_dir/wow/<id>/AddOns`` with type ``retail`` unless
    overridden in ``types``. ``addons`` defaults to a, b and c on
    example.com.
    """

    def _factory(
        installations: dict[str, list[str]] | None = None,
        addons: dict[str, AddonDescriptor] | None = None,
        *,
        types: dict[str, str] | None = None,
        disabled: tuple[str, ...] = (),
        **settings: Any,
    ) -> DeclarativeConfig:
        if installations is None:
            installations = {"retail": ["a", "b"]}
        if addons is None:
            addons = {
                name: make_addon(f"https://example.com/{name}.zip") for name in ("a", "b", "c")
            }
        types = types or {}
        return DeclarativeConfig(
            installations={
                install_id: InstallationDescriptor(
                    type=types.get(install_id, "retail"),
                    path=tmp_dir / "wow" / install_id / "AddOns",
                    enabled=install_id not in disabled,
                    addons=addon_ids,
                )
                for install_id, addon_ids in installations.items()
            },
            addons=addons,
            settings=SystemSettings(**settings),
        )

    return _factory
