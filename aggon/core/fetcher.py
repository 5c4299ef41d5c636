"""Fetchers — turn an ``AddonSource`` into a stream of bytes.

The reconciler only depends on the ``Fetcher`` protocol. ``SourceFetcher``
is the default wiring: local paths are opened directly, everything else
goes through ``HttpFetcher``.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

import httpx

from aggon.config import AggonSettings
from aggon.core.errors import FetchError
from aggon.models.config import AddonSource, SourceType

logger = logging.getLogger(__name__)

# Downloads larger than this spill from memory to a temporary file.
SPOOL_LIMIT = 8 * 1024 * 1024
DEFAULT_BRANCHES = ("main", "master")
LATEST_RELEASE = "latest"


@runtime_checkable
class Fetcher(Protocol):
    """Anything that can fetch the bytes behind an addon source."""

    def fetch(self, source: AddonSource) -> BinaryIO:
        """Return a readable binary stream; raise ``FetchError`` on failure."""
        ...


class LocalFetcher:
    """Opens ``local`` sources from the filesystem.

    Relative paths are resolved against ``base_dir`` (the directory of the
    declarative config, usually).
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else None

    def fetch(self, source: AddonSource) -> BinaryIO:
        path = Path(source.url).expanduser()
        if not path.is_absolute() and self._base_dir is not None:
            path = self._base_dir / path
        if not path.is_file():
            raise FetchError(f"Local source {path} is not a file")
        try:
            return path.open("rb")
        except OSError as exc:
            raise FetchError(f"Cannot open local source {path}: {exc}") from exc


class HttpFetcher:
    """Downloads ``url`` and ``github`` sources over HTTP(S).

    GitHub sources resolve to an archive of ``ref`` (branch, tag or
    commit), to ``main`` falling back to ``master`` when no ref is given,
    or to the asset of the latest release matching ``asset_pattern`` when
    ``ref`` is ``"latest"``.

    Parameters
    ----------
    client:
        Pre-configured ``httpx.Client``. Built from the other arguments if
        omitted; connection failures are retried ``retries`` times by the
        transport.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        timeout: float = 60.0,
        retries: int = 2,
        github_api_url: str = "https://api.github.com",
        github_token: str = "",
        user_agent: str = "aggon",
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            transport=httpx.HTTPTransport(retries=retries),
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        )
        self._api_url = github_api_url.rstrip("/")
        self._token = github_token

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # URL resolution
    # ------------------------------------------------------------------

    def resolve_url(self, source: AddonSource) -> str:
        """Work out the concrete download URL for a source."""
        if source.type == SourceType.URL:
            return source.url
        if source.type != SourceType.GITHUB:
            raise FetchError(f"HttpFetcher cannot fetch {source.type.value} sources")

        repo = source.url.strip().rstrip("/").removesuffix(".git")
        if "github.com" not in repo:
            raise FetchError(f"Not a GitHub URL: {source.url}")
        if source.ref == LATEST_RELEASE:
            return self._latest_release_asset(repo, source.asset_pattern)
        if source.ref:
            return f"{repo}/archive/{source.ref}.zip"

        for branch in DEFAULT_BRANCHES:
            url = f"{repo}/archive/refs/heads/{branch}.zip"
            try:
                if self._client.head(url).status_code == httpx.codes.OK:
                    return url
            except httpx.HTTPError as exc:
                raise FetchError(f"Cannot reach {url}: {exc}") from exc
        raise FetchError(f"{repo} has neither a main nor a master branch")

    def _latest_release_asset(self, repo: str, asset_pattern: str) -> str:
        parts = repo.split("/")
        if len(parts) < 5:
            raise FetchError(f"Invalid GitHub URL format: {repo}")
        owner, name = parts[3], parts[4]
        api = f"{self._api_url}/repos/{owner}/{name}/releases/latest"
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = self._client.get(api, headers=headers)
            response.raise_for_status()
            assets = [
                (str(asset["name"]), str(asset["browser_download_url"]))
                for asset in response.json().get("assets") or []
            ]
        except (httpx.HTTPError, ValueError) as exc:
            raise FetchError(f"Failed to fetch release info for {owner}/{name}: {exc}") from exc
        except (KeyError, TypeError, AttributeError) as exc:
            raise FetchError(f"Malformed release info for {owner}/{name}: {exc!r}") from exc

        if not assets:
            raise FetchError(f"No assets found in latest release of {owner}/{name}")
        if asset_pattern:
            needle = asset_pattern.lower()
            for asset_name, download_url in assets:
                if needle in asset_name.lower():
                    return download_url
            raise FetchError(f"No asset matching pattern {asset_pattern!r} in {owner}/{name}")
        if len(assets) > 1:
            names = ", ".join(asset_name for asset_name, _ in assets)
            raise FetchError(
                f"Multiple assets found for {owner}/{name}, set asset_pattern. "
                f"Available assets: {names}"
            )
        return assets[0][1]

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, source: AddonSource) -> BinaryIO:
        url = self.resolve_url(source)
        logger.info("Downloading %s", url)
        spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_LIMIT)
        try:
            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                for chunk in response.iter_bytes():
                    spool.write(chunk)
        except httpx.HTTPError as exc:
            spool.close()
            raise FetchError(f"Download of {url} failed: {exc}") from exc
        spool.seek(0)
        return spool  # type: ignore[return-value]


class SourceFetcher:
    """Routes each source to the fetcher for its type."""

    def __init__(self, local: Fetcher | None = None, http: Fetcher | None = None) -> None:
        self._local = local or LocalFetcher()
        self._http = http or HttpFetcher()

    @classmethod
    def from_settings(cls, settings: AggonSettings, base_dir: Path | None = None) -> SourceFetcher:
        return cls(
            local=LocalFetcher(base_dir),
            http=HttpFetcher(
                timeout=settings.fetch_timeout_seconds,
                retries=settings.fetch_retries,
                github_api_url=settings.github_api_url,
                github_token=settings.github_token,
                user_agent=settings.user_agent,
            ),
        )

    def fetch(self, source: AddonSource) -> BinaryIO:
        if source.type == SourceType.LOCAL:
            return self._local.fetch(source)
        return self._http.fetch(source)

    def close(self) -> None:
        close = getattr(self._http, "close", None)
        if close is not None:
            close()
