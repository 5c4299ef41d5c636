"""Content store metadata model."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class StoreEntry(BaseModel):
    """Metadata for a stored blob. The bytes themselves live in the store.

    ``hash`` is the SHA-256 hex digest of the exact stored bytes and is the
    sole addressing key. Only ``accessed_at`` changes after creation.
    """

    model_config = ConfigDict(frozen=True)

    hash: str
    size: int
    path: str
    source_url: str = ""
    source_ref: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    accessed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StoreHint(BaseModel):
    """Caller-supplied metadata recorded alongside a blob on ``add``."""

    model_config = ConfigDict(frozen=True)

    source_url: str = ""
    source_ref: str = ""


class CollectionReport(BaseModel):
    """What a garbage collection pass removed."""

    model_config = ConfigDict(frozen=True)

    generations: list[int] = []
    blobs: list[str] = []
