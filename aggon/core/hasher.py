"""Canonical hashing helpers for content addressing and change detection.

Content hashes address store blobs. Descriptor hashes and state hashes are
digests of canonical JSON and are only used to detect change.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, BinaryIO

from aggon.models.config import AddonDescriptor, DeclarativeConfig
from aggon.models.generation import InstallationState

CHUNK_SIZE = 64 * 1024
STATE_HASH_LENGTH = 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize ``obj`` to deterministic JSON bytes.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Return the SHA-256 hex digest of everything left in a binary stream."""
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        digest.update(chunk)
    return digest.hexdigest()


def is_content_hash(value: str) -> bool:
    """True if ``value`` looks like a SHA-256 hex digest."""
    return len(value) == 64 and all(c in "0123456789abcdef" for c in value)


def descriptor_hash(addon: AddonDescriptor) -> str:
    """SHA-256 of an addon's normalized source descriptor.

    Covers source type, address, ref and asset-selection pattern. This is a
    pre-fetch change detector, never a store address.
    """
    source = addon.source
    payload = {
        "type": source.type.value,
        "url": source.url.strip().rstrip("/"),
        "ref": source.ref.strip(),
        "asset_pattern": source.asset_pattern.strip().lower(),
    }
    return sha256_hex(canonical_json_bytes(payload))


def compute_state_hash(
    config: DeclarativeConfig, installations: dict[str, InstallationState]
) -> str:
    """Short SHA-256 over canonical ``(config, installations)``.

    Sixteen hex characters, for human-facing identification only.
    """
    payload = {
        "config": config.model_dump(mode="json", by_alias=True),
        "installations": {
            key: state.model_dump(mode="json") for key, state in installations.items()
        },
    }
    return sha256_hex(canonical_json_bytes(payload))[:STATE_HASH_LENGTH]
