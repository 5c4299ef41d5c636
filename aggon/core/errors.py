"""Error taxonomy shared by the store, generation manager and reconciler."""

from __future__ import annotations


class AggonError(RuntimeError):
    """Base class for every error raised by aggon."""


class NotFoundError(AggonError, LookupError):
    """Raised when a generation, store blob or metadata record is missing."""


class NoCurrentGenerationError(AggonError):
    """Raised when the ``current`` pointer has never been set."""


class CorruptStateError(AggonError):
    """Raised when a persisted record cannot be parsed."""


class InvariantViolationError(AggonError):
    """Raised on an operation that would break a core invariant.

    Deleting the current generation and allocating an ID that is already
    taken both raise this.
    """


class StorageError(AggonError):
    """Raised when a filesystem operation on the store or generations fails."""


class ApplyCancelledError(AggonError):
    """Raised inside an apply when its cancel event has been set."""


class ConfigurationError(AggonError):
    """Raised when the declarative configuration is invalid."""


class UnknownProfileError(ConfigurationError):
    """Raised when a requested profile is not defined."""


class UnknownAddonError(ConfigurationError):
    """Raised when an installation references an undeclared addon."""

    def __init__(self, addon_id: str, installation_id: str) -> None:
        self.addon_id = addon_id
        self.installation_id = installation_id
        super().__init__(
            f"Installation {installation_id!r} references undeclared addon {addon_id!r}"
        )


class IncompatibleAddonError(ConfigurationError):
    """Raised when an addon is not compatible with an installation's type."""

    def __init__(self, addon_id: str, installation_id: str, installation_type: str) -> None:
        self.addon_id = addon_id
        self.installation_id = installation_id
        self.installation_type = installation_type
        super().__init__(
            f"Addon {addon_id!r} is not compatible with installation "
            f"{installation_id!r} (type {installation_type!r})"
        )


class FetchError(AggonError):
    """Raised by a fetcher when an addon source cannot be downloaded."""


class HashMismatchError(FetchError):
    """Raised when fetched content does not match the declared hash."""

    def __init__(self, addon_id: str, expected: str, actual: str) -> None:
        self.addon_id = addon_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Content hash mismatch for {addon_id!r}: expected {expected}, got {actual}"
        )
