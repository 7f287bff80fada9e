"""Error taxonomy shared by the sync pipeline, codec and API layer."""

from typing import Optional


class AirdateError(Exception):
    """Base class for all domain errors."""


class ValidationError(AirdateError):
    """Malformed or incomplete backup / sync payload.

    Always raised before any state is mutated.
    """

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class UnitFetchError(AirdateError):
    """A single library item could not be fetched from the catalog."""

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Catalog fetch failed for {key}{detail}")
        self.key = key
        self.cause = cause


class PersistenceError(AirdateError):
    """Saving state to local or cloud storage failed.

    The in-memory merge has already happened when this is raised.
    """


class SyncInProgressError(AirdateError):
    """A sync run is already active against this store."""


class SyncAbortedError(AirdateError):
    """The configured failure budget was exhausted mid-run."""
