from __future__ import annotations


class SiteWatchError(Exception):
    pass


class ValidationError(SiteWatchError, ValueError):
    """Rejected input (e.g. a URL that is not http:// or https://)."""


class DuplicateError(SiteWatchError):
    def __init__(self, owner_id: int, url: str) -> None:
        super().__init__(f"url already registered owner_id={owner_id} url={url}")
        self.owner_id = owner_id
        self.url = url


class PersistenceError(SiteWatchError):
    """Registry I/O failed. The underlying sqlite error is chained as __cause__."""
