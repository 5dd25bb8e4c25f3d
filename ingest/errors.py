"""Error taxonomy for the ingestion pipeline.

Fetch errors are recoverable at the item boundary unless ``fatal`` is set;
a fatal error means no further item in the run could succeed either.
"""

from __future__ import annotations


class IngestError(Exception):
    fatal = False


class FetchError(IngestError):
    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NavigationTimeout(FetchError):
    pass


class ResourceUnavailable(FetchError):
    def __init__(
        self, message: str, *, url: str | None = None, status: int | None = None
    ) -> None:
        super().__init__(message, url=url)
        self.status = status


class ContentNotReady(FetchError):
    pass


class BrowserUnavailable(FetchError):
    fatal = True


class ExtractionIncomplete(IngestError):
    """A candidate is missing an identity field and was dropped."""


class PersistenceConflict(IngestError):
    """Natural-key race on insert; resolved by the store, never surfaced."""


class PersistenceFailure(IngestError):
    pass


class UnknownSource(IngestError):
    pass


class UnknownTarget(IngestError):
    pass
