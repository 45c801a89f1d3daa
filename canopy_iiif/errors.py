"""
Exception types raised inside the IIIF build stage.

None of these escape `build_iiif_collection_pages()`; they mark where a branch, a task,
or the whole stage gets skipped.
"""


class CanopyError(Exception):
    """Base class for build-stage errors."""


class FetchError(CanopyError):
    """A collection or manifest could not be retrieved or parsed."""

    def __init__(self, uri: str, status: int | None = None, reason: str = '') -> None:
        self.uri: str = uri
        self.status: int | None = status
        self.reason: str = reason
        super().__init__(f'could not fetch ``{uri}`` (status: {status if status is not None else "ERR"}) {reason}'.strip())


class RenderError(CanopyError):
    """Page composition failed for a single manifest."""

    def __init__(self, manifest_id: str, reason: str = '') -> None:
        self.manifest_id: str = manifest_id
        super().__init__(f'failed to render for {manifest_id or "<unknown>"} - {reason}')


class CollectionUnavailable(CanopyError):
    """The configured source collection could not be obtained at all."""
