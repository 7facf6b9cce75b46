"""Error taxonomy for leasing, interaction, capture and storage."""

from __future__ import annotations


class MapShotsError(Exception):
    """Base class for every error raised by mapshots."""


class ActivationFailed(MapShotsError):
    """All trigger strategies were exhausted without producing the surface."""


class SurfaceNotActive(ActivationFailed):
    """The capture pipeline could not get the target surface activated."""


class SurfaceNotFound(MapShotsError):
    """An expected element is missing from the page."""


class UnsupportedImage(MapShotsError):
    """The captured bytes could not be decoded as an image."""


class StorageWriteFailed(MapShotsError):
    """A normalized artifact could not be written to the object store."""


class LedgerUnavailable(MapShotsError):
    """A claim or resolve call against the shared ledger failed."""


def describe_error(exc: BaseException) -> str:
    message = " ".join(str(exc).split())
    name = type(exc).__name__
    return f"{name}: {message}" if message else name
