"""Exceptions raised while mirroring a snapshot."""

from typing import Optional


class MirrorError(Exception):
    """Base class for every recoverable mirroring failure."""


class BusyError(MirrorError):
    def __init__(self, message: str = "a mirroring job is already running"):
        super().__init__(message)


class SnapshotNotFoundError(MirrorError):
    def __init__(self, url: str, message: Optional[str] = None):
        self.url = url
        super().__init__(message or f"No snapshot for {url}")


class FetchError(MirrorError):
    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class WriteError(MirrorError):
    def __init__(self, url: str, path, message: str):
        self.url = url
        self.path = path
        super().__init__(message)
