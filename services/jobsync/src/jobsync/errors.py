from __future__ import annotations


class InvalidUrlError(ValueError):
    def __init__(self, url: str, reason: str = "not a well-formed absolute URL") -> None:
        super().__init__(f"{reason}: {url!r}")
        self.url = url
        self.reason = reason


class FetchError(Exception):
    """Network failure, timeout, or an unusable response for a fetched URL."""

    def __init__(self, url: str, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class StorageError(Exception):
    pass


class UnknownSourceError(LookupError):
    def __init__(self, source_name: str) -> None:
        super().__init__(f"Unknown job board source: {source_name}")
        self.source_name = source_name


class SourceConfigError(ValueError):
    pass
