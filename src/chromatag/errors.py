"""Error taxonomy shared by the classification core and its providers.

Provider errors are recovered by the stage or ensemble member that raised
them. Everything else derived from ``ChromatagError`` is terminal for the
request and reaches the caller.
"""

from __future__ import annotations


class ChromatagError(Exception):
    """Base class for all Chromatag errors."""


class ProviderError(ChromatagError):
    """An inference provider could not produce a usable answer."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, or non-2xx response from a provider."""


class ProviderMalformedResponse(ProviderError):
    """Provider payload could not be parsed into labels or detections."""


class QuotaExceeded(ChromatagError):
    """The monthly provider-call budget is exhausted."""

    def __init__(self, period: str, limit: int) -> None:
        super().__init__(f"Monthly request limit of {limit} reached for {period}")
        self.period = period
        self.limit = limit


class UnsupportedInputFormat(ChromatagError):
    """Input is neither a decodable image buffer nor a well-formed URL."""


class ImageFetchError(ChromatagError):
    """A well-formed image URL could not be downloaded."""
