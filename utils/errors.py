"""
Exception types for the shoe advisor.
"""


class ShoeAdvisorError(Exception):
    """Base class for all errors raised by the shoe advisor."""


class ConfigurationError(ShoeAdvisorError):
    """Unsupported provider or missing required identifier. Fatal to the request."""


class SourceUnavailable(ShoeAdvisorError):
    """A path, URL or sitemap could not be read. Callers log it and skip the item."""

    def __init__(self, source: str, reason: str = ""):
        self.source = source
        self.reason = reason
        message = f"Source unavailable: {source}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class StoreUnavailable(ShoeAdvisorError):
    """The vector store was never ingested or holds no documents."""


class TranslationFailure(ShoeAdvisorError):
    """The request could not be translated into shoe search conditions."""
