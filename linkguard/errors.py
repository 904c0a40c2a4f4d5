"""Exception types raised across the link pipeline."""

from typing import Optional


class LinkGuardError(Exception):
    """Base class for LinkGuard errors."""


class ParseError(LinkGuardError):
    """A text segment or URL could not be parsed."""


class VerificationError(LinkGuardError):
    """A single link could not be verified."""


class VerificationTimeoutError(VerificationError):
    """Verification exceeded its per-call timeout."""


class VerificationNetworkError(VerificationError):
    """Transport-level failure while verifying a link."""


class VerificationUnavailableError(LinkGuardError):
    """The verification transport is unreachable for the whole batch.

    Carries the per-link results gathered before the batch gave up so callers
    can still account for every submitted link.
    """

    def __init__(self, message: str, results: Optional[dict] = None):
        super().__init__(message)
        self.results = results or {}


class CacheUnavailableError(LinkGuardError):
    """The cache backing store failed."""


class CredentialMissingError(LinkGuardError):
    """A replacement link needs a credential or preserved parameter that is absent."""

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing required values: {', '.join(missing)}")
        self.missing = missing
