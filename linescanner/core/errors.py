"""Failure taxonomy shared by every fetch collaborator.

Fetchers classify upstream problems into one of four kinds and raise
:class:`FetchError`.  The refresh coordinator never inspects the kind; it
only counts failures.  Consumers (the HTTP layer, a UI) use the kind to pick
an actionable message.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FetchErrorKind(str, Enum):
    """Closed set of reasons an upstream fetch can fail."""

    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def is_transient(self) -> bool:
        """True for failures that are expected to clear on their own."""
        return self in (FetchErrorKind.RATE_LIMITED, FetchErrorKind.TRANSPORT_ERROR)


class FetchError(Exception):
    """Raised by a fetcher when a resource could not be retrieved.

    Attributes:
        kind: Classification of the failure.
        resource: Resource key being fetched, when known.
        status_code: HTTP status that triggered the failure, when known.
    """

    def __init__(
        self,
        kind: FetchErrorKind,
        message: str = "",
        resource: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.kind = FetchErrorKind(kind)
        self.resource = resource
        self.status_code = status_code
        super().__init__(message or self.kind.value)

    def __repr__(self) -> str:
        return (
            f"FetchError(kind={self.kind.value!r}, resource={self.resource!r}, "
            f"status_code={self.status_code!r}, message={str(self)!r})"
        )

    # Named constructors, one per kind

    @classmethod
    def invalid_credentials(cls, message: str = "", **kwargs) -> "FetchError":
        return cls(FetchErrorKind.INVALID_CREDENTIALS, message, **kwargs)

    @classmethod
    def rate_limited(cls, message: str = "", **kwargs) -> "FetchError":
        return cls(FetchErrorKind.RATE_LIMITED, message, **kwargs)

    @classmethod
    def transport_error(cls, message: str = "", **kwargs) -> "FetchError":
        return cls(FetchErrorKind.TRANSPORT_ERROR, message, **kwargs)

    @classmethod
    def malformed_response(cls, message: str = "", **kwargs) -> "FetchError":
        return cls(FetchErrorKind.MALFORMED_RESPONSE, message, **kwargs)
