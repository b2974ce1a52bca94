class MarketplaceApiError(Exception):
    """Raised when a marketplace API call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_transient(self) -> bool:
        """Transport failures and 429/5xx are worth retrying."""
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500

    @property
    def is_gone(self) -> bool:
        return self.status_code in (404, 410)


class ReauthorizationRequired(MarketplaceApiError):
    """The owner's credential was rejected and could not be refreshed.

    Never retried: the owner has to link the marketplace account again.
    """

    def __init__(self, message: str, owner_id: int | None = None):
        super().__init__(message, status_code=401)
        self.owner_id = owner_id


class IdentityError(Exception):
    """Raised when the OAuth token endpoint rejects a request."""


class QueryValidationError(ValueError):
    """Malformed search filter input; rejected before any request is sent."""
