"""
Marketplace service: error taxonomy

Every failure a request can hit maps to one subclass with a stable
machine-readable `code` and the HTTP status it is reported with.
The FastAPI handler in `main` renders them as `{"error": code}`.
"""


class MarketplaceError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail


class Unauthenticated(MarketplaceError):
    """No valid session."""
    code = "unauthenticated"
    status_code = 401


class Forbidden(MarketplaceError):
    """Valid session, insufficient role."""
    code = "forbidden"
    status_code = 403


class InvalidPackage(MarketplaceError):
    code = "invalid_package"
    status_code = 400


class NotFound(MarketplaceError):
    code = "not_found"
    status_code = 404


class StoreFailure(MarketplaceError):
    """The database rejected or failed a read/write."""
    code = "db"
    status_code = 500


class StoreUnavailable(StoreFailure):
    """A store call exceeded its timeout. Safe to retry."""
    code = "store_unavailable"
    status_code = 503


class EmailTaken(MarketplaceError):
    code = "email_exists"
    status_code = 400


class InvalidCredentials(MarketplaceError):
    code = "invalid"
    status_code = 400


class MissingField(MarketplaceError):
    """A required request field was absent."""
    code = "missing"
    status_code = 400


class BadRequest(MarketplaceError):
    """The request was present but malformed."""
    code = "bad_request"
    status_code = 400
