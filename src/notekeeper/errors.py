class NotekeeperError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail


class ValidationError(NotekeeperError):
    """Malformed or out-of-range input."""

    status_code = 400


class ConflictError(NotekeeperError):
    """Uniqueness violation (duplicate id or email)."""

    status_code = 409


class NotFoundError(NotekeeperError):
    """Record absent, or owned by another user."""

    status_code = 404


class AuthError(NotekeeperError):
    """Credential could not be resolved to an identity."""

    status_code = 401
    kind = "invalid"


class MissingCredentialError(AuthError):
    kind = "missing"

    def __init__(self, detail: str = "Missing or invalid Authorization header"):
        super().__init__(detail)


class MalformedCredentialError(AuthError):
    kind = "malformed"

    def __init__(self, detail: str = "Malformed token"):
        super().__init__(detail)


class ExpiredCredentialError(AuthError):
    kind = "expired"

    def __init__(self, detail: str = "Token expired"):
        super().__init__(detail)


class InvalidCredentialError(AuthError):
    kind = "invalid"

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(detail)


class StoreError(NotekeeperError):
    """Storage layer failure."""


class StoreUnavailableError(StoreError):
    """Relational backend unreachable or timed out."""

    status_code = 503


class PersistenceError(StoreError):
    """File backend could not persist a collection snapshot."""

    status_code = 500
