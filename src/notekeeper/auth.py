from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from notekeeper.config import Settings
from notekeeper.errors import (
    ExpiredCredentialError,
    InvalidCredentialError,
    MalformedCredentialError,
    MissingCredentialError,
)
from notekeeper.utils import utc_now

# Setup password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bearer scheme; missing headers are reported by get_current_identity
bearer_scheme = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"
MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class Identity:
    """The user a verified credential speaks for."""
    user_id: str
    email: str


def truncate_password(password: str) -> str:
    return password.encode("utf-8")[:MAX_PASSWORD_BYTES].decode("utf-8", "ignore")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against its hash."""
    return pwd_context.verify(truncate_password(plain_password), hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a plaintext password."""
    return pwd_context.hash(truncate_password(password))


def issue_token(
    user_id: str,
    email: str,
    settings: Settings,
    issued_at: Optional[datetime] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT binding the caller to ``user_id``."""
    issued_at = issued_at or utc_now()
    expire = issued_at + (expires_delta or timedelta(days=settings.token_expire_days))
    claims = {"sub": user_id, "email": email, "iat": issued_at, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


# PUBLIC_INTERFACE
def verify_token(token: Optional[str], settings: Settings) -> Identity:
    """
    Resolve a bearer credential to the identity it was issued for.

    Raises:
        MissingCredentialError: no credential presented.
        MalformedCredentialError: not a recognizable signed credential.
        ExpiredCredentialError: signature verifies but the credential is past expiry.
        InvalidCredentialError: signature does not verify.
    """
    if token is None or not token.strip():
        raise MissingCredentialError()
    token = token.strip()

    try:
        jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JWTError:
        raise MalformedCredentialError()

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise ExpiredCredentialError()
    except JWTError:
        raise InvalidCredentialError()

    subject = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject, str) or not subject or not isinstance(email, str):
        raise MalformedCredentialError()
    return Identity(user_id=subject, email=email)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# PUBLIC_INTERFACE
def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Identity:
    """
    Dependency that returns the caller's identity from the Authorization header.

    Raises:
        AuthError (401) if the credential is missing, malformed, expired or invalid.
    """
    token = credentials.credentials if credentials else None
    return verify_token(token, settings)
