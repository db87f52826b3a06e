"""Authentication: password hashing, bearer JWT issue/verify, current-user dependencies."""
from datetime import timedelta
from typing import Optional
import ipaddress
import logging
import time
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User
from .services.audit import AuditContext

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Invalid/corrupted hash should not crash login flow.
        logger.exception("Password verification failed due to invalid hash format")
        return False


def get_password_hash(password: str) -> str:
    """Hash password."""
    return pwd_context.hash(password)


# Alias for convenience
hash_password = get_password_hash


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT token, applying expiry with leeway."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def user_id_from_token(token: str) -> int:
    """Resolve the `user_id` subject carried by a bearer credential."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise _credentials_error("Invalid token type")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()


def authenticate_user(db: Session, *, email: str, password: str) -> User | None:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    user_id = user_id_from_token(credentials.credentials)
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise _credentials_error("User not found")
    return user


def _get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # X-Forwarded-For may contain a list: client, proxy1, proxy2
        candidate = forwarded.split(",")[0].strip()
        try:
            ipaddress.ip_address(candidate)
            return candidate
        except ValueError:
            pass
    if request.client:
        return request.client.host
    return None


def get_audit_context(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> AuditContext:
    """Per-request actor context handed explicitly to every mutating use case."""
    return AuditContext(
        actor=current_user,
        ip_address=_get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
