"""
Authentication: turns an inbound credential into a PrincipalContext.

Tokens are verified with the shared JWT secret. The role a token may carry is
advisory only; the role used for every decision is re-read from the user store
on each request, so a role change takes effect even for tokens issued earlier.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import crud
from .cache import RestaurantScopeResolver
from .config import Settings
from .database import get_db
from .domain import PrincipalContext, Role
from .errors import InsufficientPrivilege, Unauthenticated

logger = logging.getLogger(__name__)

# Security scheme for JWT bearer tokens; a session cookie is accepted instead
security = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    """Data extracted from a verified JWT token."""
    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing the claims to encode in the token ("sub" is the user ID)
        settings: Service settings providing secret, algorithm and default lifetime
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": datetime.utcnow() + expires_delta})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> TokenData:
    """
    Verify a token's signature and expiry and extract its claims.

    Raises:
        Unauthenticated: If the token is expired, malformed, or has no subject
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except JWTError as e:
        logger.warning(f"JWT validation error: {e}")
        raise Unauthenticated("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token")
    return TokenData(user_id=str(user_id), email=payload.get("email"), role=payload.get("role"))


def resolve_principal(db: Session, token_data: TokenData, scope_resolver: RestaurantScopeResolver) -> PrincipalContext:
    """
    Build the request's principal with its role taken from the user store.

    Args:
        db: Database session
        token_data: Verified token claims
        scope_resolver: Resolver for restaurant-admin scopes

    Returns:
        PrincipalContext for the request

    Raises:
        Unauthenticated: If the token's subject is not a known user
    """
    user = crud.get_user(db, token_data.user_id)
    if user is None:
        raise Unauthenticated("Unknown principal")

    role = Role.parse(user.role)
    if role is None:
        logger.warning(f"User {user.id} has unrecognised role {user.role!r}")
    if token_data.role and token_data.role != user.role:
        logger.info(f"Token role {token_data.role!r} for user {user.id} is stale; using stored role {user.role!r}")

    restaurant_ids = frozenset()
    if role == Role.RESTAURANT_ADMIN:
        restaurant_ids = scope_resolver.resolve(db, user.id)

    return PrincipalContext(id=user.id, role=role, email=user.email, restaurant_ids=restaurant_ids)


def get_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> PrincipalContext:
    """
    FastAPI dependency to get the current principal from a bearer token or session cookie.

    Raises:
        Unauthenticated: 401 if no credential is present or it does not verify
    """
    settings: Settings = request.app.state.settings
    token = credentials.credentials if credentials is not None else None
    if not token:
        token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise Unauthenticated("Access token required")

    token_data = decode_token(token, settings)
    return resolve_principal(db, token_data, request.app.state.scope_resolver)


def require_admin(principal: PrincipalContext = Depends(get_principal)) -> PrincipalContext:
    """
    FastAPI dependency to require the admin role.

    Raises:
        InsufficientPrivilege: 403 if the principal is not an admin
    """
    if principal.role != Role.ADMIN:
        raise InsufficientPrivilege("Admin privileges required")
    return principal
