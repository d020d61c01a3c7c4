"""Authentication module using bearer JWTs from an external identity provider.

This module provides:
1. Token verification with python-jose
2. Find-or-create of the marketplace user for a verified subject
3. A FastAPI dependency for protecting routes
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from contracts.errors import AuthorizationError
from database.exceptions import DatabaseError
from models import User
from repos import UserRepository

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base exception for authentication errors."""
    pass


class UnauthenticatedError(AuthError, AuthorizationError):
    """Raised when a bearer token is missing, invalid or expired."""
    pass


class AuthManager:
    """Verifies bearer tokens and resolves them to users."""

    def __init__(
        self,
        secret: str,
        algorithm: str = 'HS256',
        audience: Optional[str] = None,
        provider: str = 'clerk'
    ):
        """Initialize auth manager.

        Args:
            secret: Key used to verify token signatures
            algorithm: JWT signing algorithm
            audience: Expected ``aud`` claim, not checked when None
            provider: Name stored as the users' ``auth_provider``
        """
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.provider = provider

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Decode and verify a bearer token.

        Returns:
            The token claims

        Raises:
            UnauthenticatedError: If the token is invalid, expired or has no subject
        """
        options = {'verify_aud': self.audience is not None}
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options
            )
        except JWTError as e:
            raise UnauthenticatedError(f"Invalid token: {e}")

        if not claims.get('sub'):
            raise UnauthenticatedError("Token has no subject")
        return claims

    async def current_user(self, token: str, users: UserRepository) -> User:
        """Resolve a bearer token to a user, creating the user on first sight.

        Raises:
            UnauthenticatedError: If the token is not valid
            AuthError: If the user cannot be loaded
        """
        claims = self.verify_token(token)
        try:
            return await users.find_or_create_by_auth(
                self.provider,
                claims['sub'],
                claims.get('email')
            )
        except DatabaseError as e:
            logger.error(f"Error resolving user for token subject: {e}")
            raise AuthError(f"Failed to resolve user: {str(e)}")


# FastAPI security scheme; a missing header is reported by get_current_user
auth_scheme = HTTPBearer(
    auto_error=False,
    description="JWT Bearer token required"
)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> User:
    """FastAPI dependency for getting the authenticated user.

    Uses the ``auth`` manager and ``repos`` stored on the application state.

    Raises:
        HTTPException: 401 if authentication fails, 500 if the user store fails
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    manager: AuthManager = request.app.state.auth
    try:
        return await manager.current_user(credentials.credentials, request.app.state.repos.users)
    except UnauthenticatedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"}
        )
    except AuthError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to resolve user"
        )


# Export public interface
__all__ = [
    'AuthManager',
    'auth_scheme',
    'get_current_user',
    'AuthError',
    'UnauthenticatedError',
]
