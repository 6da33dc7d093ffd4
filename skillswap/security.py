"""Session tokens and bearer authentication for the SkillSwap API."""
from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .database import Database
from .models import User, UserId


class TokenIssuer:
    """Issue and verify signed, timestamped session tokens.

    Tokens are Fernet tokens carrying the user id. Expiry is enforced on
    verification using the token's embedded timestamp.
    """

    def __init__(self, secret: str, *, ttl_seconds: int) -> None:
        if not secret:
            raise ValueError("A token secret must be configured")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, user_id: UserId, *, issued_at: Optional[int] = None) -> str:
        payload = str(user_id).encode("utf-8")
        if issued_at is None:
            token = self._fernet.encrypt(payload)
        else:
            token = self._fernet.encrypt_at_time(payload, issued_at)
        return token.decode("ascii")

    def verify(self, token: str) -> Optional[UserId]:
        try:
            plaintext = self._fernet.decrypt(token.encode("ascii"), ttl=self._ttl_seconds)
        except (InvalidToken, UnicodeEncodeError):
            return None
        return UserId(plaintext.decode("utf-8"))


class BearerAuth:
    """FastAPI dependency resolving ``Authorization: Bearer`` tokens to users."""

    def __init__(self, database: Database, issuer: TokenIssuer) -> None:
        self._database = database
        self._issuer = issuer
        self._bearer = HTTPBearer(auto_error=False)

    def resolve(self, token: str) -> Optional[User]:
        user_id = self._issuer.verify(token.strip())
        if user_id is None:
            return None
        return self._database.get_user(user_id)

    async def __call__(self, request: Request) -> User:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user = self.resolve(credentials.credentials)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return user


__all__ = ["BearerAuth", "TokenIssuer"]
