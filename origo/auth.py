"""
Credential verification boundary

The core does not authenticate credentials itself; it consumes a subject
identity. That identity arrives as a bearer JWT whose ``sub`` claim is the
user's email. Token minting is kept here so service callers and tests can
produce tokens with the shared secret.
"""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from origo.config import settings
from origo.database import get_db
from origo.exceptions import AuthenticationError
from origo.models.user import User

logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (email) in token data.")

    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> str:
    """Return the ``sub`` claim of a valid token, raising AuthenticationError otherwise."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired") from None
    except JWTError as e:
        logger.debug("JWT decoding failed: %s", e)
        raise AuthenticationError("Invalid token") from None

    email = payload.get("sub")
    if not email:
        raise AuthenticationError("Token does not contain 'sub' field.")
    return email


def extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def authenticate_token(token: str | None, db: AsyncSession) -> User | None:
    """
    Resolve a bearer token to a User.

    Returns None for a missing, invalid or orphaned token so that callers on
    public paths can proceed anonymously.
    """
    if not token:
        return None
    try:
        email = decode_access_token(token)
    except AuthenticationError as e:
        logger.info("Rejected bearer token: %s", e.message)
        return None
    result = await db.execute(select(User).where(User.email == email))
    return result.scalars().first()


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """FastAPI dependency: the authenticated subject, or 401."""
    user = await authenticate_token(extract_bearer_token(request), db)
    if user is None:
        raise AuthenticationError("Could not validate credentials")
    return user
