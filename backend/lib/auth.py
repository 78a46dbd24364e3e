"""
Authentication utilities for JWT validation
"""
import logging
import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv

from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")
    return authorization[len("Bearer "):].strip()


def decode_token(token: str, secret: str) -> dict:
    """
    Verify a Supabase access token locally.

    Returns:
        dict: id and email taken from the token claims

    Raises:
        HTTPException: If the signature, audience or expiry is invalid
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError as e:
        logger.warning(f"⚠️ Rejected token: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return {"id": user_id, "email": claims.get("email")}


async def get_current_user(authorization: Optional[str] = Header(None)):
    """
    Validate the bearer token and return the caller.

    With SUPABASE_JWT_SECRET set the token is verified locally; otherwise it
    is checked against Supabase Auth.

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: User information with at least `id`

    Raises:
        HTTPException: If token is invalid or user not found
    """
    token = _bearer_token(authorization)

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        return decode_token(token, secret)

    supabase = get_supabase_client()
    if supabase is None:
        raise HTTPException(status_code=401, detail="Authentication is not configured")

    try:
        user_response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"⚠️ Auth error: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = user_response.user
    return {"id": user.id, "email": user.email}
