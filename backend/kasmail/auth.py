"""
Request authentication and sender loading.

The frontend exchanges a wallet signature for a Supabase session and sends
the session's access token as a Bearer header. The token's ``sub`` claim is
the sender's profiles.id.

Tokens are verified locally (HS256, python-jose) when SUPABASE_JWT_SECRET is
set, otherwise through the Supabase Auth API. Only ``authenticated`` sessions
may send.

load_sender_profile is called once per request and never cached: the
sending mode and wallet may change between two sends.
"""

import logging
import os
from typing import Optional

from fastapi import HTTPException, Header
from fastapi.concurrency import run_in_threadpool
from jose import ExpiredSignatureError, JWTError, jwt

from kasmail.db import supabase, supabase_admin
from kasmail.models.message import SenderProfile

logger = logging.getLogger(__name__)

SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None

AUTHENTICATED_ROLE = "authenticated"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise _unauthorized("Not authenticated")

    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _unauthorized("Invalid authentication credentials")
    return token


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Return the profile id of the signed-in sender.

    Raises:
        HTTPException: 401 if the token is missing, malformed, expired or
            not an authenticated session
    """
    token = _bearer_token(authorization)

    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)
    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> str:
    try:
        # Supabase session tokens carry no fixed audience.
        claims = jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=["HS256"], options={"verify_aud": False})
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")

    # The anon and service_role keys are signed with the same secret.
    if claims.get("role", AUTHENTICATED_ROLE) != AUTHENTICATED_ROLE:
        raise _unauthorized("Sign in with your wallet to send messages")

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized("Invalid token")
    return user_id


async def _verify_jwt_remotely(token: str) -> str:
    try:
        response = await run_in_threadpool(supabase.auth.get_user, token)
    except Exception as e:
        logger.info(f"Supabase Auth rejected token: {e}")
        raise _unauthorized("Token expired" if "expired" in str(e).lower() else "Invalid token")

    user = response.user if response else None
    if user is None:
        raise _unauthorized("Invalid token")
    return user.id


async def load_sender_profile(user_id: str) -> SenderProfile:
    """
    Load the authenticated user's profile row.

    The row supplies the sender's wallet address and the only_internal
    preference for this dispatch.

    Raises:
        HTTPException: 404 if no profile exists, 500 on database error
    """
    try:
        result = (
            supabase_admin.table("profiles")
            .select("id, wallet_address, username, anonymous_mode, only_internal")
            .eq("id", user_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to load profile {user_id}: {e}")
        raise HTTPException(
            status_code=500,
            detail="Failed to load profile"
        )

    if not result.data:
        raise HTTPException(
            status_code=404,
            detail="Profile not found"
        )

    row = result.data[0]
    if not row.get("wallet_address"):
        raise HTTPException(
            status_code=409,
            detail="No wallet connected to this profile"
        )
    # Column may be NULL for profiles created before the setting existed.
    if row.get("only_internal") is None:
        row["only_internal"] = True
    if row.get("anonymous_mode") is None:
        row["anonymous_mode"] = False

    return SenderProfile(**row)
