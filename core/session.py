# core/session.py
"""
Session helpers shared by the services: reading the access token from a
request and resolving it to the signed-in user's document.
"""
import asyncio
from typing import Optional

from fastapi import HTTPException, Request
from supabase import AuthError, PostgrestAPIError

from core.config import settings, logger as core_logger
from core.models import UserDocument
from core.supabase_client import create_session_client, USERS_TABLE

logger = core_logger.getChild("Session")


def get_session_token(request: Request) -> Optional[str]:
    """Access token from the session cookie, falling back to an 'Authorization: Bearer' header."""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def get_current_user(access_token: Optional[str]) -> Optional[UserDocument]:
    """
    Resolves an access token to the user document of the signed-in account.
    Returns None for a missing, expired or unknown session.
    """
    if not access_token:
        return None
    try:
        client = await create_session_client(access_token)
        user_response = await asyncio.to_thread(client.auth.get_user, access_token)
        auth_user = getattr(user_response, "user", None)
        if not auth_user:
            logger.info("Session token did not resolve to an auth user.")
            return None

        def db_call():
            return client.table(USERS_TABLE)\
                .select("*")\
                .eq("account_id", auth_user.id)\
                .limit(1)\
                .execute()

        response = await asyncio.to_thread(db_call)
        if not response.data:
            logger.warning(f"[{auth_user.id}] Auth user has no user document.")
            return None
        return UserDocument(**response.data[0])

    except AuthError as e:
        logger.info(f"Session rejected by Supabase Auth: {e}")
        return None
    except PostgrestAPIError as e:
        logger.error(f"Supabase API error loading current user: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        return None
    except ValueError as e:
        logger.error(f"Cannot resolve current user: {e}")
        return None


async def require_current_user(request: Request) -> UserDocument:
    """FastAPI dependency: the signed-in user, or 401."""
    user = await get_current_user(get_session_token(request))
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
