# services/auth_service/app/logic.py
import asyncio
import datetime
from typing import Optional

from supabase import AuthError

from core.config import settings, logger as core_logger
from core.models import ActionResult, SessionInfo
from core.supabase_client import create_session_client, get_supabase_client
from core.utils import generate_avatar, run_with_retry
from . import crud

logger = core_logger.getChild("AuthService").getChild("Logic")


async def send_email_otp(email: str) -> Optional[str]:
    """
    Emails a one-time code, creating the auth user if needed.
    Returns the auth user id when Supabase reports it (usually it does not until verification).
    """
    client = await create_session_client()
    credentials = {"email": email, "options": {"should_create_user": True}}
    try:
        response = await asyncio.to_thread(client.auth.sign_in_with_otp, credentials)
    except AuthError as e:
        logger.error(f"[{email}] Failed to send OTP: {e}", exc_info=False)
        raise
    user = getattr(response, "user", None)
    logger.info(f"[{email}] OTP sent.")
    return user.id if user else None


async def create_account(full_name: str, email: str) -> ActionResult:
    """
    Signs up a new user: sends the OTP and creates the user document.
    An existing email only gets a fresh OTP.
    """
    try:
        existing_user = await crud.get_user_by_email(email)
        account_id = await send_email_otp(email)

        if existing_user:
            logger.info(f"[{email}] Account already exists, OTP re-sent.")
            return ActionResult(success=True, data={"account_id": existing_user.account_id}, message="OTP sent")

        user = await crud.create_user_document(
            email=email,
            full_name=full_name,
            avatar=generate_avatar(full_name),
            account_id=account_id,
        )
        return ActionResult(success=True, data={"account_id": user.account_id}, message="Account created, OTP sent")
    except AuthError as e:
        return ActionResult(success=False, error=f"Failed to send OTP: {e}")
    except Exception as e:
        logger.error(f"[{email}] Error in create account flow: {e}", exc_info=True)
        return ActionResult(success=False, error="Failed to create account")


async def sign_in_user(email: str) -> ActionResult:
    """Sends an OTP to a registered user."""
    try:
        existing_user = await crud.get_user_by_email(email)
        if not existing_user:
            return ActionResult(success=False, error="User not found")
        await send_email_otp(email)
        return ActionResult(success=True, data={"account_id": existing_user.account_id}, message="OTP sent")
    except AuthError as e:
        return ActionResult(success=False, error=f"Failed to send OTP: {e}")
    except Exception as e:
        logger.error(f"[{email}] Error in sign in flow: {e}", exc_info=True)
        return ActionResult(success=False, error="Failed to sign in user")


async def verify_secret(email: str, otp: str) -> SessionInfo:
    """
    Verifies the emailed code and returns the new session.
    Raises AuthError for a wrong or expired code. A user document that cannot be
    linked to the auth account fails the verification with the backend error.
    """
    client = await create_session_client()
    params = {"email": email, "token": otp, "type": "email"}
    response = await asyncio.to_thread(client.auth.verify_otp, params)

    session = getattr(response, "session", None)
    auth_user = getattr(response, "user", None)
    if not session or not auth_user:
        raise AuthError("OTP verification returned no session", None)

    # Sign-up may have run before the auth account id was known
    user = await crud.get_user_by_email(email)
    if user and user.account_id != auth_user.id:
        await run_with_retry(
            lambda: crud.link_account(user.id, auth_user.id),
            attempts=settings.DB_RETRY_ATTEMPTS,
            delay=settings.DB_RETRY_DELAY_SECONDS,
            label=f"[{user.id}] Linking auth account {auth_user.id}",
        )

    expires_at = None
    if session.expires_at:
        expires_at = datetime.datetime.fromtimestamp(session.expires_at, tz=datetime.timezone.utc)
    logger.info(f"[{auth_user.id}] Session created.")
    return SessionInfo(user_id=auth_user.id, access_token=session.access_token, expires_at=expires_at)


async def sign_out(access_token: str) -> bool:
    """Revokes the session server-side. The caller still clears the cookie on failure."""
    try:
        client = await get_supabase_client(use_service_key=True)
        await asyncio.to_thread(client.auth.admin.sign_out, access_token)
        logger.info("Session revoked.")
        return True
    except AuthError as e:
        logger.warning(f"Failed to revoke session: {e}")
        return False
