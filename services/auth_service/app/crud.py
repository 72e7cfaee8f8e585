# services/auth_service/app/crud.py
import asyncio
import uuid
from core.config import logger as core_logger
from core.supabase_client import get_supabase_client, USERS_TABLE
from core.models import UserDocument
from typing import Optional
from supabase import PostgrestAPIError

logger = core_logger.getChild("AuthService").getChild("CRUD")

EMAIL_COLUMN = "email"
ACCOUNT_ID_COLUMN = "account_id"
USER_ID_COLUMN = "id"


async def _select_single_user(column: str, value: str) -> Optional[UserDocument]:
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(USERS_TABLE)\
            .select("*")\
            .eq(column, value)\
            .limit(1)\
            .execute()

    response = await asyncio.to_thread(db_call)
    if response and response.data:
        return UserDocument(**response.data[0])
    return None


async def get_user_by_email(email: str) -> Optional[UserDocument]:
    """Returns the first user document registered with this email, or None."""
    job_prefix = f"[{email}]"
    try:
        user = await _select_single_user(EMAIL_COLUMN, email)
        if user:
            logger.debug(f"{job_prefix} Found user document {user.id}.")
        else:
            logger.info(f"{job_prefix} No user document for email.")
        return user
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase API error looking up user: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    except Exception as e:
        logger.error(f"{job_prefix} Unexpected error looking up user: {e}", exc_info=True)
        raise


async def create_user_document(email: str, full_name: str, avatar: str, account_id: Optional[str] = None) -> UserDocument:
    """Inserts a user document. The document id is the auth account id when known."""
    user_id = account_id or str(uuid.uuid4())
    job_prefix = f"[{user_id}]"
    user_data = {
        USER_ID_COLUMN: user_id,
        EMAIL_COLUMN: email,
        "full_name": full_name,
        "avatar": avatar,
        ACCOUNT_ID_COLUMN: account_id or user_id,
        "files": [],
    }
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(USERS_TABLE).insert(user_data).execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase API error creating user document: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise

    if not response.data:
        logger.error(f"{job_prefix} Insert returned no data for new user document.")
        raise RuntimeError("Failed to create new user")
    logger.info(f"{job_prefix} Created user document for {email}.")
    return UserDocument(**response.data[0])


async def link_account(user_id: str, account_id: str) -> None:
    """Points a user document at its auth account after the first verified sign-in. Errors propagate."""
    job_prefix = f"[{user_id}]"
    try:
        supabase = await get_supabase_client(use_service_key=True)

        def db_call():
            return supabase.table(USERS_TABLE)\
                .update({ACCOUNT_ID_COLUMN: account_id})\
                .eq(USER_ID_COLUMN, user_id)\
                .execute()

        await asyncio.to_thread(db_call)
        logger.info(f"{job_prefix} Linked user document to auth account {account_id}.")
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase API error linking account: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    except Exception as e:
        logger.error(f"{job_prefix} Unexpected error linking account: {e}", exc_info=True)
        raise
