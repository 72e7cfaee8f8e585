# services/file_service/app/crud.py
import asyncio
from core.config import logger as core_logger
from core.supabase_client import get_supabase_client, FILES_TABLE, USERS_TABLE
from core.models import FileDocument
from typing import Any, Dict, List, Optional, Sequence
from supabase import PostgrestAPIError

logger = core_logger.getChild("FileService").getChild("CRUD")

FILE_ID_COLUMN = "id"
OWNER_COLUMN = "owner"
SHARED_USERS_COLUMN = "users"
BUCKET_FILE_ID_COLUMN = "bucket_file_id"
USER_FILES_COLUMN = "files"


def _parse_files(rows: Sequence[Dict[str, Any]]) -> List[FileDocument]:
    files = []
    for item in rows:
        try:
            files.append(FileDocument(**item))
        except Exception as p_err:
            logger.warning(f"Failed to parse file document {item.get('id', 'UNKNOWN')}: {p_err}", exc_info=False)
    return files


# --- File Documents ---

async def insert_file_document(file_data: Dict[str, Any]) -> FileDocument:
    """Creates a file document. Errors propagate so the upload can be compensated."""
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(FILES_TABLE).insert(file_data).execute()

    response = await asyncio.to_thread(db_call)
    if not response.data:
        raise RuntimeError("Insert returned no data for the new file document")
    document = FileDocument(**response.data[0])
    logger.info(f"[{document.id}] Created file document for '{document.name}'.")
    return document


async def get_file_document(file_id: str) -> Optional[FileDocument]:
    """Retrieves a single file document. Backend errors are logged and re-raised."""
    job_prefix = f"[{file_id}]"
    try:
        supabase = await get_supabase_client(use_service_key=True)

        def db_call():
            return supabase.table(FILES_TABLE)\
                .select("*")\
                .eq(FILE_ID_COLUMN, file_id)\
                .limit(1)\
                .execute()

        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error retrieving file document: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    except Exception as e:
        logger.error(f"{job_prefix} Unexpected error retrieving file document: {e}", exc_info=True)
        raise

    if response and response.data:
        return FileDocument(**response.data[0])
    logger.info(f"{job_prefix} No file document found.")
    return None


async def list_file_documents(
    owner_id: str,
    email: Optional[str] = None,
    types: Optional[List[str]] = None,
    search: Optional[str] = None,
    sort_column: str = "created_at",
    descending: bool = True,
    limit: Optional[int] = None,
) -> List[FileDocument]:
    """Files owned by owner_id, plus those shared with email when given."""
    try:
        supabase = await get_supabase_client(use_service_key=True)

        def db_call():
            query = supabase.table(FILES_TABLE).select("*")
            if email:
                query = query.or_(f'{OWNER_COLUMN}.eq.{owner_id},{SHARED_USERS_COLUMN}.cs.{{"{email}"}}')
            else:
                query = query.eq(OWNER_COLUMN, owner_id)
            if types:
                query = query.in_("type", types)
            if search:
                query = query.ilike("name", f"%{search}%")
            query = query.order(sort_column, desc=descending)
            if limit:
                query = query.limit(limit)
            return query.execute()

        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{owner_id}] Supabase error listing files: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    except Exception as e:
        logger.error(f"[{owner_id}] Unexpected error listing files: {e}", exc_info=True)
        raise

    files = _parse_files(response.data or [])
    logger.debug(f"[{owner_id}] Listed {len(files)} file document(s).")
    return files


async def update_file_document(file_id: str, updates: Dict[str, Any]) -> Optional[FileDocument]:
    """Applies updates to a file document and returns the new version (None if it vanished)."""
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(FILES_TABLE)\
            .update(updates)\
            .eq(FILE_ID_COLUMN, file_id)\
            .execute()

    response = await asyncio.to_thread(db_call)
    if not response.data:
        logger.warning(f"[{file_id}] Update matched no file document.")
        return None
    logger.info(f"[{file_id}] Updated file document fields: {sorted(updates)}.")
    return FileDocument(**response.data[0])


async def delete_file_document(file_id: str) -> None:
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(FILES_TABLE)\
            .delete()\
            .eq(FILE_ID_COLUMN, file_id)\
            .execute()

    await asyncio.to_thread(db_call)
    logger.info(f"[{file_id}] Deleted file document.")


async def delete_file_documents_by_object(bucket_file_id: str) -> None:
    """Removes any file document pointing at a stored object."""
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(FILES_TABLE)\
            .delete()\
            .eq(BUCKET_FILE_ID_COLUMN, bucket_file_id)\
            .execute()

    await asyncio.to_thread(db_call)
    logger.info(f"[{bucket_file_id}] Deleted file documents referencing stored object.")


# --- User Document File Links ---

async def get_user_file_ids(user_id: str) -> List[str]:
    """Current list of file ids on the user document. Raises if the user is missing."""
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(USERS_TABLE)\
            .select(USER_FILES_COLUMN)\
            .eq("id", user_id)\
            .limit(1)\
            .execute()

    response = await asyncio.to_thread(db_call)
    if not response.data:
        raise LookupError(f"User document '{user_id}' not found")
    return list(response.data[0].get(USER_FILES_COLUMN) or [])


async def set_user_file_ids(user_id: str, file_ids: List[str]) -> None:
    supabase = await get_supabase_client(use_service_key=True)

    def db_call():
        return supabase.table(USERS_TABLE)\
            .update({USER_FILES_COLUMN: file_ids})\
            .eq("id", user_id)\
            .execute()

    await asyncio.to_thread(db_call)
    logger.debug(f"[{user_id}] User document now references {len(file_ids)} file(s).")
