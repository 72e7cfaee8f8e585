# services/file_service/app/actions.py
"""
Server-side file actions.

Each action shapes one user request into a short sequence of Supabase calls
and reports the outcome as an ActionResult. The upload action is multi-step:
blob upload, file document insert, then linking the document to the owner.
If a later step fails the earlier ones are undone on a best-effort basis;
a failing undo is logged and never replaces the original error.
"""
from typing import List, Optional

from supabase import Client, PostgrestAPIError, StorageException

from core.config import settings, logger as core_logger
from core.models import ActionResult, FileDocument, UserDocument, UsageSummary
from core.storage import build_file_url, create_download_url, delete_object, upload_object
from core.supabase_client import get_supabase_client
from core.utils import (
    FILE_TYPES, build_usage_summary, format_bytes, get_file_type,
    normalise_emails, parse_sort, run_with_retry, strip_extension, utcnow
)
from . import crud

logger = core_logger.getChild("FileService").getChild("Actions")

# Error messages the HTTP layer maps to status codes
NO_FILE_PROVIDED = "No file was provided to upload."
OWNER_REQUIRED = "Owner ID is required to upload files."
FILE_TOO_LARGE = "File exceeds the maximum upload size."
FILE_NOT_FOUND = "File not found."
NOT_FILE_OWNER = "Only the file owner can perform this action."
EMPTY_FILE_NAME = "File name cannot be empty."


def _error_message(error: Exception) -> str:
    if isinstance(error, PostgrestAPIError):
        return error.message or "Database request failed."
    return str(error) or "An unknown error occurred."


async def _link_file_to_user(user_id: str, file_id: str) -> None:
    """
    Appends file_id to the user document's files (no-op if already there, so retries are safe).
    This is a read-modify-write: two uploads by the same user finishing together can drop
    one id. The file document itself is unaffected and still lists under its owner.
    """
    file_ids = await crud.get_user_file_ids(user_id)
    if file_id not in file_ids:
        await crud.set_user_file_ids(user_id, [*file_ids, file_id])


async def _unlink_file_from_user(user_id: str, file_id: str) -> None:
    file_ids = await crud.get_user_file_ids(user_id)
    if file_id in file_ids:
        await crud.set_user_file_ids(user_id, [fid for fid in file_ids if fid != file_id])


async def _cleanup_failed_upload(client: Client, bucket_file_id: str) -> None:
    """
    Undoes a partial upload. Documents are removed by their stored object id so a row
    written by an insert whose response was lost is removed too. Failures are logged only.
    """
    logger.warning(f"[{bucket_file_id}] Database step failed. Starting cleanup...")
    try:
        await delete_object(client, bucket_file_id)
    except Exception as cleanup_error:
        logger.error(f"[{bucket_file_id}] Cleanup could not remove stored object: {cleanup_error}", exc_info=False)

    try:
        await crud.delete_file_documents_by_object(bucket_file_id)
    except Exception as cleanup_error:
        logger.error(f"[{bucket_file_id}] Cleanup could not remove file document: {cleanup_error}", exc_info=False)


async def upload_file(
    content: bytes,
    file_name: str,
    owner_id: str,
    account_id: Optional[str] = None,
    content_type: Optional[str] = None,
) -> ActionResult:
    """
    Uploads one file to storage, records its file document and links it to the owner.

    Steps:
      1. Store the blob under a fresh object id (readable through its public URL).
      2. Create the file document.
      3. Append the document id to the owner's list of files (retried, linear backoff).
    """
    if not file_name or content is None:
        return ActionResult(success=False, error=NO_FILE_PROVIDED)
    if not owner_id:
        return ActionResult(success=False, error=OWNER_REQUIRED)
    if len(content) > settings.MAX_FILE_SIZE:
        logger.warning(f"[{owner_id}] Rejected '{file_name}': {format_bytes(len(content))} over limit.")
        return ActionResult(success=False, error=FILE_TOO_LARGE)

    bucket_file_id = None
    created_document: Optional[FileDocument] = None

    try:
        client = await get_supabase_client(use_service_key=True)
        file_type, extension = get_file_type(file_name)

        # Step 1
        bucket_file_id = await upload_object(client, content, file_name, content_type, extension)

        try:
            document_data = {
                "name": file_name,
                "url": build_file_url(bucket_file_id),
                "type": file_type,
                "extension": extension,
                "size": len(content),
                "bucket_file_id": bucket_file_id,
                "owner": owner_id,
                "account_id": account_id or owner_id,
                "users": [],
            }
            # Step 2
            created_document = await crud.insert_file_document(document_data)

            # Step 3
            await run_with_retry(
                lambda: _link_file_to_user(owner_id, created_document.id),
                attempts=settings.DB_RETRY_ATTEMPTS,
                delay=settings.DB_RETRY_DELAY_SECONDS,
                label=f"[{created_document.id}] Linking file to user {owner_id}",
            )
        except Exception:
            await _cleanup_failed_upload(client, bucket_file_id)
            raise

        logger.info(f"[{created_document.id}] File uploaded and user document updated successfully.")
        return ActionResult(success=True, data=created_document)

    except StorageException as e:
        logger.error(f"[{owner_id}] Storage error uploading '{file_name}': {e}", exc_info=False)
        return ActionResult(success=False, error=_error_message(e))
    except PostgrestAPIError as e:
        logger.error(f"[{owner_id}] Supabase error recording '{file_name}': {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        return ActionResult(success=False, error=_error_message(e))
    except Exception as e:
        logger.error(f"[{owner_id}] Error during file upload and document creation: {e}", exc_info=True)
        return ActionResult(success=False, error=_error_message(e))


def _resolve_types(types: Optional[List[str]]) -> Optional[List[str]]:
    """None means no filter; an empty list means nothing can match."""
    if not types or "all" in types:
        return None
    return [t for t in types if t in FILE_TYPES]


async def list_files(
    user: UserDocument,
    types: Optional[List[str]] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[FileDocument]:
    """Files owned by or shared with the user, filtered, searched and sorted. Backend errors propagate."""
    resolved_types = _resolve_types(types)
    if resolved_types == []:
        logger.info(f"[{user.id}] No known file types in filter {types}; returning nothing.")
        return []
    sort_column, descending = parse_sort(sort)
    return await crud.list_file_documents(
        owner_id=user.id,
        email=user.email,
        types=resolved_types,
        search=search.strip() if search else None,
        sort_column=sort_column,
        descending=descending,
        limit=limit,
    )


async def get_file(file_id: str, user: UserDocument) -> Optional[FileDocument]:
    """A file the user owns or that is shared with them. Backend errors propagate."""
    document = await crud.get_file_document(file_id)
    if not document:
        return None
    if document.owner != user.id and user.email.lower() not in document.users:
        logger.info(f"[{file_id}] User {user.id} has no access.")
        return None
    return document


async def _get_owned_file(file_id: str, user: UserDocument) -> ActionResult:
    try:
        document = await crud.get_file_document(file_id)
    except Exception as e:
        return ActionResult(success=False, error=_error_message(e))
    if not document:
        return ActionResult(success=False, error=FILE_NOT_FOUND)
    if document.owner != user.id:
        logger.warning(f"[{file_id}] User {user.id} is not the owner.")
        return ActionResult(success=False, error=NOT_FILE_OWNER)
    return ActionResult(success=True, data=document)


async def rename_file(file_id: str, name: str, extension: Optional[str], user: UserDocument) -> ActionResult:
    """Renames a file, keeping (re-appending) its extension."""
    lookup = await _get_owned_file(file_id, user)
    if not lookup.success:
        return lookup
    document: FileDocument = lookup.data

    extension = extension if extension is not None else document.extension
    base_name = strip_extension(name or "", extension)
    if not base_name:
        return ActionResult(success=False, error=EMPTY_FILE_NAME)
    new_name = f"{base_name}.{extension}" if extension else base_name

    try:
        updated = await crud.update_file_document(file_id, {"name": new_name, "updated_at": utcnow().isoformat()})
    except PostgrestAPIError as e:
        logger.error(f"[{file_id}] Supabase error renaming file: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        return ActionResult(success=False, error=_error_message(e))
    if not updated:
        return ActionResult(success=False, error=FILE_NOT_FOUND)
    logger.info(f"[{file_id}] Renamed '{document.name}' to '{new_name}'.")
    return ActionResult(success=True, data=updated, message="File renamed")


async def update_file_users(file_id: str, emails: List[str], user: UserDocument) -> ActionResult:
    """Replaces the list of emails a file is shared with."""
    lookup = await _get_owned_file(file_id, user)
    if not lookup.success:
        return lookup

    shared_with = [email for email in normalise_emails(emails) if email != user.email.lower()]
    try:
        updated = await crud.update_file_document(file_id, {"users": shared_with, "updated_at": utcnow().isoformat()})
    except PostgrestAPIError as e:
        logger.error(f"[{file_id}] Supabase error sharing file: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        return ActionResult(success=False, error=_error_message(e))
    if not updated:
        return ActionResult(success=False, error=FILE_NOT_FOUND)
    logger.info(f"[{file_id}] Shared with {len(shared_with)} user(s).")
    return ActionResult(success=True, data=updated, message="File shared")


async def delete_file(file_id: str, user: UserDocument) -> ActionResult:
    """
    Deletes the file document, then its stored object, then the owner's reference.
    Once the document is gone the file is deleted for the user; later failures are only logged.
    """
    lookup = await _get_owned_file(file_id, user)
    if not lookup.success:
        return lookup
    document: FileDocument = lookup.data

    try:
        await crud.delete_file_document(file_id)
    except PostgrestAPIError as e:
        logger.error(f"[{file_id}] Supabase error deleting file document: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        return ActionResult(success=False, error=_error_message(e))

    try:
        client = await get_supabase_client(use_service_key=True)
        await delete_object(client, document.bucket_file_id)
    except Exception as e:
        logger.error(f"[{file_id}] Stored object {document.bucket_file_id} left behind: {e}", exc_info=False)

    try:
        await run_with_retry(
            lambda: _unlink_file_from_user(document.owner, file_id),
            attempts=settings.DB_RETRY_ATTEMPTS,
            delay=settings.DB_RETRY_DELAY_SECONDS,
            label=f"[{file_id}] Unlinking file from user {document.owner}",
        )
    except Exception as e:
        logger.error(f"[{file_id}] User document still references deleted file: {e}", exc_info=False)

    return ActionResult(success=True, data={"id": file_id}, message="File deleted")


async def get_total_space_used(user: UserDocument) -> UsageSummary:
    """Dashboard usage over the files the user owns. Backend errors propagate."""
    files = await crud.list_file_documents(owner_id=user.id)
    return build_usage_summary(files, settings.TOTAL_STORAGE_BYTES)


async def get_download_url(file_id: str, user: UserDocument) -> ActionResult:
    try:
        document = await get_file(file_id, user)
    except Exception as e:
        return ActionResult(success=False, error=_error_message(e))
    if not document:
        return ActionResult(success=False, error=FILE_NOT_FOUND)
    try:
        client = await get_supabase_client(use_service_key=True)
        url = await create_download_url(client, document.bucket_file_id, document.name)
    except Exception as e:
        logger.error(f"[{file_id}] Could not create download URL: {e}", exc_info=False)
        return ActionResult(success=False, error=_error_message(e))
    return ActionResult(success=True, data={"url": url, "name": document.name})
