# core/storage.py
"""
Core Storage Utilities.

Thin wrappers around Supabase Storage for the files bucket. The SDK is
synchronous, so each call runs in a worker thread. Errors propagate to the
caller (file actions decide whether a failure is fatal or only logged).
"""
import asyncio
import uuid
from typing import Optional

from supabase import Client

from core.config import settings, logger as core_logger

logger = core_logger.getChild("Storage")


def build_file_url(bucket_file_id: str, bucket: Optional[str] = None) -> str:
    """Public view URL for an object in the files bucket."""
    bucket = bucket or settings.FILES_BUCKET
    base_url = (settings.SUPABASE_URL or "").rstrip("/")
    return f"{base_url}/storage/v1/object/public/{bucket}/{bucket_file_id}"


def generate_object_id(extension: str = "") -> str:
    object_id = uuid.uuid4().hex
    return f"{object_id}.{extension}" if extension else object_id


async def upload_object(
    client: Client,
    content: bytes,
    file_name: str,
    content_type: Optional[str] = None,
    extension: str = "",
) -> str:
    """Uploads bytes under a fresh unique object id and returns that id."""
    object_id = generate_object_id(extension)
    bucket = client.storage.from_(settings.FILES_BUCKET)
    file_options = {
        "content-type": content_type or "application/octet-stream",
        "upsert": "false",
    }
    logger.debug(f"[{object_id}] Uploading '{file_name}' ({len(content)} bytes) to bucket '{settings.FILES_BUCKET}'.")

    def storage_call():
        return bucket.upload(path=object_id, file=content, file_options=file_options)

    await asyncio.to_thread(storage_call)
    logger.info(f"[{object_id}] Stored '{file_name}' in bucket '{settings.FILES_BUCKET}'.")
    return object_id


async def delete_object(client: Client, bucket_file_id: str) -> None:
    """Removes one object from the files bucket."""
    bucket = client.storage.from_(settings.FILES_BUCKET)

    def storage_call():
        return bucket.remove([bucket_file_id])

    await asyncio.to_thread(storage_call)
    logger.info(f"[{bucket_file_id}] Removed object from bucket '{settings.FILES_BUCKET}'.")


async def create_download_url(client: Client, bucket_file_id: str, file_name: str) -> str:
    """Signed URL that makes the browser download the object as file_name."""
    bucket = client.storage.from_(settings.FILES_BUCKET)

    def storage_call():
        return bucket.create_signed_url(
            bucket_file_id,
            settings.DOWNLOAD_URL_TTL_SECONDS,
            options={"download": file_name},
        )

    response = await asyncio.to_thread(storage_call)
    # storage3 has returned both spellings across releases
    signed_url = response.get("signedURL") or response.get("signedUrl")
    if not signed_url:
        raise RuntimeError(f"Storage returned no signed URL for object '{bucket_file_id}'")
    return signed_url
