from fastapi import FastAPI, HTTPException, Depends, File, Query, UploadFile
from typing import List, Optional
from core.config import settings, logger as core_logger
from core.models import ActionResult, FileDocument, RenameRequest, ShareRequest, UsageSummary, UserDocument
from core.session import require_current_user
from . import actions

logger = core_logger.getChild("FileService")

app = FastAPI(title="NestDrive File Service")

ERROR_STATUS_CODES = {
    actions.NO_FILE_PROVIDED: 400,
    actions.OWNER_REQUIRED: 400,
    actions.EMPTY_FILE_NAME: 400,
    actions.NOT_FILE_OWNER: 403,
    actions.FILE_NOT_FOUND: 404,
    actions.FILE_TOO_LARGE: 413,
}
BACKEND_UNAVAILABLE = "File store is unavailable, please try again later."


def _raise_for_result(result: ActionResult) -> ActionResult:
    if result.success:
        return result
    status_code = ERROR_STATUS_CODES.get(result.error, 500)
    raise HTTPException(status_code=status_code, detail=result.error)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.post("/files", response_model=ActionResult, status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    user: UserDocument = Depends(require_current_user),
):
    logger.info(f"[{user.id}] Received upload '{file.filename}' ({file.content_type})")
    # Size is known for spooled multipart uploads; reject before reading the body
    if file.size is not None and file.size > settings.MAX_FILE_SIZE:
        logger.warning(f"[{user.id}] Rejected '{file.filename}' ({file.size} bytes) before reading.")
        raise HTTPException(status_code=413, detail=actions.FILE_TOO_LARGE)
    content = await file.read()
    result = await actions.upload_file(
        content=content,
        file_name=file.filename or "",
        owner_id=user.id,
        account_id=user.account_id,
        content_type=file.content_type,
    )
    return _raise_for_result(result)


@app.get("/files", response_model=List[FileDocument])
async def list_files(
    type: Optional[List[str]] = Query(None, description="File types to include, e.g. image, document"),
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(None, description="'<date|name|size>-<asc|desc>'"),
    limit: Optional[int] = Query(None, gt=0, le=1000),
    user: UserDocument = Depends(require_current_user),
):
    try:
        return await actions.list_files(user, types=type, search=search, sort=sort, limit=limit)
    except Exception as e:
        logger.error(f"[{user.id}] Listing files failed: {e}", exc_info=False)
        raise HTTPException(status_code=502, detail=BACKEND_UNAVAILABLE)


@app.get("/files/{file_id}", response_model=FileDocument)
async def get_file(file_id: str, user: UserDocument = Depends(require_current_user)):
    try:
        document = await actions.get_file(file_id, user)
    except Exception as e:
        logger.error(f"[{file_id}] Fetching file failed: {e}", exc_info=False)
        raise HTTPException(status_code=502, detail=BACKEND_UNAVAILABLE)
    if not document:
        raise HTTPException(status_code=404, detail=actions.FILE_NOT_FOUND)
    return document


@app.patch("/files/{file_id}/rename", response_model=ActionResult)
async def rename_file(file_id: str, request: RenameRequest, user: UserDocument = Depends(require_current_user)):
    return _raise_for_result(await actions.rename_file(file_id, request.name, None, user))


@app.put("/files/{file_id}/share", response_model=ActionResult)
async def share_file(file_id: str, request: ShareRequest, user: UserDocument = Depends(require_current_user)):
    return _raise_for_result(await actions.update_file_users(file_id, request.emails, user))


@app.delete("/files/{file_id}", response_model=ActionResult)
async def delete_file(file_id: str, user: UserDocument = Depends(require_current_user)):
    return _raise_for_result(await actions.delete_file(file_id, user))


@app.get("/files/{file_id}/download", response_model=ActionResult)
async def download_file(file_id: str, user: UserDocument = Depends(require_current_user)):
    return _raise_for_result(await actions.get_download_url(file_id, user))


@app.get("/usage", response_model=UsageSummary)
async def get_usage(user: UserDocument = Depends(require_current_user)):
    try:
        return await actions.get_total_space_used(user)
    except Exception as e:
        logger.error(f"[{user.id}] Computing usage failed: {e}", exc_info=False)
        raise HTTPException(status_code=502, detail=BACKEND_UNAVAILABLE)
