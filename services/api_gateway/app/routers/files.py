# services/api_gateway/app/routers/files.py
from fastapi import APIRouter, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from core.models import GatewayResponse
from core.config import settings
import httpx
import logging
from ..main import rate_limiter, verify_api_key

logger = logging.getLogger("NestDrive_Core").getChild("APIGateway").getChild("FilesRouter")

router = APIRouter(dependencies=[Depends(verify_api_key), Depends(rate_limiter)])

FORWARDED_REQUEST_HEADERS = ("content-type", "authorization", "cookie")


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Dependency function to get the HTTP client from app state."""
    client = getattr(request.app.state, 'http_client', None)
    if not client:
        logger.error("HTTP client dependency not met: Client not available in application state.")
        raise HTTPException(status_code=503, detail="Gateway internal error: HTTP client not ready")
    return client


async def forward_request(
    http_client: httpx.AsyncClient,
    request: Request,
    downstream_url: str,
    service_name: str,
    message: str | None = None,
) -> JSONResponse:
    """
    Sends the incoming request to a downstream service and wraps its JSON reply in a GatewayResponse.
    Session cookies set downstream are passed back to the caller.
    """
    headers = {k: v for k, v in request.headers.items() if k.lower() in FORWARDED_REQUEST_HEADERS}
    body = await request.body()

    try:
        response = await http_client.request(
            request.method,
            downstream_url,
            params=request.query_params,
            content=body or None,
            headers=headers,
        )
        response.raise_for_status()
        logger.info(f"{service_name} call successful (Status: {response.status_code})")
        payload = GatewayResponse(status="success", data=response.json(), message=message)
        gateway_response = JSONResponse(content=payload.model_dump(mode="json"), status_code=response.status_code)
        for cookie in response.headers.get_list("set-cookie"):
            gateway_response.headers.append("set-cookie", cookie)
        return gateway_response

    except httpx.HTTPStatusError as e:
        try: downstream_error = e.response.json().get('detail', e.response.text)
        except Exception: downstream_error = e.response.text
        logger.error(f"{service_name} Error ({e.response.status_code}) calling {downstream_url}: {downstream_error}", exc_info=False)
        raise HTTPException(status_code=e.response.status_code, detail=downstream_error)
    except httpx.RequestError as e:
        logger.error(f"Could not connect to {service_name} at {downstream_url}: {e}")
        raise HTTPException(status_code=503, detail=f"{service_name} unavailable.")


@router.api_route("/files", methods=["GET", "POST"])
async def route_files(request: Request, http_client: httpx.AsyncClient = Depends(get_http_client)):
    """List or upload files via the File Service."""
    return await forward_request(http_client, request, f"{settings.FILE_SERVICE_URL}/files", "File Service")


@router.api_route("/files/{file_path:path}", methods=["GET", "PATCH", "PUT", "DELETE"])
async def route_file_item(file_path: str, request: Request, http_client: httpx.AsyncClient = Depends(get_http_client)):
    """Single-file operations (details, rename, share, delete, download) via the File Service."""
    logger.info(f"Routing {request.method} /files/{file_path}")
    return await forward_request(http_client, request, f"{settings.FILE_SERVICE_URL}/files/{file_path}", "File Service")


@router.get("/usage")
async def route_usage(request: Request, http_client: httpx.AsyncClient = Depends(get_http_client)):
    """Dashboard storage usage via the File Service."""
    return await forward_request(http_client, request, f"{settings.FILE_SERVICE_URL}/usage", "File Service")
