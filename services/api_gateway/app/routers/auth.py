# services/api_gateway/app/routers/auth.py
from fastapi import APIRouter, HTTPException, Request, Depends
from core.config import settings
import httpx
import logging
from ..main import rate_limiter, verify_api_key
from .files import get_http_client, forward_request

logger = logging.getLogger("NestDrive_Core").getChild("APIGateway").getChild("AuthRouter")

router = APIRouter(dependencies=[Depends(verify_api_key), Depends(rate_limiter)])

AUTH_ROUTES = {
    ("POST", "otp/send"): "OTP sent",
    ("POST", "otp/verify"): "Signed in",
    ("POST", "sign-up"): "Account created",
    ("POST", "sign-in"): "OTP sent",
    ("POST", "sign-out"): "Signed out",
    ("GET", "me"): None,
}


@router.api_route("/{auth_path:path}", methods=["GET", "POST"])
async def route_auth(auth_path: str, request: Request, http_client: httpx.AsyncClient = Depends(get_http_client)):
    """Route authentication requests to the Auth Service."""
    key = (request.method, auth_path.strip("/"))
    if key not in AUTH_ROUTES:
        raise HTTPException(status_code=404, detail="Not Found")
    logger.info(f"Routing auth request: {request.method} /{key[1]}")
    downstream_url = f"{settings.AUTH_SERVICE_URL}/{key[1]}"
    return await forward_request(http_client, request, downstream_url, "Auth Service", message=AUTH_ROUTES[key])
