from fastapi import FastAPI, HTTPException, Request, Response
from supabase import AuthError
from core.config import settings, logger as core_logger
from core.models import (
    ActionResult, CreateAccountRequest, SendOtpRequest,
    VerifyOtpRequest, UserDocument
)
from core.session import get_current_user, get_session_token
from . import logic

logger = core_logger.getChild("AuthService")

app = FastAPI(title="NestDrive Auth Service")


def _raise_for_result(result: ActionResult, not_found_status: int = 404) -> ActionResult:
    if result.success:
        return result
    status_code = not_found_status if result.error == "User not found" else 400
    raise HTTPException(status_code=status_code, detail=result.error)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.post("/otp/send", response_model=ActionResult)
async def send_otp(request: SendOtpRequest):
    logger.info(f"Received OTP request for {request.email}")
    try:
        account_id = await logic.send_email_otp(request.email)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=f"Failed to send OTP: {e}")
    return ActionResult(success=True, data={"account_id": account_id}, message="OTP sent")


@app.post("/sign-up", response_model=ActionResult)
async def sign_up(request: CreateAccountRequest):
    logger.info(f"Received sign-up request for {request.email}")
    return _raise_for_result(await logic.create_account(request.full_name, request.email))


@app.post("/sign-in", response_model=ActionResult)
async def sign_in(request: SendOtpRequest):
    logger.info(f"Received sign-in request for {request.email}")
    return _raise_for_result(await logic.sign_in_user(request.email))


@app.post("/otp/verify", response_model=ActionResult)
async def verify_otp(request: VerifyOtpRequest, response: Response):
    try:
        session = await logic.verify_secret(request.email, request.otp)
    except AuthError as e:
        logger.warning(f"[{request.email}] OTP verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired OTP")
    except Exception as e:
        logger.error(f"[{request.email}] Sign-in could not be completed: {e}", exc_info=False)
        raise HTTPException(status_code=502, detail="Sign-in could not be completed, please try again.")

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.access_token,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.SESSION_COOKIE_SECURE,
        expires=session.expires_at,
    )
    return ActionResult(success=True, data={"user_id": session.user_id}, message="Signed in")


@app.get("/me", response_model=UserDocument)
async def read_current_user(request: Request):
    user = await get_current_user(get_session_token(request))
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


@app.post("/sign-out", response_model=ActionResult)
async def sign_out(request: Request, response: Response):
    token = get_session_token(request)
    revoked = await logic.sign_out(token) if token else False
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return ActionResult(success=True, data={"revoked": revoked}, message="Signed out")
