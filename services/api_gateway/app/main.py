# services/api_gateway/app/main.py
from fastapi import FastAPI, Request, HTTPException
from core.config import settings
from core.models import GatewayResponse
import httpx
import time
import logging
from contextlib import asynccontextmanager

# Use logger configured in core.config
logger = logging.getLogger("NestDrive_Core").getChild("APIGateway")


# --- Optional API Key Check ---
async def verify_api_key(request: Request):
    expected_api_key = settings.API_GATEWAY_KEY
    if not expected_api_key:
        return # Skip check if no key is configured

    provided_key = request.headers.get("X-API-Key")
    if not provided_key or provided_key != expected_api_key:
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"Unauthorized access attempt: Missing or incorrect API Key from {client_host}.")
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")

# --- Rate Limiting ---
# In-memory only: NOT suitable for multi-instance deployments
RATE_LIMIT_STORE = {}
RATE_LIMIT_MAX_CALLS = 100
RATE_LIMIT_PERIOD = 60 # seconds

async def rate_limiter(request: Request):
    client_ip = request.client.host if request.client else "unknown"
    current_time = time.time()

    for ip in list(RATE_LIMIT_STORE.keys()):
        if current_time - RATE_LIMIT_STORE[ip]['timestamp'] > RATE_LIMIT_PERIOD * 1.5:
            RATE_LIMIT_STORE.pop(ip, None)

    client_data = RATE_LIMIT_STORE.get(client_ip)
    if client_data and current_time - client_data['timestamp'] < RATE_LIMIT_PERIOD:
        if client_data['count'] >= RATE_LIMIT_MAX_CALLS:
            logger.warning(f"Rate limit exceeded for IP: {client_ip}")
            raise HTTPException(status_code=429, detail="Rate limit exceeded")
        client_data['count'] += 1
        client_data['timestamp'] = current_time
    else:
        RATE_LIMIT_STORE[client_ip] = {'count': 1, 'timestamp': current_time}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Initialize the client and store it in app.state
    logger.info("API Gateway lifespan startup: Initializing HTTPX Client.")
    try:
        app.state.http_client = httpx.AsyncClient(timeout=60.0)
        logger.info("HTTPX Client initialized and stored in app.state.")
    except Exception as e:
        logger.error(f"Failed to initialize HTTPX client during startup: {e}", exc_info=True)
        app.state.http_client = None

    yield # Application runs here

    logger.info("API Gateway lifespan shutdown: Cleaning up resources.")
    if getattr(app.state, 'http_client', None):
        logger.info("Closing HTTPX Client.")
        await app.state.http_client.aclose()
        app.state.http_client = None
        logger.info("HTTPX Client closed.")
    else:
        logger.warning("HTTPX Client was not available in app.state during shutdown.")

# --- FastAPI App ---
app = FastAPI(
    title="NestDrive API Gateway",
    description="Entry point for the NestDrive file storage services",
    version="1.0.0",
    lifespan=lifespan
)

# --- Health Check ---
@app.get("/health", response_model=GatewayResponse, tags=["Meta"])
async def health_check(request: Request):
    client_status = "initialized" if getattr(request.app.state, 'http_client', None) else "NOT initialized"
    return GatewayResponse(status="success", message=f"API Gateway is running (HTTP Client: {client_status})")

# --- Routing ---
# Import routers AFTER app is defined
from .routers import auth, files

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(files.router, tags=["Files"])

@app.get("/", response_model=GatewayResponse, tags=["Meta"])
async def read_root():
    return GatewayResponse(status="success", message="Welcome to the NestDrive API Gateway")
