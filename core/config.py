# core/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import logging

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    # --- Supabase Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None # ANON key
    SUPABASE_SERVICE_KEY: str | None = None # SERVICE_ROLE key

    # --- Tables & Storage ---
    USERS_TABLE: str = "users"
    FILES_TABLE: str = "files"
    FILES_BUCKET: str = "nestdrive-files"

    # --- Service URLs ---
    API_GATEWAY_URL: str = "http://localhost:8000"
    AUTH_SERVICE_URL: str = "http://localhost:8001"
    FILE_SERVICE_URL: str = "http://localhost:8002"
    API_GATEWAY_KEY: str | None = None

    # --- Session Cookie ---
    SESSION_COOKIE_NAME: str = "nest-drive-session"
    SESSION_COOKIE_SECURE: bool = False

    # --- Upload / Usage Limits ---
    MAX_FILE_SIZE: int = 50 * 1024 * 1024 # 50 MB
    TOTAL_STORAGE_BYTES: int = 2 * 1024 * 1024 * 1024 # 2 GB per user
    DOWNLOAD_URL_TTL_SECONDS: int = 3600

    # --- Retry Configuration ---
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY_SECONDS: float = 0.5

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        extra = 'ignore'

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("NestDrive_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("postgrest").setLevel(logging.WARNING); logging.getLogger("storage3").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if not settings.SUPABASE_URL or not settings.SUPABASE_KEY: logger.warning("Supabase URL/Key missing.")
if not settings.SUPABASE_SERVICE_KEY: logger.warning("Supabase Service Key missing. Upload/delete actions will fail.")
if not settings.FILES_BUCKET: logger.warning("FILES_BUCKET missing, using default.")
else: logger.info(f"Using Supabase Storage Bucket: {settings.FILES_BUCKET}")

try: assert settings.MAX_FILE_SIZE > 0 and settings.TOTAL_STORAGE_BYTES > 0
except AssertionError: logger.error(f"Invalid size limits: MAX_FILE_SIZE={settings.MAX_FILE_SIZE}, TOTAL_STORAGE_BYTES={settings.TOTAL_STORAGE_BYTES}.")
if settings.DB_RETRY_ATTEMPTS < 1:
    logger.warning(f"DB_RETRY_ATTEMPTS={settings.DB_RETRY_ATTEMPTS} is below 1; a single attempt will be made.")
logger.info(f"Upload Config: Max File Size={settings.MAX_FILE_SIZE}, Retry Attempts={settings.DB_RETRY_ATTEMPTS}, Retry Delay={settings.DB_RETRY_DELAY_SECONDS}s")
