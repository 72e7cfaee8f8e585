from supabase import create_client, Client, ClientOptions
from core.config import settings, logger
from typing import Dict, Optional
import asyncio
from functools import partial

# Cache clients by type
_supabase_clients: Dict[str, Client] = {}
_init_lock = asyncio.Lock()

async def get_supabase_client(use_service_key=False) -> Client:
    """
    Initializes and returns the Supabase client (thread-safe).
    Args:
        use_service_key: If True, returns a client using the service role key to bypass RLS
    """
    global _supabase_clients

    # Determine client type
    client_type = "service" if use_service_key else "anon"

    if client_type not in _supabase_clients:
        async with _init_lock:
            # Double check after acquiring lock
            if client_type not in _supabase_clients:
                url = settings.SUPABASE_URL
                key = settings.SUPABASE_SERVICE_KEY if use_service_key else settings.SUPABASE_KEY

                if url and key:
                    key_type_str = 'service role' if use_service_key else 'anon'
                    logger.info(f"Initializing Supabase client with {key_type_str} key...")
                    try:
                        # Run create_client in a thread pool since it's synchronous
                        loop = asyncio.get_running_loop()
                        client_instance = await loop.run_in_executor(
                            None,
                            partial(create_client, url, key)
                        )
                        _supabase_clients[client_type] = client_instance
                        logger.info(f"Supabase client with {key_type_str} key initialized successfully.")
                    except Exception as e:
                        logger.error(f"Failed to initialize Supabase client with {key_type_str} key: {e}", exc_info=True)
                        raise RuntimeError(f"Failed to initialize Supabase client: {e}")
                else:
                    missing_key = "Service Role Key" if use_service_key else "Anon Key"
                    logger.error(f"Supabase URL or {missing_key} not configured. Cannot create client.")
                    raise ValueError(f"Supabase URL or {missing_key} not configured")

    return _supabase_clients[client_type]


async def create_session_client(access_token: Optional[str] = None) -> Client:
    """
    Returns a new anon-key client that never persists auth state.
    With an access token, table requests run as the signed-in user (RLS applies).
    Not cached: auth calls mutate client state, so each request gets its own client.
    """
    url, key = settings.SUPABASE_URL, settings.SUPABASE_KEY
    if not url or not key:
        logger.error("Supabase URL or Anon Key not configured. Cannot create session client.")
        raise ValueError("Supabase URL or Anon Key not configured")

    options = ClientOptions(persist_session=False, auto_refresh_token=False)
    loop = asyncio.get_running_loop()
    client_instance = await loop.run_in_executor(None, partial(create_client, url, key, options=options))
    if access_token:
        client_instance.postgrest.auth(access_token)
    return client_instance


def reset_supabase_clients() -> None:
    """Drops cached clients (used after settings change and in tests)."""
    _supabase_clients.clear()

# Define Table names here for consistency
USERS_TABLE = settings.USERS_TABLE
FILES_TABLE = settings.FILES_TABLE
