import hmac
import os
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

# Set TIMEBANK_API_KEY in the environment in production
DEFAULT_API_KEY = "your-secret-key-change-me"

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key() -> str:
    return os.getenv("TIMEBANK_API_KEY", DEFAULT_API_KEY)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Reject requests without the configured X-API-Key header"""
    if not api_key or not hmac.compare_digest(api_key, get_api_key()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key"
        )
    return api_key
