"""
Simple API Key authentication for the admin endpoints
Keys come from the environment; nothing is stored server-side
"""

from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader
import os
from typing import Dict
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# API Key header
API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_valid_api_keys() -> Dict[str, str]:
    """Load valid API keys from environment variables"""
    keys = {}

    # Support up to 5 users
    for i in range(1, 6):
        key = os.getenv(f"API_KEY_USER{i}")
        if key:
            keys[key] = f"user{i}"

    if not keys and os.getenv("ENVIRONMENT") == "development":
        # Development fallback (never use in production)
        keys["dev-key-insecure"] = "dev_user"

    return keys


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """
    Verify API key and return user identifier

    Usage in FastAPI routes:
        @app.post("/admin/refresh")
        async def route(user: str = Depends(verify_api_key)):
            return {"user": user}
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    valid_keys = get_valid_api_keys()
    if api_key not in valid_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return valid_keys[api_key]


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    """
    Admin-only routes (user1, or the dev user in development)

    Usage:
        @app.delete("/admin/cache")
        async def admin_route(user: str = Depends(verify_admin_api_key)):
            ...
    """
    if user not in ("user1", "dev_user"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return user
