"""
API Dependencies
FastAPI dependency injection for the engine container and auth
"""
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from campaign_engine.core.container import EngineContainer


def get_container(request: Request) -> EngineContainer:
    """Engine container built during application startup."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not initialized"
        )
    return container


def require_health_token(
    authorization: Optional[str] = Header(None),
    container: EngineContainer = Depends(get_container)
) -> None:
    """
    Validate the shared bearer token for manual health checks.

    Raises:
        HTTPException 401: Missing, malformed or wrong token, or no token configured
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"}
        )

    expected = container.settings.health_check_token
    token = authorization.split(" ", 1)[1]
    if not expected or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"}
        )
