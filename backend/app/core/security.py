"""Security dependencies"""
from fastapi import HTTPException, Request
from app.core.logging import security_logger
from app.db.redis import get_session


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        security_logger.info(
            f"Expired or unknown session - IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(401, "Session expired. Please log in again.")

    return user_id
