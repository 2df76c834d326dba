"""Shared FastAPI dependencies."""

from fastapi import Request

from looksia.core.exceptions import UnauthorizedError
from looksia.core.logging import bind_user_id
from looksia.core.security import load_session_cookie

SESSION_COOKIE_NAME = "looksia_session"


async def get_current_user_id(request: Request) -> str:
    """Dependency: resolve the signed session cookie to a user id. No ledger access happens without one."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise UnauthorizedError("Invalid session")
    bind_user_id(user_id)
    return user_id
