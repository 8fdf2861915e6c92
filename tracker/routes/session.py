"""
Session endpoints — start and end the session whose token the coordinator uses.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from deps import bearer_token, session_state, view_registry
from domain.errors import UnauthorizedError
from domain.responses import success_response
from services.order_coordinator import OrderViewRegistry
from services.session_state import SessionState

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/session", tags=["session"])


class SessionRequest(BaseModel):
    token: Optional[str] = None


@router.post("")
async def start_session(
    request: SessionRequest | None = None,
    header_token: Optional[str] = Depends(bearer_token),
    session: SessionState = Depends(session_state),
    registry: OrderViewRegistry = Depends(view_registry),
):
    """Start a session with the token from the body or the Authorization header."""
    token = (request.token if request else None) or header_token
    session.init(token)
    if session.is_expired():
        session.teardown()
        registry.watch_session()
        raise UnauthorizedError("Session token has expired. Please sign in again.")
    registry.watch_session()
    return success_response({"authenticated": session.is_authenticated})


@router.delete("")
async def end_session(
    session: SessionState = Depends(session_state),
    registry: OrderViewRegistry = Depends(view_registry),
):
    """Close every open view, then drop the token."""
    await registry.close_all()
    session.teardown()
    registry.watch_session()
    return success_response({"authenticated": False})
