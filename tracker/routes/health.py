"""
Health check endpoint.
"""
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, status

from deps import session_state
from domain.errors import WorkflowStateError
from services.order_coordinator import get_registry
from services.session_state import SessionState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(session: SessionState = Depends(session_state)):
    """Health check — reports session state and open view count."""
    try:
        open_views = len(get_registry())
    except WorkflowStateError as e:
        logger.error(f"Health check: registry unavailable: {e}")
        open_views = None
    return {
        "status": "healthy" if open_views is not None else "degraded",
        "authenticated": session.is_authenticated,
        "openViews": open_views,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
