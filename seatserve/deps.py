"""Request-scoped access to the collaborators stored on ``app.state``."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from seatserve.models import UserRecord
from seatserve.security import AuthStore
from seatserve.services import BookingService
from seatserve.suggestions import SeatingSuggestionOrchestrator


def get_service(request: Request) -> BookingService:
    return request.app.state.service


def get_auth_store(request: Request) -> AuthStore:
    return request.app.state.auth_store


def get_orchestrator(request: Request) -> SeatingSuggestionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="AI suggestions are not configured")
    return orchestrator


def bearer_token(authorization: str | None) -> str | None:
    parts = (authorization or "").split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def require_user(
    token: str | None = Header(default=None, alias="Authorization"),
    auth_store: AuthStore = Depends(get_auth_store),
    service: BookingService = Depends(get_service),
) -> UserRecord:
    if not token:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    session_token = bearer_token(token)
    if not session_token:
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    user_id = auth_store.get_session_user(session_token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return service.get_user_or_404(user_id)
