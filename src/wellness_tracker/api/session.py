"""Session webhook for the authentication provider."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from wellness_tracker.api.models import SessionChange

if TYPE_CHECKING:
    from wellness_tracker.containers import AppContainer

router = APIRouter(prefix="/session", tags=["session"])


def _get_auth_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.auth_webhook_token


async def require_auth_provider(
    x_auth_token: str | None = Header(default=None),
    auth_token: str = Depends(_get_auth_token),
) -> None:
    """Ensure session signals come from the authentication provider."""
    if not x_auth_token or x_auth_token != auth_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("", dependencies=[Depends(require_auth_provider)])
async def session_state(request: Request) -> dict[str, object]:
    """Return the current session state."""
    container: AppContainer = request.app.state.container
    manager = container.session_manager
    return {"state": str(manager.state), "owner_id": manager.owner_id}


@router.post("", dependencies=[Depends(require_auth_provider)])
async def session_changed(change: SessionChange, request: Request) -> dict[str, object]:
    """Apply a sign-in or sign-out signal."""
    container: AppContainer = request.app.state.container
    manager = container.session_manager
    await manager.on_session_changed(change.owner_id)
    return {"state": str(manager.state), "owner_id": manager.owner_id}
