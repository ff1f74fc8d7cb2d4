import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from dbanchor.core.config import settings
from dbanchor.core.selector import BackendHandle, BackendSelector


def get_selector(request: Request) -> BackendSelector:
    return request.app.state.selector


SelectorDep = Annotated[BackendSelector, Depends(get_selector)]


def get_handle(selector: SelectorDep) -> BackendHandle:
    handle = selector.handle
    if handle is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No backend resolved",
        )
    return handle


HandleDep = Annotated[BackendHandle, Depends(get_handle)]


def require_admin_token(
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    """Operator endpoints: require the X-Admin-Token header to match ADMIN_TOKEN."""
    if not settings.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator endpoints are disabled (ADMIN_TOKEN not set)",
        )
    if not x_admin_token or not secrets.compare_digest(
        x_admin_token, settings.ADMIN_TOKEN
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )
