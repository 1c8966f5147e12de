# coderoom/api/routes/utils.py

from __future__ import annotations

from fastapi import Request

from coderoom.core.state import AppState


def get_state(request: Request) -> AppState:
    """
    Dependency returning the AppState the app was built with.

    Usage:
        @router.get("/health")
        async def health(state: AppState = Depends(get_state)):
            ...
    """
    return request.app.state.coderoom
